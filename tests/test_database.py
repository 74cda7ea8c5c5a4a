"""Tests for the sqlite catalog store."""

from datetime import datetime

import pytest

from utils import database
from utils.bluetooth.constants import STATUS_OFFLINE
from utils.bluetooth.exceptions import StoreUnavailableError
from utils.bluetooth.models import Device

T0 = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def sample_device():
    return Device(
        address='00:25:00:AA:BB:CC',
        first_seen=T0,
        last_seen=T0,
        status=STATUS_OFFLINE,
        address_type='public',
        classic_address='00:25:00:AA:BB:CC',
        name="Alice's iPhone",
        vendor='Apple, Inc.',
        classic_mode=True,
        class_of_device=0x5a020c,
        service_uuids={'0x110a', '0x110b'},
        last_rssi=-60,
        range_m=1.5,
        range_band='near',
        last_info_scan=T0,
    )


class TestInit:
    """Tests for database initialization."""

    def test_tables_created(self, temp_db):
        with database.get_db() as conn:
            tables = {row['name'] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}

        assert {'settings', 'sync_version', 'bt_devices'} <= tables

    def test_init_is_repeatable(self, temp_db):
        database.init_db()
        database.init_db()

    def test_corrupt_file_unavailable(self, tmp_path, monkeypatch):
        path = tmp_path / 'corrupt.db'
        path.write_bytes(b'this is not a sqlite database' * 200)
        database.close_db()
        monkeypatch.setattr(database, 'DB_PATH', path)
        monkeypatch.setattr(database, 'DB_DIR', tmp_path)

        try:
            with pytest.raises(StoreUnavailableError):
                database.init_db()
        finally:
            database.close_db()


class TestSettings:
    """Tests for the settings table."""

    def test_round_trip_types(self, temp_db):
        database.set_setting('mqtt_enabled', True)
        database.set_setting('mqtt_broker_port', 8883)
        database.set_setting('mqtt_broker_host', 'broker.local')

        assert database.get_setting('mqtt_enabled') is True
        assert database.get_setting('mqtt_broker_port') == 8883
        assert database.get_setting('mqtt_broker_host') == 'broker.local'
        assert database.get_setting('missing', 'fallback') == 'fallback'

    def test_delete_and_list(self, temp_db):
        database.set_setting('a', 1)
        database.set_setting('b', [1, 2])

        assert database.get_all_settings() == {'a': 1, 'b': [1, 2]}
        assert database.delete_setting('a') is True
        assert database.delete_setting('a') is False


class TestSyncVersion:
    """Tests for the sync generation counter."""

    def test_bump(self, temp_db):
        assert database.get_sync_version() == 0
        assert database.bump_sync_version() == 1
        assert database.bump_sync_version() == 2
        assert database.get_sync_version() == 2


class TestCatalogStore:
    """Tests for CatalogStore."""

    def test_upsert_and_get(self, temp_db, sample_device):
        store = database.CatalogStore()
        store.upsert(sample_device)

        loaded = store.get('00:25:00:AA:BB:CC')
        assert loaded.to_dict() == sample_device.to_dict()
        assert loaded.fresh is False
        assert store.count() == 1

    def test_upsert_replaces(self, temp_db, sample_device):
        store = database.CatalogStore()
        store.upsert(sample_device)
        sample_device.name = 'Renamed'
        sample_device.service_uuids.add('0x1108')
        store.upsert(sample_device)

        loaded = store.get(sample_device.address)
        assert loaded.name == 'Renamed'
        assert loaded.service_uuids == {'0x110a', '0x110b', '0x1108'}
        assert store.count() == 1

    def test_all_and_missing(self, temp_db, sample_device):
        store = database.CatalogStore()
        store.upsert(sample_device)
        store.upsert(Device(address='11:22:33:44:55:66', first_seen=T0, last_seen=T0, le_mode=True))

        assert [d.address for d in store.all()] == ['00:25:00:AA:BB:CC', '11:22:33:44:55:66']
        assert store.get('FF:FF:FF:FF:FF:FF') is None


class TestMemoryDatabase:
    """Tests for running without a database file."""

    def test_memory_catalog(self, tmp_path, monkeypatch, sample_device):
        database.close_db()
        monkeypatch.setattr(database, 'DB_PATH', tmp_path / 'unused' / 'btrecon.db')
        monkeypatch.setattr(database, 'DB_DIR', tmp_path / 'unused')

        database.use_database(database.MEMORY_DB)
        try:
            assert database.is_memory_db()
            database.init_db()
            database.CatalogStore().upsert(sample_device)

            assert database.CatalogStore().get(sample_device.address).name == "Alice's iPhone"
            assert database.bump_sync_version() == 1
        finally:
            database.close_db()

        assert not (tmp_path / 'unused').exists()
        assert list(tmp_path.iterdir()) == []

    def test_memory_catalog_discarded_on_close(self, monkeypatch, sample_device):
        database.close_db()
        monkeypatch.setattr(database, 'DB_PATH', database.DB_PATH)
        monkeypatch.setattr(database, 'DB_DIR', database.DB_DIR)

        database.use_database(database.MEMORY_DB)
        database.init_db()
        database.CatalogStore().upsert(sample_device)
        database.close_db()
        database.init_db()
        try:
            assert database.CatalogStore().count() == 0
        finally:
            database.close_db()
