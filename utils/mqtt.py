"""
MQTT telemetry sink for btrecon.

Lifecycle events, device status changes and (with aggressive RSSI) raw
signal samples are queued in memory and sent by a background publisher
thread. Nothing here raises into the pipeline: a broken broker, a full
queue or an unreadable settings table only costs the message, which is
counted and logged.

Topics, relative to the configured prefix:
    events/<source>   lifecycle and error events
    devices           status transitions
    rssi              RSSI samples
"""

from __future__ import annotations

import dataclasses
import json
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from utils.bluetooth.models import Device, StatusChange
from utils.database import get_setting, set_setting
from utils.logging import get_logger

logger = get_logger('btrecon.mqtt')

SETTING_PREFIX = 'mqtt_'
MASKED_PASSWORD = '***'

OUTBOX_SIZE = 10000
KEEPALIVE = 60
BACKOFF_INITIAL = 1
BACKOFF_MAX = 60

# Seconds close() waits for queued messages to reach the broker
FLUSH_TIMEOUT = 3.0
FLUSH_POLL_INTERVAL = 0.05

SEVERITY_INFO = 'INFO'
SEVERITY_WARN = 'WARN'
SEVERITY_ERROR = 'ERROR'
SEVERITY_FATAL = 'FATAL'


@dataclass
class BrokerConfig:
    """Broker settings, stored one key per field in the settings table."""
    enabled: bool = False
    broker_host: str = 'localhost'
    broker_port: int = 1883
    username: str = ''
    password: str = ''
    use_tls: bool = False
    client_id: str = 'btrecon'
    topic_prefix: str = 'btrecon'
    qos: int = 1

    @classmethod
    def load(cls) -> 'BrokerConfig':
        values = {
            f.name: get_setting(SETTING_PREFIX + f.name, f.default)
            for f in dataclasses.fields(cls)
        }
        return cls(**values)

    @classmethod
    def save(cls, updates: dict[str, Any]) -> None:
        """Persist the recognized keys of ``updates``; a masked password is left alone."""
        for f in dataclasses.fields(cls):
            if f.name not in updates:
                continue
            value = updates[f.name]
            if f.name == 'password' and value == MASKED_PASSWORD:
                continue
            set_setting(SETTING_PREFIX + f.name, _coerce(f.default, value))

    def public(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data['password'] = MASKED_PASSWORD if self.password else ''
        return data


def _coerce(default: Any, value: Any) -> Any:
    """Convert a submitted value to the type of the field default."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    return type(default)(value)


@dataclass(frozen=True)
class Message:
    topic: str
    payload: str
    qos: int


class TelemetrySink:
    """
    Best-effort MQTT publisher.

    Every payload is stamped with the catalog sync version and a UTC
    timestamp. The first message sent while enabled creates the client;
    from then on paho's network loop owns connecting and reconnecting.
    Broker settings are read once and cached until configure() changes them.
    """

    def __init__(self, sync_version: int = 0):
        self.sync_version = sync_version
        self.last_error: Optional[str] = None
        self._client: Optional[mqtt.Client] = None
        self._client_lock = threading.Lock()
        self._broker: Optional[BrokerConfig] = None
        self._connected = threading.Event()
        self._closing = threading.Event()
        self._outbox: queue.Queue[Message] = queue.Queue(maxsize=OUTBOX_SIZE)
        self._pending = 0
        self._last_info: Optional[mqtt.MQTTMessageInfo] = None
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()
        self._counters = {
            'queued': 0,
            'published': 0,
            'dropped': 0,
            'reconnects': 0,
            'last_published_at': None,
        }

    @property
    def enabled(self) -> bool:
        return self._broker_config().enabled

    @property
    def connected(self) -> bool:
        return self._connected.is_set() and self._client is not None

    @property
    def stats(self) -> dict:
        with self._lock:
            return dict(self._counters)

    def _count(self, key: str) -> None:
        with self._lock:
            self._counters[key] += 1

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def _broker_config(self) -> BrokerConfig:
        broker = self._broker
        if broker is None:
            broker = self._broker = BrokerConfig.load()
        return broker

    def reload_config(self) -> BrokerConfig:
        """Re-read broker settings from the settings table."""
        self._broker = BrokerConfig.load()
        return self._broker

    def config(self) -> dict[str, Any]:
        """Broker settings with the password masked."""
        return self._broker_config().public()

    def configure(self, updates: dict[str, Any]) -> bool:
        """
        Persist broker settings and refresh the cached copy.

        A live client built from the old settings is stopped so the next
        start() connects with the new ones. Returns False (and records the
        error) on failure.
        """
        try:
            BrokerConfig.save(updates)
            previous = self._broker
            self.reload_config()
        except (TypeError, ValueError) as e:
            self._broker = None
            self.last_error = f"Invalid MQTT setting: {e}"
            logger.error(self.last_error)
            return False
        except Exception as e:
            self._broker = None
            self.last_error = str(e)
            logger.error(f"Could not store MQTT settings: {e}")
            return False

        if self._client is not None and previous != self._broker:
            self.stop()
        logger.info("MQTT settings updated")
        return True

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def _build_client(self, cfg: BrokerConfig) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{cfg.client_id}-{threading.get_ident()}",
            protocol=mqtt.MQTTv311,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish
        client.reconnect_delay_set(min_delay=BACKOFF_INITIAL, max_delay=BACKOFF_MAX)
        if cfg.username:
            client.username_pw_set(cfg.username, cfg.password)
        if cfg.use_tls:
            client.tls_set()
        return client

    def start(self) -> bool:
        """
        Create the client and begin connecting in the background.

        Only one client exists at a time; while it is there, connection
        retries are left to its network loop and this returns True.
        Returns False if the client could not be set up.
        """
        with self._client_lock:
            if self._client is not None:
                return True

            self._closing.clear()
            try:
                cfg = self._broker_config()
                client = self._build_client(cfg)
                logger.info(f"Connecting to MQTT broker {cfg.broker_host}:{cfg.broker_port}")
                client.connect_async(cfg.broker_host, cfg.broker_port, keepalive=KEEPALIVE)
                client.loop_start()
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"MQTT client setup failed: {e}")
                return False
            self._client = client

        self._spawn('publisher', self._drain_outbox)
        return True

    def stop(self) -> None:
        """Disconnect, stop the network loop and the publisher thread."""
        self._closing.set()
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                client.disconnect()
                client.loop_stop()
            except Exception as e:
                logger.warning(f"MQTT disconnect error: {e}")
        self._connected.clear()

        for thread in self._threads.values():
            if thread.is_alive() and thread is not threading.current_thread():
                thread.join(timeout=2)
        self._threads.clear()
        logger.info("MQTT telemetry stopped")

    def flush(self, timeout: float = FLUSH_TIMEOUT) -> bool:
        """
        Wait until every queued message has been handed to the broker.

        Returns:
            True if the outbox emptied within ``timeout`` seconds.
        """
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                pending = self._pending
            info = self._last_info
            if pending == 0 and (info is None or info.is_published()):
                return True
            if self._client is None or time.monotonic() >= deadline:
                return False
            time.sleep(FLUSH_POLL_INTERVAL)

    def close(self, timeout: float = FLUSH_TIMEOUT) -> None:
        """Send what is queued (for at most ``timeout`` seconds), then stop and discard the rest."""
        if self._client is not None and not self.flush(timeout):
            logger.warning(f"MQTT outbox not flushed within {timeout}s")
        self.stop()
        discarded = 0
        while True:
            try:
                self._outbox.get_nowait()
            except queue.Empty:
                break
            discarded += 1
        with self._lock:
            self._pending = 0
        if discarded:
            logger.debug(f"Discarded {discarded} unsent MQTT messages")

    def _spawn(self, name: str, target: Callable[[], None]) -> None:
        thread = self._threads.get(name)
        if thread is not None and thread.is_alive():
            return
        thread = threading.Thread(target=target, daemon=True, name=f'btrecon-mqtt-{name}')
        self._threads[name] = thread
        thread.start()

    # =========================================================================
    # TELEMETRY SINK
    # =========================================================================

    def send_event(self, source: str, event: dict) -> None:
        """
        Send a lifecycle or error event.

        Args:
            source: Component name; becomes the last topic level.
            event: Dict with key, title, message and severity.
        """
        self._enqueue(f'events/{source}', {
            'source': source,
            'key': event.get('key'),
            'title': event.get('title'),
            'message': event.get('message'),
            'severity': event.get('severity', SEVERITY_INFO),
        })

    def publish_status(self, change: StatusChange, device: Optional[Device] = None) -> None:
        payload = change.to_dict()
        if device is not None:
            payload['device'] = device.to_dict()
        self._enqueue('devices', payload)

    def publish_rssi(self, address: str, rssi: int, at: datetime) -> None:
        self._enqueue('rssi', {'address': address, 'rssi': rssi, 'at': at.isoformat()})

    def _enqueue(self, suffix: str, payload: dict[str, Any]) -> bool:
        try:
            cfg = self._broker_config()
            if not cfg.enabled:
                return False
            if self._client is None:
                self.start()

            payload['sync_version'] = self.sync_version
            payload['@timestamp'] = datetime.now(timezone.utc).isoformat()
            self._outbox.put_nowait(Message(
                topic=f'{cfg.topic_prefix}/{suffix}',
                payload=json.dumps(payload, default=str),
                qos=cfg.qos,
            ))
        except queue.Full:
            self._count('dropped')
            logger.warning("MQTT outbox full, dropping message")
            return False
        except Exception as e:
            self._count('dropped')
            logger.error(f"MQTT message not queued: {e}")
            return False

        with self._lock:
            self._counters['queued'] += 1
            self._pending += 1
        return True

    # =========================================================================
    # CLIENT CALLBACKS AND WORKERS
    # =========================================================================

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self._connected.clear()
            self.last_error = f"Connection refused: {reason_code}"
            logger.error(f"MQTT broker refused connection: {reason_code}")
            if not self._closing.is_set():
                self._count('reconnects')
            return
        self._connected.set()
        self.last_error = None
        logger.info("MQTT broker connected")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._connected.clear()
        if not reason_code.is_failure:
            logger.info("MQTT broker disconnected")
            return
        self.last_error = f"Unexpected disconnection ({reason_code})"
        logger.warning(f"{self.last_error}, retrying in at most {BACKOFF_MAX}s")
        if not self._closing.is_set():
            self._count('reconnects')

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        with self._lock:
            self._counters['published'] += 1
            self._counters['last_published_at'] = datetime.now(timezone.utc).isoformat()

    def _drain_outbox(self) -> None:
        while not self._closing.is_set():
            if not self._connected.wait(timeout=1):
                continue
            try:
                message = self._outbox.get(timeout=1)
            except queue.Empty:
                continue
            try:
                self._publish(message)
            finally:
                with self._lock:
                    self._pending -= 1

    def _publish(self, message: Message) -> None:
        client = self._client
        if client is None:
            self._count('dropped')
            return
        try:
            info = client.publish(message.topic, message.payload, qos=message.qos)
        except Exception as e:
            self._count('dropped')
            logger.error(f"MQTT publish error on {message.topic}: {e}")
            return
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._count('dropped')
            logger.warning(f"MQTT publish to {message.topic} failed: {mqtt.error_string(info.rc)}")
            return
        self._last_info = info


_sink: Optional[TelemetrySink] = None


def get_telemetry() -> TelemetrySink:
    """Process-wide telemetry sink."""
    global _sink
    if _sink is None:
        _sink = TelemetrySink()
    return _sink
