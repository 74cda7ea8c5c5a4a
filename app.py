"""
btrecon application wiring.

Builds the pipeline from configuration, optionally serves the read API and
runs the scan scheduler until it stops.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Optional, Sequence

from flask import Flask, jsonify
from werkzeug.serving import BaseWSGIServer, make_server

import config
from config import ScanConfig
from routes import register_blueprints
from routes.devices import set_scheduler
from utils import database
from utils.bluetooth import BtReconError, Chunker, DeviceTracker, StoreUnavailableError
from utils.bluetooth.monitor import MonitorProcess
from utils.bluetooth.scheduler import ScanScheduler
from utils.logging import app_logger as logger
from utils.logging import (
    close_file_loggers,
    get_chunk_logger,
    get_raw_logger,
    get_rssi_logger,
    setup_logging,
)
from utils.mqtt import SEVERITY_FATAL, TelemetrySink, get_telemetry


def create_app(scheduler: Optional[ScanScheduler] = None) -> Flask:
    """Create the Flask app serving the catalog API."""
    app = Flask(__name__)
    app.config['JSON_SORT_KEYS'] = False
    register_blueprints(app)
    set_scheduler(scheduler)

    @app.route('/health')
    def health():
        running = scheduler is not None and scheduler.is_running
        return jsonify({'status': 'ok' if running else 'stopped'})

    return app


def start_api_server(app: Flask, host: str, port: int) -> BaseWSGIServer:
    """Serve the API from a daemon thread."""
    server = make_server(host, port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True, name='btrecon-api')
    thread.start()
    logger.info(f"API listening on http://{host}:{port}")
    return server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='btrecon',
        description='Bluetooth reconnaissance and device tracking from btmon output',
    )
    parser.add_argument('-d', '--device', help=f'Adapter to monitor (default: {config.BT_DEVICE})')
    parser.add_argument('--replay', metavar='FILE', help='Replay a captured btmon log (plain or gzip)')
    parser.add_argument('--db', metavar='PATH', help=f'SQLite catalog path (default: {config.DB_PATH})')
    parser.add_argument('--no-db', action='store_true', default=config.NO_DB,
                        help='Keep the catalog in memory only')
    parser.add_argument('--rssi-log', metavar='FILE', default=config.RSSI_LOG or None,
                        help='Append every RSSI sample to FILE')
    parser.add_argument('--btmon-log', metavar='FILE', default=config.BTMON_LOG or None,
                        help='Write the monitor output the pipeline used to FILE')
    parser.add_argument('--btmon-rawlog', metavar='FILE', default=config.BTMON_RAWLOG or None,
                        help='Write all raw monitor output to FILE')
    parser.add_argument('--log-level', default=config.LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], type=str.upper)
    parser.add_argument('--no-info-scan', action='store_true', help='Disable active info scans')
    parser.add_argument('--api-port', type=int, default=config.API_PORT,
                        help='Serve the read API on this port (0 disables)')
    return parser


def build_config(args: argparse.Namespace) -> ScanConfig:
    overrides = {}
    if args.device:
        overrides['bt_device'] = args.device
    if args.replay:
        overrides['replay_file'] = args.replay
    if args.no_info_scan:
        overrides['info_scan_rate'] = 0
    return ScanConfig.from_env(**overrides)


def _report_fatal(telemetry: TelemetrySink, error: BtReconError) -> int:
    logger.error(f"Fatal: {error}")
    telemetry.send_event('btrecon', {
        'key': 'btrecon_fatal',
        'title': type(error).__name__,
        'message': str(error),
        'severity': SEVERITY_FATAL,
    })
    print(f"btrecon: {error}", file=sys.stderr)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, config.LOG_FILE or None)

    if args.no_db:
        database.use_database(database.MEMORY_DB)
    elif args.db:
        database.use_database(args.db)

    scan_config = build_config(args)
    telemetry = get_telemetry()

    try:
        database.init_db()
        telemetry.reload_config()
        telemetry.sync_version = database.bump_sync_version()
        tracker = DeviceTracker(
            scan_config,
            store=database.CatalogStore(),
            telemetry=telemetry,
            rssi_log=get_rssi_logger(args.rssi_log),
        )
        tracker.load()
    except StoreUnavailableError as e:
        code = _report_fatal(telemetry, e)
        telemetry.close()
        database.close_db()
        close_file_loggers()
        return code

    scheduler = ScanScheduler(
        scan_config,
        tracker,
        monitor=MonitorProcess(
            bt_device=scan_config.bt_device,
            replay_file=scan_config.replay_file,
            raw_log=get_raw_logger(args.btmon_rawlog),
        ),
        telemetry=telemetry,
        chunker=Chunker(mirror=get_chunk_logger(scan_config.chunker_debug, args.btmon_log)),
    )

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        scheduler.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    server = None
    if args.api_port:
        server = start_api_server(create_app(scheduler), config.API_HOST, args.api_port)

    logger.info(f"btrecon starting (sync version {telemetry.sync_version})")
    try:
        scheduler.run()
    finally:
        if server is not None:
            server.shutdown()
        telemetry.close()
        database.close_db()
        close_file_loggers()

    if scheduler.fatal_error is not None:
        print(f"btrecon: {scheduler.fatal_error}", file=sys.stderr)
        return 1
    return 0
