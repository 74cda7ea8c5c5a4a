"""
MQTT telemetry settings and status routes.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request

from utils.mqtt import get_telemetry

logger = logging.getLogger('btrecon.api.mqtt')

mqtt_bp = Blueprint('mqtt', __name__, url_prefix='/api/mqtt')


@mqtt_bp.route('/status')
def telemetry_status() -> Response:
    """Connection state, counters and the sync version stamped on messages."""
    sink = get_telemetry()
    return jsonify({
        'enabled': sink.enabled,
        'connected': sink.connected,
        'last_error': sink.last_error,
        'sync_version': sink.sync_version,
        'stats': sink.stats,
        'config': sink.config(),
    })


@mqtt_bp.route('/config', methods=['GET'])
def get_broker_config() -> Response:
    return jsonify(get_telemetry().config())


@mqtt_bp.route('/config', methods=['POST'])
def update_broker_config():
    """
    Store broker settings, then connect or disconnect to match ``enabled``.

    Body: any subset of broker_host, broker_port, username, password,
    use_tls, client_id, topic_prefix, qos, enabled.
    """
    sink = get_telemetry()

    updates = request.get_json(silent=True)
    if not updates:
        return jsonify({'error': 'No settings provided'}), 400

    if not sink.configure(updates):
        return jsonify({'error': sink.last_error or 'Settings not saved'}), 400

    enabled = sink.enabled
    if enabled and not sink.connected:
        sink.start()
    elif not enabled and sink.connected:
        sink.stop()
    logger.info(f"Telemetry {'enabled' if enabled else 'disabled'} via API")

    return jsonify({'enabled': enabled, 'connected': sink.connected})
