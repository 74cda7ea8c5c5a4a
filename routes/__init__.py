"""Flask blueprints for the btrecon API."""

from flask import Flask


def register_blueprints(app: Flask) -> None:
    from .devices import devices_bp
    from .mqtt import mqtt_bp

    app.register_blueprint(devices_bp)
    app.register_blueprint(mqtt_bp)
