"""Agricultural sensor mesh model: wire protocol, time synchronisation and gateway/sensor nodes."""

__version__ = "0.1.0"

__all__ = [
    "protocol",
    "rtc",
    "gateway_sync",
    "sensor_sync",
    "mesh",
    "gateway_handler",
    "sensor_mesh",
    "gateway_app",
    "sensor_handler",
    "sensor_app",
]