"""Constants used across the factoryplus-client package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "factoryplus-client"
DEFAULT_CONFIG_FILENAME = "client.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "factoryplus" / DEFAULT_CONFIG_FILENAME

DEFAULT_DIRECTORY_URL = "http://directory.factoryplus.local"
DEFAULT_CLIENT_ID_PREFIX = "fplus"

SPARKPLUG_NAMESPACE = "spBv1.0"
SEQUENCE_MODULUS = 256

DEFAULT_PORTS = {
    "mqtt": 1883,
    "tcp": 1883,
    "mqtts": 8883,
    "ssl": 8883,
    "ws": 80,
    "http": 80,
    "wss": 443,
    "https": 443,
}

TLS_SCHEMES = frozenset({"mqtts", "ssl", "wss", "https"})
WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})
