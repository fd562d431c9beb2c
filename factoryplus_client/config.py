"""Configuration loader for factoryplus-client."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from . import constants
from .channel import OverflowPolicy
from .models import Credentials

MQTT_PROTOCOLS = ("3.1.1", "5")


@dataclass(slots=True)
class DirectoryConfig:
    url: str = constants.DEFAULT_DIRECTORY_URL
    timeout_seconds: float = 10.0
    service_urls: Dict[str, str] = field(default_factory=dict)  # service name -> url, bypasses lookup


@dataclass(slots=True)
class MqttConfig:
    client_id: Optional[str] = None  # generated per session when unset
    keepalive_seconds: int = 20
    connect_timeout_seconds: float = 30.0
    tls_verify: bool = True
    protocol: str = "3.1.1"


@dataclass(slots=True)
class ResilienceConfig:
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    reconnect_jitter_ratio: float = 0.5
    reconnect_max_attempts: int = 10  # 0 retries indefinitely
    alias_staleness_seconds: float = 60.0


@dataclass(slots=True)
class DeliveryConfig:
    queue_size: int = 0  # 0 = unbounded
    overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ClientConfig:
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    credentials: Optional[Credentials] = None
    raw: ConfigParser = field(default_factory=ConfigParser)
    path: Path = constants.DEFAULT_CONFIG_PATH


def _parse_mapping(value: str) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for item in value.split(","):
        key, sep, url = item.partition("=")
        if sep and key.strip() and url.strip():
            mapping[key.strip().lower()] = url.strip()
    return mapping


def load_config(path: Optional[Path] = None) -> ClientConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "directory": {
                "url": constants.DEFAULT_DIRECTORY_URL,
                "timeout_seconds": "10.0",
                "service_urls": "",
            },
            "mqtt": {
                "keepalive_seconds": "20",
                "connect_timeout_seconds": "30.0",
                "tls_verify": "true",
                "protocol": "3.1.1",
            },
            "resilience": {
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
                "reconnect_jitter_ratio": "0.5",
                "reconnect_max_attempts": "10",
                "alias_staleness_seconds": "60.0",
            },
            "delivery": {
                "queue_size": "0",
                "overflow": OverflowPolicy.DROP_OLDEST.value,
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    directory = DirectoryConfig(
        url=parser.get("directory", "url").rstrip("/"),
        timeout_seconds=max(
            0.1, parser.getfloat("directory", "timeout_seconds", fallback=10.0)
        ),
        service_urls=_parse_mapping(
            parser.get("directory", "service_urls", fallback="")
        ),
    )

    protocol = parser.get("mqtt", "protocol", fallback="3.1.1").strip()
    if protocol not in MQTT_PROTOCOLS:
        raise ValueError(
            f"Unsupported MQTT protocol {protocol!r}; expected one of {MQTT_PROTOCOLS}"
        )

    mqtt = MqttConfig(
        client_id=parser.get("mqtt", "client_id", fallback=None) or None,
        keepalive_seconds=max(
            1, parser.getint("mqtt", "keepalive_seconds", fallback=20)
        ),
        connect_timeout_seconds=max(
            0.1, parser.getfloat("mqtt", "connect_timeout_seconds", fallback=30.0)
        ),
        tls_verify=parser.getboolean("mqtt", "tls_verify", fallback=True),
        protocol=protocol,
    )

    initial = max(
        0.0, parser.getfloat("resilience", "reconnect_initial_seconds", fallback=1.0)
    )
    resilience = ResilienceConfig(
        reconnect_initial_seconds=initial,
        reconnect_max_seconds=max(
            initial,
            parser.getfloat("resilience", "reconnect_max_seconds", fallback=30.0),
        ),
        reconnect_jitter_ratio=max(
            0.0,
            min(
                1.0,
                parser.getfloat("resilience", "reconnect_jitter_ratio", fallback=0.5),
            ),
        ),
        reconnect_max_attempts=max(
            0, parser.getint("resilience", "reconnect_max_attempts", fallback=10)
        ),
        alias_staleness_seconds=max(
            0.0,
            parser.getfloat("resilience", "alias_staleness_seconds", fallback=60.0),
        ),
    )

    delivery = DeliveryConfig(
        queue_size=max(0, parser.getint("delivery", "queue_size", fallback=0)),
        overflow=OverflowPolicy(
            parser.get("delivery", "overflow", fallback="drop_oldest").strip().lower()
        ),
    )

    log_path = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    credentials = None
    principal = parser.get("credentials", "principal", fallback=None)
    if principal:
        credentials = Credentials(
            principal=principal,
            secret=parser.get("credentials", "secret", fallback=""),
        )

    return ClientConfig(
        directory=directory,
        mqtt=mqtt,
        resilience=resilience,
        delivery=delivery,
        logging=logging_config,
        credentials=credentials,
        raw=parser,
        path=config_path,
    )

