"""Adapter modules for external integrations."""

from .mqtt import (
    MQTTAuthError,
    MQTTClient,
    MQTTConnectionError,
    MQTTSubscribeError,
    MQTTSubscriptionRefused,
    MQTTTimeoutError,
)

__all__ = [
    "MQTTAuthError",
    "MQTTClient",
    "MQTTConnectionError",
    "MQTTSubscribeError",
    "MQTTSubscriptionRefused",
    "MQTTTimeoutError",
]
