"""Connection-level value types."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from .constants import DEFAULT_PORTS, TLS_SCHEMES, WEBSOCKET_SCHEMES


@dataclass(frozen=True, slots=True)
class Endpoint:
    scheme: str
    host: str
    port: int

    @classmethod
    def from_url(cls, url: str) -> "Endpoint":
        """Parse a service URL such as ``mqtts://mqtt.example:8883``."""

        parts = urlsplit(url.strip())
        scheme = parts.scheme.lower()
        if not scheme:
            raise ValueError(f"URL has no scheme: {url!r}")
        if not parts.hostname:
            raise ValueError(f"URL has no host: {url!r}")

        port = parts.port
        if port is None:
            try:
                port = DEFAULT_PORTS[scheme]
            except KeyError as exc:
                raise ValueError(
                    f"No default port for scheme {scheme!r} in {url!r}"
                ) from exc

        return cls(scheme=scheme, host=parts.hostname, port=port)

    @property
    def uses_tls(self) -> bool:
        return self.scheme in TLS_SCHEMES

    @property
    def uses_websockets(self) -> bool:
        return self.scheme in WEBSOCKET_SCHEMES

    def __str__(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class Credentials:
    principal: str
    secret: str

    def __repr__(self) -> str:
        return f"Credentials(principal={self.principal!r}, secret='***')"
