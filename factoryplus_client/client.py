"""High-level Factory+ client wiring service lookup to an MQTT session."""

from __future__ import annotations

import logging
from typing import Optional

from .cmdesc import CommandEscalation
from .config import ClientConfig
from .directory import ServiceResolver, ServiceType
from .models import Credentials, Endpoint
from .session import Session, SessionManager

LOGGER = logging.getLogger(__name__)


class FactoryPlusClient:
    """Finds the Factory+ broker through the Directory and opens a session on it.

    ``credentials`` override any found in the configuration file. The same
    principal authenticates against the Directory and the broker.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        credentials: Optional[Credentials] = None,
        *,
        resolver: Optional[ServiceResolver] = None,
        session_manager: Optional[SessionManager] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.credentials = credentials or self.config.credentials
        self.resolver = resolver or ServiceResolver(
            self.config.directory.url,
            self.credentials,
            service_urls=self.config.directory.service_urls,
            timeout=self.config.directory.timeout_seconds,
        )
        self.sessions = session_manager or SessionManager(self.config)
        self.commands = CommandEscalation(self.resolver)
        self._session: Optional[Session] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    async def resolve(self, service: ServiceType | str) -> Endpoint:
        return await self.resolver.resolve(
            service, timeout=self.config.directory.timeout_seconds
        )

    async def connect(self, *, timeout: Optional[float] = None) -> Session:
        """Resolve the MQTT service and open a session on it.

        Raises ``ResolveError`` if the broker cannot be located and
        ``ConnectError`` if it refuses or cannot be reached.
        """
        if self._session is not None:
            return self._session

        endpoint = await self.resolve(ServiceType.MQTT)
        LOGGER.info("Factory+ broker at %s", endpoint)
        self._session = await self.sessions.connect(
            endpoint, self.credentials, timeout=timeout
        )
        return self._session

    async def close(self) -> None:
        session, self._session = self._session, None
        try:
            if session is not None:
                await session.close()
        finally:
            await self.resolver.close()

    async def __aenter__(self) -> "FactoryPlusClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
