"""Service lookup through the Factory+ Directory."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import aiohttp

from .errors import (
    DirectoryUnavailable,
    FactoryPlusError,
    ServiceNotFound,
    ServiceRequestError,
)
from .models import Credentials, Endpoint

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
TOKEN_REFRESH_MARGIN_MS = 10_000


class ServiceType(str, Enum):
    """Well-known Factory+ service function UUIDs."""

    DIRECTORY = "af4a1d66-e6f7-43c4-8a67-0fa3be2b1cf9"
    CONFIGDB = "af15f175-78a0-4e05-97c0-2a0bb82b9f3b"
    AUTH = "cab2642a-f7d9-42e5-8845-8f35affe1fd4"
    CMDESC = "78ea7071-24ac-4916-8351-aa3e549d8ccd"
    MQTT = "feb27ba3-bd2c-4916-9269-79a61ebc4a47"
    GIT = "7adf4db0-2e7b-4a68-ab9d-376f4c5ce14b"
    CLUSTERS = "2706aa43-a826-441e-9cec-cd3d4ce623c2"

    @classmethod
    def lookup(cls, service: Union["ServiceType", str]) -> "ServiceType":
        """Accept a member, its UUID or its name (``"mqtt"``)."""
        if isinstance(service, cls):
            return service
        text = str(service).strip()
        try:
            return cls(text.lower())
        except ValueError:
            pass
        try:
            return cls[text.upper()]
        except KeyError as exc:
            raise ServiceNotFound(text, "unknown service") from exc


ServiceRef = Union[ServiceType, str]
ErrorFactory = Callable[[str, str], FactoryPlusError]


@dataclass(slots=True)
class _Token:
    value: str
    expiry_ms: int

    def valid(self, now_ms: int) -> bool:
        return now_ms + TOKEN_REFRESH_MARGIN_MS < self.expiry_ms


def _now_ms() -> int:
    return int(time.time() * 1000)


class ServiceResolver:
    """Turns Factory+ service names into URLs and endpoints.

    URLs configured locally win over the directory. Lookups are not cached;
    bearer tokens are, per issuing service, until shortly before they expire.
    """

    def __init__(
        self,
        directory_url: str,
        credentials: Optional[Credentials] = None,
        *,
        service_urls: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.directory_url = directory_url.rstrip("/")
        self._credentials = credentials
        self._service_urls: Dict[ServiceType, str] = {}
        for name, url in (service_urls or {}).items():
            self._service_urls[ServiceType.lookup(name)] = url
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._tokens: Dict[str, _Token] = {}
        self._token_lock = asyncio.Lock()

    async def __aenter__(self) -> "ServiceResolver":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def resolve(
        self, service: ServiceRef, *, timeout: Optional[float] = None
    ) -> Endpoint:
        """Return the endpoint of the first usable provider of ``service``.

        ``timeout`` bounds the whole lookup, token request included.

        Raises:
            ServiceNotFound: The directory has no usable registration.
            DirectoryUnavailable: The directory could not be queried.
        """
        service_type = ServiceType.lookup(service)
        name = service_type.name.lower()
        try:
            urls = await asyncio.wait_for(self.resolve_urls(service_type), timeout)
        except asyncio.TimeoutError as exc:
            raise DirectoryUnavailable(name, "lookup timed out") from exc

        for url in urls:
            try:
                endpoint = Endpoint.from_url(url)
            except ValueError as exc:
                LOGGER.warning("Ignoring unusable %s URL %r: %s", service_type.name, url, exc)
                continue
            LOGGER.debug("Resolved %s to %s", service_type.name, endpoint)
            return endpoint
        raise ServiceNotFound(name, "no provider has a usable URL")

    async def resolve_urls(self, service: ServiceRef) -> List[str]:
        """Return every URL advertised for ``service``, configured URLs first."""
        service_type = ServiceType.lookup(service)
        name = service_type.name.lower()

        configured = self._service_urls.get(service_type)
        if configured:
            return [configured]

        status, body = await self._request(
            "GET", f"/v1/service/{service_type.value}", service=name
        )
        if status == 404:
            raise ServiceNotFound(name, "not registered with the directory")
        self._check_status(status, name)

        if not isinstance(body, list):
            raise DirectoryUnavailable(name, "directory returned an unexpected body")

        urls = [
            str(provider["url"])
            for provider in body
            if isinstance(provider, dict) and provider.get("url")
        ]
        if not urls:
            raise ServiceNotFound(name, "no provider advertises a URL")
        return urls

    async def advertise(self, service: ServiceRef, url: str) -> None:
        """Register ``url`` as this client's provider URL for ``service``."""
        service_type = ServiceType.lookup(service)
        name = service_type.name.lower()
        status, _ = await self._request(
            "PUT",
            f"/v1/service/{service_type.value}/advertisement",
            service=name,
            json_body={"url": url},
        )
        if status == 404:
            raise ServiceNotFound(name, "directory refused the advertisement")
        self._check_status(status, name)
        LOGGER.info("Advertised %s at %s", name, url)

    async def ping(self) -> bool:
        """Return True if the directory answers its ping endpoint."""
        try:
            async with self._http().get(f"{self.directory_url}/ping") as response:
                return 200 <= response.status < 300
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            LOGGER.debug("Directory ping failed: %s", exc)
            return False

    async def fetch(
        self,
        service: ServiceRef,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> tuple[int, Any]:
        """Make an authenticated request to another Factory+ HTTP service.

        The service is located through :meth:`resolve_urls` and its own
        ``/token`` endpoint issues the bearer token. Returns the status and the
        decoded JSON body (``None`` unless the status is 200).

        Raises:
            ServiceRequestError: The request or its token could not be completed.
        """
        service_type = ServiceType.lookup(service)
        urls = await self.resolve_urls(service_type)
        return await self._request(
            method,
            path,
            service=service_type.name.lower(),
            json_body=json_body,
            base_url=urls[0].rstrip("/"),
            error=ServiceRequestError,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    @staticmethod
    def _check_status(status: int, name: str) -> None:
        if status in (401, 403):
            raise DirectoryUnavailable(name, f"directory refused our credentials ({status})")
        if status >= 300:
            raise DirectoryUnavailable(name, f"directory answered {status}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        service: str,
        json_body: Optional[Dict[str, Any]] = None,
        base_url: Optional[str] = None,
        error: ErrorFactory = DirectoryUnavailable,
    ) -> tuple[int, Any]:
        base_url = base_url or self.directory_url
        status, body = await self._send(
            method, base_url, path, service, json_body, refresh=False, error=error
        )
        if status == 401 and self._credentials is not None:
            LOGGER.debug("%s rejected cached token, refreshing", base_url)
            status, body = await self._send(
                method, base_url, path, service, json_body, refresh=True, error=error
            )
        return status, body

    async def _send(
        self,
        method: str,
        base_url: str,
        path: str,
        service: str,
        json_body: Optional[Dict[str, Any]],
        *,
        refresh: bool,
        error: ErrorFactory,
    ) -> tuple[int, Any]:
        headers = {"Accept": "application/json"}
        token = await self._bearer_token(base_url, service, refresh=refresh, error=error)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{base_url}{path}"
        try:
            async with self._http().request(
                method, url, headers=headers, json=json_body
            ) as response:
                if response.status != 200:
                    return response.status, None
                try:
                    body = await response.json(content_type=None)
                except ValueError as exc:
                    raise error(service, f"could not decode response from {url}") from exc
                return response.status, body
        except aiohttp.ClientError as exc:
            raise error(service, f"request to {url} failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise error(service, f"request to {url} timed out") from exc

    async def _bearer_token(
        self, base_url: str, service: str, *, refresh: bool, error: ErrorFactory
    ) -> Optional[str]:
        if self._credentials is None:
            return None

        async with self._token_lock:
            token = self._tokens.get(base_url)
            if not refresh and token is not None and token.valid(_now_ms()):
                return token.value
            token = await self._fetch_token(base_url, service, error)
            self._tokens[base_url] = token
            return token.value

    async def _fetch_token(self, base_url: str, service: str, error: ErrorFactory) -> _Token:
        assert self._credentials is not None
        url = f"{base_url}/token"
        auth = aiohttp.BasicAuth(self._credentials.principal, self._credentials.secret)
        try:
            async with self._http().post(url, auth=auth) as response:
                if response.status != 200:
                    raise error(service, f"token request answered {response.status}")
                try:
                    payload = await response.json(content_type=None)
                    token = _Token(str(payload["token"]), int(payload["expiry"]))
                except (ValueError, KeyError, TypeError) as exc:
                    raise error(service, "could not decode token response") from exc
        except aiohttp.ClientError as exc:
            raise error(service, f"token request failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise error(service, "token request timed out") from exc

        LOGGER.debug("Obtained %s token for %s", service, self._credentials.principal)
        return token
