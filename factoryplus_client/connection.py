"""Broker connection supervision for Sparkplug sessions.

This module owns the broker connection lifecycle for a session: it accepts
reconnect requests, serialises them, and re-establishes the transport with
exponential backoff and jitter until it succeeds or the attempt budget runs
out.
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Union

from .adapters.mqtt import MQTTAuthError

if TYPE_CHECKING:
    from .adapters.mqtt import MQTTClient
    from .config import ResilienceConfig

LOGGER = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


class ReconnectReason(str, Enum):
    """Why a session asked for a fresh broker connection."""

    CONNECTION_LOST = "connection_lost"
    """The transport dropped without a disconnect from our side."""

    BROKER_DISCONNECT = "broker_disconnect"
    """The broker closed the connection with a reason code."""


class ConnectionState(str, Enum):
    """Where the broker link is in its lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    """The reconnect budget is exhausted or the broker refused our credentials."""


class ConnectionCoordinator:
    """Keeps one broker link alive on behalf of a session.

    Disconnect notifications from the transport arrive as reconnect requests;
    a single supervisor task works through them, so at most one reconnect is
    in flight. The owner hears about the loss, every failed attempt, the
    recovery and, when the budget runs out, the final failure.
    """

    def __init__(
        self,
        *,
        mqtt_client: MQTTClient,
        resilience_config: ResilienceConfig,
        connect_timeout: float = 30.0,
    ) -> None:
        self._mqtt_client = mqtt_client
        self._resilience = resilience_config
        self._connect_timeout = connect_timeout

        self._state = ConnectionState.DISCONNECTED
        self._reconnect_lock = asyncio.Lock()
        self._reconnect_event = asyncio.Event()
        self._pending_reason: Optional[ReconnectReason] = None
        self._stop_event = asyncio.Event()
        self._supervisor_task: Optional[asyncio.Task[None]] = None

        self._on_disconnected_callbacks: List[Callback] = []
        self._on_reconnected_callbacks: List[Callback] = []
        self._on_retry_callbacks: List[Callback] = []
        self._on_failed_callbacks: List[Callback] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def request_reconnect(self, reason: ReconnectReason) -> None:
        """Request a reconnection.

        Multiple requests are coalesced; only one reconnection will occur.
        """
        if self._stop_event.is_set() or self._state == ConnectionState.FAILED:
            return

        # Losing the link we are tearing down ourselves is expected
        if self._state == ConnectionState.RECONNECTING:
            return

        if self._pending_reason is None:
            LOGGER.debug("Reconnect requested: %s", reason.value)
            self._pending_reason = reason

        self._reconnect_event.set()

    async def connect(self) -> None:
        """Establish the initial MQTT connection.

        Raises:
            MQTTConnectionError: If the connection fails. The initial
                connect is never retried.
        """
        self._state = ConnectionState.CONNECTING
        LOGGER.info("Connecting to broker")

        try:
            await self._mqtt_client.connect(timeout=self._connect_timeout)
            self._state = ConnectionState.CONNECTED
            LOGGER.info("Broker accepted the connection")
        except BaseException:
            self._state = ConnectionState.DISCONNECTED
            raise

    async def disconnect(self) -> None:
        """Close the broker link on request; no reconnect follows."""
        LOGGER.info("Closing broker connection")
        self._state = ConnectionState.DISCONNECTED
        await self._mqtt_client.disconnect()

    def start_supervisor(self) -> None:
        """Start watching for reconnect requests."""
        if self._supervisor_task is not None and not self._supervisor_task.done():
            LOGGER.debug("Connection supervisor already running")
            return

        self._stop_event.clear()
        self._supervisor_task = asyncio.create_task(self._supervision_loop())

    async def stop_supervisor(self) -> None:
        """Stop watching; a reconnect in progress is cancelled."""
        self._stop_event.set()
        self._reconnect_event.set()

        task, self._supervisor_task = self._supervisor_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def register_reconnected_callback(self, callback: Callback) -> None:
        """Register a no-argument callback for when the link is back."""
        self._on_reconnected_callbacks.append(callback)

    def register_disconnected_callback(self, callback: Callback) -> None:
        """Register callback to be invoked with the reason when the link is lost."""
        self._on_disconnected_callbacks.append(callback)

    def register_retry_callback(self, callback: Callback) -> None:
        """Register callback invoked as ``callback(attempt, delay, exc)`` after a failed attempt."""
        self._on_retry_callbacks.append(callback)

    def register_failed_callback(self, callback: Callback) -> None:
        """Register callback invoked with the last error once reconnection gives up."""
        self._on_failed_callbacks.append(callback)

    async def _notify(self, callbacks: List[Callback], *args) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("Connection callback failed")

    async def _supervision_loop(self) -> None:
        """Serve reconnect requests until stopped or failed."""
        while not self._stop_event.is_set():
            await self._reconnect_event.wait()
            self._reconnect_event.clear()

            if self._stop_event.is_set():
                break

            async with self._reconnect_lock:
                reason = self._pending_reason
                self._pending_reason = None

                if reason is None:
                    continue

                await self._execute_reconnect(reason)

            if self._state == ConnectionState.FAILED:
                break

    async def _execute_reconnect(self, reason: ReconnectReason) -> None:
        LOGGER.info("Reconnecting to broker after %s", reason.value)
        self._state = ConnectionState.RECONNECTING

        await self._notify(self._on_disconnected_callbacks, reason)

        # Release the dead client's network thread before dialling again
        await self._mqtt_client.disconnect()

        error = await self._connect_with_backoff()

        if self._stop_event.is_set():
            return

        if error is None:
            self._state = ConnectionState.CONNECTED
            await self._notify(self._on_reconnected_callbacks)
        else:
            self._state = ConnectionState.FAILED
            LOGGER.error("Giving up on MQTT reconnection: %s", error)
            await self._notify(self._on_failed_callbacks, error)

    async def _connect_with_backoff(self) -> Optional[Exception]:
        """Dial the broker until it answers, doubling the wait between tries.

        Returns:
            None on success, otherwise the last connection error.
        """
        delay = max(0.0, self._resilience.reconnect_initial_seconds)
        max_delay = max(delay, self._resilience.reconnect_max_seconds)
        jitter_ratio = max(0.0, min(1.0, self._resilience.reconnect_jitter_ratio))
        max_attempts = self._resilience.reconnect_max_attempts

        attempt = 0
        last_error: Optional[Exception] = None

        while not self._stop_event.is_set() and (
            max_attempts <= 0 or attempt < max_attempts
        ):
            attempt += 1

            try:
                LOGGER.debug("Broker connection attempt %d", attempt)
                await self._mqtt_client.connect(timeout=self._connect_timeout)
                LOGGER.info("MQTT connection restored after %d attempt(s)", attempt)
                return None
            except MQTTAuthError as exc:
                # Retrying cannot fix rejected credentials
                return exc
            except Exception as exc:
                last_error = exc

            if max_attempts > 0 and attempt >= max_attempts:
                break

            sleep_for = delay
            if jitter_ratio > 0.0 and delay > 0.0:
                jitter = delay * jitter_ratio
                sleep_for = random.uniform(max(0.0, delay - jitter), delay + jitter)

            LOGGER.warning(
                "Broker connection attempt %d failed: %s; next try in %.1fs",
                attempt,
                last_error,
                sleep_for,
            )
            await self._notify(self._on_retry_callbacks, attempt, sleep_for, last_error)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_for)
                break
            except asyncio.TimeoutError:
                pass

            delay = min(delay * 2, max_delay)

        return last_error
