"""Single-consumer event channel with an explicit overflow policy."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Deque, Generic, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class OverflowPolicy(str, Enum):
    """What a bounded channel does when a new item arrives while full."""

    DROP_OLDEST = "drop_oldest"
    """Discard the oldest queued item to make room."""

    DROP_NEWEST = "drop_newest"
    """Discard the incoming item."""


class ChannelClosed(Exception):
    """Raised by :meth:`EventChannel.get` once the channel is closed and drained."""


class EventChannel(Generic[T]):
    """Buffer between the network reader and the application.

    ``maxsize=0`` makes the channel unbounded. Producers never block; a bounded
    channel applies its :class:`OverflowPolicy` instead and counts what it
    dropped. All methods must be called from the owning event loop.
    """

    def __init__(
        self, maxsize: int = 0, overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    ) -> None:
        if maxsize < 0:
            raise ValueError("maxsize must be >= 0")
        self.maxsize = maxsize
        self.overflow = OverflowPolicy(overflow)
        self.dropped = 0

        self._items: Deque[T] = deque()
        self._closed = False
        self._waiter: Optional[asyncio.Future[None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def put(self, item: T) -> bool:
        """Queue ``item``; returns False if it was dropped or the channel is closed."""

        if self._closed:
            return False

        if self.maxsize and len(self._items) >= self.maxsize:
            self.dropped += 1
            if self.overflow is OverflowPolicy.DROP_NEWEST:
                LOGGER.debug("Channel full, dropping newest event")
                return False
            self._items.popleft()
            LOGGER.debug("Channel full, dropping oldest event")

        self._items.append(item)
        self._wake()
        return True

    def close(self) -> None:
        """Stop accepting items; queued items remain readable."""

        self._closed = True
        self._wake()

    async def get(self) -> T:
        while not self._items:
            if self._closed:
                raise ChannelClosed()
            loop = asyncio.get_running_loop()
            self._waiter = loop.create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        return self._items.popleft()

    def get_nowait(self) -> T:
        if not self._items:
            if self._closed:
                raise ChannelClosed()
            raise asyncio.QueueEmpty()
        return self._items.popleft()

    def __aiter__(self) -> "EventChannel[T]":
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration from None

    def _wake(self) -> None:
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
