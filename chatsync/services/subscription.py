"""Latest-value-wins subscription stream.

A store subscription pushes full snapshots; consumers only ever care about
the newest one. Values pushed while nobody is reading overwrite each other,
and every new iterator starts from the latest value, so a stream can be
dropped and re-entered at any time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Generic, Optional, Set, TypeVar

T = TypeVar("T")


_UNSET = object()


class Subscription(Generic[T]):
    def __init__(
        self,
        on_close: Optional[Callable[[], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        name: str = "subscription",
    ):
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop
        self._on_close = on_close
        self._value = _UNSET
        self._version = 0
        self._closed = False
        self._error: Optional[BaseException] = None
        self._waiters: Set[asyncio.Future] = set()
        self.name = name

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #
    def push(self, value: T) -> None:
        """Replace the current value and wake every reader. Must run on the loop."""
        if self._closed:
            logging.debug(f"Dropping push to closed {self.name}")
            return
        self._value = value
        self._version += 1
        self._wake()

    def push_threadsafe(self, value: T) -> None:
        """Entry point for callbacks that fire on a foreign thread."""
        if self._loop is None:
            raise RuntimeError(f"{self.name} is not bound to an event loop")
        self._loop.call_soon_threadsafe(self.push, value)

    def fail(self, exc: BaseException) -> None:
        """Terminate the stream with an error; readers re-raise it."""
        logging.error(f"{self.name} failed: {exc}")
        self._error = exc
        self.close()

    def fail_threadsafe(self, exc: BaseException) -> None:
        if self._loop is None:
            raise RuntimeError(f"{self.name} is not bound to an event loop")
        self._loop.call_soon_threadsafe(self.fail, exc)

    def close(self) -> None:
        """Release the underlying listener. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._wake()
        if self._on_close is not None:
            release, self._on_close = self._on_close, None
            release()
        logging.debug(f"Closed {self.name} after {self._version} snapshot(s)")

    # ------------------------------------------------------------------ #
    # Consumer side
    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def version(self) -> int:
        """Number of values pushed so far."""
        return self._version

    @property
    def has_value(self) -> bool:
        return self._value is not _UNSET

    def latest(self, default: Optional[T] = None) -> Optional[T]:
        if self._value is _UNSET:
            return default
        return self._value  # type: ignore[return-value]

    async def stream(self) -> AsyncIterator[T]:
        seen = 0
        while True:
            if self._error is not None:
                raise self._error
            if self._closed:
                return
            if self._version > seen:
                seen = self._version
                yield self._value  # type: ignore[misc]
                continue
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.add(waiter)
            try:
                await waiter
            finally:
                self._waiters.discard(waiter)

    def __aiter__(self) -> AsyncIterator[T]:
        return self.stream()

    def _wake(self) -> None:
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()
