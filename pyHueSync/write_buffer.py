"""Debounced, coalescing writes to one resource path.

Consumers change attributes one at a time (power, then brightness, then
colour...).  A :class:`WriteBuffer` collects the changes issued within
a short debounce window into one :class:`PendingWrite` and sends them as
a single PUT.  Every caller of :meth:`WriteBuffer.write` waits for the
result of the request its change went out with.

Timeline::

    write({a: 1})  ──┐
    write({a: 2, b: 3}) ─┤  debounce   ┌── PUT {a: 2, b: 3} ──┐
                     └──────────────►  │                      │
                                       └── both callers resume┘

At most one request per buffer is in flight.  Changes arriving while a
request is in flight are collected in a new ``PendingWrite`` that is
sent after the running request finishes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

#: Sends a body to a path and returns the bridge's success map.
SendFunction = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class PendingWrite:
    """Accumulated attribute changes and their waiting callers."""

    def __init__(self) -> None:
        self.body: Dict[str, Any] = {}
        self.waiters: List["asyncio.Future[Dict[str, Any]]"] = []

    def merge(self, body: Mapping[str, Any]) -> "asyncio.Future[Dict[str, Any]]":
        """Merge *body* (last value wins) and return the caller's future."""
        self.body.update(body)
        future: asyncio.Future[Dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )
        self.waiters.append(future)
        return future

    def resolve(self, result: Dict[str, Any]) -> None:
        for future in self.waiters:
            if not future.done():
                future.set_result(result)

    def reject(self, exc: BaseException) -> None:
        for future in self.waiters:
            if not future.done():
                future.set_exception(exc)


class WriteBuffer:
    """Debounces writes to *path*.

    Parameters
    ----------
    path:
        The resource path written to, e.g. ``/lights/1/state``.
    send:
        Coroutine function performing the request.
    delay:
        Debounce time in seconds; ``0`` sends on the next loop
        iteration.
    """

    def __init__(self, path: str, send: SendFunction, delay: float) -> None:
        self.path = path
        self._send = send
        self._delay = delay
        self._pending: Optional[PendingWrite] = None
        self._timer: Optional[asyncio.Handle] = None
        self._in_flight: Optional["asyncio.Task[None]"] = None

    @property
    def pending(self) -> Optional[PendingWrite]:
        """Changes not yet sent."""
        return self._pending

    @property
    def busy(self) -> bool:
        """``True`` while changes are waiting or a request is in flight."""
        return self._pending is not None or self._in_flight is not None

    async def write(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        """Queue *body* and wait until it has been sent.

        Returns
        -------
        dict
            The success map of the request that carried the change.

        Raises
        ------
        Exception
            Whatever the request raised; every caller of the same
            request receives the same exception.
        """
        if self._pending is None:
            self._pending = PendingWrite()
        future = self._pending.merge(body)
        self._schedule()
        return await future

    def cancel(self) -> None:
        """Drop unsent changes; their callers get ``CancelledError``."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        pending, self._pending = self._pending, None
        if pending is not None:
            for future in pending.waiters:
                future.cancel()

    # ---- internals ---------------------------------------------------

    def _schedule(self) -> None:
        if self._timer is not None or self._in_flight is not None:
            return
        loop = asyncio.get_running_loop()
        if self._delay > 0:
            self._timer = loop.call_later(self._delay, self._start_flush)
        else:
            self._timer = loop.call_soon(self._start_flush)

    def _start_flush(self) -> None:
        self._timer = None
        pending, self._pending = self._pending, None
        if pending is None:
            return
        self._in_flight = asyncio.ensure_future(self._flush(pending))

    async def _flush(self, pending: PendingWrite) -> None:
        logger.debug("%s: flush %s", self.path, pending.body)
        try:
            result = await self._send(self.path, dict(pending.body))
        except asyncio.CancelledError:
            for future in pending.waiters:
                future.cancel()
            raise
        except Exception as exc:  # noqa: BLE001
            pending.reject(exc)
        else:
            pending.resolve(result)
        finally:
            self._in_flight = None
            if self._pending is not None:
                self._schedule()
