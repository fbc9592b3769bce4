"""deCONZ websocket notifications.

The gateway pushes one JSON message per change on
``ws://<host>:<websocketport>``; messages are translated with
:func:`~pyHueSync.notification.parse_ws_message`.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import aiohttp

from pyHueSync.notification import (
    NotificationStream,
    StreamCallback,
    parse_ws_message,
)

logger = logging.getLogger(__name__)


class WsMonitor(NotificationStream):
    """Websocket notification channel of a deCONZ gateway.

    Parameters
    ----------
    host:
        Gateway host name or address (without port).
    port:
        The gateway's ``websocketport``.
    on_event:
        Coroutine function receiving the events.
    retry_time:
        Seconds before reconnecting; ``0`` disables reconnecting.
    raw:
        Deliver every message as a raw notification.
    session:
        HTTP session to use; a private one is created when ``None``.
    """

    def __init__(
        self,
        host: str,
        port: int,
        on_event: StreamCallback,
        *,
        retry_time: float = 10.0,
        raw: bool = False,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(on_event, retry_time=retry_time, raw=raw)
        self._host = host.split(":")[0]
        self._port = port
        self._session = session

    @property
    def url(self) -> str:
        return "ws://%s:%d" % (self._host, self._port)

    async def handle_message(self, text: str) -> None:
        """Process one text message."""
        try:
            obj = json.loads(text)
        except ValueError as exc:
            logger.warning("%s: malformed message: %s", self.url, exc)
            return
        for event in parse_ws_message(obj, self._raw):
            await self._emit(event)

    async def _listen_once(self) -> None:
        own_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            async with session.ws_connect(self.url, heartbeat=30) as ws:
                await self._opened()
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            await self.handle_message(msg.data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            logger.warning(
                                "%s: %s", self.url, ws.exception()
                            )
                            break
                finally:
                    await self._closed()
        finally:
            if own_session:
                await session.close()
