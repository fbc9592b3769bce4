"""Hue API v2 event stream (server-sent events over HTTPS).

The bridge pushes containers of ``update`` objects on
``/eventstream/clip/v2``.  :class:`EventStreamClient` reassembles the
byte stream into events (:class:`~pyHueSync.notification.SseFramer`),
translates them to legacy attribute changes
(:class:`~pyHueSync.notification.UpdateTranslator`) and hands them to
the consumer callback.

The bridge certificate is checked on every connection.  A certificate
error stops the stream; it is not restarted until the fingerprint is
reconfirmed (:meth:`EventStreamClient.reconfirm`).

Usage::

    stream = EventStreamClient(client, on_event)
    await stream.init()
    stream.start()
    ...
    await stream.close()
"""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from pyHueSync.client import RemoteStateClient
from pyHueSync.errors import HttpError, ProtocolError
from pyHueSync.notification import (
    NotificationStream,
    SseFramer,
    StreamCallback,
    UpdateTranslator,
    parse_sse_data,
)

logger = logging.getLogger(__name__)

#: Path of the event stream on the bridge.
EVENT_STREAM_RESOURCE = "/eventstream/clip/v2"
#: Path (below ``/clip/v2``) of the button resources.
BUTTON_RESOURCE = "/resource/button"


class EventStreamClient(NotificationStream):
    """Event stream of one Hue bridge.

    Parameters
    ----------
    client:
        The bridge's :class:`RemoteStateClient`; provides the HTTP
        session, the credentials and the certificate check.
    on_event:
        Coroutine function receiving the events.
    retry_time:
        Seconds before reconnecting; ``0`` disables reconnecting.
    raw:
        Deliver containers as raw notifications.
    connect_timeout:
        Timeout for establishing the connection.
    """

    def __init__(
        self,
        client: RemoteStateClient,
        on_event: StreamCallback,
        *,
        retry_time: float = 10.0,
        raw: bool = False,
        resource: str = EVENT_STREAM_RESOURCE,
        connect_timeout: float = 5.0,
    ) -> None:
        super().__init__(on_event, retry_time=retry_time, raw=raw)
        self._client = client
        self._resource = resource
        self._timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=connect_timeout
        )
        self._translator: Optional[UpdateTranslator] = None
        self._framer = SseFramer()

    @property
    def url(self) -> str:
        return "https://%s%s" % (self._client.host, self._resource)

    @property
    def translator(self) -> Optional[UpdateTranslator]:
        return self._translator

    async def init(self) -> None:
        """Fetch the button map.  Only the first call queries the bridge."""
        if self._translator is not None:
            return
        response = await self._client.get_v2(BUTTON_RESOURCE)
        button_map = UpdateTranslator.build_button_map(response)
        logger.debug("%s: %d buttons", self.url, len(button_map))
        self._translator = UpdateTranslator(button_map)

    def reconfirm(self) -> None:
        """Accept a new bridge certificate and restart the stream."""
        self._client.reconfirm()
        self.start()

    async def feed(self, chunk: bytes) -> None:
        """Process a chunk of the response body."""
        if self._translator is None:
            self._translator = UpdateTranslator()
        for data in self._framer.feed(chunk):
            try:
                container = parse_sse_data(data)
                events = self._translator.translate(container, self._raw)
            except ProtocolError as exc:
                logger.warning("%s: %s", self.url, exc)
                continue
            for event in events:
                await self._emit(event)

    async def _listen_once(self) -> None:
        session = await self._client.get_session()
        headers = self._client.v2_headers()
        headers["Accept"] = "text/event-stream"
        self._framer = SseFramer()
        async with session.get(
            self.url, headers=headers, timeout=self._timeout
        ) as response:
            self._client.check_response_certificate(response)
            if response.status != 200:
                raise HttpError(
                    response.status, method="GET", resource=self._resource
                )
            await self._opened()
            try:
                async for chunk in response.content.iter_any():
                    await self.feed(chunk)
            finally:
                await self._closed()
