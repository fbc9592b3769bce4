"""Canonical push notifications and the wire formats they come from.

Both push channels are normalised into the same small set of events:

==================  =========================================  ==========
event               meaning                                    payload
==================  =========================================  ==========
ResourceChanged     attributes of a resource changed           path, state
ResourceAdded       the bridge paired a new device             path, obj
SceneRecalled       a group scene was recalled                 path
RawNotification     anything not understood                    body
StreamListening     the channel is connected                   url
StreamClosed        the channel was closed                     url
StreamError         the channel failed                         error
==================  =========================================  ==========

*Shape A* is the deCONZ websocket message (:func:`parse_ws_message`),
*Shape B* the Hue API v2 event stream (:class:`UpdateTranslator`,
framed by :class:`SseFramer`).  :class:`NotificationStream` runs the
connect / listen / reconnect cycle shared by both channels.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import math
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
)

import aiohttp

from pyHueSync.enums import V2_BUTTON_EVENTS
from pyHueSync.errors import CertificateError, HueSyncError, ProtocolError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceChanged:
    """``path`` is ``/kind/id/state``, ``/kind/id/config``, ``/kind/id``."""

    path: str
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceAdded:
    path: str
    obj: Any = None


@dataclass(frozen=True)
class SceneRecalled:
    """``path`` is ``/groups/<gid>/scenes/<scid>``."""

    path: str


@dataclass(frozen=True)
class RawNotification:
    body: Any


@dataclass(frozen=True)
class StreamListening:
    url: str


@dataclass(frozen=True)
class StreamClosed:
    url: str


@dataclass(frozen=True)
class StreamError:
    error: BaseException


StreamEvent = Union[
    ResourceChanged,
    ResourceAdded,
    SceneRecalled,
    RawNotification,
    StreamListening,
    StreamClosed,
    StreamError,
]

#: Async callback receiving stream events, in arrival order.
StreamCallback = Callable[[StreamEvent], Awaitable[None]]


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
#  Shape A: websocket messages
# ---------------------------------------------------------------------------


def parse_ws_message(obj: Any, raw: bool = False) -> List[StreamEvent]:
    """Translate one websocket message into events.

    Parameters
    ----------
    obj:
        The decoded JSON message.
    raw:
        Emit every message as :class:`RawNotification`.
    """
    if raw or not isinstance(obj, dict) or obj.get("t") != "event":
        return [RawNotification(obj)]
    event = obj.get("e")
    r = obj.get("r")
    rid = obj.get("id")
    if event == "changed" and r and rid is not None:
        base = "/%s/%s" % (r, rid)
        events: List[StreamEvent] = []
        if isinstance(obj.get("state"), dict):
            events.append(ResourceChanged(base + "/state", obj["state"]))
        if isinstance(obj.get("config"), dict):
            events.append(ResourceChanged(base + "/config", obj["config"]))
        if isinstance(obj.get("attr"), dict):
            events.append(ResourceChanged(base, obj["attr"]))
        if isinstance(obj.get("capabilities"), dict):
            events.append(
                ResourceChanged(base + "/capabilities", obj["capabilities"])
            )
        if events:
            return events
    elif event == "added" and r and rid is not None:
        return [ResourceAdded("/%s/%s" % (r, rid), obj.get(r[:-1]))]
    elif event == "scene-called" and obj.get("gid") and obj.get("scid"):
        return [
            SceneRecalled("/groups/%s/scenes/%s" % (obj["gid"], obj["scid"]))
        ]
    return [RawNotification(obj)]


# ---------------------------------------------------------------------------
#  Shape B: event stream
# ---------------------------------------------------------------------------


class SseFramer:
    """Reassembles server-sent events from arbitrary byte chunks.

    A message ends at an empty line.  Only complete messages are
    returned by :meth:`feed`; the rest stays buffered.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")()

    @property
    def pending(self) -> str:
        """Buffered text of an incomplete message."""
        return self._buffer

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """Add *chunk*; returns the ``data`` of completed messages."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        messages: List[str] = []
        while "\n\n" in self._buffer:
            message, self._buffer = self._buffer.split("\n\n", 1)
            data = self._data(message)
            if data is not None:
                messages.append(data)
        return messages

    @staticmethod
    def _data(message: str) -> Optional[str]:
        lines = []
        for line in message.split("\n"):
            if line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name == "data":
                lines.append(value[1:] if value.startswith(" ") else value)
        return "\n".join(lines) if lines else None


def parse_sse_data(data: str) -> Any:
    """Decode the JSON ``data`` of one event."""
    try:
        return json.loads(data)
    except ValueError as exc:
        raise ProtocolError("malformed event data: %s" % exc) from exc


class UpdateTranslator:
    """Translates Hue API v2 containers into legacy attribute changes.

    Parameters
    ----------
    button_map:
        Maps a v2 button id to its base ``buttonevent`` code
        (``control_id * 1000``).
    """

    def __init__(self, button_map: Optional[Mapping[str, int]] = None) -> None:
        self.button_map: Dict[str, int] = dict(button_map or {})

    @staticmethod
    def build_button_map(response: Mapping[str, Any]) -> Dict[str, int]:
        """Button map from a ``/clip/v2/resource/button`` response."""
        result = {}
        for button in response.get("data", []):
            try:
                result[button["id"]] = int(button["metadata"]["control_id"]) * 1000
            except (KeyError, TypeError, ValueError):
                logger.warning("unexpected button resource %r", button)
        return result

    def translate(self, container: Any, raw: bool = False) -> List[StreamEvent]:
        """Translate one decoded event-stream container."""
        if not isinstance(container, list):
            raise ProtocolError("expected a list, got %r" % (container,))
        events: List[StreamEvent] = []
        for obj in container:
            if raw or not isinstance(obj, dict) or obj.get("type") != "update":
                events.append(RawNotification(obj))
                continue
            events.extend(self._translate_update(obj))
        return events

    def _translate_update(self, obj: Dict[str, Any]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        lastupdated = str(obj.get("creationtime", ""))
        if lastupdated.endswith("Z"):
            lastupdated = lastupdated[:-1]
        for data in obj.get("data", []):
            resource = data.get("id_v1") if isinstance(data, dict) else None
            if not resource:
                events.append(RawNotification(obj))
                continue
            state: Dict[str, Any] = {}
            config: Dict[str, Any] = {}
            for key, value in data.items():
                self._translate_field(
                    resource, data, key, value, state, config, lastupdated
                )
            if state:
                events.append(ResourceChanged(resource + "/state", state))
            if config:
                events.append(ResourceChanged(resource + "/config", config))
            if not state and not config:
                events.append(RawNotification(obj))
        return events

    def _translate_field(
        self,
        resource: str,
        data: Dict[str, Any],
        key: str,
        value: Any,
        state: Dict[str, Any],
        config: Dict[str, Any],
        lastupdated: str,
    ) -> None:
        if not isinstance(value, dict) and key not in ("status", "enabled"):
            return
        if key == "on":
            state["on"] = value.get("on")
        elif key == "dimming":
            state["bri"] = _round(value.get("brightness", 0) * 2.54)
        elif key == "color":
            xy = value.get("xy") or {}
            state["xy"] = [xy.get("x"), xy.get("y")]
        elif key == "color_temperature":
            if value.get("mirek_valid"):
                state["ct"] = value.get("mirek")
        elif key == "status":
            reachable = value == "connected"
            if resource.startswith("/sensors"):
                config["reachable"] = reachable
            else:
                state["reachable"] = reachable
        elif key == "button":
            base = self.button_map.get(data.get("id"))
            event = V2_BUTTON_EVENTS.get(value.get("last_event"))
            if base is None or event is None:
                logger.debug(
                    "%s: unknown button event %r", resource, value
                )
                return
            state["buttonevent"] = base + int(event)
            state["lastupdated"] = lastupdated
        elif key == "motion":
            if value.get("motion_valid"):
                state["presence"] = value.get("motion")
                state["lastupdated"] = lastupdated
        elif key == "light":
            if value.get("light_level_valid"):
                state["lightlevel"] = value.get("light_level")
                state["lastupdated"] = lastupdated
        elif key == "temperature":
            if value.get("temperature_valid"):
                state["temperature"] = _round(value.get("temperature", 0) * 100)
                state["lastupdated"] = lastupdated
        elif key == "enabled":
            config["on"] = value


# ---------------------------------------------------------------------------
#  Stream lifecycle
# ---------------------------------------------------------------------------


class NotificationStream:
    """Base class of the push channels.

    Runs one listener task that connects, delivers events to
    *on_event* strictly in arrival order and, when the connection is
    closed, reconnects after *retry_time* seconds.  Subclasses implement
    :meth:`_listen_once`.

    Parameters
    ----------
    on_event:
        Coroutine function receiving every :data:`StreamEvent`.
    retry_time:
        Seconds before reconnecting; ``0`` disables reconnecting.
    raw:
        Deliver every message as :class:`RawNotification`.
    """

    def __init__(
        self,
        on_event: StreamCallback,
        *,
        retry_time: float = 10.0,
        raw: bool = False,
    ) -> None:
        self._on_event = on_event
        self._retry_time = retry_time
        self._raw = raw
        self._task: Optional["asyncio.Task[None]"] = None
        self._closing = False
        self._listening = False

    # ---- properties --------------------------------------------------

    @property
    def url(self) -> str:
        raise NotImplementedError

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---- lifecycle ---------------------------------------------------

    def start(self) -> None:
        """Start the listener task.  Does nothing when already running."""
        if self.running:
            return
        self._closing = False
        self._task = asyncio.ensure_future(self._run())

    async def close(self) -> None:
        """Stop listening and cancel the pending read or reconnect delay."""
        self._closing = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while not self._closing:
            try:
                await self._listen_once()
            except asyncio.CancelledError:
                raise
            except CertificateError as exc:
                logger.error("%s: %s, not reconnecting", self.url, exc)
                await self._emit(StreamError(exc))
                return
            except (HueSyncError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                logger.warning("%s: %s", self.url, str(exc) or type(exc).__name__)
                await self._emit(StreamError(exc))
            if self._closing or self._retry_time <= 0:
                return
            logger.debug("%s: reconnect in %.1fs", self.url, self._retry_time)
            await asyncio.sleep(self._retry_time)

    async def _listen_once(self) -> None:
        raise NotImplementedError

    async def _opened(self) -> None:
        self._listening = True
        logger.info("%s: listening", self.url)
        await self._emit(StreamListening(self.url))

    async def _closed(self) -> None:
        if not self._listening:
            return
        self._listening = False
        logger.info("%s: closed", self.url)
        await self._emit(StreamClosed(self.url))

    async def _emit(self, event: StreamEvent) -> None:
        try:
            await self._on_event(event)
        except Exception:  # noqa: BLE001
            logger.exception("%s: error handling %r", self.url, event)
