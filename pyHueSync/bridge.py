"""Bridge orchestration.

A :class:`HueBridge` ties the pieces for one bridge together: it
identifies the bridge, obtains an API username, builds the resource
cache, chooses the push channel and polls the bridge periodically.

Usage example::

    import asyncio
    from pyHueSync import BridgeOptions, BridgeStore, HueBridge

    bridge = HueBridge(
        BridgeOptions(host="192.168.1.20", link_button=True),
        store=BridgeStore("~/.pyHueSync/bridges.yaml"),
    )

    async def main():
        await bridge.start()
        try:
            await asyncio.Event().wait()  # run forever
        finally:
            await bridge.stop()

    asyncio.run(main())
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from pyHueSync.client import RemoteStateClient, parse_version
from pyHueSync.config import BridgeOptions
from pyHueSync.errors import ConfigurationError, HueSyncError
from pyHueSync.event_stream import EventStreamClient
from pyHueSync.notification import NotificationStream
from pyHueSync.persistence import BridgeStore
from pyHueSync.reconciler import ReconcilerObserver, ResourceReconciler
from pyHueSync.ws_monitor import WsMonitor

logger = logging.getLogger(__name__)

#: First Hue API version with the v2 event stream.
EVENT_STREAM_API_VERSION = (1, 46, 0)
#: Application name sent when creating a username.
DEFAULT_APPLICATION = "pyHueSync"


class HueBridge:
    """One bridge, from connection to periodic polling.

    Parameters
    ----------
    options:
        Connection options.
    store:
        Where granted usernames and certificate fingerprints are kept.
    observer:
        Receiver of presented-state changes.
    application:
        Application name used when creating a username.
    session:
        Shared :class:`aiohttp.ClientSession`.
    """

    def __init__(
        self,
        options: BridgeOptions,
        *,
        store: Optional[BridgeStore] = None,
        observer: Optional[ReconcilerObserver] = None,
        application: str = DEFAULT_APPLICATION,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.options = options
        self.store = store
        self.application = application
        self.client = RemoteStateClient(
            options.host,
            username=options.username,
            timeout=options.timeout,
            wait_time_put=options.wait_time_put,
            wait_time_put_group=options.wait_time_put_group,
            wait_time_resend=options.wait_time_resend,
            session=session,
        )
        self.reconciler = ResourceReconciler(
            self.client, options, observer=observer
        )
        self.stream: Optional[NotificationStream] = None
        self.config: Dict[str, Any] = {}
        self._heartbeat_task: Optional["asyncio.Task[None]"] = None

    def __repr__(self) -> str:
        return "<HueBridge %s %s>" % (self.options.host, self.client.bridgeid)

    @property
    def bridgeid(self) -> Optional[str]:
        return self.client.bridgeid

    @property
    def running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    # ---- lifecycle ---------------------------------------------------

    async def start(self) -> None:
        """Connect, build the resource cache and start synchronising.

        Raises
        ------
        UnsupportedBridgeError
            If the host is not a supported bridge.
        ConfigurationError
            If no username is known and ``link_button`` is not set.
        HueSyncError
            If the bridge cannot be read.
        """
        if self.running:
            logger.debug("%s: already running", self.options.host)
            return
        await self.client.connect()
        await self._authenticate()

        full_state = await self.client.get("/")
        if self.options.group0:
            full_state.setdefault("groups", {})["0"] = await self.client.get("/groups/0")
        self.config = full_state.get("config") or {}
        self.reconciler.materialize(full_state)
        self._save_fingerprint()

        self.stream = self._select_stream()
        if self.stream is not None:
            if isinstance(self.stream, EventStreamClient):
                await self.stream.init()
            self.stream.start()

        self._heartbeat_task = asyncio.ensure_future(self._heartbeat())
        logger.info(
            "%s: %s started, %d accessories", self.options.host,
            self.bridgeid, len(self.reconciler.accessories),
        )

    async def stop(self) -> None:
        """Stop polling, close the push channel and the HTTP session."""
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.stream is not None:
            await self.stream.close()
            self.stream = None
        await self.client.close()
        logger.info("%s: stopped", self.options.host)

    # ---- internals ---------------------------------------------------

    async def _authenticate(self) -> None:
        bridgeid = self.client.bridgeid or ""
        entry = self.store.get(bridgeid) if self.store is not None else {}
        if self.client.username is None and entry.get("username"):
            self.client.username = entry["username"]
        if entry.get("fingerprint") and self.client.https:
            self.client.fingerprint = entry["fingerprint"]
        if self.client.username is not None:
            return
        if not self.options.link_button:
            raise ConfigurationError(
                "%s: %s: no username; press the link button and set "
                "linkButton" % (self.options.host, bridgeid)
            )
        username = await self.client.wait_for_user(self.application)
        logger.info("%s: %s: username created", self.options.host, bridgeid)
        if self.store is not None:
            self.store.update(bridgeid, username=username)

    def _save_fingerprint(self) -> None:
        if self.store is None or not self.client.fingerprint:
            return
        self.store.update(self.client.bridgeid or "", fingerprint=self.client.fingerprint)

    def _select_stream(self) -> Optional[NotificationStream]:
        if not self.options.stream:
            return None
        callback = self.reconciler.handle_event
        if self.client.is_deconz:
            port = self.config.get("websocketport")
            if not port:
                logger.warning("%s: no websocketport, polling only", self.options.host)
                return None
            return WsMonitor(
                self.options.host, int(port), callback,
                retry_time=self.options.retry_time,
            )
        version = parse_version(str(self.config.get("apiversion", "0")))
        if self.client.is_hue and version >= EVENT_STREAM_API_VERSION:
            return EventStreamClient(
                self.client, callback,
                retry_time=self.options.retry_time,
                connect_timeout=self.options.timeout,
            )
        logger.info("%s: no push channel, polling only", self.options.host)
        return None

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.options.heartrate)
            try:
                await self.reconciler.heartbeat()
            except asyncio.CancelledError:
                raise
            except HueSyncError as exc:
                logger.error("%s: heartbeat failed: %s", self.options.host, exc)
            except Exception:  # noqa: BLE001
                logger.exception("%s: heartbeat failed", self.options.host)
