"""Discovery of Hue bridges and deCONZ gateways.

Two sources are queried concurrently:

* mDNS: Hue bridges announce ``_hue._tcp.local.`` with a ``bridgeid``
  TXT property (browsed with ``zeroconf``);
* the vendor portals, which return the bridges registered from the
  caller's public address as
  ``[{"id": ..., "internalipaddress": ..., "internalport": ...}]``.

A failing source is logged and skipped.

Usage::

    bridges = await BridgeDiscovery(timeout=5).discover()
    # {"192.168.1.20": "001788FFFE123456"}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import aiohttp
from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger(__name__)

#: mDNS service type of Hue bridges.
SERVICE_TYPE = "_hue._tcp.local."

#: Portals listing bridges by public address.
PORTALS: Sequence[str] = (
    "https://discovery.meethue.com",
    "https://phoscon.de/discover",
)

#: Ports implied by the scheme; omitted from the host.
DEFAULT_PORTS = (80, 443)


def format_host(address: str, port: Optional[int]) -> str:
    """``address[:port]``; default ports are omitted."""
    if port is None or int(port) in DEFAULT_PORTS:
        return address
    return "%s:%d" % (address, int(port))


def parse_portal_response(response: Any) -> Dict[str, str]:
    """Bridges from a portal response, ``{host: bridgeid}``.

    Entries without address or id are skipped.
    """
    bridges: Dict[str, str] = {}
    if not isinstance(response, list):
        return bridges
    for entry in response:
        if not isinstance(entry, Mapping):
            continue
        address = entry.get("internalipaddress")
        bridgeid = entry.get("id")
        if not address or not bridgeid:
            continue
        port = entry.get("internalport", entry.get("port"))
        bridges[format_host(str(address), port)] = str(bridgeid).upper()
    return bridges


def parse_service_properties(properties: Mapping[Any, Any]) -> Optional[str]:
    """The bridge id from mDNS TXT *properties* (keys may be bytes)."""
    for key, value in properties.items():
        if isinstance(key, bytes):
            key = key.decode("utf-8", "replace")
        if key.lower() != "bridgeid" or value is None:
            continue
        if isinstance(value, bytes):
            value = value.decode("utf-8", "replace")
        return str(value).upper() or None
    return None


class BridgeDiscovery:
    """Finds bridges on the local network.

    Parameters
    ----------
    timeout:
        Seconds to browse mDNS and to wait for each portal.
    portals:
        Portal URLs to query.
    session:
        Shared :class:`aiohttp.ClientSession`.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        *,
        portals: Sequence[str] = PORTALS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._portals = list(portals)
        self._session = session

    async def discover(self) -> Dict[str, str]:
        """Query every source; returns ``{host: bridgeid}``."""
        results = await asyncio.gather(
            self.mdns(),
            *(self.portal(url) for url in self._portals),
            return_exceptions=True,
        )
        sources = ["mdns"] + self._portals
        bridges: Dict[str, str] = {}
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.debug("%s: %s", source, result)
                continue
            bridges.update(result)
        logger.info("found %d bridges", len(bridges))
        return bridges

    async def portal(self, url: str) -> Dict[str, str]:
        """Bridges listed by the portal at *url*."""
        own_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=self._timeout)
            ) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        finally:
            if own_session:
                await session.close()
        bridges = parse_portal_response(data)
        logger.debug("%s: %s", url, bridges)
        return bridges

    async def mdns(self) -> Dict[str, str]:
        """Bridges announcing :data:`SERVICE_TYPE`."""
        names: List[str] = []

        def on_service_state_change(
            zeroconf: Zeroconf,
            service_type: str,
            name: str,
            state_change: ServiceStateChange,
        ) -> None:
            if state_change is ServiceStateChange.Added and name not in names:
                names.append(name)

        aiozc = AsyncZeroconf()
        browser = AsyncServiceBrowser(
            aiozc.zeroconf, [SERVICE_TYPE], handlers=[on_service_state_change]
        )
        bridges: Dict[str, str] = {}
        try:
            await asyncio.sleep(self._timeout)
            for name in names:
                info = AsyncServiceInfo(SERVICE_TYPE, name)
                if not await info.async_request(aiozc.zeroconf, 3000):
                    continue
                bridgeid = parse_service_properties(info.properties)
                addresses = info.parsed_addresses()
                if bridgeid is None or not addresses:
                    continue
                bridges[format_host(addresses[0], info.port)] = bridgeid
        finally:
            await browser.async_cancel()
            await aiozc.async_close()
        logger.debug("mdns: %s", bridges)
        return bridges
