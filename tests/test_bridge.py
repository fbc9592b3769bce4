"""Tests for HueBridge orchestration."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from pyHueSync.bridge import HueBridge
from pyHueSync.config import BridgeOptions
from pyHueSync.enums import BridgeType, ResourceKind
from pyHueSync.errors import ConfigurationError, TransportError
from pyHueSync.event_stream import EventStreamClient
from pyHueSync.persistence import BridgeStore
from pyHueSync.ws_monitor import WsMonitor


HUE_ID = "001788FFFE123456"
DECONZ_ID = "00212EFFFF012345"

FULL_STATE = {
    "config": {"apiversion": "1.50.0", "bridgeid": HUE_ID, "websocketport": 443},
    "lights": {
        "1": {
            "name": "Plug",
            "type": "On/Off plug-in unit",
            "manufacturername": "OSRAM",
            "modelid": "Plug 01",
            "uniqueid": "84:18:26:00:00:00:00:01-03",
            "state": {"on": False, "reachable": True},
        }
    },
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_bridge(store=None, bridgeid=HUE_ID, https=False, **options):
    options.setdefault("stream", False)
    bridge = HueBridge(BridgeOptions(host="10.0.0.2", **options), store=store)
    client = bridge.client
    bridge_type = BridgeType.DECONZ if bridgeid == DECONZ_ID else BridgeType.HUE

    async def connect():
        client._bridgeid = bridgeid
        client._type = bridge_type
        client._https = https
        return {"bridgeid": bridgeid}

    async def get(path):
        if path == "/":
            state = dict(FULL_STATE)
            state["config"] = dict(FULL_STATE["config"], bridgeid=bridgeid)
            return state
        if path == "/groups/0":
            return {"name": "All", "state": {"any_on": False}, "action": {"on": False}}
        return {}

    client.connect = AsyncMock(side_effect=connect)
    client.get = AsyncMock(side_effect=get)
    client.close = AsyncMock()
    return bridge


# ---------------------------------------------------------------------------
# Start / stop
# ---------------------------------------------------------------------------


class TestStart:

    @pytest.mark.asyncio
    async def test_start_with_configured_username(self):
        bridge = _make_bridge(username="abc")
        await bridge.start()
        try:
            assert bridge.running
            assert bridge.bridgeid == HUE_ID
            assert bridge.config["apiversion"] == "1.50.0"
            assert len(bridge.reconciler.accessories) == 1
            assert bridge.stream is None
        finally:
            await bridge.stop()
        assert not bridge.running
        bridge.client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self):
        bridge = _make_bridge(username="abc")
        await bridge.start()
        await bridge.start()
        await bridge.stop()
        assert bridge.client.connect.await_count == 1

    @pytest.mark.asyncio
    async def test_group0_is_fetched(self):
        bridge = _make_bridge(username="abc", groups=True, group0=True)
        await bridge.start()
        await bridge.stop()
        assert "0" in bridge.reconciler.resources[ResourceKind.GROUP]


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_username_from_store(self, tmp_path):
        store = BridgeStore(tmp_path / "bridges.yaml")
        store.update(HUE_ID, username="stored", fingerprint="AA:BB")
        bridge = _make_bridge(store=store, https=True)
        await bridge.start()
        await bridge.stop()
        assert bridge.client.username == "stored"
        assert bridge.client.fingerprint == "AA:BB"

    @pytest.mark.asyncio
    async def test_no_username_without_link_button(self):
        bridge = _make_bridge()
        with pytest.raises(ConfigurationError):
            await bridge.start()
        assert not bridge.running

    @pytest.mark.asyncio
    async def test_link_button_creates_and_stores_username(self, tmp_path):
        store = BridgeStore(tmp_path / "bridges.yaml")
        bridge = _make_bridge(store=store, link_button=True)

        async def wait_for_user(application):
            bridge.client.username = "new"
            return "new"

        bridge.client.wait_for_user = AsyncMock(side_effect=wait_for_user)
        await bridge.start()
        await bridge.stop()
        bridge.client.wait_for_user.assert_awaited_once_with("pyHueSync")
        assert store.get(HUE_ID) == {"username": "new"}

    @pytest.mark.asyncio
    async def test_pinned_fingerprint_is_saved(self, tmp_path):
        store = BridgeStore(tmp_path / "bridges.yaml")
        bridge = _make_bridge(store=store, username="abc")
        bridge.client.fingerprint = "CC:DD"
        await bridge.start()
        await bridge.stop()
        assert store.get(HUE_ID) == {"fingerprint": "CC:DD"}


# ---------------------------------------------------------------------------
# Push channel selection
# ---------------------------------------------------------------------------


class TestStreamSelection:

    @pytest.mark.asyncio
    async def test_hue_uses_event_stream(self):
        bridge = _make_bridge(username="abc", stream=True)
        with patch.object(EventStreamClient, "init", AsyncMock()) as init, \
                patch.object(EventStreamClient, "start") as start, \
                patch.object(EventStreamClient, "close", AsyncMock()) as close:
            await bridge.start()
            assert isinstance(bridge.stream, EventStreamClient)
            init.assert_awaited_once()
            start.assert_called_once_with()
            await bridge.stop()
            close.assert_awaited_once()
        assert bridge.stream is None

    @pytest.mark.asyncio
    async def test_deconz_uses_websocket(self):
        bridge = _make_bridge(username="abc", bridgeid=DECONZ_ID, stream=True)
        with patch.object(WsMonitor, "start") as start, \
                patch.object(WsMonitor, "close", AsyncMock()):
            await bridge.start()
            assert isinstance(bridge.stream, WsMonitor)
            assert bridge.stream.url == "ws://10.0.0.2:443"
            start.assert_called_once_with()
            await bridge.stop()

    def test_event_stream_from_first_supported_version(self):
        bridge = _make_bridge(username="abc", stream=True)
        bridge.client._type = BridgeType.HUE
        bridge.config = {"apiversion": "1.46.0"}
        assert isinstance(bridge._select_stream(), EventStreamClient)

    def test_old_hue_api_polls_only(self):
        bridge = _make_bridge(username="abc", stream=True)
        bridge.client._type = BridgeType.HUE
        bridge.config = {"apiversion": "1.45.0"}
        assert bridge._select_stream() is None

    def test_stream_disabled(self):
        bridge = _make_bridge(username="abc", stream=False)
        bridge.client._type = BridgeType.HUE
        bridge.config = {"apiversion": "1.50.0"}
        assert bridge._select_stream() is None


# ---------------------------------------------------------------------------
# Heartbeat
# ---------------------------------------------------------------------------


class TestHeartbeat:

    @pytest.mark.asyncio
    async def test_heartbeat_polls_and_survives_errors(self):
        bridge = _make_bridge(username="abc", heartrate=0.01)
        calls = []

        async def heartbeat():
            calls.append(1)
            if len(calls) == 1:
                raise TransportError("down")

        bridge.reconciler.heartbeat = AsyncMock(side_effect=heartbeat)
        await bridge.start()
        for _ in range(100):
            if bridge.reconciler.heartbeat.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        assert bridge.running
        await bridge.stop()
        assert bridge.reconciler.heartbeat.await_count >= 2


def test_repr():
    bridge = HueBridge(BridgeOptions(host="10.0.0.2"))
    assert "10.0.0.2" in repr(bridge)
