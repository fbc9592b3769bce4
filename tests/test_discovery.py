"""Tests for bridge discovery."""

from unittest.mock import AsyncMock, patch

import pytest

from pyHueSync.discovery import (
    BridgeDiscovery,
    format_host,
    parse_portal_response,
    parse_service_properties,
)


class TestParsers:

    def test_format_host(self):
        assert format_host("10.0.0.2", None) == "10.0.0.2"
        assert format_host("10.0.0.2", 80) == "10.0.0.2"
        assert format_host("10.0.0.2", 443) == "10.0.0.2"
        assert format_host("10.0.0.2", 8080) == "10.0.0.2:8080"

    def test_portal_response(self):
        response = [
            {"id": "001788fffe123456", "internalipaddress": "10.0.0.2"},
            {"id": "00212effff012345", "internalipaddress": "10.0.0.3",
             "internalport": 8080},
            {"id": "x", "internalipaddress": "10.0.0.4", "port": 443},
            {"internalipaddress": "10.0.0.5"},
            "junk",
        ]
        assert parse_portal_response(response) == {
            "10.0.0.2": "001788FFFE123456",
            "10.0.0.3:8080": "00212EFFFF012345",
            "10.0.0.4": "X",
        }

    def test_portal_error_response(self):
        assert parse_portal_response({"error": "rate limited"}) == {}

    def test_service_properties(self):
        assert parse_service_properties(
            {b"bridgeid": b"001788fffe123456", b"modelid": b"BSB002"}
        ) == "001788FFFE123456"
        assert parse_service_properties({"bridgeid": "ecb5fafffe000001"}) == (
            "ECB5FAFFFE000001"
        )
        assert parse_service_properties({b"modelid": b"BSB002"}) is None
        assert parse_service_properties({b"bridgeid": None}) is None


class TestDiscover:

    @pytest.mark.asyncio
    async def test_sources_are_merged_and_failures_skipped(self):
        discovery = BridgeDiscovery(timeout=0.01, portals=["https://a", "https://b"])

        async def portal(url):
            if url == "https://b":
                raise OSError("unreachable")
            return {"10.0.0.3": "00212EFFFF012345"}

        with patch.object(
            discovery, "mdns", AsyncMock(return_value={"10.0.0.2": "001788FFFE123456"})
        ), patch.object(discovery, "portal", AsyncMock(side_effect=portal)):
            bridges = await discovery.discover()
        assert bridges == {
            "10.0.0.2": "001788FFFE123456",
            "10.0.0.3": "00212EFFFF012345",
        }

    @pytest.mark.asyncio
    async def test_all_sources_failing(self):
        discovery = BridgeDiscovery(portals=[])
        with patch.object(
            discovery, "mdns", AsyncMock(side_effect=OSError("no multicast"))
        ):
            assert await discovery.discover() == {}
