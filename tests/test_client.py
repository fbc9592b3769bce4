"""Tests for the bridge REST client."""

import asyncio
import datetime
import json
import logging
from unittest.mock import AsyncMock, patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from pyHueSync.client import (
    RemoteStateClient,
    bridge_type,
    message_count,
    parse_resource,
    parse_version,
)
from pyHueSync.enums import BridgeType
from pyHueSync.errors import (
    ApiError,
    CertificateError,
    ConfigurationError,
    HttpError,
    LinkButtonNotPressedError,
    TransportError,
    UnsupportedBridgeError,
)


HUE_ID = "001788FFFE123456"
DECONZ_ID = "00212EFFFF012345"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_client(**kwargs):
    kwargs.setdefault("username", "user")
    kwargs.setdefault("wait_time_resend", 0)
    return RemoteStateClient("10.0.0.2", **kwargs)


def _ok(obj):
    return 200, json.dumps(obj)


def _make_certificate(cn=HUE_ID, serial=None, org="Philips Hue", issuer_cn=None):
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "NL"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, org),
        x509.NameAttribute(NameOID.COMMON_NAME, cn.lower()),
    ])
    issuer = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "NL"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, org),
        x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn or cn.lower()),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(serial if serial is not None else int(cn, 16))
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


# ---------------------------------------------------------------------------
# Helpers at module level
# ---------------------------------------------------------------------------


class TestParseResource:

    def test_collection(self):
        assert parse_resource("/lights") == ("/lights", ())

    def test_resource(self):
        assert parse_resource("/lights/1") == ("/lights/1", ())

    def test_deeper_path_is_indexed(self):
        assert parse_resource("/lights/1/state/on") == ("/lights/1", ("state", "on"))

    def test_group_scenes_native(self):
        assert parse_resource("/groups/1/scenes") == ("/groups/1/scenes", ())
        assert parse_resource("/groups/1/scenes/abc/lights") == (
            "/groups/1/scenes/abc", ("lights",)
        )

    def test_connectivity2_native(self):
        assert parse_resource("/lights/1/connectivity2") == (
            "/lights/1/connectivity2", ()
        )

    def test_config_singleton(self):
        assert parse_resource("/config/whitelist") == ("/config", ("whitelist",))

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_resource("lights")


class TestMessageCount:

    def test_minimum_one(self):
        assert message_count({}) == 1
        assert message_count({"alert": "select"}) == 1

    def test_attribute_classes(self):
        assert message_count({"on": True}) == 1
        assert message_count({"on": True, "bri": 100}) == 2
        assert message_count({"on": True, "bri": 1, "xy": [0, 0], "ct": 200}) == 3


class TestBridgeType:

    def test_prefixes(self):
        assert bridge_type(HUE_ID) is BridgeType.HUE
        assert bridge_type("ECB5FAFFFE000001") is BridgeType.HUE
        assert bridge_type(DECONZ_ID) is BridgeType.DECONZ
        assert bridge_type("AABBCCDDEEFF0011") is None

    def test_parse_version(self):
        assert parse_version("1.46.0") == (1, 46, 0)
        assert parse_version("2.05.20") == (2, 5, 20)


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class TestConnect:

    @pytest.mark.asyncio
    async def test_hue_switches_to_https(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(
            return_value=_ok({"bridgeid": HUE_ID, "apiversion": "1.50.0"})
        )) as http:
            await client.connect()
        assert client.is_hue
        assert client.https
        assert client.bridgeid == HUE_ID
        assert http.call_args.args[1] == "http://10.0.0.2/api/config"

    @pytest.mark.asyncio
    async def test_old_hue_stays_http(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(
            return_value=_ok({"bridgeid": HUE_ID, "apiversion": "1.16.0"})
        )):
            await client.connect()
        assert not client.https

    @pytest.mark.asyncio
    async def test_deconz(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(
            return_value=_ok({"bridgeid": DECONZ_ID, "apiversion": "1.16.0"})
        )):
            await client.connect()
        assert client.is_deconz
        assert not client.https

    @pytest.mark.asyncio
    async def test_unsupported_bridge(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(
            return_value=_ok({"bridgeid": "AABBCCDDEEFF0011"})
        )):
            with pytest.raises(UnsupportedBridgeError):
                await client.connect()

    @pytest.mark.asyncio
    async def test_missing_bridgeid(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(return_value=_ok({}))):
            with pytest.raises(UnsupportedBridgeError):
                await client.connect()

    @pytest.mark.asyncio
    async def test_bridgeid_mismatch(self):
        client = _make_client(bridgeid=DECONZ_ID)
        with patch.object(client, "_http", AsyncMock(
            return_value=_ok({"bridgeid": HUE_ID, "apiversion": "1.50.0"})
        )):
            with pytest.raises(ConfigurationError):
                await client.connect()


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


class TestRequests:

    @pytest.mark.asyncio
    async def test_get_indexes_client_side(self):
        client = _make_client()
        http = AsyncMock(return_value=_ok({"state": {"on": True}}))
        with patch.object(client, "_http", http):
            assert await client.get("/lights/1/state/on") is True
        assert http.call_args.args[1] == "http://10.0.0.2/api/user/lights/1"

    @pytest.mark.asyncio
    async def test_get_missing_key(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(
            return_value=_ok({"state": {"on": True}})
        )):
            with pytest.raises(ApiError) as info:
                await client.get("/lights/1/state/xy")
        assert info.value.type == 3

    @pytest.mark.asyncio
    async def test_put_flattens_success(self):
        client = _make_client(wait_time_put=0)
        response = [
            {"success": {"/lights/1/state/on": True}},
            {"success": {"/lights/1/state/bri": 254}},
        ]
        with patch.object(client, "_http", AsyncMock(return_value=_ok(response))):
            assert await client.put("/lights/1/state", {"on": True, "bri": 254}) == {
                "on": True, "bri": 254,
            }

    @pytest.mark.asyncio
    async def test_non_critical_error_is_logged(self, caplog):
        client = _make_client(wait_time_put=0)
        response = [
            {"success": {"/lights/1/state/on": True}},
            {"error": {"type": 201, "address": "/lights/1/state/bri",
                       "description": "parameter, bri, is not modifiable"}},
        ]
        with patch.object(client, "_http", AsyncMock(return_value=_ok(response))):
            with caplog.at_level(logging.WARNING, logger="pyHueSync.client"):
                result = await client.put("/lights/1/state", {"on": True, "bri": 1})
        assert result == {"on": True}
        assert any("api error 201" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_critical_error_raises(self):
        client = _make_client(wait_time_put=0)
        response = [{"error": {"type": 3, "address": "/lights/9",
                               "description": "resource not available"}}]
        with patch.object(client, "_http", AsyncMock(return_value=_ok(response))):
            with pytest.raises(ApiError) as info:
                await client.put("/lights/9/state", {"on": True})
        assert info.value.critical

    @pytest.mark.asyncio
    async def test_post_returns_first_success(self):
        client = _make_client()
        response = [{"success": {"id": "5"}}]
        with patch.object(client, "_http", AsyncMock(return_value=_ok(response))):
            assert await client.post("/schedules", {"name": "x"}) == {"id": "5"}

    @pytest.mark.asyncio
    async def test_delete_returns_path(self):
        client = _make_client()
        response = [{"success": "/schedules/5 deleted"}]
        with patch.object(client, "_http", AsyncMock(return_value=_ok(response))):
            assert await client.delete("/schedules/5") == "/schedules/5"

    @pytest.mark.asyncio
    async def test_http_status(self):
        client = _make_client()
        with patch.object(client, "_http", AsyncMock(return_value=(404, ""))):
            with pytest.raises(HttpError) as info:
                await client.get("/lights")
        assert info.value.status == 404


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class TestRetry:

    @pytest.mark.asyncio
    async def test_transient_transport_error_retried(self):
        client = _make_client()
        http = AsyncMock(side_effect=[
            TransportError("reset", method="GET", resource="/lights", transient=True),
            _ok({"1": {}}),
        ])
        with patch.object(client, "_http", http):
            assert await client.get("/lights") == {"1": {}}
        assert http.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self):
        client = _make_client()
        http = AsyncMock(side_effect=[
            _ok([{"error": {"type": 901, "address": "/", "description": "busy"}}]),
            (503, ""),
            _ok({}),
        ])
        with patch.object(client, "_http", http):
            assert await client.get("/lights") == {}
        assert http.await_count == 3

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        client = _make_client(max_retries=2)
        error = TransportError("timeout", method="GET", resource="/", transient=True)
        http = AsyncMock(side_effect=error)
        with patch.object(client, "_http", http):
            with pytest.raises(TransportError):
                await client.get("/lights")
        assert http.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        client = _make_client()
        http = AsyncMock(side_effect=TransportError("refused", transient=False))
        with patch.object(client, "_http", http):
            with pytest.raises(TransportError):
                await client.get("/lights")
        assert http.await_count == 1

    @pytest.mark.asyncio
    async def test_put_retry_is_throttled(self):
        client = _make_client(wait_time_put=0.05)
        loop = asyncio.get_running_loop()
        times = []
        responses = [
            _ok([{"error": {"type": 901, "address": "/", "description": "busy"}}]),
            _ok([{"success": {"/lights/1/state/on": True}}]),
        ]

        async def http(*args, **kwargs):
            times.append(loop.time())
            return responses[len(times) - 1]

        with patch.object(client, "_http", side_effect=http):
            assert await client.put("/lights/1/state", {"on": True}) == {"on": True}
        assert len(times) == 2
        assert times[1] - times[0] >= 0.05 - 0.01


# ---------------------------------------------------------------------------
# Throttling
# ---------------------------------------------------------------------------


class TestThrottle:

    @pytest.mark.asyncio
    async def test_puts_are_spaced_by_message_count(self):
        client = _make_client(wait_time_put=0.05)
        loop = asyncio.get_running_loop()
        times = []

        async def http(*args, **kwargs):
            times.append(loop.time())
            return _ok([])

        with patch.object(client, "_http", side_effect=http):
            await asyncio.gather(
                client.put("/lights/1/state", {"on": True, "bri": 10}),
                client.put("/lights/2/state", {"on": True}),
                client.put("/lights/3/state", {"on": False}),
            )
        assert len(times) == 3
        # two messages, then one
        assert times[1] - times[0] >= 0.1 - 0.01
        assert times[2] - times[1] >= 0.05 - 0.01

    @pytest.mark.asyncio
    async def test_group_delay(self):
        client = _make_client(wait_time_put=0, wait_time_put_group=0.1)
        loop = asyncio.get_running_loop()
        times = []

        async def http(*args, **kwargs):
            times.append(loop.time())
            return _ok([])

        with patch.object(client, "_http", side_effect=http):
            await client.put("/groups/1/action", {"on": True})
            await client.put("/lights/1/state", {"on": True})
        assert times[1] - times[0] >= 0.1 - 0.01


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_create_user(self):
        client = _make_client(username=None)
        http = AsyncMock(return_value=_ok([{"success": {"username": "abc"}}]))
        with patch.object(client, "_http", http):
            assert await client.create_user("pyHueSync") == "abc"
        assert client.username == "abc"
        assert http.call_args.args[1] == "http://10.0.0.2/api/"
        assert http.call_args.args[3]["devicetype"].startswith("pyHueSync#")

    @pytest.mark.asyncio
    async def test_link_button_not_pressed(self):
        client = _make_client(username=None)
        response = [{"error": {"type": 101, "address": "",
                               "description": "link button not pressed"}}]
        with patch.object(client, "_http", AsyncMock(return_value=_ok(response))):
            with pytest.raises(LinkButtonNotPressedError):
                await client.create_user("pyHueSync")

    @pytest.mark.asyncio
    async def test_wait_for_user_retries(self):
        client = _make_client(username=None)
        locked = _ok([{"error": {"type": 101, "address": "", "description": ""}}])
        http = AsyncMock(side_effect=[locked, locked, _ok([{"success": {"username": "abc"}}])])
        with patch.object(client, "_http", http):
            assert await client.wait_for_user("pyHueSync", interval=0) == "abc"
        assert http.await_count == 3


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class TestCertificate:

    def test_valid_certificate_is_pinned(self):
        client = _make_client(bridgeid=HUE_ID)
        fingerprint = client.check_certificate(_make_certificate())
        assert client.fingerprint == fingerprint
        assert len(fingerprint.split(":")) == 32

    def test_root_bridge_issuer(self):
        client = _make_client(bridgeid=HUE_ID)
        client.check_certificate(_make_certificate(issuer_cn="root-bridge"))

    def test_pinned_mismatch(self):
        client = _make_client(bridgeid=HUE_ID)
        client.check_certificate(_make_certificate())
        with pytest.raises(CertificateError):
            client.check_certificate(_make_certificate())

    def test_reconfirm_clears_pin(self):
        client = _make_client(bridgeid=HUE_ID)
        client.check_certificate(_make_certificate())
        client.reconfirm()
        client.check_certificate(_make_certificate())

    def test_wrong_common_name(self):
        client = _make_client(bridgeid=HUE_ID)
        with pytest.raises(CertificateError):
            client.check_certificate(_make_certificate(cn="001788FFFE654321"))

    def test_wrong_serial(self):
        client = _make_client(bridgeid=HUE_ID)
        with pytest.raises(CertificateError):
            client.check_certificate(_make_certificate(serial=12345))

    def test_wrong_organisation(self):
        client = _make_client(bridgeid=HUE_ID)
        with pytest.raises(CertificateError):
            client.check_certificate(_make_certificate(org="ACME"))

    def test_garbage(self):
        client = _make_client(bridgeid=HUE_ID)
        with pytest.raises(CertificateError):
            client.check_certificate(b"not a certificate")
