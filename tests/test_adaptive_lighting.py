"""Tests for the adaptive-lighting session."""

import base64
import struct
from unittest.mock import patch

import pytest

from pyHueSync.adaptive_lighting import AdaptiveLightingSession, CtTarget
from pyHueSync.enums import AdaptiveLightingState
from pyHueSync.errors import (
    CharacteristicMismatchError,
    ProtocolError,
    TlvDecodeError,
)
from pyHueSync.tlv import encode


BRI_IID = 10
CT_IID = 11
# 2001-01-01T00:00:00Z in Unix milliseconds.
EPOCH_UNIX_MS = 978307200000


def _f32(value):
    return struct.pack("<f", value)


def _make_control_write(ct_iid=CT_IID, bri_iid=BRI_IID, start=1000):
    """A control write with a two-point curve from 200 to 400 mired."""
    entries = [
        (1, [(1, _f32(0.0)), (2, _f32(200.0)), (3, 0)]),
        (1, [(1, _f32(0.0)), (2, _f32(400.0)), (3, 1000)]),
    ]
    control = [
        (1, ct_iid),
        (2, [(1, "0102"), (2, struct.pack("<Q", start)), (3, "0304")]),
        (5, entries + [(2, bri_iid), (3, [(1, 10), (2, 100)])]),
        (6, 60000),
    ]
    return base64.b64encode(encode([(2, [(1, control)])])).decode()


@pytest.fixture
def session():
    return AdaptiveLightingSession(BRI_IID, CT_IID)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfiguration:

    def test_configuration_lists_both_characteristics(self, session):
        parsed = session.parse_configuration(session.generate_configuration())
        assert parsed == {
            "configuration": [
                {"iid": BRI_IID, "characteristic": 1},
                {"iid": CT_IID, "characteristic": 2},
            ]
        }

    def test_configuration_is_pure(self, session):
        other = AdaptiveLightingSession(BRI_IID, CT_IID)
        assert session.generate_configuration() == other.generate_configuration()


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestControlWrite:

    def test_initially_inactive(self, session):
        assert session.state is AdaptiveLightingState.INACTIVE
        assert session.generate_control() == ""
        assert session.generate_control_response() == ""

    def test_control_write_activates(self, session):
        session.parse_control_write(_make_control_write())
        assert session.state is AdaptiveLightingState.ACTIVE
        assert session.start_time == EPOCH_UNIX_MS + 1000

    def test_ct_iid_mismatch_keeps_state(self, session):
        with pytest.raises(CharacteristicMismatchError):
            session.parse_control_write(_make_control_write(ct_iid=99))
        assert not session.active

    def test_brightness_iid_mismatch_keeps_state(self, session):
        with pytest.raises(CharacteristicMismatchError):
            session.parse_control_write(_make_control_write(bri_iid=99))
        assert not session.active

    def test_mismatch_does_not_replace_active_control(self, session):
        session.parse_control_write(_make_control_write(start=1000))
        with pytest.raises(CharacteristicMismatchError):
            session.parse_control_write(_make_control_write(ct_iid=99, start=5))
        assert session.active
        assert session.start_time == EPOCH_UNIX_MS + 1000

    def test_incomplete_control(self, session):
        blob = base64.b64encode(encode([(2, [(1, [(1, CT_IID)])])])).decode()
        with pytest.raises(ProtocolError):
            session.parse_control_write(blob)

    def test_invalid_base64(self, session):
        with pytest.raises(TlvDecodeError):
            session.parse_control_write("not base64!")

    def test_deactivate_is_idempotent(self, session):
        session.parse_control_write(_make_control_write())
        session.deactivate()
        session.deactivate()
        assert session.state is AdaptiveLightingState.INACTIVE
        assert session.generate_control() == ""


# ---------------------------------------------------------------------------
# Control response
# ---------------------------------------------------------------------------


class TestControlResponse:

    def test_response_carries_parameters_and_runtime(self, session):
        session.parse_control_write(_make_control_write(start=1000))
        now = EPOCH_UNIX_MS + 1000 + 5000
        with patch.object(AdaptiveLightingSession, "_now", return_value=now):
            response = session.generate_control_response()
        parsed = session.parse_control_response(response)
        control = parsed["control"]["colorTemperature"]
        assert control["iid"] == CT_IID
        assert control["runtime"] == 5000
        params = control["transitionParameters"]
        assert params["2.1.2.1"] == "0102"
        assert params["2.1.2.3"] == "0304"
        assert params["startTime"] == "2001-01-01T00:00:01.000Z"

    def test_runtime_at_least_one_millisecond(self, session):
        session.parse_control_write(_make_control_write(start=1000))
        with patch.object(
            AdaptiveLightingSession, "_now", return_value=EPOCH_UNIX_MS
        ):
            control = session.parse_control(session.generate_control())
        assert control["colorTemperature"]["runtime"] == 1


# ---------------------------------------------------------------------------
# Curve
# ---------------------------------------------------------------------------


class TestCurve:

    def test_inactive_has_no_target(self, session):
        assert session.get_ct(50) is None

    def test_interpolation(self, session):
        session.parse_control_write(_make_control_write())
        assert session.get_ct(50, offset=500) == CtTarget(300, 400, 500)

    def test_beyond_curve(self, session):
        session.parse_control_write(_make_control_write())
        assert session.get_ct(50, offset=2000) is None
