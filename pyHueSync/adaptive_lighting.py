"""Adaptive-lighting session for a single light.

The host controller drives colour temperature along a daily curve.  It
first reads the *supported configuration* (which characteristics take
part), then writes a *control* blob holding the transition curve.  The
light answers with a *control response* that echoes the transition
parameters together with the time elapsed since the transition started.
All blobs are TLV buffers (see :mod:`pyHueSync.tlv`) carried as base64
strings.

A session is either ``INACTIVE`` or ``ACTIVE``::

    INACTIVE --parse_control_write()--> ACTIVE
    ACTIVE   --deactivate()----------> INACTIVE

Usage::

    session = AdaptiveLightingSession(brightness_iid=10, ct_iid=11)
    config = session.generate_configuration()
    session.parse_control_write(blob)
    target = session.get_ct(brightness=80)
"""

from __future__ import annotations

import base64
import binascii
import logging
import struct
import time
from typing import Any, Dict, NamedTuple, Optional

from pyHueSync.enums import AdaptiveLightingState
from pyHueSync.errors import (
    CharacteristicMismatchError,
    ProtocolError,
    TlvDecodeError,
)
from pyHueSync.tlv import EPOCH, TlvField, TlvType, as_list, decode, encode, epoch_ms

logger = logging.getLogger(__name__)

#: Milliseconds per day; curve offsets wrap around.
DAY_MS = 86_400_000

#: Characteristic type codes used in the supported configuration.
CHARACTERISTIC_BRIGHTNESS = 1
CHARACTERISTIC_COLOR_TEMPERATURE = 2

_U = TlvType.UINT

ADAPTIVE_LIGHTING_SCHEMA: Dict[str, TlvField] = {
    "1": TlvField("configuration", TlvType.TLV),
    "1.1": TlvField("iid", _U),
    "1.2": TlvField("characteristic", _U),
    "2": TlvField("control", TlvType.TLV),
    "2.1": TlvField("colorTemperature", TlvType.TLV),
    "2.1.1": TlvField("iid", _U),
    "2.1.2": TlvField("transitionParameters", TlvType.TLV),
    "2.1.2.1": TlvField(None, TlvType.HEX),
    "2.1.2.2": TlvField("startTime", TlvType.DATE),
    "2.1.2.3": TlvField(None, TlvType.HEX),
    "2.1.3": TlvField("runtime", _U),
    "2.1.5": TlvField("curve", TlvType.TLV),
    "2.1.5.1": TlvField("entries", TlvType.TLV),
    "2.1.5.1.1": TlvField("adjustmentFactor", TlvType.FLOAT),
    "2.1.5.1.2": TlvField("mired", TlvType.FLOAT),
    "2.1.5.1.3": TlvField("offset", _U),
    "2.1.5.1.4": TlvField("duration", _U),
    "2.1.5.2": TlvField("adjustmentIid", _U),
    "2.1.5.3": TlvField("adjustmentRange", TlvType.TLV),
    "2.1.5.3.1": TlvField("min", _U),
    "2.1.5.3.2": TlvField("max", _U),
    "2.1.6": TlvField("updateInterval", _U),
    "2.1.8": TlvField("notifyIntervalThreshold", _U),
}

_EPOCH_MS = int(EPOCH.timestamp() * 1000)


class CtTarget(NamedTuple):
    """Colour temperature for the current point on the curve."""

    ct: int
    target_ct: int
    #: Milliseconds until the next curve point.
    interval: int


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TlvDecodeError("invalid base64 payload: %s" % exc) from exc


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class AdaptiveLightingSession:
    """Adaptive-lighting state of one light.

    Parameters
    ----------
    brightness_iid:
        Instance id of the light's brightness characteristic.
    ct_iid:
        Instance id of the light's colour-temperature characteristic.
    """

    def __init__(self, brightness_iid: int, ct_iid: int) -> None:
        self.brightness_iid = brightness_iid
        self.ct_iid = ct_iid
        self._control: Optional[Dict[str, Any]] = None
        self._start_time: int = 0

    # ---- state --------------------------------------------------------

    @property
    def state(self) -> AdaptiveLightingState:
        if self._control is None:
            return AdaptiveLightingState.INACTIVE
        return AdaptiveLightingState.ACTIVE

    @property
    def active(self) -> bool:
        return self._control is not None

    @property
    def start_time(self) -> int:
        """Transition start, in milliseconds since the Unix epoch."""
        return self._start_time

    def deactivate(self) -> None:
        """Stop the transition.  Does nothing when already inactive."""
        if self._control is not None:
            logger.debug("adaptive lighting: deactivated")
        self._control = None

    @staticmethod
    def _now() -> int:
        return int(time.time() * 1000)

    # ---- configuration ------------------------------------------------

    def generate_configuration(self) -> str:
        """Base64 TLV listing the participating characteristics."""
        return _b64encode(
            encode(
                [
                    (1, [(1, self.brightness_iid),
                         (2, CHARACTERISTIC_BRIGHTNESS)]),
                    (0, None),
                    (1, [(1, self.ct_iid),
                         (2, CHARACTERISTIC_COLOR_TEMPERATURE)]),
                ]
            )
        )

    def parse_configuration(self, value: str) -> Dict[str, Any]:
        return decode(_b64decode(value), ADAPTIVE_LIGHTING_SCHEMA)

    # ---- control ------------------------------------------------------

    def parse_control_write(self, value: str) -> Dict[str, Any]:
        """Parse a control write from the controller and activate.

        Raises
        ------
        TlvDecodeError
            If the payload is not valid base64 TLV.
        ProtocolError
            If the payload lacks the colour-temperature control.
        CharacteristicMismatchError
            If the payload refers to other characteristics than this
            session's.  The session state is left unchanged.
        """
        tree = decode(_b64decode(value), ADAPTIVE_LIGHTING_SCHEMA)
        try:
            control = tree["control"]["colorTemperature"]
            iid = control["iid"]
            adjustment_iid = control["curve"]["adjustmentIid"]
            start_time = control["transitionParameters"]["startTime"]
        except (KeyError, TypeError) as exc:
            raise ProtocolError(
                "adaptive lighting control without %s" % exc
            ) from exc
        if iid != self.ct_iid:
            raise CharacteristicMismatchError(
                "%r: bad colour temperature iid, expected %d"
                % (iid, self.ct_iid)
            )
        if adjustment_iid != self.brightness_iid:
            raise CharacteristicMismatchError(
                "%r: bad brightness iid, expected %d"
                % (adjustment_iid, self.brightness_iid)
            )
        self._control = control
        self._start_time = epoch_ms(start_time) + _EPOCH_MS
        logger.debug(
            "adaptive lighting: activated, start %s", start_time
        )
        return tree

    def _control_items(self) -> list:
        assert self._control is not None
        params = self._control["transitionParameters"]
        return [
            (1, self.ct_iid),
            (2, [
                (1, params.get("2.1.2.1") or ""),
                (2, struct.pack("<Q", self._start_time - _EPOCH_MS)),
                (3, params.get("2.1.2.3") or ""),
            ]),
            (3, max(1, self._now() - self._start_time)),
        ]

    def generate_control(self) -> str:
        """Base64 control blob, or ``""`` when inactive."""
        if self._control is None:
            return ""
        return _b64encode(encode([(1, self._control_items())]))

    def generate_control_response(self) -> str:
        """Base64 control-point response, or ``""`` when inactive."""
        if self._control is None:
            return ""
        return _b64encode(encode([(2, [(1, self._control_items())])]))

    def parse_control(self, value: str) -> Dict[str, Any]:
        return decode(_b64decode(value), ADAPTIVE_LIGHTING_SCHEMA, "2")

    def parse_control_response(self, value: str) -> Dict[str, Any]:
        return decode(_b64decode(value), ADAPTIVE_LIGHTING_SCHEMA)

    # ---- curve --------------------------------------------------------

    def get_ct(
        self,
        brightness: float,
        offset: Optional[int] = None,
    ) -> Optional[CtTarget]:
        """Colour temperature for *brightness* (percent) at *offset*.

        Parameters
        ----------
        brightness:
            Current brightness in percent.
        offset:
            Milliseconds since the transition start; defaults to now.

        Returns
        -------
        CtTarget or None
            ``None`` when inactive or past the end of the curve.
        """
        if self._control is None:
            return None
        curve = self._control.get("curve") or {}
        entries = as_list(curve.get("entries"))
        adjustment = curve.get("adjustmentRange") or {}
        if offset is None:
            offset = self._now() - self._start_time
        offset %= DAY_MS
        brightness = max(adjustment.get("min", 0), brightness)
        brightness = min(brightness, adjustment.get("max", 100))

        for previous, entry in zip(entries, entries[1:]):
            target_ct = round(
                entry["mired"] + entry["adjustmentFactor"] * brightness
            )
            if offset < entry["offset"]:
                ratio = offset / entry["offset"]
                mired = (1 - ratio) * previous["mired"] + ratio * entry["mired"]
                factor = (
                    (1 - ratio) * previous["adjustmentFactor"]
                    + ratio * entry["adjustmentFactor"]
                )
                return CtTarget(
                    round(mired + factor * brightness),
                    target_ct,
                    entry["offset"] - offset,
                )
            offset -= entry["offset"]
            duration = entry.get("duration")
            if duration is not None:
                if offset < duration:
                    return CtTarget(target_ct, target_ct, duration - offset)
                offset -= duration
        return None
