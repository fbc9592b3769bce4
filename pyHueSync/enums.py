"""Hue / deCONZ bridge enumerations.

This module contains the enum definitions shared by the client, the
notification streams and the reconciler, derived from the bridge REST
API documentation:

- Hue API v1 (``/api/<username>/...``), error types
- Hue API v2 event stream (``/eventstream/clip/v2``)
- deCONZ REST plugin websocket notifications
"""

from enum import Enum, IntEnum, unique


# ---------------------------------------------------------------------------
#  Resources
# ---------------------------------------------------------------------------


@unique
class ResourceKind(str, Enum):
    """Kinds of bridge resources handled by the reconciler.

    The value is the collection name used in the REST path.
    """

    LIGHT = "lights"
    GROUP = "groups"
    SENSOR = "sensors"
    SCHEDULE = "schedules"
    RULE = "rules"

    @classmethod
    def from_path(cls, path: str) -> "ResourceKind":
        """Return the kind for ``/lights/1/state`` style paths."""
        return cls(path.strip("/").split("/")[0])


@unique
class UpdateSource(IntEnum):
    """Origin of an inbound attribute update."""

    POLL = 0
    PUSH = 1
    #: A write issued by the consumer.
    WRITE = 2


@unique
class BridgeType(str, Enum):
    """Bridge families recognised from the bridge id prefix."""

    HUE = "hue"
    DECONZ = "deconz"


# ---------------------------------------------------------------------------
#  API error types (``error.type`` in a response entry)
# ---------------------------------------------------------------------------


@unique
class ApiErrorType(IntEnum):
    """Error ``type`` codes returned inside a 200 response body."""

    UNAUTHORIZED_USER = 1
    INVALID_JSON = 2
    RESOURCE_NOT_AVAILABLE = 3
    METHOD_NOT_AVAILABLE = 4
    MISSING_PARAMETERS = 5
    PARAMETER_NOT_AVAILABLE = 6
    INVALID_VALUE = 7
    PARAMETER_NOT_MODIFIABLE = 8
    TOO_MANY_ITEMS = 11
    PORTAL_CONNECTION_REQUIRED = 12
    LINK_BUTTON_NOT_PRESSED = 101
    DEVICE_OFF = 201
    INTERNAL_ERROR = 901


#: Error types that are logged but do not abort processing of a response.
NON_CRITICAL_ERRORS = frozenset(
    {
        ApiErrorType.PARAMETER_NOT_AVAILABLE,
        ApiErrorType.INVALID_VALUE,
        ApiErrorType.PARAMETER_NOT_MODIFIABLE,
        ApiErrorType.DEVICE_OFF,
    }
)

#: Error types that mean "bridge busy, try again".
TRANSIENT_ERRORS = frozenset({ApiErrorType.INTERNAL_ERROR})


# ---------------------------------------------------------------------------
#  Buttons
# ---------------------------------------------------------------------------


@unique
class ButtonEvent(IntEnum):
    """Last digit of a legacy ``buttonevent`` code."""

    INITIAL_PRESS = 0
    HOLD = 1
    SHORT_RELEASE = 2
    LONG_RELEASE = 3
    DOUBLE_PRESS = 4


#: Hue v2 ``button.last_event`` names mapped to legacy event digits.
V2_BUTTON_EVENTS = {
    "initial_press": ButtonEvent.INITIAL_PRESS,
    "repeat": ButtonEvent.HOLD,
    "long_press": ButtonEvent.HOLD,
    "short_release": ButtonEvent.SHORT_RELEASE,
    "long_release": ButtonEvent.LONG_RELEASE,
}


@unique
class SwitchEvent(IntEnum):
    """Derived programmable-switch action presented to consumers."""

    SINGLE_PRESS = 0
    DOUBLE_PRESS = 1
    LONG_PRESS = 2


# ---------------------------------------------------------------------------
#  Lights
# ---------------------------------------------------------------------------


@unique
class Feature(str, Enum):
    """Light features a device profile may enable or suppress."""

    BRIGHTNESS = "brightness"
    COLOR = "color"
    COLOR_TEMPERATURE = "color_temperature"
    COLORLOOP = "colorloop"
    ALERT = "alert"
    #: Device updates ``xy`` while in ``ct`` mode.
    CONCURRENT_XY_CT = "concurrent_xy_ct"


@unique
class FixupKind(str, Enum):
    """Operations a device profile fixup may perform."""

    RENAME_MODEL = "rename_model"
    DISABLE_FEATURE = "disable_feature"
    ENABLE_FEATURE = "enable_feature"
    SET_CT_RANGE = "set_ct_range"
    SET_GAMUT = "set_gamut"
    SET_TIMING = "set_timing"


@unique
class AdaptiveLightingState(IntEnum):
    """State of an adaptive-lighting session."""

    INACTIVE = 0
    ACTIVE = 1
