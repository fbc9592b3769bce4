"""Presented state of sensors.

Every supported sensor ``type`` maps to a :class:`SensorType` that names
the raw ``state`` attribute carrying its value, the presented key and
the conversion between both.  Switches (``buttonevent``) additionally
derive a programmable-switch action per press with
:func:`switch_action`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pyHueSync.enums import ButtonEvent, SwitchEvent
from pyHueSync.resource import parse_timestamp

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Conversions
# ---------------------------------------------------------------------------


def light_level(value: Any) -> float:
    """Lux from a raw ``lightlevel`` (``10000 * log10(lux) + 1``)."""
    lux = math.pow(10, (value - 1) / 10000.0) if value else 0.0001
    lux = round(lux, 4)
    return max(0.0001, min(lux, 100000.0))


def _hundredths(value: Any) -> float:
    return round(value / 100.0, 1) if value else 0.0


def _flag(value: Any) -> bool:
    return bool(value)


def _status(value: Any) -> int:
    return max(0, min(int(value or 0), 255))


def _number(value: Any) -> Any:
    return value if value is not None else 0


def _daylight(value: Any) -> float:
    return 100000.0 if value else 0.0001


def _tap_button(value: Any) -> Optional[int]:
    return {34: 1, 16: 2, 17: 3, 18: 4}.get(value)


def _dimmer_button(value: Any) -> Optional[int]:
    return int(value) // 1000 if value else None


# ---------------------------------------------------------------------------
#  Sensor types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SensorType:
    """How a sensor type is presented.

    Attributes
    ----------
    key:
        Raw attribute in the sensor's ``state``.
    name:
        Presented key.
    category:
        Accessory category, used to order sensors sharing one
        accessory.
    convert:
        Raw value to presented value.
    writable:
        The presented value may be written back to ``state``.
    button:
        Reports ``buttonevent``; updates are only applied when
        ``lastupdated`` advances.
    """

    key: str
    name: str
    category: str
    convert: Callable[[Any], Any]
    writable: bool = False
    button: bool = False


_SWITCH_TAP = SensorType(
    "buttonevent", "button", "Switch", _tap_button, button=True
)
_SWITCH_DIMMER = SensorType(
    "buttonevent", "button", "Switch", _dimmer_button, button=True
)
_ROTARY = SensorType(
    "expectedrotation", "rotation", "Switch", _number, button=True
)
_MOTION = SensorType("presence", "motion", "Presence", _flag)
_OCCUPANCY = SensorType("presence", "occupancy", "Presence", _flag)
_TEMPERATURE = SensorType("temperature", "temperature", "Temperature", _hundredths)
_LIGHT_LEVEL = SensorType("lightlevel", "light_level", "LightLevel", light_level)
_CONTACT = SensorType("open", "open", "OpenClose", _flag)
_HUMIDITY = SensorType("humidity", "humidity", "Humidity", _hundredths)
_PRESSURE = SensorType("pressure", "pressure", "Pressure", _number)
_CONSUMPTION = SensorType("consumption", "consumption", "Consumption", _number)
_POWER = SensorType("power", "power", "Power", _number)

#: Supported sensor types by ``type``.
SENSOR_TYPES: Dict[str, SensorType] = {
    "ZGPSwitch": _SWITCH_TAP,
    "ZLLSwitch": _SWITCH_DIMMER,
    "ZHASwitch": _SWITCH_DIMMER,
    "ZLLRelativeRotary": _ROTARY,
    "ZLLPresence": _MOTION,
    "ZHAPresence": _MOTION,
    "CLIPPresence": _OCCUPANCY,
    "Geofence": _OCCUPANCY,
    "ZLLTemperature": _TEMPERATURE,
    "ZHATemperature": _TEMPERATURE,
    "CLIPTemperature": _TEMPERATURE,
    "ZLLLightLevel": _LIGHT_LEVEL,
    "ZHALightLevel": _LIGHT_LEVEL,
    "CLIPLightLevel": _LIGHT_LEVEL,
    "ZHAOpenClose": _CONTACT,
    "CLIPOpenClose": _CONTACT,
    "ZHAHumidity": _HUMIDITY,
    "CLIPHumidity": _HUMIDITY,
    "ZHAPressure": _PRESSURE,
    "CLIPPressure": _PRESSURE,
    "ZHAConsumption": _CONSUMPTION,
    "ZHAPower": _POWER,
    "Daylight": SensorType("daylight", "light_level", "LightLevel", _daylight),
    "CLIPGenericFlag": SensorType(
        "flag", "flag", "Switch", _flag, writable=True
    ),
    "CLIPGenericStatus": SensorType(
        "status", "status", "Status", _status, writable=True
    ),
}

#: Accessory categories in primary-resource order.
CATEGORY_PRIORITY: Tuple[str, ...] = (
    "OpenClose",
    "Presence",
    "LightLevel",
    "Temperature",
    "Humidity",
    "Pressure",
    "Consumption",
    "Power",
)


def sensor_type(type_name: str) -> Optional[SensorType]:
    return SENSOR_TYPES.get(type_name)


def category_rank(type_name: str) -> int:
    """Position of the sensor type in :data:`CATEGORY_PRIORITY`."""
    stype = SENSOR_TYPES.get(type_name)
    if stype is None or stype.category not in CATEGORY_PRIORITY:
        return len(CATEGORY_PRIORITY)
    return CATEGORY_PRIORITY.index(stype.category)


# ---------------------------------------------------------------------------
#  Presentation
# ---------------------------------------------------------------------------


def present_sensor(
    obj: Mapping[str, Any],
    stype: SensorType,
    low_battery: int = 25,
) -> Dict[str, Any]:
    """Presented state of a sensor.

    Besides the type's own value, the presented state carries
    ``enabled``, ``reachable``, ``battery``, ``low_battery`` and
    ``last_updated``, plus ``dark`` and ``daylight`` where reported.
    """
    state = obj.get("state") or {}
    config = obj.get("config") or {}
    presented: Dict[str, Any] = {
        stype.name: stype.convert(state.get(stype.key)),
    }
    if stype.key != "dark" and "dark" in state:
        presented["dark"] = bool(state["dark"])
    if stype.key != "daylight" and "daylight" in state:
        presented["daylight"] = bool(state["daylight"])
    presented["enabled"] = bool(config.get("on", True))
    presented["reachable"] = bool(config.get("reachable", True))
    battery = config.get("battery")
    presented["battery"] = battery if battery is not None else 100
    presented["low_battery"] = presented["battery"] <= low_battery
    presented["last_updated"] = parse_timestamp(state.get("lastupdated"))
    return presented


def switch_action(
    type_name: str, value: Any, previous: Any
) -> Optional[Tuple[int, SwitchEvent]]:
    """Programmable-switch action for a new ``buttonevent``.

    The Hue tap reports one code per press.  The dimmer switch reports
    press, hold and release separately; one action is derived per
    press/hold/release series.

    Returns
    -------
    tuple or None
        ``(button, event)``, or ``None`` when the code yields no
        action.
    """
    stype = SENSOR_TYPES.get(type_name)
    if stype is None or stype.key != "buttonevent" or value is None:
        return None
    if stype is _SWITCH_TAP:
        button = _tap_button(value)
        return None if button is None else (button, SwitchEvent.SINGLE_PRESS)

    button = int(value) // 1000
    event = int(value) % 1000
    if button == 0:
        return None
    if event == ButtonEvent.SHORT_RELEASE:
        return button, SwitchEvent.SINGLE_PRESS
    if event == ButtonEvent.DOUBLE_PRESS:
        return button, SwitchEvent.DOUBLE_PRESS
    if event in (ButtonEvent.HOLD, ButtonEvent.LONG_RELEASE):
        if previous is not None:
            if (
                int(previous) // 1000 == button
                and int(previous) % 1000 == ButtonEvent.HOLD
            ):
                # Already issued on the hold.
                return None
        return button, SwitchEvent.LONG_PRESS
    return None


def sensor_body(
    key: str, value: Any, stype: SensorType
) -> Tuple[str, Dict[str, Any]]:
    """Section and raw attributes to write for a presented *key*.

    Raises
    ------
    KeyError
        If *key* is not writable on this sensor.
    """
    if key == "enabled":
        return "config", {"on": bool(value)}
    if stype.writable and key == stype.name:
        if stype.key == "status":
            return "state", {"status": _status(value)}
        return "state", {stype.key: bool(value)}
    raise KeyError(key)
