"""Presented state of lights and groups.

:func:`present_light` derives the consumer-visible state of a light or
group from its raw attributes.  Presented keys:

====================  ===============================  =================
key                   raw source                       unit
====================  ===============================  =================
``on``                ``state.on`` / ``state.any_on``  bool
``any_on``            ``state.any_on`` (groups)        bool
``all_on``            ``state.all_on`` (groups)        bool
``brightness``        ``bri``                          percent
``color_temperature`` ``ct``                           mired
``hue``               ``xy`` / ``hue``                 degrees
``saturation``        ``xy`` / ``sat``                 percent
``colormode``         ``colormode``                    ``xy|ct|hs``
``reachable``         ``state.reachable``              bool
====================  ===============================  =================

The functions in this module are pure; :func:`light_body` performs the
reverse mapping for consumer writes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pyHueSync.colour import hue_saturation_to_xy, xy_to_hue_saturation
from pyHueSync.enums import Feature
from pyHueSync.profiles import ResourceConfig

logger = logging.getLogger(__name__)

#: Raw brightness range of the bridge.
BRI_MAX = 254


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def bri_to_percent(bri: float) -> int:
    return int(round(_clamp(bri, 0, BRI_MAX) * 100.0 / BRI_MAX))


def percent_to_bri(percent: float) -> int:
    return int(_clamp(round(percent * BRI_MAX / 100.0), 1, BRI_MAX))


def present_light(
    obj: Mapping[str, Any],
    config: ResourceConfig,
    prior: Optional[Mapping[str, Any]] = None,
    *,
    group: bool = False,
    wall_switch: bool = False,
    any_on: bool = True,
) -> Dict[str, Any]:
    """Presented state of a light (or, with *group*, a group).

    Parameters
    ----------
    obj:
        The raw resource object.
    config:
        The resource configuration (gamut, ct range, features).
    prior:
        The previously presented state.  Hue and saturation are kept
        from it while the light is in ``ct`` mode, unless the device
        updates ``xy`` concurrently.
    group:
        *obj* is a group; its lights' power comes from ``state``.
    wall_switch:
        The light is powered through a wall switch: when unreachable it
        is presented off.
    any_on:
        For groups, ``on`` follows ``any_on`` (else ``all_on``).
    """
    prior = prior or {}
    state = obj.get("action" if group else "state") or {}
    presented: Dict[str, Any] = {}

    if group:
        group_state = obj.get("state") or {}
        presented["any_on"] = bool(group_state.get("any_on", False))
        presented["all_on"] = bool(group_state.get("all_on", False))
        presented["on"] = presented["any_on" if any_on else "all_on"]
    else:
        reachable = bool(state.get("reachable", True))
        presented["reachable"] = reachable
        presented["on"] = bool(state.get("on", False))
        if wall_switch and not reachable:
            presented["on"] = False

    if "bri" in state and config.supports(Feature.BRIGHTNESS):
        presented["brightness"] = bri_to_percent(state["bri"])

    if "ct" in state and config.supports(Feature.COLOR_TEMPERATURE):
        presented["color_temperature"] = int(
            _clamp(state["ct"], config.ct_min, config.ct_max)
        )

    colormode = state.get("colormode")
    if colormode is not None:
        presented["colormode"] = colormode

    if config.supports(Feature.COLOR) and ("xy" in state or "hue" in state):
        keep_prior = (
            colormode == "ct"
            and not config.supports(Feature.CONCURRENT_XY_CT)
            and "hue" in prior
        )
        if keep_prior:
            presented["hue"] = prior["hue"]
            presented["saturation"] = prior["saturation"]
        elif "xy" in state and state["xy"] is not None:
            hue, sat = xy_to_hue_saturation(state["xy"], config.gamut)
            presented["hue"] = hue
            presented["saturation"] = sat
        else:
            presented["hue"] = int(round(state.get("hue", 0) * 360.0 / 65535.0))
            presented["saturation"] = bri_to_percent(state.get("sat", 0))

    return presented


def light_body(
    key: str,
    value: Any,
    config: ResourceConfig,
    presented: Mapping[str, Any],
) -> Dict[str, Any]:
    """Raw attributes to write for a consumer change of *key*.

    Raises
    ------
    KeyError
        If *key* is not writable on this light.
    """
    if key == "on":
        return {"on": bool(value)}
    if key == "brightness" and config.supports(Feature.BRIGHTNESS):
        return {"bri": percent_to_bri(value)}
    if key == "color_temperature" and config.supports(Feature.COLOR_TEMPERATURE):
        return {"ct": int(_clamp(round(value), config.ct_min, config.ct_max))}
    if key in ("hue", "saturation") and config.supports(Feature.COLOR):
        hue = value if key == "hue" else presented.get("hue", 0)
        sat = value if key == "saturation" else presented.get("saturation", 0)
        return {"xy": hue_saturation_to_xy(hue, sat, config.gamut)}
    raise KeyError(key)
