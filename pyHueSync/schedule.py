"""Presented state of schedules and rules.

Both are presented as a switch: ``on`` while the bridge reports
``status == "enabled"``.  Writing ``on`` updates ``status`` at the
resource root.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Tuple

from pyHueSync.enums import ResourceKind
from pyHueSync.resource import parse_timestamp


def present_schedule(obj: Mapping[str, Any], kind: ResourceKind) -> Dict[str, Any]:
    presented: Dict[str, Any] = {"on": obj.get("status") == "enabled"}
    if kind is ResourceKind.RULE:
        presented["last_triggered"] = parse_timestamp(obj.get("lasttriggered"))
        presented["times_triggered"] = int(obj.get("timestriggered", 0) or 0)
    else:
        presented["last_triggered"] = parse_timestamp(obj.get("starttime"))
    return presented


def schedule_body(key: str, value: Any) -> Tuple[None, Dict[str, Any]]:
    """Raw attributes for a presented *key*; only ``on`` is writable."""
    if key != "on":
        raise KeyError(key)
    return None, {"status": "enabled" if value else "disabled"}
