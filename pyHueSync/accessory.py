"""Accessories: resources grouped under one device identity.

Resources of the same physical device (the presence, temperature and
light-level sensors of a motion sensor, say) share one
:class:`Accessory`.  One of them, the *primary* resource, provides the
accessory's name, manufacturer, model and firmware version.  The
primary resource is the first one by the order::

    group < colour light < other light < sensor < schedule < rule

with sensors ordered by :data:`~pyHueSync.sensor.CATEGORY_PRIORITY`;
resources of equal rank keep the order they were added in.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from pyHueSync.enums import Feature, ResourceKind
from pyHueSync.resource import Resource
from pyHueSync.sensor import CATEGORY_PRIORITY, category_rank

logger = logging.getLogger(__name__)


def serial_number(resource: Resource, bridgeid: str) -> str:
    """Serial number of the accessory *resource* belongs to.

    Zigbee devices use the MAC address part of ``uniqueid``; other
    resources use ``<bridgeid>/<kind>/<id>``.
    """
    uniqueid = resource.obj.get("uniqueid")
    if isinstance(uniqueid, str) and uniqueid:
        mac = uniqueid.split("-")[0].replace(":", "").upper()
        if mac:
            return mac
    return "%s%s" % (bridgeid.upper(), resource.path)


def primary_rank(resource: Resource) -> Tuple[int, int]:
    """Sort key of *resource* for primary selection (lower wins)."""
    kind = resource.kind
    if kind is ResourceKind.GROUP:
        return 0, 0
    if kind is ResourceKind.LIGHT:
        return (1, 0) if resource.config.supports(Feature.COLOR) else (2, 0)
    if kind is ResourceKind.SENSOR:
        return 3, category_rank(resource.type)
    if kind is ResourceKind.SCHEDULE:
        return 4, 0
    return 5, len(CATEGORY_PRIORITY)


class Accessory:
    """One exposed device.

    Parameters
    ----------
    serial:
        The accessory serial number.
    """

    def __init__(self, serial: str) -> None:
        self.serial = serial
        self.resources: List[Resource] = []

    def __repr__(self) -> str:
        return "<Accessory %s %r>" % (self.serial, self.name)

    def add(self, resource: Resource) -> None:
        if resource in self.resources:
            return
        self.resources.append(resource)
        resource.accessory = self
        logger.debug("%s: add %s", self.serial, resource.path)

    @property
    def primary(self) -> Optional[Resource]:
        if not self.resources:
            return None
        # min() is stable: equal ranks keep insertion order
        return min(self.resources, key=primary_rank)

    # ---- identity ----------------------------------------------------

    def _primary_attr(self, key: str, default: str = "") -> str:
        primary = self.primary
        if primary is None:
            return default
        return str(primary.obj.get(key) or default)

    @property
    def name(self) -> str:
        primary = self.primary
        return primary.name if primary is not None else self.serial

    @property
    def manufacturer(self) -> str:
        return self._primary_attr("manufacturername", "Philips")

    @property
    def model(self) -> str:
        primary = self.primary
        if primary is not None and primary.config.model:
            return primary.config.model
        return self._primary_attr("modelid", primary.type if primary else "")

    @property
    def firmware(self) -> str:
        return self._primary_attr("swversion", "0.0.0")
