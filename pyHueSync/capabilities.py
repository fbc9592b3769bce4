"""Characteristic instance ids.

The host exposes every presented key of an accessory as a
characteristic with an instance id (*iid*) unique within the accessory.
The :class:`CapabilityRegistry` hands out those ids; the reconciler
needs them to bind adaptive-lighting sessions to the brightness and
colour-temperature characteristics of a light.

Ids start at :data:`FIRST_IID` (lower ids are reserved for the
accessory information service) and are never reused within an
accessory.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

#: First id handed out per accessory.
FIRST_IID = 10


class CapabilityRegistry:
    """Allocates instance ids per accessory."""

    def __init__(self) -> None:
        self._iids: Dict[str, Dict[str, int]] = {}
        self._next: Dict[str, int] = {}

    def allocate(self, accessory: str, key: str) -> int:
        """Return the id of *key* on *accessory*, allocating it if new.

        Parameters
        ----------
        accessory:
            The accessory serial number.
        key:
            ``<resource path>/<presented key>``.
        """
        iids = self._iids.setdefault(accessory, {})
        iid = iids.get(key)
        if iid is None:
            iid = self._next.get(accessory, FIRST_IID)
            self._next[accessory] = iid + 1
            iids[key] = iid
            logger.debug("%s: %s: iid %d", accessory, key, iid)
        return iid

    def get(self, accessory: str, key: str) -> Optional[int]:
        return self._iids.get(accessory, {}).get(key)

    def keys(self, accessory: str) -> Dict[str, int]:
        """All allocated ids of *accessory*."""
        return dict(self._iids.get(accessory, {}))

    def release(self, accessory: str) -> None:
        self._iids.pop(accessory, None)
        self._next.pop(accessory, None)
