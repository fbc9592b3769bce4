"""Cached bridge resources.

A :class:`Resource` holds the raw attribute mapping of one light, group,
sensor, schedule or rule as last reported by the bridge, the consumer
visible *presented* state derived from it, and the bookkeeping the
reconciler needs to merge updates from polling and from the push
channel:

* partial updates overwrite only the keys they contain
  (:func:`deep_merge`);
* keys written by the consumer, or reported by the push channel, are
  *recently updated* for a short window, during which older sources
  for the same key are ignored;
* writes go through one :class:`~pyHueSync.write_buffer.WriteBuffer`
  per target path.
"""

from __future__ import annotations

import copy
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Tuple

from pyHueSync.enums import ResourceKind, UpdateSource
from pyHueSync.profiles import DeviceProfile, ResourceConfig

if TYPE_CHECKING:
    from pyHueSync.accessory import Accessory
    from pyHueSync.adaptive_lighting import AdaptiveLightingSession
    from pyHueSync.write_buffer import WriteBuffer


def deep_merge(target: Dict[str, Any], partial: Mapping[str, Any]) -> None:
    """Merge *partial* into *target*; nested mappings are merged too."""
    for key, value in partial.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            deep_merge(current, value)
        else:
            target[key] = copy.deepcopy(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a bridge timestamp (``2021-01-01T12:00:00[.123]``).

    ``"none"``, ``None`` and unparsable values return ``None``.
    """
    if not isinstance(value, str) or value in ("", "none"):
        return None
    try:
        return datetime.fromisoformat(value.rstrip("Z"))
    except ValueError:
        return None


class Resource:
    """One bridge resource.

    Parameters
    ----------
    kind:
        The resource kind.
    rid:
        The resource id (unique per kind).
    obj:
        The full resource object as returned by ``GET /<kind>/<rid>``.
    profile:
        The resolved device profile (lights only).
    config:
        The per-resource configuration after fixups.
    """

    def __init__(
        self,
        kind: ResourceKind,
        rid: str,
        obj: Mapping[str, Any],
        profile: Optional[DeviceProfile] = None,
        config: Optional[ResourceConfig] = None,
    ) -> None:
        self.kind = kind
        self.rid = str(rid)
        self.obj: Dict[str, Any] = copy.deepcopy(dict(obj))
        self.profile = profile
        self.config = config or ResourceConfig()
        self.presented: Dict[str, Any] = {}
        self.accessory: Optional["Accessory"] = None
        self.adaptive_lighting: Optional["AdaptiveLightingSession"] = None
        self.write_buffers: Dict[str, "WriteBuffer"] = {}
        # "<subpath>/<key>" -> (expiry, source)
        self._recent: Dict[str, Tuple[float, UpdateSource]] = {}

    def __repr__(self) -> str:
        return "<Resource %s %r>" % (self.path, self.name)

    # ---- identity ----------------------------------------------------

    @property
    def path(self) -> str:
        """``/lights/1`` style resource path."""
        return "/%s/%s" % (self.kind.value, self.rid)

    @property
    def name(self) -> str:
        return str(self.obj.get("name", self.path))

    @property
    def type(self) -> str:
        return str(self.obj.get("type", ""))

    @property
    def state_key(self) -> Optional[str]:
        """Sub-object holding writable light state; ``None`` for the root."""
        if self.kind is ResourceKind.LIGHT:
            return "state"
        if self.kind is ResourceKind.GROUP:
            return "action"
        if self.kind is ResourceKind.SENSOR:
            return "state"
        return None

    def write_path(self, subpath: Optional[str]) -> str:
        return self.path if not subpath else "%s/%s" % (self.path, subpath)

    # ---- raw attributes ----------------------------------------------

    def section(self, subpath: Optional[str]) -> Dict[str, Any]:
        """The raw sub-object *subpath* (``state``, ``config``...)."""
        if not subpath:
            return self.obj
        section = self.obj.get(subpath)
        if not isinstance(section, dict):
            section = {}
            self.obj[subpath] = section
        return section

    def merge(self, partial: Mapping[str, Any], subpath: Optional[str] = None) -> None:
        """Overwrite the keys present in *partial* below *subpath*."""
        deep_merge(self.section(subpath), partial)

    @property
    def lastupdated(self) -> Optional[datetime]:
        """Timestamp of the last reported change, if the kind has one."""
        if self.kind is ResourceKind.SENSOR:
            return parse_timestamp(self.obj.get("state", {}).get("lastupdated"))
        if self.kind is ResourceKind.RULE:
            return parse_timestamp(self.obj.get("lasttriggered"))
        if self.kind is ResourceKind.SCHEDULE:
            return parse_timestamp(self.obj.get("starttime"))
        return None

    # ---- recently updated --------------------------------------------

    def mark_recently_updated(
        self,
        subpath: Optional[str],
        keys: Iterable[str],
        source: UpdateSource,
        window: float,
    ) -> None:
        """Protect *keys* against older sources for *window* seconds."""
        expiry = time.monotonic() + window
        for key in keys:
            self._recent["%s/%s" % (subpath or "", key)] = (expiry, source)

    def is_suppressed(
        self, subpath: Optional[str], key: str, source: UpdateSource
    ) -> bool:
        """Whether an update of *key* from *source* must be ignored.

        Keys written by the consumer suppress poll and push updates;
        keys reported by push suppress poll updates only.
        """
        entry = self._recent.get("%s/%s" % (subpath or "", key))
        if entry is None:
            return False
        expiry, marked_by = entry
        if time.monotonic() >= expiry:
            del self._recent[("%s/%s" % (subpath or "", key))]
            return False
        if marked_by is UpdateSource.WRITE:
            return source is not UpdateSource.WRITE
        return source is UpdateSource.POLL
