"""Bidirectional synchronisation of bridge state.

The :class:`ResourceReconciler` owns the cached :class:`Resource` objects
of one bridge and keeps them in line with the bridge:

* :meth:`~ResourceReconciler.materialize` builds resources and
  accessories from a full ``GET /``;
* :meth:`~ResourceReconciler.apply` merges a partial update from polling
  or from the push channel, honouring the recently-updated window and
  the ``lastupdated`` ordering of sensors;
* :meth:`~ResourceReconciler.set` writes a presented value back through
  the resource's debounced :class:`~pyHueSync.write_buffer.WriteBuffer`.

Changes of presented state are reported to a
:class:`ReconcilerObserver`.

Example::

    reconciler = ResourceReconciler(client, options, observer=host)
    reconciler.materialize(await client.get("/"))
    await reconciler.set(ResourceKind.LIGHT, "1", "brightness", 50)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from pyHueSync.accessory import Accessory, serial_number
from pyHueSync.adaptive_lighting import AdaptiveLightingSession
from pyHueSync.capabilities import CapabilityRegistry
from pyHueSync.client import RemoteStateClient
from pyHueSync.config import BridgeOptions
from pyHueSync.enums import Feature, ResourceKind, UpdateSource
from pyHueSync.light import light_body, present_light
from pyHueSync.notification import (
    RawNotification,
    ResourceAdded,
    ResourceChanged,
    SceneRecalled,
    StreamClosed,
    StreamError,
    StreamEvent,
    StreamListening,
)
from pyHueSync.profiles import DeviceProfileResolver, ResourceConfig
from pyHueSync.resource import Resource, parse_timestamp
from pyHueSync.schedule import present_schedule, schedule_body
from pyHueSync.sensor import present_sensor, sensor_body, sensor_type, switch_action
from pyHueSync.write_buffer import WriteBuffer

logger = logging.getLogger(__name__)

#: Sub-objects whose keys are tracked individually.
SECTIONS = ("state", "config", "action")

#: Manufacturers of lights a Hue bridge exposes natively.
NATIVE_MANUFACTURERS = frozenset({"Philips", "Signify Netherlands B.V."})

#: Presented-state difference: key -> (old, new).
Diff = Dict[str, Tuple[Any, Any]]


class ReconcilerObserver:
    """Receives presented-state changes.  All methods are no-ops."""

    def on_presented_change(
        self, resource: Resource, key: str, old: Any, new: Any
    ) -> None:
        pass

    def on_button_event(self, resource: Resource, button: int, event: Any) -> None:
        pass

    def on_resource_added(self, path: str, obj: Mapping[str, Any]) -> None:
        pass

    def on_scene_recall(self, path: str) -> None:
        pass

    def on_stream_state(self, listening: bool) -> None:
        pass


def split_path(path: str) -> Tuple[Optional[ResourceKind], str, Optional[str]]:
    """Split ``/lights/1/state`` into kind, id and sub-path.

    The kind is ``None`` for collections the reconciler does not track.
    """
    parts = path.strip("/").split("/")
    try:
        kind: Optional[ResourceKind] = ResourceKind(parts[0])
    except ValueError:
        kind = None
    rid = parts[1] if len(parts) > 1 else ""
    subpath = "/".join(parts[2:]) or None
    return kind, rid, subpath


class ResourceReconciler:
    """Cache and write path of one bridge's resources.

    Parameters
    ----------
    client:
        The bridge client.
    options:
        Connection options.
    observer:
        Receiver of presented-state changes.
    resolver:
        Device profile lookup.
    capabilities:
        Instance id allocation.
    """

    #: Seconds during which written (or pushed) keys ignore older sources.
    recently_updated_window = 0.5

    def __init__(
        self,
        client: RemoteStateClient,
        options: BridgeOptions,
        *,
        observer: Optional[ReconcilerObserver] = None,
        resolver: Optional[DeviceProfileResolver] = None,
        capabilities: Optional[CapabilityRegistry] = None,
    ) -> None:
        self.client = client
        self.options = options
        self.observer = observer or ReconcilerObserver()
        self.resolver = resolver or DeviceProfileResolver()
        self.capabilities = capabilities or CapabilityRegistry()
        self.resources: Dict[ResourceKind, Dict[str, Resource]] = {
            kind: {} for kind in ResourceKind
        }
        self.accessories: Dict[str, Accessory] = {}
        self._unknown_sensor_types: Set[str] = set()

    def resource(self, kind: ResourceKind, rid: str) -> Resource:
        """Return the cached resource; raises ``KeyError`` if unknown."""
        try:
            return self.resources[kind][str(rid)]
        except KeyError:
            raise KeyError("/%s/%s" % (kind.value, rid)) from None

    # ---- materialisation ---------------------------------------------

    def materialize(self, full_state: Mapping[str, Any]) -> Dict[str, Accessory]:
        """Build resources and accessories from a full ``GET /``.

        Parameters
        ----------
        full_state:
            The bridge's full state; ``groups`` may contain group
            ``"0"`` when fetched separately.

        Returns
        -------
        dict
            Accessories by serial number.
        """
        whitelist, blacklist, merged = self._resourcelinks(
            full_state.get("resourcelinks") or {}
        )
        forced = set(whitelist)
        for links in merged:
            forced.update(links)
        excluded = set(self.options.exclude_resources) | blacklist

        enabled = {
            ResourceKind.LIGHT: self.options.lights,
            ResourceKind.GROUP: self.options.groups,
            ResourceKind.SENSOR: self.options.sensors,
            ResourceKind.SCHEDULE: self.options.schedules,
            ResourceKind.RULE: self.options.rules,
        }
        for kind in ResourceKind:
            for rid, obj in (full_state.get(kind.value) or {}).items():
                path = "/%s/%s" % (kind.value, rid)
                if path in excluded or not isinstance(obj, Mapping):
                    continue
                if path not in forced:
                    if not enabled[kind] or not self._included(kind, rid, obj):
                        continue
                if kind is ResourceKind.SENSOR and not self._known_sensor(obj):
                    continue
                self._add_resource(kind, str(rid), obj)

        serials: Dict[str, str] = {}
        for links in merged:
            members = [p for p in links if self._by_path(p) is not None]
            if members:
                first = self._by_path(members[0])
                serial = serial_number(first, self.client.bridgeid or "")
                for member in members:
                    serials[member] = serial

        for kind in ResourceKind:
            for resource in self.resources[kind].values():
                serial = serials.get(resource.path) or serial_number(
                    resource, self.client.bridgeid or ""
                )
                accessory = self.accessories.get(serial)
                if accessory is None:
                    accessory = self.accessories[serial] = Accessory(serial)
                accessory.add(resource)
                for key in resource.presented:
                    self.capabilities.allocate(
                        serial, "%s/%s" % (resource.path, key)
                    )
        logger.info(
            "%d accessories, %d resources",
            len(self.accessories),
            sum(len(r) for r in self.resources.values()),
        )
        return self.accessories

    def _resourcelinks(
        self, links: Mapping[str, Any]
    ) -> Tuple[Set[str], Set[str], List[List[str]]]:
        whitelist: Set[str] = set()
        blacklist: Set[str] = set()
        merged: List[List[str]] = []
        for link in links.values():
            if not isinstance(link, Mapping):
                continue
            if link.get("name") != self.options.resourcelink_name:
                continue
            paths = [str(p) for p in link.get("links", [])]
            description = str(link.get("description", "")).lower()
            if description == "whitelist":
                whitelist.update(paths)
            elif description == "blacklist":
                blacklist.update(paths)
            elif description in ("multilight", "multiclip"):
                merged.append(paths)
            else:
                logger.warning(
                    "resourcelink %r: unknown description %r",
                    link.get("name"), link.get("description"),
                )
        return whitelist, blacklist, merged

    def _included(
        self, kind: ResourceKind, rid: str, obj: Mapping[str, Any]
    ) -> bool:
        if kind is ResourceKind.LIGHT:
            return not (
                self.client.is_hue
                and self.options.native_homekit_lights
                and obj.get("manufacturername") in NATIVE_MANUFACTURERS
            )
        if kind is ResourceKind.GROUP:
            if str(rid) == "0":
                return self.options.group0
            if obj.get("type") == "Room":
                return self.options.rooms
            return True
        if kind is ResourceKind.SENSOR:
            type_name = str(obj.get("type", ""))
            if type_name in self.options.exclude_sensor_types:
                return False
            if type_name.startswith("CLIP"):
                return self.options.clip_sensors
        return True

    def _known_sensor(self, obj: Mapping[str, Any]) -> bool:
        type_name = str(obj.get("type", ""))
        if sensor_type(type_name) is not None:
            return True
        if type_name not in self._unknown_sensor_types:
            self._unknown_sensor_types.add(type_name)
            logger.warning("%s: unsupported sensor type, ignored", type_name)
        return False

    def _by_path(self, path: str) -> Optional[Resource]:
        kind, rid, _ = split_path(path)
        if kind is None:
            return None
        return self.resources[kind].get(rid)

    def _add_resource(
        self, kind: ResourceKind, rid: str, obj: Mapping[str, Any]
    ) -> Resource:
        profile = None
        config = ResourceConfig()
        if kind is ResourceKind.LIGHT:
            profile = self.resolver.resolve(
                obj.get("manufacturername"),
                obj.get("modelid"),
                obj.get("capabilities"),
            )
            config = profile.apply(ResourceConfig.from_profile(profile))
        if kind in (ResourceKind.LIGHT, ResourceKind.GROUP):
            state = obj.get("state" if kind is ResourceKind.LIGHT else "action") or {}
            if "bri" not in state:
                config.features.discard(Feature.BRIGHTNESS)
            if "ct" not in state:
                config.features.discard(Feature.COLOR_TEMPERATURE)
            if "xy" not in state and "hue" not in state:
                config.features.discard(Feature.COLOR)
        resource = Resource(kind, rid, obj, profile, config)
        resource.presented = self._present(resource, {})
        self.resources[kind][rid] = resource
        logger.debug("%s: %r", resource.path, resource.presented)
        return resource

    def _present(
        self, resource: Resource, prior: Mapping[str, Any]
    ) -> Dict[str, Any]:
        kind = resource.kind
        if kind is ResourceKind.LIGHT:
            return present_light(
                resource.obj, resource.config, prior,
                wall_switch=self.options.wall_switch,
            )
        if kind is ResourceKind.GROUP:
            return present_light(
                resource.obj, resource.config, prior,
                group=True, any_on=self.options.any_on,
            )
        if kind is ResourceKind.SENSOR:
            stype = sensor_type(resource.type)
            if stype is None:
                return {}
            return present_sensor(resource.obj, stype, self.options.low_battery)
        return present_schedule(resource.obj, kind)

    # ---- inbound updates ---------------------------------------------

    def apply(
        self,
        kind: ResourceKind,
        rid: str,
        partial: Mapping[str, Any],
        source: UpdateSource,
        subpath: Optional[str] = None,
    ) -> Diff:
        """Merge an update of one resource.

        Parameters
        ----------
        kind, rid:
            The resource.
        partial:
            The changed attributes.  Only keys present are merged.
        source:
            Where the update came from.
        subpath:
            Section of the resource *partial* belongs to (``state``,
            ``config``...); ``None`` for the resource root.

        Returns
        -------
        dict
            The changed presented keys, ``key -> (old, new)``.
        """
        resource = self.resources[kind].get(str(rid))
        if resource is None:
            logger.debug("/%s/%s: not exposed, update ignored", kind.value, rid)
            return {}
        previous_event = None
        if kind is ResourceKind.SENSOR:
            partial = self._order_sensor_update(resource, partial, subpath, source)
            previous_event = (resource.obj.get("state") or {}).get("buttonevent")
        partial = self._unsuppressed(resource, partial, subpath, source)
        if not partial:
            return {}

        logger.debug(
            "%s: %s update %s", resource.write_path(subpath),
            source.name.lower(), partial,
        )
        resource.merge(partial, subpath)
        if source is UpdateSource.PUSH:
            self._mark(resource, partial, subpath, UpdateSource.PUSH)

        diff = self._refresh(resource)
        if kind is ResourceKind.SENSOR:
            self._button_event(resource, partial, subpath, previous_event)
        return diff

    def apply_batch(
        self, kind: ResourceKind, objects: Mapping[str, Any]
    ) -> Dict[str, Diff]:
        """Apply a polled ``GET /<kind>`` as one batch."""
        diffs: Dict[str, Diff] = {}
        for rid, obj in objects.items():
            if str(rid) not in self.resources[kind] or not isinstance(obj, Mapping):
                continue
            diff = self.apply(kind, str(rid), obj, UpdateSource.POLL)
            if diff:
                diffs[str(rid)] = diff
        return diffs

    async def heartbeat(self) -> None:
        """Poll every exposed kind and apply the results.

        Raises
        ------
        HueSyncError
            When every poll failed; single failures are logged.
        """
        requests = [
            (kind, "/" + kind.value)
            for kind in ResourceKind
            if self.resources[kind]
        ]
        if "0" in self.resources[ResourceKind.GROUP]:
            requests.append((ResourceKind.GROUP, "/groups/0"))
        if not requests:
            return
        results = await asyncio.gather(
            *(self.client.get(path) for _, path in requests),
            return_exceptions=True,
        )
        errors: List[BaseException] = []
        for (kind, path), result in zip(requests, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("heartbeat: GET %s: %s", path, result)
                errors.append(result)
                continue
            if path == "/groups/0":
                result = {"0": result}
            if isinstance(result, Mapping):
                self.apply_batch(kind, result)
        if errors and len(errors) == len(requests):
            raise errors[0]
        await self._adaptive_lighting_tick()

    async def handle_event(self, event: StreamEvent) -> None:
        """Process one notification stream event."""
        if isinstance(event, ResourceChanged):
            kind, rid, subpath = split_path(event.path)
            if kind is None:
                logger.debug("%s: ignored", event.path)
                return
            self.apply(kind, rid, event.state, UpdateSource.PUSH, subpath)
        elif isinstance(event, ResourceAdded):
            logger.info("%s: added on the bridge", event.path)
            self.observer.on_resource_added(event.path, event.obj)
        elif isinstance(event, SceneRecalled):
            logger.debug("%s: recalled", event.path)
            self.observer.on_scene_recall(event.path)
        elif isinstance(event, StreamListening):
            self.observer.on_stream_state(True)
        elif isinstance(event, StreamClosed):
            self.observer.on_stream_state(False)
        elif isinstance(event, StreamError):
            logger.debug("stream error: %s", event.error)
        elif isinstance(event, RawNotification):
            logger.debug("notification: %s", event.body)

    def _order_sensor_update(
        self,
        resource: Resource,
        partial: Mapping[str, Any],
        subpath: Optional[str],
        source: UpdateSource,
    ) -> Mapping[str, Any]:
        if subpath == "state":
            state = partial
        elif subpath is None:
            state = partial.get("state")
        else:
            return partial
        if not isinstance(state, Mapping) or "lastupdated" not in state:
            return partial
        stamp = parse_timestamp(state.get("lastupdated"))
        cached = resource.lastupdated
        stype = sensor_type(resource.type)
        if stype is not None and stype.button:
            stale = source is UpdateSource.POLL and (
                stamp is None or (cached is not None and stamp <= cached)
            )
        else:
            stale = stamp is not None and cached is not None and stamp < cached
        if not stale:
            return partial
        logger.debug(
            "%s: %s state of %s ignored, have %s", resource.path,
            source.name.lower(), stamp, cached,
        )
        if subpath == "state":
            return {}
        return {k: v for k, v in partial.items() if k != "state"}

    def _unsuppressed(
        self,
        resource: Resource,
        partial: Mapping[str, Any],
        subpath: Optional[str],
        source: UpdateSource,
    ) -> Dict[str, Any]:
        if subpath:
            return {
                k: v for k, v in partial.items()
                if not resource.is_suppressed(subpath, k, source)
            }
        result: Dict[str, Any] = {}
        for key, value in partial.items():
            if key in SECTIONS and isinstance(value, Mapping):
                section = {
                    k: v for k, v in value.items()
                    if not resource.is_suppressed(key, k, source)
                }
                if section:
                    result[key] = section
            elif not resource.is_suppressed(None, key, source):
                result[key] = value
        return result

    def _mark(
        self,
        resource: Resource,
        partial: Mapping[str, Any],
        subpath: Optional[str],
        source: UpdateSource,
    ) -> None:
        window = self.recently_updated_window
        if subpath:
            resource.mark_recently_updated(subpath, partial, source, window)
            return
        for key, value in partial.items():
            if key in SECTIONS and isinstance(value, Mapping):
                resource.mark_recently_updated(key, value, source, window)
            else:
                resource.mark_recently_updated(None, [key], source, window)

    def _refresh(self, resource: Resource) -> Diff:
        prior = resource.presented
        presented = self._present(resource, prior)
        diff: Diff = {
            key: (prior.get(key), value)
            for key, value in presented.items()
            if prior.get(key) != value
        }
        resource.presented = presented
        session = resource.adaptive_lighting
        if (
            session is not None
            and session.active
            and "colormode" in diff
            and diff["colormode"][0] == "ct"
        ):
            logger.info(
                "%s: colormode changed to %s, adaptive lighting stopped",
                resource.name, diff["colormode"][1],
            )
            session.deactivate()
        for key, (old, new) in diff.items():
            logger.info("%s: %s changed from %r to %r", resource.name, key, old, new)
            self.observer.on_presented_change(resource, key, old, new)
        return diff

    def _button_event(
        self,
        resource: Resource,
        partial: Mapping[str, Any],
        subpath: Optional[str],
        previous: Any,
    ) -> None:
        state = partial if subpath == "state" else partial.get("state")
        if not isinstance(state, Mapping) or "buttonevent" not in state:
            return
        action = switch_action(resource.type, state["buttonevent"], previous)
        if action is None:
            return
        button, event = action
        logger.info("%s: button %d %s", resource.name, button, event.name.lower())
        self.observer.on_button_event(resource, button, event)

    # ---- write path --------------------------------------------------

    async def set(
        self, kind: ResourceKind, rid: str, key: str, value: Any
    ) -> Dict[str, Any]:
        """Write presented *key* of a resource.

        The presented value changes immediately; the raw cache only
        after the bridge confirmed the write.  On failure the presented
        state is restored, recomputed from the cache and the consumer
        told of the restored value; the error is re-raised.

        Raises
        ------
        KeyError
            For unknown resources or keys that cannot be written.
        HueSyncError
            When the request fails.
        """
        resource = self.resource(kind, rid)
        subpath, body = self._body(resource, key, value)
        self._adaptive_lighting_write(resource, key, value, body)

        old = resource.presented.get(key)
        resource.presented[key] = value
        logger.debug("%s: set %s from %r to %r", resource.name, key, old, value)
        try:
            result = await self._write_buffer(resource, subpath).write(body)
        except Exception as exc:
            logger.error(
                "%s: set %s to %r failed: %s", resource.name, key, value, exc
            )
            if old is None:
                resource.presented.pop(key, None)
            else:
                resource.presented[key] = old
            self._refresh(resource)
            restored = resource.presented.get(key)
            if restored != value:
                self.observer.on_presented_change(resource, key, value, restored)
            raise
        if isinstance(result, dict) and result:
            resource.merge(result, subpath)
            self._mark(resource, result, subpath, UpdateSource.WRITE)
        self._refresh(resource)
        return result

    def _body(
        self, resource: Resource, key: str, value: Any
    ) -> Tuple[Optional[str], Dict[str, Any]]:
        kind = resource.kind
        if kind in (ResourceKind.LIGHT, ResourceKind.GROUP):
            body = light_body(key, value, resource.config, resource.presented)
            return resource.state_key, body
        if kind is ResourceKind.SENSOR:
            stype = sensor_type(resource.type)
            if stype is None:
                raise KeyError(key)
            return sensor_body(key, value, stype)
        return schedule_body(key, value)

    def _write_buffer(
        self, resource: Resource, subpath: Optional[str]
    ) -> WriteBuffer:
        buffer = resource.write_buffers.get(subpath or "")
        if buffer is None:
            delay = resource.config.write_delay
            if delay is None:
                delay = self.options.wait_time_update
            buffer = WriteBuffer(resource.write_path(subpath), self.client.put, delay)
            resource.write_buffers[subpath or ""] = buffer
        return buffer

    # ---- adaptive lighting -------------------------------------------

    def adaptive_lighting(self, rid: str) -> AdaptiveLightingSession:
        """The adaptive-lighting session of light *rid*.

        Raises
        ------
        KeyError
            If the light is unknown.
        ValueError
            If the light lacks brightness or colour temperature.
        """
        resource = self.resource(ResourceKind.LIGHT, rid)
        if resource.adaptive_lighting is None:
            accessory = resource.accessory
            serial = accessory.serial if accessory is not None else resource.path
            bri_iid = self.capabilities.get(serial, resource.path + "/brightness")
            ct_iid = self.capabilities.get(
                serial, resource.path + "/color_temperature"
            )
            if bri_iid is None or ct_iid is None:
                raise ValueError(
                    "%s: no brightness or colour temperature" % resource.path
                )
            resource.adaptive_lighting = AdaptiveLightingSession(bri_iid, ct_iid)
        return resource.adaptive_lighting

    def write_adaptive_control(self, rid: str, value: str) -> str:
        """Start adaptive lighting from a control write.

        Returns
        -------
        str
            The base64 control response.

        Raises
        ------
        ProtocolError
            If *value* cannot be decoded or targets other
            characteristics; the session is left unchanged.
        """
        session = self.adaptive_lighting(rid)
        session.parse_control_write(value)
        logger.info("/lights/%s: adaptive lighting started", rid)
        return session.generate_control_response()

    def _adaptive_lighting_write(
        self,
        resource: Resource,
        key: str,
        value: Any,
        body: Dict[str, Any],
    ) -> None:
        session = resource.adaptive_lighting
        if session is None or not session.active:
            return
        if key in ("hue", "saturation"):
            session.deactivate()
        elif key == "color_temperature":
            target = session.get_ct(resource.presented.get("brightness", 100))
            if target is None or abs(body["ct"] - target.ct) > 1:
                session.deactivate()
        elif key == "brightness":
            target = session.get_ct(value)
            if target is not None:
                config = resource.config
                body["ct"] = max(config.ct_min, min(target.ct, config.ct_max))
        if not session.active:
            logger.info("%s: adaptive lighting stopped", resource.name)

    async def _adaptive_lighting_tick(self) -> None:
        for resource in list(self.resources[ResourceKind.LIGHT].values()):
            session = resource.adaptive_lighting
            if session is None or not session.active:
                continue
            if not resource.presented.get("on"):
                continue
            target = session.get_ct(resource.presented.get("brightness", 100))
            current = resource.presented.get("color_temperature")
            if target is None or current is None or abs(current - target.ct) <= 1:
                continue
            try:
                await self.set(
                    ResourceKind.LIGHT, resource.rid, "color_temperature", target.ct
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "%s: adaptive lighting update failed: %s", resource.name, exc
                )
