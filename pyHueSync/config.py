"""Options controlling a bridge connection.

The host builds a :class:`BridgeOptions` (directly, or with
:meth:`BridgeOptions.from_dict` from the documented camelCase option
names) and passes it to :class:`~pyHueSync.bridge.HueBridge`.  The
library never reads configuration files itself.

Usage::

    options = BridgeOptions.from_dict({
        "host": "192.168.1.20",
        "username": "0123456789abcdef",
        "groups": True,
        "waitTimeUpdate": 0.1,
    })
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from pyHueSync.errors import ConfigurationError

#: Option name (as accepted by :meth:`BridgeOptions.from_dict`) to field.
OPTION_NAMES: Dict[str, str] = {
    "host": "host",
    "username": "username",
    "lights": "lights",
    "groups": "groups",
    "group0": "group0",
    "rooms": "rooms",
    "sensors": "sensors",
    "schedules": "schedules",
    "rules": "rules",
    "clipSensors": "clip_sensors",
    "excludeSensorTypes": "exclude_sensor_types",
    "excludeResources": "exclude_resources",
    "nativeHomeKitLights": "native_homekit_lights",
    "wallSwitch": "wall_switch",
    "anyOn": "any_on",
    "linkButton": "link_button",
    "stream": "stream",
    "heartrate": "heartrate",
    "timeout": "timeout",
    "waitTimePut": "wait_time_put",
    "waitTimePutGroup": "wait_time_put_group",
    "waitTimeResend": "wait_time_resend",
    "waitTimeUpdate": "wait_time_update",
    "retryTime": "retry_time",
    "lowBattery": "low_battery",
    "resourcelinkName": "resourcelink_name",
}


@dataclass
class BridgeOptions:
    """Feature toggles and timing of one bridge connection.

    Times are in seconds.
    """

    host: str
    username: Optional[str] = None

    # ---- exposed resources -------------------------------------------
    lights: bool = True
    groups: bool = False
    group0: bool = False
    rooms: bool = False
    sensors: bool = True
    schedules: bool = False
    rules: bool = False
    clip_sensors: bool = False
    exclude_sensor_types: List[str] = field(default_factory=list)
    exclude_resources: List[str] = field(default_factory=list)
    native_homekit_lights: bool = True
    resourcelink_name: str = "pyHueSync"

    # ---- behaviour ---------------------------------------------------
    wall_switch: bool = False
    any_on: bool = True
    link_button: bool = False
    stream: bool = True
    low_battery: int = 25

    # ---- timing ------------------------------------------------------
    heartrate: float = 5.0
    timeout: float = 5.0
    wait_time_put: float = 0.05
    wait_time_put_group: float = 1.0
    wait_time_resend: float = 0.3
    wait_time_update: float = 0.02
    retry_time: float = 10.0

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigurationError("host: missing")
        for name in (
            "heartrate",
            "timeout",
            "wait_time_put",
            "wait_time_put_group",
            "wait_time_resend",
            "wait_time_update",
            "retry_time",
        ):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ConfigurationError(
                    "%s: %r is not a number" % (name, value)
                )
            if value < 0:
                raise ConfigurationError(
                    "%s: %r must not be negative" % (name, value)
                )
        if self.heartrate == 0:
            raise ConfigurationError("heartrate: must be positive")
        if not 0 <= self.low_battery <= 100:
            raise ConfigurationError(
                "low_battery: %r not in 0..100" % self.low_battery
            )

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "BridgeOptions":
        """Build options from documented option names.

        Raises
        ------
        ConfigurationError
            For unknown option names, a missing ``host`` or invalid
            values.
        """
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = OPTION_NAMES.get(key)
            if name is None:
                raise ConfigurationError("%s: unknown option" % key)
            kwargs[name] = value
        if "host" not in kwargs:
            raise ConfigurationError("host: missing")
        for name in ("exclude_sensor_types", "exclude_resources"):
            if name in kwargs and not isinstance(kwargs[name], (list, tuple)):
                raise ConfigurationError("%s: must be a list" % name)
            if name in kwargs:
                kwargs[name] = list(kwargs[name])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Inverse of :meth:`from_dict`."""
        reverse = {v: k for k, v in OPTION_NAMES.items()}
        return {reverse[f.name]: getattr(self, f.name) for f in fields(self)}
