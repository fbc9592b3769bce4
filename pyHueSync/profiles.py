"""Device profiles: per-manufacturer / per-model light behaviour.

A :class:`DeviceProfile` tells the reconciler which colour gamut and
colour-temperature range a light supports, which features it offers and
which *fixups* must be applied to the light's :class:`ResourceConfig`
when it is first materialised.

Lookup is two-level (manufacturer, then model).  Values are taken from,
in order of precedence:

1. the model entry,
2. the manufacturer entry,
3. the capabilities reported by the bridge,
4. the global defaults (:data:`DEFAULT_GAMUT`, 153-500 mired).

Fixups are plain data (:class:`Fixup`) interpreted by
:func:`apply_fixup`.

Usage::

    resolver = DeviceProfileResolver()
    profile = resolver.resolve("Signify Netherlands B.V.", "LCT015")
    config = ResourceConfig.from_profile(profile)
    profile.apply(config)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from pyHueSync.colour import DEFAULT_GAMUT, Gamut
from pyHueSync.enums import Feature, FixupKind

logger = logging.getLogger(__name__)

#: Colour-temperature range (mired) used when nothing else is known.
DEFAULT_CT_RANGE: Tuple[int, int] = (153, 500)

#: Features assumed for lights without a profile entry.
DEFAULT_FEATURES: FrozenSet[Feature] = frozenset(
    {
        Feature.BRIGHTNESS,
        Feature.COLOR,
        Feature.COLOR_TEMPERATURE,
        Feature.COLORLOOP,
        Feature.ALERT,
    }
)

# Colour gamuts, see the vendor's list of supported lights.
GAMUT_A = Gamut((0.7040, 0.2960), (0.2151, 0.7106), (0.1380, 0.0800))
GAMUT_B = Gamut((0.6750, 0.3220), (0.4090, 0.5180), (0.1670, 0.0400))
GAMUT_C = Gamut((0.6920, 0.3080), (0.1700, 0.7000), (0.1530, 0.0480))
GAMUT_INNR = Gamut((0.8817, 0.1033), (0.2204, 0.7758), (0.0551, 0.1940))


# ---------------------------------------------------------------------------
#  Resource configuration and fixups
# ---------------------------------------------------------------------------


@dataclass
class ResourceConfig:
    """Mutable per-light configuration, target of fixups."""

    model: str = ""
    gamut: Gamut = DEFAULT_GAMUT
    ct_min: int = DEFAULT_CT_RANGE[0]
    ct_max: int = DEFAULT_CT_RANGE[1]
    features: Set[Feature] = field(
        default_factory=lambda: set(DEFAULT_FEATURES)
    )
    #: Debounce override for writes to this light (seconds).
    write_delay: Optional[float] = None

    @classmethod
    def from_profile(cls, profile: "DeviceProfile") -> "ResourceConfig":
        return cls(
            model=profile.model,
            gamut=profile.gamut,
            ct_min=profile.ct_min,
            ct_max=profile.ct_max,
            features=set(profile.features),
        )

    def supports(self, feature: Feature) -> bool:
        return feature in self.features


@dataclass(frozen=True)
class Fixup:
    """One fixup operation: an operation kind and its argument.

    ==================  =====================================
    kind                value
    ==================  =====================================
    RENAME_MODEL        new model string
    DISABLE_FEATURE     :class:`Feature`
    ENABLE_FEATURE      :class:`Feature`
    SET_CT_RANGE        ``(min, max)`` in mired
    SET_GAMUT           :class:`Gamut`
    SET_TIMING          write debounce in seconds
    ==================  =====================================
    """

    kind: FixupKind
    value: Any


def apply_fixup(fixup: Fixup, config: ResourceConfig) -> None:
    """Apply *fixup* to *config* in place."""
    kind = fixup.kind
    if kind is FixupKind.RENAME_MODEL:
        config.model = str(fixup.value)
    elif kind is FixupKind.DISABLE_FEATURE:
        config.features.discard(Feature(fixup.value))
    elif kind is FixupKind.ENABLE_FEATURE:
        config.features.add(Feature(fixup.value))
    elif kind is FixupKind.SET_CT_RANGE:
        config.ct_min, config.ct_max = (int(v) for v in fixup.value)
    elif kind is FixupKind.SET_GAMUT:
        config.gamut = fixup.value
    elif kind is FixupKind.SET_TIMING:
        config.write_delay = float(fixup.value)
    else:  # pragma: no cover
        raise ValueError("unknown fixup kind %r" % (kind,))


# ---------------------------------------------------------------------------
#  Profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeviceProfile:
    """Resolved, immutable description of a light model."""

    manufacturer: str
    model: str
    known: bool
    gamut: Gamut = DEFAULT_GAMUT
    ct_min: int = DEFAULT_CT_RANGE[0]
    ct_max: int = DEFAULT_CT_RANGE[1]
    features: FrozenSet[Feature] = DEFAULT_FEATURES
    fixups: Tuple[Fixup, ...] = ()

    def supports(self, feature: Feature) -> bool:
        return feature in self.features

    def apply(self, config: ResourceConfig) -> ResourceConfig:
        """Run the profile's fixups (manufacturer first) on *config*."""
        for fixup in self.fixups:
            apply_fixup(fixup, config)
        return config


@dataclass(frozen=True)
class ProfileEntry:
    """Table entry for a manufacturer or a model.  ``None`` = inherit."""

    gamut: Optional[Gamut] = None
    ct_range: Optional[Tuple[int, int]] = None
    features: Optional[FrozenSet[Feature]] = None
    fixups: Tuple[Fixup, ...] = ()
    models: Mapping[str, "ProfileEntry"] = field(default_factory=dict)


def _features(*names: Feature) -> FrozenSet[Feature]:
    return frozenset(names)


_HUE_COLOR = _features(
    Feature.BRIGHTNESS,
    Feature.COLOR,
    Feature.COLOR_TEMPERATURE,
    Feature.COLORLOOP,
    Feature.ALERT,
    Feature.CONCURRENT_XY_CT,
)
_HUE_LIVING_COLORS = ProfileEntry(
    gamut=GAMUT_A,
    features=_HUE_COLOR - {Feature.COLOR_TEMPERATURE},
)
_HUE_GAMUT_B = ProfileEntry(gamut=GAMUT_B)
_HUE_GAMUT_C = ProfileEntry(gamut=GAMUT_C)
_HUE_AMBIANCE = ProfileEntry(
    ct_range=(153, 454),
    features=_features(
        Feature.BRIGHTNESS, Feature.COLOR_TEMPERATURE, Feature.ALERT
    ),
)

_HUE_MODELS: Dict[str, ProfileEntry] = {
    "LCT001": _HUE_GAMUT_B,
    "LCT002": _HUE_GAMUT_B,
    "LCT003": _HUE_GAMUT_B,
    "LCT007": _HUE_GAMUT_B,
    "LLM001": _HUE_GAMUT_B,
    "LCT010": _HUE_GAMUT_C,
    "LCT011": _HUE_GAMUT_C,
    "LCT012": _HUE_GAMUT_C,
    "LCT014": _HUE_GAMUT_C,
    "LCT015": _HUE_GAMUT_C,
    "LCT016": _HUE_GAMUT_C,
    "LCA001": _HUE_GAMUT_C,
    "LCA002": _HUE_GAMUT_C,
    "LCA003": _HUE_GAMUT_C,
    "LLC020": _HUE_GAMUT_C,
    "LST002": _HUE_GAMUT_C,
    "LLC006": _HUE_LIVING_COLORS,
    "LLC007": _HUE_LIVING_COLORS,
    "LLC010": _HUE_LIVING_COLORS,
    "LLC011": _HUE_LIVING_COLORS,
    "LLC012": _HUE_LIVING_COLORS,
    "LLC013": _HUE_LIVING_COLORS,
    "LST001": _HUE_LIVING_COLORS,
    "LTW001": _HUE_AMBIANCE,
    "LTW004": _HUE_AMBIANCE,
    "LTW010": _HUE_AMBIANCE,
    "LTW012": _HUE_AMBIANCE,
    "LTW013": _HUE_AMBIANCE,
    "LTW015": _HUE_AMBIANCE,
}

_SIGNIFY = ProfileEntry(
    ct_range=(153, 500),
    features=_HUE_COLOR,
    models=_HUE_MODELS,
)

#: Manufacturer table.  Keys are ``manufacturername`` as reported.
PROFILE_TABLE: Dict[str, ProfileEntry] = {
    "Philips": _SIGNIFY,
    "Signify Netherlands B.V.": _SIGNIFY,
    "IKEA of Sweden": ProfileEntry(
        ct_range=(250, 454),
        fixups=(
            Fixup(FixupKind.DISABLE_FEATURE, Feature.COLORLOOP),
            Fixup(FixupKind.SET_TIMING, 0.1),
        ),
        models={
            "TRADFRI bulb E27 CWS opal 600lm": ProfileEntry(
                fixups=(
                    Fixup(FixupKind.DISABLE_FEATURE,
                          Feature.COLOR_TEMPERATURE),
                ),
            ),
            "TRADFRI bulb E14 CWS opal 600lm": ProfileEntry(
                fixups=(
                    Fixup(FixupKind.DISABLE_FEATURE,
                          Feature.COLOR_TEMPERATURE),
                ),
            ),
        },
    ),
    "innr": ProfileEntry(
        gamut=GAMUT_INNR,
        ct_range=(153, 555),
        fixups=(Fixup(FixupKind.DISABLE_FEATURE, Feature.COLORLOOP),),
        models={
            "RB 185 C": ProfileEntry(),
            "RB 285 C": ProfileEntry(),
            "RB 250 C": ProfileEntry(),
            "FL 130 C": ProfileEntry(),
            "BY 185 C": ProfileEntry(),
        },
    ),
    "OSRAM": ProfileEntry(
        ct_range=(153, 370),
        models={
            "Classic A60 RGBW": ProfileEntry(),
            "Gardenpole RGBW-Lightify": ProfileEntry(
                fixups=(
                    Fixup(FixupKind.RENAME_MODEL, "Gardenpole RGBW"),
                ),
            ),
            "Classic A60 TW": ProfileEntry(
                features=_features(
                    Feature.BRIGHTNESS, Feature.COLOR_TEMPERATURE
                ),
            ),
        },
    ),
    "GLEDOPTO": ProfileEntry(
        ct_range=(158, 495),
        fixups=(Fixup(FixupKind.DISABLE_FEATURE, Feature.ALERT),),
        models={
            "GL-C-007": ProfileEntry(),
            "GL-C-008": ProfileEntry(),
            "GLEDOPTO": ProfileEntry(
                fixups=(Fixup(FixupKind.RENAME_MODEL, "GL-C-008"),),
            ),
        },
    ),
    "dresden elektronik": ProfileEntry(
        models={
            "FLS-PP3": ProfileEntry(),
            "FLS-PP3 White": ProfileEntry(
                features=_features(Feature.BRIGHTNESS, Feature.ALERT),
            ),
        },
    ),
}


def _reported_gamut(capabilities: Optional[Mapping[str, Any]]) -> Optional[Gamut]:
    try:
        points = capabilities["control"]["colorgamut"]  # type: ignore[index]
        return Gamut.from_list(points)
    except (KeyError, TypeError, ValueError):
        return None


def _reported_ct_range(
    capabilities: Optional[Mapping[str, Any]],
) -> Optional[Tuple[int, int]]:
    try:
        ct = capabilities["control"]["ct"]  # type: ignore[index]
        return int(ct["min"]), int(ct["max"])
    except (KeyError, TypeError, ValueError):
        return None


class DeviceProfileResolver:
    """Looks up :class:`DeviceProfile` objects.

    Parameters
    ----------
    table:
        Manufacturer table; defaults to :data:`PROFILE_TABLE`.
    """

    def __init__(
        self, table: Optional[Mapping[str, ProfileEntry]] = None
    ) -> None:
        self._table = PROFILE_TABLE if table is None else table
        self._warned: Set[Tuple[str, str]] = set()

    def resolve(
        self,
        manufacturer: Optional[str],
        model: Optional[str],
        capabilities: Optional[Mapping[str, Any]] = None,
    ) -> DeviceProfile:
        """Resolve the profile for *manufacturer* / *model*.

        Parameters
        ----------
        manufacturer:
            ``manufacturername`` as reported by the bridge.
        model:
            ``modelid`` as reported by the bridge.
        capabilities:
            The light's ``capabilities`` object, if reported.
        """
        manufacturer = manufacturer or ""
        model = model or ""
        vendor = self._table.get(manufacturer)
        entry = vendor.models.get(model) if vendor is not None else None
        known = entry is not None

        if not known:
            self._warn_unknown(manufacturer, model)

        gamut: Gamut = _reported_gamut(capabilities) or DEFAULT_GAMUT
        ct_range = _reported_ct_range(capabilities) or DEFAULT_CT_RANGE
        features = DEFAULT_FEATURES
        fixups: Tuple[Fixup, ...] = ()
        for level in (vendor, entry):
            if level is None:
                continue
            if level.gamut is not None:
                gamut = level.gamut
            if level.ct_range is not None:
                ct_range = level.ct_range
            if level.features is not None:
                features = level.features
            fixups += level.fixups

        return DeviceProfile(
            manufacturer=manufacturer,
            model=model,
            known=known,
            gamut=gamut,
            ct_min=ct_range[0],
            ct_max=ct_range[1],
            features=features,
            fixups=fixups,
        )

    def _warn_unknown(self, manufacturer: str, model: str) -> None:
        key = (manufacturer, model)
        if key in self._warned:
            return
        self._warned.add(key)
        logger.warning(
            "%s %s: unknown light model, using defaults",
            manufacturer or "(no manufacturer)",
            model or "(no model)",
        )
