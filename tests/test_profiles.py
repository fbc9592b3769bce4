"""Tests for device profiles and fixups."""

import logging

import pytest

from pyHueSync.colour import DEFAULT_GAMUT, Gamut
from pyHueSync.enums import Feature, FixupKind
from pyHueSync.profiles import (
    DEFAULT_CT_RANGE,
    GAMUT_B,
    GAMUT_C,
    DeviceProfileResolver,
    Fixup,
    ProfileEntry,
    ResourceConfig,
    apply_fixup,
)


REPORTED = {
    "control": {
        "colorgamut": [[0.68, 0.31], [0.17, 0.69], [0.15, 0.05]],
        "ct": {"min": 200, "max": 400},
    }
}


@pytest.fixture
def resolver():
    return DeviceProfileResolver()


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class TestResolve:

    def test_known_model(self, resolver):
        profile = resolver.resolve("Signify Netherlands B.V.", "LCT015")
        assert profile.known
        assert profile.gamut == GAMUT_C
        assert (profile.ct_min, profile.ct_max) == (153, 500)
        assert profile.supports(Feature.CONCURRENT_XY_CT)

    def test_philips_and_signify_share_models(self, resolver):
        assert resolver.resolve("Philips", "LCT001").gamut == GAMUT_B
        assert resolver.resolve("Signify Netherlands B.V.", "LCT001").gamut == GAMUT_B

    def test_model_overrides_manufacturer(self, resolver):
        profile = resolver.resolve("Philips", "LTW001")
        assert (profile.ct_min, profile.ct_max) == (153, 454)
        assert not profile.supports(Feature.COLOR)

    def test_manufacturer_overrides_reported(self, resolver):
        profile = resolver.resolve("IKEA of Sweden", "unknown model", REPORTED)
        assert (profile.ct_min, profile.ct_max) == (250, 454)
        # IKEA has no gamut entry
        assert profile.gamut == Gamut.from_list(REPORTED["control"]["colorgamut"])

    def test_unknown_uses_reported_values(self, resolver):
        profile = resolver.resolve("ACME", "X1", REPORTED)
        assert not profile.known
        assert (profile.ct_min, profile.ct_max) == (200, 400)

    def test_unknown_without_capabilities_uses_defaults(self, resolver):
        profile = resolver.resolve("ACME", "X1")
        assert profile.gamut == DEFAULT_GAMUT
        assert (profile.ct_min, profile.ct_max) == DEFAULT_CT_RANGE
        assert profile.fixups == ()

    def test_unknown_warns_once(self, resolver, caplog):
        with caplog.at_level(logging.WARNING, logger="pyHueSync.profiles"):
            resolver.resolve("ACME", "X1")
            resolver.resolve("ACME", "X1")
            resolver.resolve("ACME", "X2")
        warnings = [r for r in caplog.records if "unknown light model" in r.message]
        assert len(warnings) == 2

    def test_missing_manufacturer(self, resolver):
        profile = resolver.resolve(None, None)
        assert not profile.known

    def test_manufacturer_and_model_fixups_in_order(self):
        table = {
            "M": ProfileEntry(
                fixups=(Fixup(FixupKind.RENAME_MODEL, "first"),),
                models={
                    "X": ProfileEntry(
                        fixups=(Fixup(FixupKind.RENAME_MODEL, "second"),)
                    )
                },
            )
        }
        profile = DeviceProfileResolver(table).resolve("M", "X")
        config = profile.apply(ResourceConfig.from_profile(profile))
        assert config.model == "second"


# ---------------------------------------------------------------------------
# Fixups
# ---------------------------------------------------------------------------


class TestFixups:

    def test_rename(self):
        config = ResourceConfig(model="a")
        apply_fixup(Fixup(FixupKind.RENAME_MODEL, "b"), config)
        assert config.model == "b"

    def test_disable_and_enable_feature(self):
        config = ResourceConfig()
        apply_fixup(Fixup(FixupKind.DISABLE_FEATURE, Feature.ALERT), config)
        assert not config.supports(Feature.ALERT)
        apply_fixup(Fixup(FixupKind.ENABLE_FEATURE, "alert"), config)
        assert config.supports(Feature.ALERT)

    def test_ct_range(self):
        config = ResourceConfig()
        apply_fixup(Fixup(FixupKind.SET_CT_RANGE, (200, 300)), config)
        assert (config.ct_min, config.ct_max) == (200, 300)

    def test_gamut(self):
        config = ResourceConfig()
        apply_fixup(Fixup(FixupKind.SET_GAMUT, GAMUT_B), config)
        assert config.gamut == GAMUT_B

    def test_timing(self):
        config = ResourceConfig()
        apply_fixup(Fixup(FixupKind.SET_TIMING, 0.1), config)
        assert config.write_delay == 0.1

    def test_profile_is_not_mutated(self, resolver):
        profile = resolver.resolve("IKEA of Sweden", "TRADFRI bulb E27 CWS opal 600lm")
        config = profile.apply(ResourceConfig.from_profile(profile))
        assert not config.supports(Feature.COLOR_TEMPERATURE)
        assert not config.supports(Feature.COLORLOOP)
        assert config.write_delay == 0.1
        assert profile.supports(Feature.COLOR_TEMPERATURE)

    def test_osram_rename(self, resolver):
        profile = resolver.resolve("OSRAM", "Gardenpole RGBW-Lightify")
        config = profile.apply(ResourceConfig.from_profile(profile))
        assert config.model == "Gardenpole RGBW"
