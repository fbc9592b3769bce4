"""Colour conversions between bridge ``xy`` and hue / saturation.

Formulas follow the vendor's published colour conversion guidance; the
``ct`` to ``xy`` approximation is the one used by the deCONZ REST
plugin.  All functions are pure.
"""

from __future__ import annotations

import math
from typing import List, NamedTuple, Sequence, Tuple

Point = Tuple[float, float]


class Gamut(NamedTuple):
    """Colour gamut triangle in CIE xy chromaticity space."""

    r: Point
    g: Point
    b: Point

    @classmethod
    def from_list(cls, points: Sequence[Sequence[float]]) -> "Gamut":
        """Build a gamut from ``[[rx, ry], [gx, gy], [bx, by]]``."""
        r, g, b = (tuple(float(v) for v in p) for p in points)
        return cls(r, g, b)


#: Full triangle; every point inside the unit square's lower half.
DEFAULT_GAMUT = Gamut((1.0, 0.0), (0.0, 1.0), (0.0, 0.0))


def _cross(p1: Point, p2: Point) -> float:
    return p1[0] * p2[1] - p1[1] * p2[0]


def _closest_on_line(a: Point, b: Point, p: Point) -> Point:
    ap = (p[0] - a[0], p[1] - a[1])
    ab = (b[0] - a[0], b[1] - a[1])
    t = (ap[0] * ab[0] + ap[1] * ab[1]) / (ab[0] * ab[0] + ab[1] * ab[1])
    t = min(max(t, 0.0), 1.0)
    return (a[0] + t * ab[0], a[1] + t * ab[1])


def closest_in_gamut(p: Point, gamut: Gamut) -> Point:
    """Return the point in *gamut* closest to *p*."""
    r, g, b = gamut
    v1 = (g[0] - r[0], g[1] - r[1])
    v2 = (b[0] - r[0], b[1] - r[1])
    v = _cross(v1, v2)
    q = (p[0] - r[0], p[1] - r[1])
    s = _cross(q, v2) / v
    t = _cross(v1, q) / v
    if s >= 0.0 and t >= 0.0 and s + t <= 1.0:
        return p
    candidates = [
        _closest_on_line(r, g, p),
        _closest_on_line(g, b, p),
        _closest_on_line(b, r, p),
    ]
    return min(candidates, key=lambda c: math.hypot(p[0] - c[0], p[1] - c[1]))


def _compand(v: float) -> float:
    if v <= 0.0031308:
        return 12.92 * v
    return 1.055 * math.pow(v, 1.0 / 2.4) - 0.055


def _inv_compand(v: float) -> float:
    if v > 0.04045:
        return math.pow((v + 0.055) / 1.055, 2.4)
    return v / 12.92


def _rescale(rgb: List[float]) -> List[float]:
    m = max(rgb)
    if m > 1.0:
        return [c / m for c in rgb]
    return rgb


def xy_to_hue_saturation(
    xy: Sequence[float], gamut: Gamut = DEFAULT_GAMUT
) -> Tuple[int, int]:
    """Convert bridge ``xy`` to hue (0-360) and saturation (0-100)."""
    x, y = closest_in_gamut((float(xy[0]), float(xy[1])), gamut)
    if y == 0.0:
        y = 0.000001
    z = 1.0 - x - y
    big_x = x / y
    big_z = z / y
    rgb = [
        big_x * 1.656492 - 0.354851 - big_z * 0.255038,
        -big_x * 0.707196 + 1.655397 + big_z * 0.036152,
        big_x * 0.051713 - 0.121364 + big_z * 1.011530,
    ]
    low = min(rgb)
    if low < 0.0:
        rgb = [c - low for c in rgb]
    rgb = _rescale(rgb)
    rgb = _rescale([_compand(c) for c in rgb])

    r, g, b = rgb
    high = max(rgb)
    chroma = high - min(rgb)
    sat = 0.0 if high == 0.0 else chroma / high
    if chroma == 0.0:
        hue = 0.0
    elif high == r:
        hue = (g - b) / chroma
        if hue < 0:
            hue += 6.0
    elif high == g:
        hue = (b - r) / chroma + 2.0
    else:
        hue = (r - g) / chroma + 4.0
    return round(hue * 60.0), round(sat * 100.0)


def hue_saturation_to_xy(
    hue: float, sat: float, gamut: Gamut = DEFAULT_GAMUT
) -> List[float]:
    """Convert hue (0-360) and saturation (0-100) to bridge ``xy``."""
    h = (hue / 360.0) * 6.0
    chroma = sat / 100.0
    m = 1.0 - chroma
    x = chroma * (1.0 - abs((h % 2) - 1.0))
    sector = int(math.floor(h)) % 6
    r, g, b = [
        (chroma, x, 0.0),
        (x, chroma, 0.0),
        (0.0, chroma, x),
        (0.0, x, chroma),
        (x, 0.0, chroma),
        (chroma, 0.0, x),
    ][sector]
    lr, lg, lb = (_inv_compand(c + m) for c in (r, g, b))
    big_x = lr * 0.664511 + lg * 0.154324 + lb * 0.162028
    big_y = lr * 0.283881 + lg * 0.668433 + lb * 0.047685
    big_z = lr * 0.000088 + lg * 0.072310 + lb * 0.986039
    total = big_x + big_y + big_z
    p = (0.0, 0.0) if total == 0.0 else (big_x / total, big_y / total)
    q = closest_in_gamut(p, gamut)
    return [round(q[0], 4), round(q[1], 4)]


def ct_to_xy(ct: float) -> List[float]:
    """Approximate ``xy`` of a colour temperature in mired."""
    kelvin = 1_000_000 / ct
    if kelvin < 4000:
        x = (
            11790
            + 57520658 / kelvin
            - 15358885888 / kelvin ** 2
            - 17440695910400 / kelvin ** 3
        )
    else:
        x = (
            15754
            + 14590587 / kelvin
            + 138086835814 / kelvin ** 2
            - 198301902438400 / kelvin ** 3
        )
    if kelvin < 2222:
        y = (
            -3312
            + 35808 * x / 0x10000
            - 22087 * x * x / 0x100000000
            - 18126 * x ** 3 / 0x1000000000000
        )
    elif kelvin < 4000:
        y = (
            -2744
            + 34265 * x / 0x10000
            - 22514 * x * x / 0x100000000
            - 15645 * x ** 3 / 0x1000000000000
        )
    else:
        y = (
            -6062
            + 61458 * x / 0x10000
            - 96229 * x * x / 0x100000000
            + 50491 * x ** 3 / 0x1000000000000
        )
    y *= 4
    return [round(x / 0xFFFF, 4), round(y / 0xFFFF, 4)]
