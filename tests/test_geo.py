"""Tests for distances, compass directions and envelope overlap."""

from __future__ import annotations

import itertools

import pytest

from path_claim.geo import (
    bearing_direction,
    bounds_overlap,
    coord_key,
    distance_m,
    envelope,
    haversine_m,
    octant_for_bearing,
)
from path_claim.models import GeoPoint, TerritoryBounds

ORIGIN = GeoPoint(47.6062, -122.3321)


def _box(north: float, south: float, east: float, west: float) -> TerritoryBounds:
    return TerritoryBounds(
        north=north,
        south=south,
        east=east,
        west=west,
        center=GeoPoint((north + south) / 2.0, (east + west) / 2.0),
    )


def test_distance_is_zero_for_same_point_and_symmetric() -> None:
    other = GeoPoint(47.6100, -122.3400)

    assert distance_m(ORIGIN, ORIGIN) == 0.0
    assert distance_m(ORIGIN, other) == pytest.approx(distance_m(other, ORIGIN))


def test_one_degree_of_latitude_is_about_111km() -> None:
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_195.0, rel=1e-4)


@pytest.mark.parametrize(
    ("target", "expected"),
    [
        (GeoPoint(47.6162, -122.3321), "N"),
        (GeoPoint(47.6062, -122.3221), "E"),
        (GeoPoint(47.5962, -122.3321), "S"),
        (GeoPoint(47.6062, -122.3421), "W"),
        (GeoPoint(47.6132, -122.3221), "NE"),
        (GeoPoint(47.5992, -122.3421), "SW"),
    ],
)
def test_bearing_direction_octants(target: GeoPoint, expected: str) -> None:
    assert bearing_direction(ORIGIN, target) == expected


@pytest.mark.parametrize(
    ("bearing", "expected"),
    [
        (0.0, "N"),
        (22.4, "N"),
        (22.5, "NE"),
        (90.0, "E"),
        (180.0, "S"),
        (-180.0, "S"),
        (-90.0, "W"),
        (-22.5, "N"),
        (-22.6, "NW"),
        (337.5, "N"),
    ],
)
def test_octant_rounding_wraps_negative_angles(bearing: float, expected: str) -> None:
    assert octant_for_bearing(bearing) == expected


def test_bounds_overlap_with_itself() -> None:
    b = _box(47.61, 47.60, -122.33, -122.34)

    assert bounds_overlap(b, b)


def test_bounds_overlap_is_symmetric() -> None:
    boxes = [
        _box(47.61, 47.60, -122.33, -122.34),
        _box(47.615, 47.605, -122.325, -122.335),
        _box(47.62, 47.61, -122.33, -122.34),
        _box(47.70, 47.69, -122.20, -122.21),
        _box(47.605, 47.604, -122.335, -122.336),
    ]

    for a, b in itertools.product(boxes, repeat=2):
        assert bounds_overlap(a, b) == bounds_overlap(b, a)


def test_touching_edges_and_corners_overlap() -> None:
    base = _box(47.61, 47.60, -122.33, -122.34)
    above = _box(47.62, 47.61, -122.33, -122.34)
    corner = _box(47.62, 47.61, -122.32, -122.33)

    assert bounds_overlap(base, above)
    assert bounds_overlap(base, corner)


def test_separated_boxes_do_not_overlap() -> None:
    base = _box(47.61, 47.60, -122.33, -122.34)
    above = _box(47.62, 47.6100001, -122.33, -122.34)
    east = _box(47.61, 47.60, -122.31, -122.3299999)

    assert not bounds_overlap(base, above)
    assert not bounds_overlap(base, east)


def test_envelope_center_is_midpoint() -> None:
    pts = [GeoPoint(47.60, -122.34), GeoPoint(47.62, -122.30), GeoPoint(47.61, -122.32)]

    b = envelope(pts)

    assert (b.north, b.south, b.east, b.west) == (47.62, 47.60, -122.30, -122.34)
    assert b.center.lat == pytest.approx(47.61)
    assert b.center.lng == pytest.approx(-122.32)


def test_envelope_rejects_empty_input() -> None:
    with pytest.raises(ValueError):
        envelope([])


def test_coord_key_uses_fixed_decimals() -> None:
    assert coord_key(47.60624, -122.33208, 4) == "47.6062,-122.3321"
    assert coord_key(1.0, 2.0, 3) == "1.000,2.000"
