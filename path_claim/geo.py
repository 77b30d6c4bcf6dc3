"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from typing import Final, Iterable, Protocol

from path_claim.models import GeoPoint, TerritoryBounds

EARTH_RADIUS_M: Final[float] = 6_371_000.0  # mean Earth radius in meters

COMPASS_OCTANTS: Final[tuple[str, ...]] = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


class LatLng(Protocol):
    lat: float
    lng: float


class Envelope(Protocol):
    north: float
    south: float
    east: float
    west: float


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in meters between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in meters.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def distance_m(a: LatLng, b: LatLng) -> float:
    """Great-circle distance between two points carrying ``lat``/``lng``."""

    return haversine_m(a.lat, a.lng, b.lat, b.lng)


def is_inside_circle(
    lat: float,
    lon: float,
    center_lat: float,
    center_lon: float,
    radius_m: float,
) -> bool:
    """Check whether a point is inside or on the boundary of a circle geofence."""

    return haversine_m(lat, lon, center_lat, center_lon) <= radius_m


def bearing_deg(from_lat: float, from_lon: float, to_lat: float, to_lon: float) -> float:
    """Initial great-circle bearing in degrees, range (-180, 180], 0 = north."""

    phi1 = math.radians(from_lat)
    phi2 = math.radians(to_lat)
    d_lambda = math.radians(to_lon - from_lon)
    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return math.degrees(math.atan2(y, x))


def octant_for_bearing(bearing: float) -> str:
    """Map a bearing in degrees onto one of the 8 compass octants."""

    # Half-up rounding; int % 8 is non-negative, so negative bearings wrap (-90 -> W).
    index = math.floor(bearing / 45.0 + 0.5) % 8
    return COMPASS_OCTANTS[index]


def bearing_direction(origin: LatLng, target: LatLng) -> str:
    """Compass octant (N, NE, ... NW) pointing from ``origin`` to ``target``."""

    return octant_for_bearing(bearing_deg(origin.lat, origin.lng, target.lat, target.lng))


def bounds_overlap(b1: Envelope, b2: Envelope) -> bool:
    """Axis-aligned rectangle intersection test.

    Edges are inclusive: two envelopes that only touch along an edge or a corner
    overlap.
    """

    return not (
        b1.east < b2.west
        or b2.east < b1.west
        or b1.north < b2.south
        or b2.north < b1.south
    )


def coord_key(lat: float, lon: float, precision: int) -> str:
    """Build a stable key by rounding coordinates.

    Notes:
        Format is "lat,lon" with fixed decimals.
        Precision=4 is often a good default (lat ~ 11m resolution).
    """

    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"


def envelope(points: Iterable[LatLng]) -> TerritoryBounds:
    """Axis-aligned envelope of ``points``; the center is the envelope midpoint.

    Raises:
        ValueError: If ``points`` is empty.
    """

    pts = list(points)
    if not pts:
        raise ValueError("无法对空点集计算边界")
    lats = [p.lat for p in pts]
    lngs = [p.lng for p in pts]
    north, south = max(lats), min(lats)
    east, west = max(lngs), min(lngs)
    return TerritoryBounds(
        north=north,
        south=south,
        east=east,
        west=west,
        center=GeoPoint(lat=(north + south) / 2.0, lng=(east + west) / 2.0),
    )
