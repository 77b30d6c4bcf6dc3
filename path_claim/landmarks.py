"""Landmark lookup for territory names (bounds -> place names).

The Nominatim resolver only uses the Python standard library.

Important:
    - Public reverse-geocoding services are rate-limited.
    - For Nominatim (OpenStreetMap), please respect their usage policy and set a reasonable
      request interval and a descriptive User-Agent.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from path_claim.geo import coord_key, is_inside_circle
from path_claim.models import TerritoryBounds
from path_claim.storage import JsonDiskCache

logger = logging.getLogger(__name__)

# Address fields in the order they make good landmark names.
ADDRESS_FIELDS: tuple[str, ...] = (
    "park",
    "leisure",
    "tourism",
    "amenity",
    "road",
    "pedestrian",
    "footway",
    "neighbourhood",
    "quarter",
    "suburb",
    "city_district",
)


class LandmarkResolver(Protocol):
    """Best-effort: may return an empty list or raise; callers fall back."""

    def resolve(self, bounds: TerritoryBounds) -> list[str]: ...


class SpecialLocationLookup(Protocol):
    def is_special(self, bounds: TerritoryBounds) -> bool: ...


@dataclass(frozen=True, slots=True)
class GeofenceCircle:
    """A circle geofence (center + radius)."""

    center_lat: float
    center_lon: float
    radius_m: float


class DesignatedAreas:
    """Special locations given as circle geofences around the territory center."""

    def __init__(self, areas: Sequence[GeofenceCircle] = ()) -> None:
        self._areas = tuple(areas)

    def is_special(self, bounds: TerritoryBounds) -> bool:
        c = bounds.center
        return any(
            is_inside_circle(c.lat, c.lng, a.center_lat, a.center_lon, a.radius_m) for a in self._areas
        )


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Configuration for Nominatim reverse API."""

    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    accept_language: str = "en"
    zoom: int = 17
    addressdetails: int = 1
    timeout_seconds: float = 20.0
    min_interval_seconds: float = 1.0
    user_agent: str = "path-claim/0.1.0 (landmarks; please set your own UA)"
    max_landmarks: int = 3


def nominatim_reverse_raw(lat: float, lon: float, cfg: NominatimConfig) -> dict[str, Any] | None:
    """Call Nominatim reverse API and return raw JSON dict.

    This is a pure function (no cache, no throttling state).

    Returns:
        Parsed JSON dict on success, otherwise None.
    """

    params = {
        "format": "jsonv2",
        "lat": f"{lat:.8f}",
        "lon": f"{lon:.8f}",
        "zoom": str(cfg.zoom),
        "addressdetails": str(cfg.addressdetails),
        "accept-language": cfg.accept_language,
    }
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": cfg.user_agent,
            "Accept": "application/json",
        },
        method="GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=cfg.timeout_seconds) as resp:  # noqa: S310
            body = resp.read().decode("utf-8", errors="replace")
        raw: dict[str, Any] = json.loads(body)
    except Exception:
        logger.warning("逆地理编码请求失败：%s", url, exc_info=True)
        return None
    return raw


def landmark_names(raw: dict[str, Any], limit: int) -> list[str]:
    """Pick distinct, human-readable place names from a Nominatim response."""

    names: list[str] = []
    address = raw.get("address")
    if isinstance(address, dict):
        for key in ADDRESS_FIELDS:
            value = str(address.get(key, "") or "").strip()
            if value and value not in names:
                names.append(value)
            if len(names) >= limit:
                return names
    if not names:
        display = str(raw.get("display_name", "") or "")
        head = display.split(",", 1)[0].strip()
        if head:
            names.append(head)
    return names[:limit]


class NominatimLandmarkResolver:
    """Landmark resolver using OpenStreetMap Nominatim on the territory center."""

    def __init__(
        self,
        config: NominatimConfig | None = None,
        cache: JsonDiskCache | None = None,
        precision: int = 4,
    ) -> None:
        self._cfg = config or NominatimConfig()
        self._cache = cache
        self._precision = precision
        self._last_request_at = 0.0

    def resolve(self, bounds: TerritoryBounds) -> list[str]:
        lat, lon = bounds.center.lat, bounds.center.lng
        key = coord_key(lat, lon, self._precision)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return landmark_names(cached, self._cfg.max_landmarks)

        self._sleep_if_needed()
        raw = nominatim_reverse_raw(lat, lon, self._cfg)
        if raw is None:
            return []
        if self._cache is not None:
            self._cache.set(key, raw)
        return landmark_names(raw, self._cfg.max_landmarks)

    def _sleep_if_needed(self) -> None:
        now = time.time()
        wait = self._cfg.min_interval_seconds - (now - self._last_request_at)
        if wait > 0:
            time.sleep(wait)
        self._last_request_at = time.time()
