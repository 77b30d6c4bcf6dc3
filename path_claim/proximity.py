"""Nearby-territory detection with edge-triggered proximity alerts."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from path_claim.events import Event, EventBus, NearbyUpdated, ProximityAlert
from path_claim.geo import LatLng, bearing_direction, distance_m
from path_claim.models import NearbyTerritory, Territory, TerritoryStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProximityParams:
    threshold_m: float = 100.0


class ProximityMonitor:
    """Tracks which claimed territories are within reach of the live location.

    A territory raises one :class:`ProximityAlert` when it enters the threshold
    and is re-armed once it leaves again. :meth:`reset` starts a new proximity
    session with nothing alerted.
    """

    def __init__(self, bus: EventBus | None = None, params: ProximityParams | None = None) -> None:
        self._bus = bus or EventBus()
        self._params = params or ProximityParams()
        self._lock = threading.Lock()
        self._alerted: set[str] = set()

    def update_nearby(
        self,
        live: LatLng,
        claimed_set: Iterable[Territory],
        threshold_m: float | None = None,
    ) -> list[NearbyTerritory]:
        """Claimed territories within ``threshold_m`` of ``live``, closest first."""

        threshold = self._params.threshold_m if threshold_m is None else threshold_m
        nearby: list[NearbyTerritory] = []
        for territory in claimed_set:
            if territory.status is not TerritoryStatus.CLAIMED:
                continue
            d = distance_m(live, territory.bounds.center)
            if d <= threshold:
                nearby.append(
                    NearbyTerritory(
                        territory=territory,
                        distance_m=d,
                        direction=bearing_direction(live, territory.bounds.center),
                    )
                )
        nearby.sort(key=lambda n: n.distance_m)

        events: list[Event] = []
        with self._lock:
            inside = {n.territory.id for n in nearby}
            for n in nearby:
                if n.territory.id not in self._alerted:
                    events.append(ProximityAlert(n.territory, n.distance_m, n.direction))
            self._alerted = inside
        for event in events:
            logger.info("接近领地 %s：%.0fm %s", event.territory.id, event.distance_m, event.direction)
        events.insert(0, NearbyUpdated(tuple(nearby)))
        for event in events:
            self._bus.publish(event)
        return nearby

    def alerted(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._alerted)

    def reset(self) -> None:
        with self._lock:
            self._alerted.clear()
