"""Tests for nearby-territory detection and edge-triggered alerts."""

from __future__ import annotations

from path_claim.events import EventBus, EventLog, NearbyUpdated, ProximityAlert
from path_claim.models import (
    GeoPoint,
    Rarity,
    SessionSummary,
    Territory,
    TerritoryBounds,
    TerritoryMetadata,
    TerritoryStatus,
)
from path_claim.proximity import ProximityMonitor, ProximityParams

HERE = GeoPoint(47.6062, -122.3321)
# ~11.1m per 0.0001 degree of latitude
STEP = 0.0001


def _territory(territory_id: str, lat: float, lng: float, status: TerritoryStatus = TerritoryStatus.CLAIMED) -> Territory:
    center = GeoPoint(lat, lng)
    return Territory(
        id=territory_id,
        uniqueness_key=f"{lat:.4f},{lng:.4f}",
        bounds=TerritoryBounds(lat + 0.0005, lat - 0.0005, lng + 0.0005, lng - 0.0005, center),
        metadata=TerritoryMetadata(territory_id, "", ("Park",), 30, Rarity.COMMON, 30),
        session_summary=SessionSummary("s", 600.0, 300_000, 2.0, 20),
        status=status,
        owner="0xowner",
    )


def test_nearby_is_filtered_and_sorted_by_distance() -> None:
    monitor = ProximityMonitor()
    territories = [
        _territory("far", HERE.lat + 50 * STEP, HERE.lng),
        _territory("north", HERE.lat + 6 * STEP, HERE.lng),
        _territory("south", HERE.lat - 3 * STEP, HERE.lng),
        _territory("unclaimed", HERE.lat + STEP, HERE.lng, TerritoryStatus.CLAIMABLE),
    ]

    nearby = monitor.update_nearby(HERE, territories)

    assert [n.territory.id for n in nearby] == ["south", "north"]
    assert [n.direction for n in nearby] == ["S", "N"]
    assert nearby[0].distance_m < nearby[1].distance_m < 100.0


def test_threshold_override() -> None:
    monitor = ProximityMonitor(params=ProximityParams(threshold_m=100.0))
    territories = [_territory("t", HERE.lat + 20 * STEP, HERE.lng)]

    assert monitor.update_nearby(HERE, territories) == []
    assert len(monitor.update_nearby(HERE, territories, threshold_m=300.0)) == 1


def test_alert_fires_once_on_entry() -> None:
    bus = EventBus()
    log = EventLog(bus)
    monitor = ProximityMonitor(bus)
    territories = [_territory("t", HERE.lat + 5 * STEP, HERE.lng)]

    monitor.update_nearby(HERE, territories)
    monitor.update_nearby(GeoPoint(HERE.lat + STEP, HERE.lng), territories)
    monitor.update_nearby(HERE, territories)

    alerts = log.of(ProximityAlert)
    assert len(alerts) == 1
    assert alerts[0].territory.id == "t"
    assert alerts[0].direction == "N"
    assert len(log.of(NearbyUpdated)) == 3


def test_alert_rearms_after_leaving() -> None:
    bus = EventBus()
    log = EventLog(bus)
    monitor = ProximityMonitor(bus)
    territories = [_territory("t", HERE.lat, HERE.lng + 0.0005)]
    away = GeoPoint(HERE.lat - 30 * STEP, HERE.lng)

    monitor.update_nearby(HERE, territories)
    monitor.update_nearby(away, territories)
    assert monitor.alerted() == frozenset()
    monitor.update_nearby(HERE, territories)

    assert [a.direction for a in log.of(ProximityAlert)] == ["E", "E"]


def test_reset_starts_a_new_proximity_session() -> None:
    bus = EventBus()
    log = EventLog(bus)
    monitor = ProximityMonitor(bus)
    territories = [_territory("t", HERE.lat + STEP, HERE.lng)]

    monitor.update_nearby(HERE, territories)
    monitor.reset()
    monitor.update_nearby(HERE, territories)

    assert len(log.of(ProximityAlert)) == 2
