"""A run from first sample to a confirmed claim, wired the way an app would wire it."""

from __future__ import annotations

from pathlib import Path

import pytest

from path_claim.events import (
    ClaimConfirmed,
    EventBus,
    EventLog,
    ProximityAlert,
    TerritoryEligible,
)
from path_claim.geo import distance_m
from path_claim.models import ClaimStatus, GeoPoint, Route, SessionState, TerritoryStatus
from path_claim.orchestrator import ClaimOrchestrator
from path_claim.proximity import ProximityMonitor
from path_claim.recorder import RecorderParams, SessionRecorder
from path_claim.registry import TerritoryRegistry
from path_claim.storage import JsonRecordStore
from path_claim.synthesizer import TerritorySynthesizer


def test_loop_run_becomes_claimed_territory(tmp_path: Path, clock, ledger, wallet, make_loop) -> None:
    bus = EventBus()
    log = EventLog(bus)
    sessions = JsonRecordStore(tmp_path / "sessions.json")
    registry = TerritoryRegistry(JsonRecordStore(tmp_path / "territories.json"))
    recorder = SessionRecorder(bus=bus, store=sessions, params=RecorderParams(smoothing_factor=1.0), clock=clock)
    synthesizer = TerritorySynthesizer(registry, ledger=ledger, bus=bus)
    orchestrator = ClaimOrchestrator(registry, synthesizer, ledger, wallet, bus=bus, clock=clock)
    monitor = ProximityMonitor(bus)
    bus.subscribe(TerritoryEligible, lambda e: synthesizer.synthesize(e.session))

    samples = make_loop(47.6062, -122.3321, start_ms=clock.now_ms)
    recorder.start_session(samples[0])
    for s in samples[1:]:
        clock.now_ms = s.timestamp_ms
        recorder.ingest_sample(s)
    session = recorder.complete_session()

    assert session.state is SessionState.COMPLETED
    assert session.territory_eligible is True
    assert session.total_distance_m == pytest.approx(600.0, abs=1.0)
    assert distance_m(session.start_sample, session.last_sample) <= 30.0

    (territory,) = registry.snapshot()
    assert territory.status is TerritoryStatus.CLAIMABLE
    assert territory.session_summary.session_id == session.id

    tx_id = orchestrator.submit_claim(territory.id, wallet.current_network_id())
    tx = orchestrator.get_transaction(tx_id)
    assert tx.status is ClaimStatus.PENDING
    assert tx.route is Route.DIRECT

    clock.advance(12_000)
    ledger.confirm(ledger.submissions[0][0])

    claimed = registry.get(territory.id)
    assert claimed.status is TerritoryStatus.CLAIMED
    assert claimed.owner == wallet.account_address()
    assert log.of(ClaimConfirmed)[0].territory.id == territory.id

    # ~45m north and ~45m east of the start, inside the loop
    nearby = monitor.update_nearby(GeoPoint(47.6066, -122.3315), registry.snapshot())
    assert [n.territory.id for n in nearby] == [territory.id]
    assert nearby[0].direction == "NE"
    assert len(log.of(ProximityAlert)) == 1

    # A second pass over the same loop can no longer become a territory
    again = make_loop(47.6062, -122.3321, start_ms=clock.now_ms + 60_000)
    clock.now_ms = again[0].timestamp_ms
    recorder.start_session(again[0])
    for s in again[1:]:
        clock.now_ms = s.timestamp_ms
        recorder.ingest_sample(s)
    recorder.complete_session()

    assert len(registry) == 1
