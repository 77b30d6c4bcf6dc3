"""Tests for the event bus."""

from __future__ import annotations

import logging

import pytest

from path_claim.events import EventBus, EventLog, LapRecorded, NearbyUpdated
from path_claim.models import Lap


def _lap_event() -> LapRecorded:
    return LapRecorded("session_1", Lap(1, 60_000, 250.0, 60_000))


def test_handlers_receive_only_their_kind() -> None:
    bus = EventBus()
    laps: list[LapRecorded] = []
    bus.subscribe(LapRecorded, laps.append)

    bus.publish(NearbyUpdated(()))
    bus.publish(_lap_event())

    assert laps == [_lap_event()]


def test_failing_handler_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    log = EventLog(bus)

    def _boom(event: LapRecorded) -> None:
        raise RuntimeError("ui crashed")

    bus.subscribe(LapRecorded, _boom)
    with caplog.at_level(logging.ERROR, logger="path_claim.events"):
        bus.publish(_lap_event())

    assert log.events == [_lap_event()]
    assert "LapRecorded" in caplog.text


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    log = EventLog(bus)
    laps: list[LapRecorded] = []
    unsubscribe = bus.subscribe(LapRecorded, laps.append)

    unsubscribe()
    unsubscribe()
    log.close()
    bus.publish(_lap_event())

    assert laps == []
    assert log.events == []
