"""Typed publish/subscribe bus for session, territory, claim and proximity events."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, TypeVar, Union

from path_claim.models import (
    ClaimTransaction,
    Lap,
    NearbyTerritory,
    PathSegment,
    Route,
    Session,
    SessionState,
    SessionStats,
    Territory,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionStateChanged:
    session_id: str
    previous: SessionState | None
    state: SessionState
    stats: SessionStats | None


@dataclass(frozen=True, slots=True)
class SampleAccepted:
    session_id: str
    segment: PathSegment
    stats: SessionStats


@dataclass(frozen=True, slots=True)
class LapRecorded:
    session_id: str
    lap: Lap


@dataclass(frozen=True, slots=True)
class TerritoryEligible:
    session: Session


@dataclass(frozen=True, slots=True)
class TerritorySynthesized:
    territory: Territory


@dataclass(frozen=True, slots=True)
class ClaimSubmitted:
    transaction: ClaimTransaction
    route: Route


@dataclass(frozen=True, slots=True)
class ClaimConfirmed:
    transaction: ClaimTransaction
    territory: Territory


@dataclass(frozen=True, slots=True)
class ClaimFailed:
    transaction: ClaimTransaction
    territory: Territory
    error_kind: str


@dataclass(frozen=True, slots=True)
class ClaimStillPending:
    transaction: ClaimTransaction
    waited_ms: int


@dataclass(frozen=True, slots=True)
class NearbyUpdated:
    nearby: tuple[NearbyTerritory, ...]


@dataclass(frozen=True, slots=True)
class ProximityAlert:
    territory: Territory
    distance_m: float
    direction: str


Event = Union[
    SessionStateChanged,
    SampleAccepted,
    LapRecorded,
    TerritoryEligible,
    TerritorySynthesized,
    ClaimSubmitted,
    ClaimConfirmed,
    ClaimFailed,
    ClaimStillPending,
    NearbyUpdated,
    ProximityAlert,
]

E = TypeVar("E")


class EventBus:
    """Synchronous fan-out to handlers keyed by event class.

    Handlers run on the publisher's thread. A failing handler is logged and
    does not stop delivery to the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[object], None]]] = defaultdict(list)
        self._wildcard: list[Callable[[object], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, kind: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register ``handler`` for events of class ``kind``; returns an unsubscribe callable."""

        with self._lock:
            self._handlers[kind].append(handler)  # type: ignore[arg-type]

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._handlers[kind].remove(handler)  # type: ignore[arg-type]
                except ValueError:
                    pass

        return _unsubscribe

    def subscribe_all(self, handler: Callable[[Event], None]) -> Callable[[], None]:
        with self._lock:
            self._wildcard.append(handler)  # type: ignore[arg-type]

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._wildcard.remove(handler)  # type: ignore[arg-type]
                except ValueError:
                    pass

        return _unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            targets = list(self._handlers.get(type(event), ())) + list(self._wildcard)
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("事件处理失败：%s -> %r", type(event).__name__, handler)


class EventLog:
    """Collects every published event, in order (handy for tests and the CLI)."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        self._unsubscribe = bus.subscribe_all(self.events.append)

    def of(self, kind: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, kind)]  # type: ignore[misc]

    def close(self) -> None:
        self._unsubscribe()
