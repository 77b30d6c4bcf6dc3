"""Data models for location samples, sessions, territories and claims."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Final


class SessionState(str, Enum):
    RECORDING = "recording"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.CANCELLED)


class TerritoryStatus(str, Enum):
    CLAIMABLE = "claimable"
    PENDING_CLAIM = "pendingClaim"
    CLAIMED = "claimed"
    CONTESTED = "contested"
    EXPIRED = "expired"


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Route(str, Enum):
    DIRECT = "direct"
    CROSS_NETWORK = "cross-network"


#: Territory statuses that hold a uniqueness key exclusively.
HOLDING_STATUSES: Final[frozenset[TerritoryStatus]] = frozenset(
    {TerritoryStatus.CLAIMED, TerritoryStatus.PENDING_CLAIM}
)


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A bare coordinate pair in decimal degrees."""

    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class LocationSample:
    """A single location fix from the location provider.

    Attributes:
        lat: Latitude in decimal degrees.
        lng: Longitude in decimal degrees.
        timestamp_ms: Unix epoch milliseconds.
        accuracy_m: Horizontal accuracy in meters, None when the provider did not report it.
    """

    lat: float
    lng: float
    timestamp_ms: int
    accuracy_m: float | None = None


@dataclass(frozen=True, slots=True)
class PathSegment:
    """Distance/time between two consecutive accepted samples."""

    id: str
    start_sample: LocationSample
    end_sample: LocationSample
    distance_m: float
    duration_ms: int
    avg_speed_mps: float

    @property
    def line_geometry(self) -> dict[str, Any]:
        """GeoJSON LineString (lng, lat order)."""

        return {
            "type": "LineString",
            "coordinates": [
                [self.start_sample.lng, self.start_sample.lat],
                [self.end_sample.lng, self.end_sample.lat],
            ],
        }


@dataclass(frozen=True, slots=True)
class Lap:
    lap_number: int
    duration_ms: int
    distance_m: float
    total_time_ms: int


@dataclass(slots=True)
class Session:
    """A recorded movement session.

    Mutated only by the recorder that owns it; everything handed out is a copy
    produced by :meth:`snapshot`.
    """

    id: str
    start_time_ms: int
    samples: list[LocationSample]
    segments: list[PathSegment] = field(default_factory=list)
    laps: list[Lap] = field(default_factory=list)
    total_distance_m: float = 0.0
    total_duration_ms: int = 0
    avg_speed_mps: float = 0.0
    max_speed_mps: float = 0.0
    state: SessionState = SessionState.RECORDING
    territory_eligible: bool = False
    end_time_ms: int | None = None
    uniqueness_key: str | None = None

    @property
    def start_sample(self) -> LocationSample:
        return self.samples[0]

    @property
    def last_sample(self) -> LocationSample:
        return self.samples[-1]

    def snapshot(self) -> Session:
        """Copy with independent lists (samples/segments themselves are immutable)."""

        return replace(
            self,
            samples=list(self.samples),
            segments=list(self.segments),
            laps=list(self.laps),
        )


@dataclass(frozen=True, slots=True)
class SessionStats:
    """Live statistics for UI updates."""

    distance_m: float
    elapsed_ms: int
    avg_speed_mps: float
    max_speed_mps: float
    point_count: int
    segment_count: int
    state: SessionState
    territory_eligible: bool


@dataclass(frozen=True, slots=True)
class TerritoryBounds:
    """Axis-aligned envelope of a session's samples."""

    north: float
    south: float
    east: float
    west: float
    center: GeoPoint


@dataclass(frozen=True, slots=True)
class TerritoryMetadata:
    name: str
    description: str
    landmarks: tuple[str, ...]
    difficulty: int
    rarity: Rarity
    estimated_reward: int


@dataclass(frozen=True, slots=True)
class SessionSummary:
    session_id: str
    distance_m: float
    duration_ms: int
    avg_speed_mps: float
    point_count: int


@dataclass(frozen=True, slots=True)
class SettlementEntry:
    """One settlement attempt on a territory; ``handle`` is set once known."""

    network_id: int
    timestamp_ms: int
    transaction_id: str
    handle: str | None = None


@dataclass(slots=True)
class Territory:
    id: str
    uniqueness_key: str
    bounds: TerritoryBounds
    metadata: TerritoryMetadata
    session_summary: SessionSummary
    status: TerritoryStatus = TerritoryStatus.CLAIMABLE
    owner: str | None = None
    claimed_at_ms: int | None = None
    network_id: int | None = None
    is_cross_network: bool | None = None
    settlement_history: list[SettlementEntry] = field(default_factory=list)

    @property
    def holds_key(self) -> bool:
        return self.status in HOLDING_STATUSES

    def snapshot(self) -> Territory:
        return replace(self, settlement_history=list(self.settlement_history))


@dataclass(slots=True)
class ClaimTransaction:
    id: str
    territory_id: str
    source_network_id: int
    target_network_id: int
    route: Route
    claimant: str
    submitted_at_ms: int
    status: ClaimStatus = ClaimStatus.PENDING
    settled_at_ms: int | None = None
    cost_estimate: int | None = None
    error_kind: str | None = None
    ledger_handle: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not ClaimStatus.PENDING

    def snapshot(self) -> ClaimTransaction:
        return replace(self)


@dataclass(frozen=True, slots=True)
class NearbyTerritory:
    territory: Territory
    distance_m: float
    direction: str


DEFAULT_TZ: Final[str] = "UTC"
