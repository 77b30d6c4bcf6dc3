"""Turn a completed, eligible session into a scored, uniquely keyed territory."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Final, Iterable, Protocol

from path_claim.errors import IneligibleSession, TerritoryConflict
from path_claim.events import EventBus, TerritorySynthesized
from path_claim.geo import bounds_overlap, envelope
from path_claim.landmarks import LandmarkResolver, SpecialLocationLookup
from path_claim.models import (
    Rarity,
    Session,
    SessionSummary,
    Territory,
    TerritoryBounds,
    TerritoryMetadata,
)
from path_claim.recorder import new_id
from path_claim.registry import TerritoryRegistry

logger = logging.getLogger(__name__)

RARITY_MULTIPLIERS: Final[dict[Rarity, float]] = {
    Rarity.COMMON: 1.0,
    Rarity.RARE: 1.5,
    Rarity.EPIC: 2.0,
    Rarity.LEGENDARY: 3.0,
}


@dataclass(frozen=True, slots=True)
class TerritoryParams:
    """Scoring parameters.

    Each difficulty component is capped at 1.0 before weighting so that one
    extreme dimension cannot saturate the score on its own.
    """

    distance_cap_m: float = 5000.0
    speed_cap_mps: float = 5.0
    duration_cap_ms: int = 60 * 60 * 1000
    distance_weight: float = 40.0
    speed_weight: float = 30.0
    duration_weight: float = 30.0
    rare_threshold: int = 50
    epic_threshold: int = 70
    legendary_threshold: int = 90
    generic_landmarks: tuple[str, ...] = ("Park", "Street", "Neighborhood")


class LedgerKeyCheck(Protocol):
    def key_exists(self, uniqueness_key: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class TerritoryPreview:
    """What claiming an area would run into, without creating anything."""

    bounds: TerritoryBounds
    uniqueness_key: str | None
    conflicting: tuple[Territory, ...]
    available_on_ledger: bool
    claimability: int  # 0-100


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_difficulty(
    distance_m: float,
    avg_speed_mps: float,
    duration_ms: int,
    params: TerritoryParams,
) -> int:
    """Weighted 0-100 score from distance, average speed and duration."""

    distance_score = min(distance_m / params.distance_cap_m, 1.0) * params.distance_weight
    speed_score = min(avg_speed_mps / params.speed_cap_mps, 1.0) * params.speed_weight
    duration_score = min(duration_ms / params.duration_cap_ms, 1.0) * params.duration_weight
    return _round_half_up(max(0.0, distance_score + speed_score + duration_score))


def rarity_for(difficulty: int, special_location: bool, params: TerritoryParams) -> Rarity:
    if special_location or difficulty >= params.legendary_threshold:
        return Rarity.LEGENDARY
    if difficulty >= params.epic_threshold:
        return Rarity.EPIC
    if difficulty >= params.rare_threshold:
        return Rarity.RARE
    return Rarity.COMMON


def reward_for(difficulty: int, rarity: Rarity) -> int:
    return _round_half_up(difficulty * RARITY_MULTIPLIERS[rarity])


def territory_name(bounds: TerritoryBounds, landmarks: Iterable[str]) -> str:
    primary = next(iter(landmarks), "Territory")
    lat, lng = bounds.center.lat, bounds.center.lng
    ns = "N" if lat >= 0 else "S"
    ew = "E" if lng >= 0 else "W"
    return f"{primary} {abs(lat):.3f}°{ns} {abs(lng):.3f}°{ew}"


def territory_description(summary: SessionSummary, difficulty: int, landmarks: Iterable[str]) -> str:
    distance_km = summary.distance_m / 1000.0
    duration_min = _round_half_up(summary.duration_ms / 60_000.0)
    return (
        f"A {difficulty}/100 difficulty territory covering {distance_km:.1f}km, "
        f"completed in {duration_min} minutes. Features: {', '.join(landmarks)}."
    )


def summarize(session: Session) -> SessionSummary:
    return SessionSummary(
        session_id=session.id,
        distance_m=session.total_distance_m,
        duration_ms=session.total_duration_ms,
        avg_speed_mps=session.avg_speed_mps,
        point_count=len(session.samples),
    )


class TerritorySynthesizer:
    """Builds territories from sessions and guards key/area uniqueness."""

    def __init__(
        self,
        registry: TerritoryRegistry,
        *,
        ledger: LedgerKeyCheck | None = None,
        resolver: LandmarkResolver | None = None,
        special: SpecialLocationLookup | None = None,
        bus: EventBus | None = None,
        params: TerritoryParams | None = None,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._resolver = resolver
        self._special = special
        self._bus = bus or EventBus()
        self._params = params or TerritoryParams()

    def synthesize(self, session: Session) -> Territory:
        """Create a claimable territory from a completed session.

        Raises:
            IneligibleSession: If the session is not territory eligible.
            TerritoryConflict: If it overlaps a held territory or the key is on the ledger.
        """

        if not session.territory_eligible or not session.uniqueness_key:
            raise IneligibleSession(f"记录 {session.id} 不满足领地条件")
        bounds = envelope(session.samples)
        self.validate_uniqueness(bounds, self._registry.held(), session.uniqueness_key)

        summary = summarize(session)
        metadata = self.build_metadata(summary, bounds)
        territory = Territory(
            id=new_id("territory"),
            uniqueness_key=session.uniqueness_key,
            bounds=bounds,
            metadata=metadata,
            session_summary=summary,
        )
        stored = self._registry.add(territory)
        logger.info("生成领地 %s（%s，难度=%s）", stored.id, metadata.rarity.value, metadata.difficulty)
        self._bus.publish(TerritorySynthesized(stored))
        return stored

    def build_metadata(self, summary: SessionSummary, bounds: TerritoryBounds) -> TerritoryMetadata:
        p = self._params
        difficulty = compute_difficulty(summary.distance_m, summary.avg_speed_mps, summary.duration_ms, p)
        rarity = rarity_for(difficulty, self._is_special(bounds), p)
        landmarks = self.resolve_landmarks(bounds)
        return TerritoryMetadata(
            name=territory_name(bounds, landmarks),
            description=territory_description(summary, difficulty, landmarks),
            landmarks=landmarks,
            difficulty=difficulty,
            rarity=rarity,
            estimated_reward=reward_for(difficulty, rarity),
        )

    def resolve_landmarks(self, bounds: TerritoryBounds) -> tuple[str, ...]:
        """Landmark names for ``bounds``; the generic set when lookup fails or finds nothing."""

        if self._resolver is not None:
            try:
                names = [n for n in self._resolver.resolve(bounds) if n]
            except Exception:
                logger.warning("地标查询失败，使用通用地标", exc_info=True)
                names = []
            if names:
                return tuple(names)
        return self._params.generic_landmarks

    def validate_uniqueness(
        self,
        candidate_bounds: TerritoryBounds,
        claimed_set: Iterable[Territory],
        uniqueness_key: str | None = None,
        *,
        exclude_id: str | None = None,
        ledger: LedgerKeyCheck | None = None,
    ) -> None:
        """Check the candidate against the local held set, then against the ledger.

        ``ledger`` overrides the one given at construction.

        Raises:
            TerritoryConflict: On overlap, on a duplicate key, or if the ledger has the key.
        """

        for held in claimed_set:
            if held.id == exclude_id:
                continue
            if uniqueness_key is not None and held.uniqueness_key == uniqueness_key:
                raise TerritoryConflict(f"领地键 {uniqueness_key} 已被 {held.id} 占用")
            if bounds_overlap(candidate_bounds, held.bounds):
                raise TerritoryConflict(f"与已占领领地 {held.id} 重叠")

        ledger = ledger or self._ledger
        if uniqueness_key is not None and ledger is not None:
            if ledger.key_exists(uniqueness_key):
                raise TerritoryConflict(f"领地键 {uniqueness_key} 已存在于结算账本")

    def preview(self, bounds: TerritoryBounds, uniqueness_key: str | None = None) -> TerritoryPreview:
        conflicting = tuple(t for t in self._registry.held() if bounds_overlap(bounds, t.bounds))
        available = True
        if uniqueness_key is not None and self._ledger is not None:
            try:
                available = not self._ledger.key_exists(uniqueness_key)
            except Exception:
                logger.warning("账本查询失败，假定可占领", exc_info=True)
        if not available:
            claimability = 0
        elif conflicting:
            claimability = max(0, 100 - 25 * len(conflicting))
        else:
            claimability = 100
        return TerritoryPreview(
            bounds=bounds,
            uniqueness_key=uniqueness_key,
            conflicting=conflicting,
            available_on_ledger=available,
            claimability=claimability,
        )

    def _is_special(self, bounds: TerritoryBounds) -> bool:
        if self._special is None:
            return False
        try:
            return self._special.is_special(bounds)
        except Exception:
            logger.warning("特殊地点查询失败", exc_info=True)
            return False
