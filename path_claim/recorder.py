"""Session recording: noisy location samples -> denoised path with live statistics."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Protocol

from path_claim.errors import AlreadyRecording
from path_claim.events import (
    Event,
    EventBus,
    LapRecorded,
    SampleAccepted,
    SessionStateChanged,
    TerritoryEligible,
)
from path_claim.geo import coord_key, envelope, haversine_m
from path_claim.models import Lap, LocationSample, PathSegment, Session, SessionState, SessionStats
from path_claim.storage import RecordStore, session_to_record

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class RecorderParams:
    """Parameters controlling sample filtering and territory eligibility."""

    # Samples reporting a worse horizontal accuracy than this are dropped.
    max_accuracy_m: float = 20.0
    min_interval_ms: int = 1000
    # Minimum distance from the last accepted point; suppresses stationary jitter.
    min_movement_m: float = 5.0
    # Exponential blending toward the new sample: 1.0 = no smoothing.
    smoothing_factor: float = 0.3
    min_territory_distance_m: float = 500.0
    # Max straight-line distance between first and last sample for a closed loop.
    max_loop_deviation_m: float = 50.0
    # Decimal places of the center coordinate in the uniqueness key (4 ~ 11m).
    key_precision: int = 4


class LocationProvider(Protocol):
    """Pushes location samples to ``on_sample`` between ``start`` and ``stop``."""

    def start(self, on_sample: Callable[[LocationSample], None]) -> None: ...

    def stop(self) -> None: ...


def blend(last: LocationSample, new: LocationSample, factor: float) -> LocationSample:
    """Exponential smoothing: move ``factor`` of the way from ``last`` toward ``new``.

    Timestamp and accuracy are taken from ``new``.
    """

    return LocationSample(
        lat=last.lat + factor * (new.lat - last.lat),
        lng=last.lng + factor * (new.lng - last.lng),
        timestamp_ms=new.timestamp_ms,
        accuracy_m=new.accuracy_m,
    )


def build_segment(segment_id: str, start: LocationSample, end: LocationSample) -> PathSegment:
    distance = haversine_m(start.lat, start.lng, end.lat, end.lng)
    duration = end.timestamp_ms - start.timestamp_ms
    speed = distance / (duration / 1000.0) if duration > 0 else 0.0
    return PathSegment(
        id=segment_id,
        start_sample=start,
        end_sample=end,
        distance_m=distance,
        duration_ms=duration,
        avg_speed_mps=speed,
    )


def is_territory_eligible(total_distance_m: float, loop_deviation_m: float, params: RecorderParams) -> bool:
    """Long enough and (approximately) a closed loop."""

    return (
        total_distance_m >= params.min_territory_distance_m
        and loop_deviation_m <= params.max_loop_deviation_m
    )


def uniqueness_key_for(session: Session, precision: int) -> str:
    """Key from the rounded envelope center; wall-clock time is deliberately not part of it."""

    center = envelope(session.samples).center
    return coord_key(center.lat, center.lng, precision)


def evaluate_eligibility(session: Session, params: RecorderParams) -> None:
    """Set ``territory_eligible`` and ``uniqueness_key`` on a finished session."""

    if len(session.samples) < 2:
        session.territory_eligible = False
        session.uniqueness_key = None
        return
    first, last = session.start_sample, session.last_sample
    deviation = haversine_m(first.lat, first.lng, last.lat, last.lng)
    session.territory_eligible = is_territory_eligible(session.total_distance_m, deviation, params)
    session.uniqueness_key = (
        uniqueness_key_for(session, params.key_precision) if session.territory_eligible else None
    )


class SessionRecorder:
    """Owns at most one active session and drives its state machine.

    ``recording <-> paused``, then ``completed`` or ``cancelled`` (terminal).
    Control calls that do not match the current state are ignored so duplicate
    signals are harmless. Sample ingestion is serialized by an internal lock.
    """

    def __init__(
        self,
        provider: LocationProvider | None = None,
        *,
        bus: EventBus | None = None,
        store: RecordStore | None = None,
        params: RecorderParams | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._provider = provider
        self._bus = bus or EventBus()
        self._store = store
        self._params = params or RecorderParams()
        self._clock = clock
        self._lock = threading.RLock()
        self._session: Session | None = None
        self._lap_distance_m = 0.0
        self._lap_time_ms = 0

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def params(self) -> RecorderParams:
        return self._params

    @property
    def state(self) -> SessionState | None:
        with self._lock:
            return None if self._session is None else self._session.state

    def start_session(self, initial_location: LocationSample) -> Session:
        """Create a session seeded with ``initial_location`` and start listening for samples.

        Raises:
            AlreadyRecording: If a session is recording or paused.
        """

        with self._lock:
            if self._session is not None:
                raise AlreadyRecording(f"已有进行中的记录：{self._session.id}")
            session = Session(
                id=new_id("session"),
                start_time_ms=self._clock(),
                samples=[initial_location],
            )
            self._session = session
            self._lap_distance_m = 0.0
            self._lap_time_ms = 0
            try:
                self._start_provider()
            except Exception:
                self._session = None
                raise
            logger.info("开始记录 %s", session.id)
            events: list[Event] = [
                SessionStateChanged(session.id, None, SessionState.RECORDING, self._stats(session))
            ]
            snapshot = session.snapshot()
        self._publish(events)
        return snapshot

    def ingest_sample(self, raw: LocationSample) -> PathSegment | None:
        """Filter, smooth and append one raw sample.

        Returns the new segment, or None when the sample was dropped (not
        recording, inaccurate, too soon, or not far enough from the last point).
        """

        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.RECORDING:
                return None
            p = self._params
            last = session.last_sample
            if raw.accuracy_m is not None and raw.accuracy_m > p.max_accuracy_m:
                logger.debug("丢弃低精度采样：%.1fm", raw.accuracy_m)
                return None
            if raw.timestamp_ms - last.timestamp_ms < p.min_interval_ms:
                logger.debug("丢弃过密采样：间隔 %sms", raw.timestamp_ms - last.timestamp_ms)
                return None
            if haversine_m(last.lat, last.lng, raw.lat, raw.lng) < p.min_movement_m:
                logger.debug("丢弃静止抖动采样")
                return None

            point = blend(last, raw, p.smoothing_factor)
            segment = build_segment(f"{session.id}-{len(session.segments) + 1}", last, point)
            session.samples.append(point)
            session.segments.append(segment)
            self._recompute(session)
            session.total_duration_ms = self._clock() - session.start_time_ms
            event = SampleAccepted(session.id, segment, self._stats(session))
        self._publish([event])
        return segment

    def pause_session(self) -> SessionState | None:
        return self._toggle(SessionState.RECORDING, SessionState.PAUSED)

    def resume_session(self) -> SessionState | None:
        return self._toggle(SessionState.PAUSED, SessionState.RECORDING)

    def complete_session(self) -> Session | None:
        """Freeze the active session, evaluate eligibility and hand it off by value.

        Returns None if there is no active session.
        """

        with self._lock:
            session = self._session
            if session is None:
                return None
            previous = session.state
            session.state = SessionState.COMPLETED
            session.end_time_ms = self._clock()
            session.total_duration_ms = session.end_time_ms - session.start_time_ms
            self._recompute(session)
            evaluate_eligibility(session, self._params)
            self._session = None
            self._stop_provider()
            frozen = session.snapshot()
            events: list[Event] = [
                SessionStateChanged(frozen.id, previous, SessionState.COMPLETED, self._stats(frozen))
            ]
            if frozen.territory_eligible:
                events.append(TerritoryEligible(frozen))
        logger.info(
            "记录完成 %s：距离=%.1fm，可占领=%s",
            frozen.id,
            frozen.total_distance_m,
            frozen.territory_eligible,
        )
        if self._store is not None:
            self._store.save(session_to_record(frozen))
        self._publish(events)
        return frozen

    def cancel_session(self) -> None:
        """Discard the active session immediately; nothing is persisted."""

        with self._lock:
            session = self._session
            if session is None:
                return
            previous = session.state
            session.state = SessionState.CANCELLED
            self._session = None
            self._stop_provider()
            event = SessionStateChanged(session.id, previous, SessionState.CANCELLED, None)
        logger.info("记录已取消 %s", session.id)
        self._publish([event])

    def record_lap(self) -> Lap | None:
        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.RECORDING:
                return None
            total_time = self._clock() - session.start_time_ms
            lap = Lap(
                lap_number=len(session.laps) + 1,
                duration_ms=total_time - self._lap_time_ms,
                distance_m=session.total_distance_m - self._lap_distance_m,
                total_time_ms=total_time,
            )
            session.laps.append(lap)
            self._lap_time_ms = total_time
            self._lap_distance_m = session.total_distance_m
            event = LapRecorded(session.id, lap)
        self._publish([event])
        return lap

    def current_session(self) -> Session | None:
        """Snapshot of the active session (a copy, safe to read concurrently)."""

        with self._lock:
            return None if self._session is None else self._session.snapshot()

    def current_stats(self) -> SessionStats | None:
        with self._lock:
            return None if self._session is None else self._stats(self._session)

    # -- internals ---------------------------------------------------------

    def _toggle(self, source: SessionState, target: SessionState) -> SessionState | None:
        with self._lock:
            session = self._session
            if session is None:
                return None
            if session.state is not source:
                return session.state
            session.state = target
            if target is SessionState.PAUSED:
                self._stop_provider()
            else:
                self._start_provider()
            event = SessionStateChanged(session.id, source, target, self._stats(session))
        self._publish([event])
        return target

    def _recompute(self, session: Session) -> None:
        # Full recomputation keeps total == sum(segments) exactly.
        session.total_distance_m = sum(seg.distance_m for seg in session.segments)
        if session.segments:
            speeds = [seg.avg_speed_mps for seg in session.segments]
            session.max_speed_mps = max(speeds)
            session.avg_speed_mps = sum(speeds) / len(speeds)

    def _stats(self, session: Session) -> SessionStats:
        if session.state.is_terminal:
            elapsed = session.total_duration_ms
        else:
            elapsed = self._clock() - session.start_time_ms
        return SessionStats(
            distance_m=session.total_distance_m,
            elapsed_ms=elapsed,
            avg_speed_mps=session.avg_speed_mps,
            max_speed_mps=session.max_speed_mps,
            point_count=len(session.samples),
            segment_count=len(session.segments),
            state=session.state,
            territory_eligible=session.territory_eligible,
        )

    def _start_provider(self) -> None:
        if self._provider is not None:
            self._provider.start(self.ingest_sample)

    def _stop_provider(self) -> None:
        if self._provider is None:
            return
        try:
            self._provider.stop()
        except Exception:
            logger.warning("停止定位失败", exc_info=True)

    def _publish(self, events: list[Event]) -> None:
        for event in events:
            self._bus.publish(event)
