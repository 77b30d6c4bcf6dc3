from __future__ import annotations

import math
import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Mapping

import pytest

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from path_claim.geo import EARTH_RADIUS_M
from path_claim.models import LocationSample, Session
from path_claim.recorder import RecorderParams, SessionRecorder

M_PER_DEG = EARTH_RADIUS_M * math.pi / 180.0
START_MS = 1_700_000_000_000
SEATTLE = (47.6062, -122.3321)


class ManualClock:
    def __init__(self, now_ms: int = START_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms


class FakeLedger:
    """In-memory settlement ledger; outcomes are delivered by the test."""

    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.keys: set[str] = set()
        self.submissions: list[tuple[str, dict[str, Any], int]] = []
        self.fail_submit = False
        self._on_confirmed: Callable[[str], None] | None = None
        self._on_failed: Callable[[str, str], None] | None = None

    def is_ready(self) -> bool:
        return self.ready

    def key_exists(self, uniqueness_key: str) -> bool:
        return uniqueness_key in self.keys

    def submit(self, payload: Mapping[str, Any], network_id: int) -> str:
        if self.fail_submit:
            raise RuntimeError("rpc unavailable")
        handle = f"0xhandle{len(self.submissions) + 1}"
        self.submissions.append((handle, dict(payload), network_id))
        return handle

    def register_callbacks(
        self,
        on_confirmed: Callable[[str], None],
        on_failed: Callable[[str, str], None],
    ) -> None:
        self._on_confirmed = on_confirmed
        self._on_failed = on_failed

    def confirm(self, handle: str) -> None:
        for h, payload, _ in self.submissions:
            if h == handle:
                self.keys.add(str(payload["uniqueness_key"]))
        assert self._on_confirmed is not None
        self._on_confirmed(handle)

    def fail(self, handle: str, error_kind: str = "reverted") -> None:
        assert self._on_failed is not None
        self._on_failed(handle, error_kind)


class FakeWallet:
    def __init__(self, network_id: int = 7001, address: str = "0xrunner") -> None:
        self.network_id = network_id
        self.address = address
        self.switch_calls: list[int] = []
        self.auto_complete = True
        self.reject = False
        self.pending: list[tuple[int, Future[None]]] = []

    def current_network_id(self) -> int:
        return self.network_id

    def account_address(self) -> str:
        return self.address

    def switch_network(self, network_id: int) -> Future[None]:
        self.switch_calls.append(network_id)
        future: Future[None] = Future()
        if not self.auto_complete:
            self.pending.append((network_id, future))
        elif self.reject:
            future.set_exception(RuntimeError("user rejected the request"))
        else:
            self.network_id = network_id
            future.set_result(None)
        return future


def square_loop(
    lat0: float,
    lng0: float,
    *,
    side_m: float = 150.0,
    step_m: float = 30.0,
    start_ms: int = START_MS,
    interval_ms: int = 10_000,
    accuracy_m: float = 5.0,
) -> list[LocationSample]:
    """Closed square walked N, E, S, W from ``(lat0, lng0)``; first sample is the start."""

    steps = int(round(side_m / step_m))
    dlat = step_m / M_PER_DEG
    dlng = step_m / (M_PER_DEG * math.cos(math.radians(lat0)))
    moves = [(1, 0)] * steps + [(0, 1)] * steps + [(-1, 0)] * steps + [(0, -1)] * steps
    north = east = 0
    out = [LocationSample(lat0, lng0, start_ms, accuracy_m)]
    for i, (dn, de) in enumerate(moves, start=1):
        north += dn
        east += de
        out.append(
            LocationSample(
                lat0 + north * dlat,
                lng0 + east * dlng,
                start_ms + i * interval_ms,
                accuracy_m,
            )
        )
    return out


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def make_loop() -> Callable[..., list[LocationSample]]:
    return square_loop


@pytest.fixture
def record_loop() -> Callable[..., Session]:
    """Replay a square loop through an unsmoothed recorder and return the completed session."""

    def _record(lat0: float = SEATTLE[0], lng0: float = SEATTLE[1], **kwargs: Any) -> Session:
        samples = square_loop(lat0, lng0, **kwargs)
        clock = ManualClock(samples[0].timestamp_ms)
        recorder = SessionRecorder(params=RecorderParams(smoothing_factor=1.0), clock=clock)
        recorder.start_session(samples[0])
        for s in samples[1:]:
            clock.now_ms = s.timestamp_ms
            recorder.ingest_sample(s)
        session = recorder.complete_session()
        assert session is not None
        return session

    return _record
