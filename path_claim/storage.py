"""JSON persistence for sessions, territories and the landmark cache.

Every store is a JSON snapshot (``key -> record``) plus an append-only journal
(``<stem>.journal.jsonl``) so that records saved between two flushes survive a crash.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from path_claim.models import (
    GeoPoint,
    Lap,
    LocationSample,
    PathSegment,
    Rarity,
    Session,
    SessionState,
    SessionSummary,
    SettlementEntry,
    Territory,
    TerritoryBounds,
    TerritoryMetadata,
    TerritoryStatus,
)

logger = logging.getLogger(__name__)


class JsonDiskCache:
    """A tiny JSON key/value store persisted on disk (key -> record dict)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        # Write-ahead journal for crash-safe incremental persistence.
        # Example: territories.json -> territories.journal.jsonl
        self._journal_path = self._path.with_name(f"{self._path.stem}.journal.jsonl")
        self._data: dict[str, dict[str, Any]] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def ensure_persistent_files(self) -> None:
        """Ensure snapshot and journal files exist on disk (never clears content)."""

        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("{}", encoding="utf-8")

        if not self._journal_path.exists():
            self._journal_path.parent.mkdir(parents=True, exist_ok=True)
            self._journal_path.write_text("", encoding="utf-8")

    def load(self) -> None:
        """Load snapshot and replay the journal (no-op if already loaded)."""

        if self._loaded:
            return
        self._data = {}
        if self._path.exists():
            text = self._path.read_text(encoding="utf-8").strip()
            if text:
                try:
                    self._data = json.loads(text)
                except json.JSONDecodeError:
                    # Snapshot corrupted: keep a backup and rebuild from the journal
                    backup = self._path.with_suffix(self._path.suffix + ".broken")
                    backup.write_text(text, encoding="utf-8")
                    logger.warning("快照文件损坏，已备份到 %s", backup)
                    self._data = {}

        self._replay_journal()
        self._loaded = True

    def get(self, key: str) -> dict[str, Any] | None:
        self.load()
        return self._data.get(key)

    def set(self, key: str, value: dict[str, Any]) -> None:
        self.load()
        self._data[key] = value
        self._append_journal(key, value)

    def values(self) -> list[dict[str, Any]]:
        self.load()
        return list(self._data.values())

    def flush(self) -> None:
        """Persist the snapshot atomically and clear the journal."""

        self.load()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
        self._clear_journal()

    def _append_journal(self, key: str, value: dict[str, Any]) -> None:
        self._journal_path.parent.mkdir(parents=True, exist_ok=True)
        record = {"k": key, "v": value}
        with self._journal_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def _replay_journal(self) -> None:
        if not self._journal_path.exists():
            return
        try:
            with self._journal_path.open("r", encoding="utf-8") as f:
                for line in f:
                    s = line.strip()
                    if not s:
                        continue
                    try:
                        rec = json.loads(s)
                    except json.JSONDecodeError:
                        # ignore broken tail lines
                        continue
                    k = rec.get("k")
                    v = rec.get("v")
                    if isinstance(k, str) and isinstance(v, dict):
                        self._data[k] = v
        except OSError:
            logger.warning("无法读取日志文件 %s，忽略", self._journal_path)

    def _clear_journal(self) -> None:
        try:
            if self._journal_path.exists():
                self._journal_path.unlink()
        except OSError:
            return


class RecordStore(Protocol):
    """Persistence collaborator: save one record, load them all."""

    def save(self, record: dict[str, Any]) -> None: ...

    def load_all(self) -> list[dict[str, Any]]: ...


class JsonRecordStore:
    """RecordStore backed by :class:`JsonDiskCache`, keyed by the record's ``id``."""

    def __init__(self, path: str | Path) -> None:
        self._cache = JsonDiskCache(path)

    def save(self, record: dict[str, Any]) -> None:
        self._cache.set(str(record["id"]), record)

    def load_all(self) -> list[dict[str, Any]]:
        return self._cache.values()

    def flush(self) -> None:
        self._cache.flush()


# ---------------------------------------------------------------------------
# Record codecs
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _sample(raw: dict[str, Any]) -> LocationSample:
    accuracy = raw.get("accuracy_m")
    return LocationSample(
        lat=float(raw["lat"]),
        lng=float(raw["lng"]),
        timestamp_ms=int(raw["timestamp_ms"]),
        accuracy_m=None if accuracy is None else float(accuracy),
    )


def session_to_record(session: Session) -> dict[str, Any]:
    """JSON-serializable dict for a session."""

    return _plain(asdict(session))


def session_from_record(raw: dict[str, Any]) -> Session:
    return Session(
        id=str(raw["id"]),
        start_time_ms=int(raw["start_time_ms"]),
        samples=[_sample(s) for s in raw.get("samples", [])],
        segments=[
            PathSegment(
                id=str(seg["id"]),
                start_sample=_sample(seg["start_sample"]),
                end_sample=_sample(seg["end_sample"]),
                distance_m=float(seg["distance_m"]),
                duration_ms=int(seg["duration_ms"]),
                avg_speed_mps=float(seg["avg_speed_mps"]),
            )
            for seg in raw.get("segments", [])
        ],
        laps=[Lap(**lap) for lap in raw.get("laps", [])],
        total_distance_m=float(raw.get("total_distance_m", 0.0)),
        total_duration_ms=int(raw.get("total_duration_ms", 0)),
        avg_speed_mps=float(raw.get("avg_speed_mps", 0.0)),
        max_speed_mps=float(raw.get("max_speed_mps", 0.0)),
        state=SessionState(raw.get("state", SessionState.COMPLETED.value)),
        territory_eligible=bool(raw.get("territory_eligible", False)),
        end_time_ms=raw.get("end_time_ms"),
        uniqueness_key=raw.get("uniqueness_key"),
    )


def territory_to_record(territory: Territory) -> dict[str, Any]:
    return _plain(asdict(territory))


def territory_from_record(raw: dict[str, Any]) -> Territory:
    b = raw["bounds"]
    m = raw["metadata"]
    return Territory(
        id=str(raw["id"]),
        uniqueness_key=str(raw["uniqueness_key"]),
        bounds=TerritoryBounds(
            north=float(b["north"]),
            south=float(b["south"]),
            east=float(b["east"]),
            west=float(b["west"]),
            center=GeoPoint(lat=float(b["center"]["lat"]), lng=float(b["center"]["lng"])),
        ),
        metadata=TerritoryMetadata(
            name=str(m["name"]),
            description=str(m["description"]),
            landmarks=tuple(m.get("landmarks", ())),
            difficulty=int(m["difficulty"]),
            rarity=Rarity(m["rarity"]),
            estimated_reward=int(m["estimated_reward"]),
        ),
        session_summary=SessionSummary(**raw["session_summary"]),
        status=TerritoryStatus(raw.get("status", TerritoryStatus.CLAIMABLE.value)),
        owner=raw.get("owner"),
        claimed_at_ms=raw.get("claimed_at_ms"),
        network_id=raw.get("network_id"),
        is_cross_network=raw.get("is_cross_network"),
        settlement_history=[SettlementEntry(**e) for e in raw.get("settlement_history", [])],
    )
