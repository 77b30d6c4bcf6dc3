"""Tests for the JSON snapshot/journal stores and the record codecs."""

from __future__ import annotations

import json
from pathlib import Path

from path_claim.models import SettlementEntry, TerritoryStatus
from path_claim.registry import TerritoryRegistry
from path_claim.storage import (
    JsonDiskCache,
    JsonRecordStore,
    session_from_record,
    session_to_record,
    territory_from_record,
    territory_to_record,
)
from path_claim.synthesizer import TerritorySynthesizer


def test_journal_survives_without_flush(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    cache = JsonDiskCache(path)
    cache.set("a", {"v": 1})
    cache.set("a", {"v": 2})

    reopened = JsonDiskCache(path)

    assert reopened.get("a") == {"v": 2}
    assert not path.exists()


def test_flush_writes_snapshot_and_clears_journal(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    cache = JsonDiskCache(path)
    cache.set("a", {"v": 1})

    cache.flush()

    assert json.loads(path.read_text(encoding="utf-8")) == {"a": {"v": 1}}
    assert not (tmp_path / "cache.journal.jsonl").exists()


def test_corrupt_snapshot_is_backed_up_and_journal_replayed(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    (tmp_path / "cache.journal.jsonl").write_text(
        json.dumps({"k": "b", "v": {"v": 3}}) + "\n" + "{broken tail\n",
        encoding="utf-8",
    )

    cache = JsonDiskCache(path)

    assert cache.values() == [{"v": 3}]
    assert (tmp_path / "cache.json.broken").read_text(encoding="utf-8") == "{not json"


def test_ensure_persistent_files_never_clears(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "cache.json"
    cache = JsonDiskCache(path)
    cache.ensure_persistent_files()
    cache.set("a", {"v": 1})
    cache.flush()

    JsonDiskCache(path).ensure_persistent_files()

    assert JsonDiskCache(path).get("a") == {"v": 1}


def test_session_record_round_trip(record_loop) -> None:
    session = record_loop()

    restored = session_from_record(json.loads(json.dumps(session_to_record(session))))

    assert restored == session


def test_territory_record_round_trip(record_loop) -> None:
    territory = TerritorySynthesizer(TerritoryRegistry()).synthesize(record_loop())
    territory.status = TerritoryStatus.CLAIMED
    territory.owner = "0xrunner"
    territory.settlement_history.append(SettlementEntry(7001, 1_700_000_000_000, "claim_1", "0xhandle1"))

    restored = territory_from_record(json.loads(json.dumps(territory_to_record(territory))))

    assert restored == territory


def test_registry_persists_changes_and_reloads(tmp_path: Path, record_loop) -> None:
    path = tmp_path / "territories.json"
    store = JsonRecordStore(path)
    registry = TerritoryRegistry(store)
    territory = TerritorySynthesizer(registry).synthesize(record_loop())

    def _claim(t) -> None:
        t.status = TerritoryStatus.CLAIMED

    registry.mutate(territory.id, _claim)
    store.flush()

    reloaded = TerritoryRegistry(JsonRecordStore(path))
    assert reloaded.load() == 1
    assert reloaded.get(territory.id).status is TerritoryStatus.CLAIMED
    assert [t.id for t in reloaded.held()] == [territory.id]


def test_registry_skips_unreadable_records(tmp_path: Path) -> None:
    store = JsonRecordStore(tmp_path / "territories.json")
    store.save({"id": "broken", "bounds": {}})

    registry = TerritoryRegistry(store)

    assert registry.load() == 0
    assert len(registry) == 0


def test_registry_hands_out_copies(record_loop) -> None:
    registry = TerritoryRegistry()
    territory = TerritorySynthesizer(registry).synthesize(record_loop())

    copy = registry.get(territory.id)
    copy.status = TerritoryStatus.CLAIMED
    copy.settlement_history.append(SettlementEntry(1, 0, "x"))

    stored = registry.get(territory.id)
    assert stored.status is TerritoryStatus.CLAIMABLE
    assert stored.settlement_history == []
