"""The territory set shared by the synthesizer and the claim orchestrator."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from path_claim.errors import UnknownTerritory
from path_claim.models import Territory
from path_claim.storage import RecordStore, territory_from_record, territory_to_record

logger = logging.getLogger(__name__)


class TerritoryRegistry:
    """Single source of truth for territories.

    Readers always get copies. Writes go through :meth:`add` and :meth:`mutate`
    and are persisted to the optional store.
    """

    def __init__(self, store: RecordStore | None = None) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._territories: dict[str, Territory] = {}

    def load(self) -> int:
        """Load persisted territories; returns how many were loaded."""

        if self._store is None:
            return 0
        loaded = 0
        with self._lock:
            for raw in self._store.load_all():
                try:
                    territory = territory_from_record(raw)
                except (KeyError, TypeError, ValueError):
                    logger.warning("跳过无法解析的领地记录：%r", raw.get("id"))
                    continue
                self._territories[territory.id] = territory
                loaded += 1
        return loaded

    def add(self, territory: Territory) -> Territory:
        with self._lock:
            self._territories[territory.id] = territory.snapshot()
            self._persist(territory)
            return territory.snapshot()

    def get(self, territory_id: str) -> Territory:
        with self._lock:
            try:
                return self._territories[territory_id].snapshot()
            except KeyError:
                raise UnknownTerritory(territory_id) from None

    def mutate(self, territory_id: str, change: Callable[[Territory], None]) -> Territory:
        """Apply ``change`` to the stored territory under the lock; returns a copy."""

        with self._lock:
            try:
                territory = self._territories[territory_id]
            except KeyError:
                raise UnknownTerritory(territory_id) from None
            change(territory)
            self._persist(territory)
            return territory.snapshot()

    def snapshot(self) -> list[Territory]:
        with self._lock:
            return [t.snapshot() for t in self._territories.values()]

    def held(self) -> list[Territory]:
        """Territories holding their key exclusively (claimed or pending claim)."""

        with self._lock:
            return [t.snapshot() for t in self._territories.values() if t.holds_key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._territories)

    def _persist(self, territory: Territory) -> None:
        if self._store is not None:
            self._store.save(territory_to_record(territory))
