"""Claim orchestration: route, submit and track territory claim transactions.

Submission never blocks on confirmation. The settlement ledger reports the
outcome later through ``on_confirmed`` / ``on_failed``, possibly from another
thread and possibly after other claims were started; everything is keyed by
transaction, never by "the current territory".
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Final, Mapping, Protocol

from path_claim.errors import (
    ClaimInProgress,
    NetworkSwitchRejected,
    SettlementUnavailable,
    TerritoryConflict,
    TransactionFailed,
)
from path_claim.events import (
    ClaimConfirmed,
    ClaimFailed,
    ClaimStillPending,
    ClaimSubmitted,
    Event,
    EventBus,
)
from path_claim.models import (
    ClaimStatus,
    ClaimTransaction,
    Route,
    SettlementEntry,
    Territory,
    TerritoryMetadata,
    TerritoryStatus,
)
from path_claim.recorder import new_id, now_ms
from path_claim.registry import TerritoryRegistry
from path_claim.synthesizer import TerritorySynthesizer

logger = logging.getLogger(__name__)

DEFAULT_BASE_COSTS: Final[Mapping[int, int]] = MappingProxyType(
    {
        7001: 150_000,  # ZetaChain testnet
        7000: 150_000,  # ZetaChain mainnet
        1: 300_000,  # Ethereum
        56: 200_000,  # BSC
        137: 180_000,  # Polygon
    }
)

ERROR_NETWORK_SWITCH_REJECTED: Final[str] = "network_switch_rejected"
ERROR_SUBMIT_FAILED: Final[str] = "submit_failed"


@dataclass(frozen=True, slots=True)
class ClaimParams:
    base_costs: Mapping[int, int] = field(default_factory=lambda: DEFAULT_BASE_COSTS)
    default_base_cost: int = 250_000
    # Returned whenever estimation itself fails; estimates never block a claim.
    fallback_cost: int = 300_000
    # Pending longer than this is reported as "still pending", never auto-failed.
    pending_timeout_ms: int = 2 * 60 * 1000
    # Terminal transactions stay visible this long before they are discarded.
    display_grace_ms: int = 30 * 1000


class SettlementLedger(Protocol):
    def is_ready(self) -> bool: ...

    def key_exists(self, uniqueness_key: str) -> bool: ...

    def submit(self, payload: Mapping[str, Any], network_id: int) -> str:
        """Submit a claim on ``network_id``; returns the ledger's transaction handle."""

    def register_callbacks(
        self,
        on_confirmed: Callable[[str], None],
        on_failed: Callable[[str, str], None],
    ) -> None: ...


class WalletClient(Protocol):
    def current_network_id(self) -> int: ...

    def account_address(self) -> str: ...

    def switch_network(self, network_id: int) -> Future[None]: ...


class CostOracle(Protocol):
    def base_cost(self, network_id: int) -> int: ...


def resolve_route(current_network_id: int, target_network_id: int) -> Route:
    """Direct when already on the target network, cross-network otherwise."""

    if current_network_id == target_network_id:
        return Route.DIRECT
    return Route.CROSS_NETWORK


class ClaimOrchestrator:
    """Drives claim transactions from submission to confirmation or failure."""

    def __init__(
        self,
        registry: TerritoryRegistry,
        synthesizer: TerritorySynthesizer,
        ledger: SettlementLedger,
        wallet: WalletClient,
        *,
        bus: EventBus | None = None,
        params: ClaimParams | None = None,
        cost_oracle: CostOracle | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._registry = registry
        self._synthesizer = synthesizer
        self._ledger = ledger
        self._wallet = wallet
        self._bus = bus or EventBus()
        self._params = params or ClaimParams()
        self._oracle = cost_oracle
        self._clock = clock
        self._lock = threading.RLock()
        self._transactions: dict[str, ClaimTransaction] = {}
        self._by_handle: dict[str, str] = {}
        # Outcomes delivered before submit() returned the handle to us.
        # Only filled while a submit is in flight; cleared when it returns.
        self._early: dict[str, tuple[ClaimStatus, str | None]] = {}
        self._dispatching = False
        self._reported_stale: set[str] = set()
        ledger.register_callbacks(self.on_confirmed, self.on_failed)

    # -- estimation and routing --------------------------------------------

    def resolve_route(self, current_network_id: int, target_network_id: int) -> Route:
        return resolve_route(current_network_id, target_network_id)

    def estimate_cost(self, network_id: int, metadata: TerritoryMetadata) -> int:
        """Base cost for the network times ``1 + 0.1*landmarks + 0.01*difficulty``, rounded up."""

        try:
            if self._oracle is not None:
                base = int(self._oracle.base_cost(network_id))
            else:
                base = int(self._params.base_costs.get(network_id, self._params.default_base_cost))
            # Multiplier in percent keeps the arithmetic exact.
            percent = 100 + 10 * len(metadata.landmarks) + int(metadata.difficulty)
            return -(-base * percent // 100)
        except Exception:
            logger.warning("费用估算失败，使用默认值 %s", self._params.fallback_cost, exc_info=True)
            return self._params.fallback_cost

    # -- submission --------------------------------------------------------

    def submit_claim(self, territory: Territory | str, target_network_id: int) -> str:
        """Start claiming ``territory`` on ``target_network_id``; returns the transaction id.

        Raises:
            UnknownTerritory: If the territory is not in the registry.
            ClaimInProgress: If a claim for it is still pending.
            TerritoryConflict: If it is already claimed, overlaps a held territory,
                or its key is already on the ledger.
            SettlementUnavailable: If the ledger client is not ready.
        """

        territory_id = territory if isinstance(territory, str) else territory.id
        with self._lock:
            current = self._registry.get(territory_id)
            if current.status is TerritoryStatus.PENDING_CLAIM:
                raise ClaimInProgress(f"领地 {territory_id} 已有待确认的占领交易")
            if current.status is TerritoryStatus.CLAIMED:
                raise TerritoryConflict(f"领地 {territory_id} 已被占领")
            self._synthesizer.validate_uniqueness(
                current.bounds,
                self._registry.held(),
                current.uniqueness_key,
                exclude_id=current.id,
                ledger=self._ledger,
            )
            if not self._ledger.is_ready():
                raise SettlementUnavailable("结算服务未就绪")

            source_network_id = self._wallet.current_network_id()
            route = resolve_route(source_network_id, target_network_id)
            tx = ClaimTransaction(
                id=new_id("claim"),
                territory_id=current.id,
                source_network_id=source_network_id,
                target_network_id=target_network_id,
                route=route,
                claimant=self._wallet.account_address(),
                submitted_at_ms=self._clock(),
                cost_estimate=self.estimate_cost(target_network_id, current.metadata),
            )
            self._transactions[tx.id] = tx

            def _mark_pending(t: Territory) -> None:
                t.status = TerritoryStatus.PENDING_CLAIM
                t.network_id = target_network_id
                t.is_cross_network = route is Route.CROSS_NETWORK
                t.settlement_history.append(
                    SettlementEntry(
                        network_id=target_network_id,
                        timestamp_ms=tx.submitted_at_ms,
                        transaction_id=tx.id,
                    )
                )

            self._registry.mutate(current.id, _mark_pending)
            submitted = ClaimSubmitted(tx.snapshot(), route)

        logger.info("提交占领 %s：领地=%s，路由=%s", tx.id, territory_id, route.value)
        self._publish([submitted])

        if route is Route.DIRECT:
            self._dispatch(tx.id)
        else:
            self._switch_then_dispatch(tx.id, target_network_id)
        return tx.id

    def _switch_then_dispatch(self, tx_id: str, target_network_id: int) -> None:
        try:
            future = self._wallet.switch_network(target_network_id)
        except Exception as exc:
            logger.warning("切换网络失败：%s", exc)
            self._publish(self._fail(tx_id, ERROR_NETWORK_SWITCH_REJECTED))
            return
        future.add_done_callback(lambda f: self._after_switch(tx_id, f))

    def _after_switch(self, tx_id: str, future: Future[None]) -> None:
        if future.cancelled():
            error: BaseException | None = NetworkSwitchRejected("network switch cancelled")
        else:
            error = future.exception()
        if error is not None:
            logger.warning("切换网络被拒绝（%s）：%s", tx_id, error)
            self._publish(self._fail(tx_id, ERROR_NETWORK_SWITCH_REJECTED))
            return
        self._dispatch(tx_id)

    def _dispatch(self, tx_id: str) -> None:
        events: list[Event] = []
        with self._lock:
            tx = self._transactions.get(tx_id)
            if tx is None or tx.is_terminal:
                return
            territory = self._registry.get(tx.territory_id)
            payload = {
                "uniqueness_key": territory.uniqueness_key,
                "difficulty": territory.metadata.difficulty,
                "distance_m": territory.session_summary.distance_m,
                "landmarks": list(territory.metadata.landmarks),
                "claimant": tx.claimant,
                "source_network_id": tx.source_network_id,
            }
            self._dispatching = True
            try:
                handle = self._ledger.submit(payload, tx.target_network_id)
            except Exception as exc:
                logger.warning("提交结算失败（%s）：%s", tx_id, exc)
                events.extend(self._fail(tx_id, ERROR_SUBMIT_FAILED))
                early = None
            else:
                tx.ledger_handle = handle
                self._by_handle[handle] = tx_id
                self._registry.mutate(tx.territory_id, lambda t: _stamp_handle(t, tx_id, handle))
                early = self._early.pop(handle, None)
            finally:
                self._dispatching = False
                if self._early:
                    logger.warning("丢弃 %d 个未知句柄的结算结果", len(self._early))
                    self._early.clear()
            if early is not None:
                status, error_kind = early
                if status is ClaimStatus.CONFIRMED:
                    events.extend(self._confirm(tx_id))
                else:
                    events.extend(self._fail(tx_id, error_kind or "unknown"))
        self._publish(events)

    # -- settlement callbacks ----------------------------------------------

    def on_confirmed(self, handle: str) -> None:
        with self._lock:
            tx_id = self._lookup(handle)
            if tx_id is None:
                self._hold_early(handle, ClaimStatus.CONFIRMED, None)
                return
            events = self._confirm(tx_id)
        self._publish(events)

    def on_failed(self, handle: str, error_kind: str) -> None:
        with self._lock:
            tx_id = self._lookup(handle)
            if tx_id is None:
                self._hold_early(handle, ClaimStatus.FAILED, error_kind)
                return
            events = self._fail(tx_id, error_kind)
        self._publish(events)

    def _hold_early(self, handle: str, status: ClaimStatus, error_kind: str | None) -> None:
        if not self._dispatching:
            logger.debug("忽略未知句柄的结算结果：%s", handle)
            return
        self._early[handle] = (status, error_kind)

    def _lookup(self, handle: str) -> str | None:
        if handle in self._by_handle:
            return self._by_handle[handle]
        if handle in self._transactions:
            return handle
        logger.debug("收到未知交易句柄的回调：%s", handle)
        return None

    def _confirm(self, tx_id: str) -> list[Event]:
        tx = self._transactions.get(tx_id)
        if tx is None or tx.is_terminal:
            return []
        now = self._clock()
        tx.status = ClaimStatus.CONFIRMED
        tx.settled_at_ms = now

        def _claimed(t: Territory) -> None:
            t.status = TerritoryStatus.CLAIMED
            t.owner = tx.claimant
            t.claimed_at_ms = now
            t.network_id = tx.target_network_id

        territory = self._registry.mutate(tx.territory_id, _claimed)
        logger.info("占领确认 %s：领地=%s，所有者=%s", tx_id, territory.id, territory.owner)
        return [ClaimConfirmed(tx.snapshot(), territory)]

    def _fail(self, tx_id: str, error_kind: str) -> list[Event]:
        with self._lock:
            tx = self._transactions.get(tx_id)
            if tx is None or tx.is_terminal:
                return []
            tx.status = ClaimStatus.FAILED
            tx.error_kind = error_kind
            tx.settled_at_ms = self._clock()

            def _revert(t: Territory) -> None:
                # A claimed territory never reverts.
                if t.status is TerritoryStatus.PENDING_CLAIM:
                    t.status = TerritoryStatus.CLAIMABLE
                t.settlement_history = [
                    e for e in t.settlement_history if not (e.transaction_id == tx_id and e.handle is None)
                ]

            territory = self._registry.mutate(tx.territory_id, _revert)
            logger.info("占领失败 %s：领地=%s，原因=%s", tx_id, territory.id, error_kind)
            return [ClaimFailed(tx.snapshot(), territory, error_kind)]

    # -- lifecycle ---------------------------------------------------------

    def check_pending(self, now: int | None = None) -> list[ClaimTransaction]:
        """Pending transactions older than the timeout; each is reported once via an event."""

        now = self._clock() if now is None else now
        events: list[Event] = []
        stale: list[ClaimTransaction] = []
        with self._lock:
            for tx in self._transactions.values():
                if tx.status is not ClaimStatus.PENDING:
                    continue
                waited = now - tx.submitted_at_ms
                if waited < self._params.pending_timeout_ms:
                    continue
                stale.append(tx.snapshot())
                if tx.id not in self._reported_stale:
                    self._reported_stale.add(tx.id)
                    events.append(ClaimStillPending(tx.snapshot(), waited))
        self._publish(events)
        return stale

    def prune(self, now: int | None = None) -> int:
        """Discard terminal transactions past the display grace period; returns how many."""

        now = self._clock() if now is None else now
        with self._lock:
            expired = [
                tx
                for tx in self._transactions.values()
                if tx.is_terminal
                and tx.settled_at_ms is not None
                and now - tx.settled_at_ms >= self._params.display_grace_ms
            ]
            for tx in expired:
                del self._transactions[tx.id]
                self._reported_stale.discard(tx.id)
                if tx.ledger_handle is not None:
                    self._by_handle.pop(tx.ledger_handle, None)
        return len(expired)

    def get_transaction(self, tx_id: str) -> ClaimTransaction | None:
        with self._lock:
            tx = self._transactions.get(tx_id)
            return None if tx is None else tx.snapshot()

    def raise_for_status(self, tx_id: str) -> ClaimTransaction:
        """Return the transaction, raising :class:`TransactionFailed` if it failed.

        Raises:
            KeyError: If the transaction is unknown or already pruned.
            TransactionFailed: If the transaction ended in failure.
        """

        tx = self.get_transaction(tx_id)
        if tx is None:
            raise KeyError(tx_id)
        if tx.status is ClaimStatus.FAILED:
            raise TransactionFailed(tx.error_kind or "unknown", f"占领交易 {tx_id} 失败：{tx.error_kind}")
        return tx

    def transactions(self) -> list[ClaimTransaction]:
        with self._lock:
            return [tx.snapshot() for tx in self._transactions.values()]

    def active_transaction(self, territory_id: str) -> ClaimTransaction | None:
        with self._lock:
            for tx in self._transactions.values():
                if tx.territory_id == territory_id and tx.status is ClaimStatus.PENDING:
                    return tx.snapshot()
        return None

    def _publish(self, events: list[Event]) -> None:
        for event in events:
            self._bus.publish(event)


def _stamp_handle(territory: Territory, tx_id: str, handle: str) -> None:
    territory.settlement_history = [
        SettlementEntry(e.network_id, e.timestamp_ms, e.transaction_id, handle)
        if e.transaction_id == tx_id
        else e
        for e in territory.settlement_history
    ]
