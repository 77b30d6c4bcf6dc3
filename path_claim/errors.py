"""Exceptions raised by the recorder, synthesizer and claim orchestrator."""

from __future__ import annotations


class PathClaimError(Exception):
    """Base class for all errors raised by path_claim."""


class AlreadyRecording(PathClaimError):
    """A session is already active (recording or paused)."""


class IneligibleSession(PathClaimError):
    """The session does not qualify as a territory."""


class TerritoryConflict(PathClaimError):
    """The candidate overlaps a held territory or its key is already on the ledger."""


class ClaimInProgress(PathClaimError):
    """A claim transaction for this territory is still pending."""


class UnknownTerritory(PathClaimError, KeyError):
    """The territory id is not part of the registry."""


class NetworkSwitchRejected(PathClaimError):
    """The wallet refused or failed to switch to the target network."""


class SettlementUnavailable(PathClaimError):
    """The settlement ledger client is not ready."""


class TransactionFailed(PathClaimError):
    """A submitted claim transaction ended in failure."""

    def __init__(self, error_kind: str, message: str | None = None) -> None:
        super().__init__(message or f"transaction failed: {error_kind}")
        self.error_kind = error_kind
