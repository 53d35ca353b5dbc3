"""Persisted reconciled income.

Reconciled income sources are keyed by case id and replaced wholesale on
every reconciliation run. The replace is all-or-nothing: a reader sees either
the complete previous set or the complete new set, never a partially cleared
one. Concurrent replaces for the same case are serialized.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, runtime_checkable

import structlog

from .exceptions import DataIntegrityError
from .models.reconciliation import IncomeSummary, ReconciledIncomeSource

logger = structlog.get_logger()


@runtime_checkable
class IncomeSourceRepository(Protocol):
    """Storage contract for reconciled income.

    Implementations must make ``replace_all`` atomic per case: either the
    whole new set is visible or none of it is. A SQL implementation runs the
    delete and the inserts in one transaction; the in-memory implementation
    swaps an immutable snapshot under a per-case lock.
    """

    def get_sources(self, case_id: str) -> list[ReconciledIncomeSource]:
        """Current reconciled sources for a case (empty if never reconciled)."""
        ...

    def get_summary(self, case_id: str) -> Optional[IncomeSummary]:
        """Summary stored by the last reconciliation, None if never reconciled."""
        ...

    def replace_all(
        self,
        case_id: str,
        sources: Sequence[ReconciledIncomeSource],
        summary: IncomeSummary,
    ) -> None:
        """Atomically replace every reconciled source of a case."""
        ...


@dataclass(frozen=True)
class _CaseSnapshot:
    sources: tuple[ReconciledIncomeSource, ...]
    summary: IncomeSummary
    version: int = 0


@dataclass
class InMemoryIncomeSourceRepository:
    """Thread-safe in-process repository.

    Each case holds one immutable snapshot. Replacing a case builds the new
    snapshot first and publishes it with a single assignment under that
    case's lock.
    """

    _snapshots: dict[str, _CaseSnapshot] = field(default_factory=dict)
    _case_locks: dict[str, threading.Lock] = field(default_factory=dict)
    _registry_lock: threading.Lock = field(default_factory=threading.Lock)

    def _lock_for(self, case_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._case_locks.get(case_id)
            if lock is None:
                lock = threading.Lock()
                self._case_locks[case_id] = lock
            return lock

    def get_sources(self, case_id: str) -> list[ReconciledIncomeSource]:
        snapshot = self._snapshots.get(case_id)
        return list(snapshot.sources) if snapshot else []

    def get_summary(self, case_id: str) -> Optional[IncomeSummary]:
        snapshot = self._snapshots.get(case_id)
        return snapshot.summary if snapshot else None

    def version(self, case_id: str) -> int:
        """Number of replaces applied to a case."""
        snapshot = self._snapshots.get(case_id)
        return snapshot.version if snapshot else 0

    def replace_all(
        self,
        case_id: str,
        sources: Sequence[ReconciledIncomeSource],
        summary: IncomeSummary,
    ) -> None:
        """Replace the full reconciled set of a case.

        Raises:
            DataIntegrityError: If a source or the summary belongs to another
                case, or source ids repeat. Nothing is written in that case.
        """
        foreign = [s.id for s in sources if s.case_id != case_id]
        if foreign or summary.case_id != case_id:
            logger.error(
                "data_integrity_violation",
                case_id=case_id,
                field="case_id",
                foreign_sources=foreign,
                summary_case_id=summary.case_id,
            )
            raise DataIntegrityError(
                f"Reconciled set for case {case_id} contains records of another case",
                field="case_id",
                value=case_id,
                constraint="all sources and the summary belong to the replaced case",
            )

        ids = [s.id for s in sources]
        if len(ids) != len(set(ids)):
            logger.error("data_integrity_violation", case_id=case_id, field="id")
            raise DataIntegrityError(
                f"Reconciled set for case {case_id} contains duplicate source ids",
                field="id",
                constraint="source ids are unique per case",
            )

        with self._lock_for(case_id):
            previous = self._snapshots.get(case_id)
            version = previous.version + 1 if previous else 1
            self._snapshots[case_id] = _CaseSnapshot(
                sources=tuple(sources),
                summary=summary,
                version=version,
            )

        logger.info(
            "reconciled_sources_replaced",
            case_id=case_id,
            source_count=len(sources),
            replaced_count=len(previous.sources) if previous else 0,
            version=version,
        )
