"""Outbound operations of the engine.

The service is the only place that does I/O. It fetches raw extractions from
the configured collaborators in parallel with a bounded timeout, runs the
pure normalizer and reconciler over the evidence that arrived, and swaps the
persisted reconciled set atomically. Means test runs are recomputed from the
persisted income and the case facts on every call.

Error policy:
- missing or malformed case context raises CaseValidationError immediately
- a malformed extraction is skipped and recorded by id
- a failed or slow collaborator degrades the run; the summary is flagged
  with ``evidence_complete = False`` and the collaborator name
- data-integrity violations propagate and fail the run
"""

from __future__ import annotations

import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

import structlog

from .config import EngineConfig
from .exceptions import (
    CaseValidationError,
    DataIntegrityError,
    ExtractionParseError,
    ExtractionSourceError,
)
from .intake import parse_extraction
from .logging import bind_case_context, clear_case_context
from .means_test import MeansTestCalculator, monthly_series_from_sources, validate_case_input
from .models.audit import AuditSeverity, AuditTrail
from .models.extraction import RawExtractionBase
from .models.means_test import CaseFacts, MeansTestInput, MeansTestResult
from .models.reconciliation import IncomeOverride, IncomeSummary, ReconciliationOutput
from .normalizer import ExtractionNormalizer
from .reconciler import IncomeReconciler
from .repository import IncomeSourceRepository
from .standards import StandardsTables

logger = structlog.get_logger()


@runtime_checkable
class ExtractionSource(Protocol):
    """A collaborator that supplies raw income extractions for a case.

    ``fetch`` returns payload mappings (or already parsed extraction models).
    It may be slow or fail; the service bounds the wait.
    """

    name: str

    def fetch(self, case_id: str) -> Sequence[Any]:
        ...


@runtime_checkable
class CaseFactsProvider(Protocol):
    """Reads household, expense and debt facts from case storage."""

    def get_case_facts(self, case_id: str) -> Optional[Union[CaseFacts, Mapping[str, Any]]]:
        """Facts for a case as CaseFacts or a raw row, None when the case does not exist."""
        ...


@runtime_checkable
class IncomeOverrideProvider(Protocol):
    """Reads reviewer overrides for a case, keyed by source id or group key."""

    def get_overrides(self, case_id: str) -> Mapping[str, IncomeOverride]:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BankruptcyEngineService:
    """Read and recompute operations for income and the means test.

    Example:
        service = BankruptcyEngineService(
            repository=InMemoryIncomeSourceRepository(),
            sources=[paystub_source, document_source],
            case_facts=facts_provider,
        )
        output = service.recompute_income("case-1")
        result = service.get_means_test("case-1")
    """

    def __init__(
        self,
        repository: IncomeSourceRepository,
        sources: Sequence[ExtractionSource],
        case_facts: CaseFactsProvider,
        config: Optional[EngineConfig] = None,
        standards: Optional[StandardsTables] = None,
        clock: Callable[[], datetime] = _utc_now,
        overrides: Optional[IncomeOverrideProvider] = None,
    ):
        self.repository = repository
        self.sources = list(sources)
        self.case_facts = case_facts
        self.overrides = overrides
        self.config = config or EngineConfig()
        self.standards = standards
        self.clock = clock

    # ------------------------------------------------------------------
    # Income
    # ------------------------------------------------------------------

    def get_income_summary(self, case_id: str) -> IncomeSummary:
        """Current persisted summary for a case.

        A case that was never reconciled yields an empty summary flagged as
        not reconciled, so absence of evidence is explicit.
        """
        self._require_case_id(case_id)
        summary = self.repository.get_summary(case_id)
        if summary is not None:
            return summary
        return IncomeSummary(
            case_id=case_id,
            sources=[],
            total_monthly_gross=Decimal("0.00"),
            total_annual_gross=Decimal("0.00"),
            total_monthly_net=None,
            sources_needing_review=[],
            all_sources_reconciled=False,
            last_calculated_at=self.clock(),
            evidence_complete=False,
        )

    def recompute_income(
        self,
        case_id: str,
        overrides: Optional[Mapping[str, IncomeOverride]] = None,
    ) -> ReconciliationOutput:
        """Re-run normalization and reconciliation over all available evidence.

        The persisted set for the case is replaced all-or-nothing. Reviewer
        overrides come from ``overrides`` when given, otherwise from the
        configured override provider, and are re-applied on every run.

        Raises:
            CaseValidationError: If the case id is empty
            DataIntegrityError: If the evidence violates an integrity invariant
        """
        self._require_case_id(case_id)
        bind_case_context(case_id)
        trail = AuditTrail(run_id=str(uuid.uuid4()), case_id=case_id)
        try:
            return self._recompute_income(case_id, trail, overrides)
        except DataIntegrityError as e:
            trail.add_error(
                code="DATA_INTEGRITY",
                message=e.message,
                exception=e,
                is_recoverable=False,
            )
            trail.fail()
            logger.error("income_recompute_failed", case_id=case_id, error=e.message)
            raise
        finally:
            clear_case_context()

    def _recompute_income(
        self,
        case_id: str,
        trail: AuditTrail,
        overrides: Optional[Mapping[str, IncomeOverride]],
    ) -> ReconciliationOutput:
        if overrides is None and self.overrides is not None:
            overrides = self.overrides.get_overrides(case_id)
        payloads, unavailable = self._fetch_all(case_id, trail)

        extractions: list[RawExtractionBase] = []
        skipped: list[str] = []
        seen_ids: set[str] = set()
        for source_name, payload in payloads:
            try:
                extraction = parse_extraction(payload)
            except ExtractionParseError as e:
                reference = e.extraction_id or f"{source_name}:unidentified"
                skipped.append(reference)
                trail.add_error(
                    code="EXTRACTION_SKIPPED",
                    message=e.message,
                    reference=reference,
                    is_recoverable=True,
                )
                logger.warning(
                    "extraction_parse_failed",
                    case_id=case_id,
                    source=source_name,
                    extraction_id=e.extraction_id,
                    errors=e.errors,
                )
                continue

            if extraction.id in seen_ids:
                trail.add_warning(
                    code="DUPLICATE_EXTRACTION",
                    message=f"Extraction {extraction.id} supplied more than once; first copy kept",
                    reference=extraction.id,
                    severity=AuditSeverity.INFO,
                    requires_review=False,
                )
                continue
            seen_ids.add(extraction.id)
            extractions.append(extraction)

        normalized = ExtractionNormalizer(self.config.reconciliation).normalize_all(extractions)
        output = IncomeReconciler(self.config.reconciliation).reconcile(
            case_id, normalized, calculated_at=self.clock(), overrides=overrides
        )

        summary = output.summary.model_copy(
            update={
                "evidence_complete": not unavailable,
                "unavailable_sources": unavailable,
                "skipped_extractions": sorted(skipped),
            }
        )
        self.repository.replace_all(case_id, output.sources, summary)

        for source in output.sources:
            if not source.counts_toward_totals:
                trail.add_warning(
                    code=f"SOURCE_{source.status.value.upper()}",
                    message=f"{source.employer_name} ({source.income_year}) excluded from totals",
                    reference=source.id,
                )
        trail.add_entries(output.audit_log)
        trail.complete()

        logger.info(
            "income_recomputed",
            case_id=case_id,
            run_id=trail.run_id,
            extraction_count=len(extractions),
            skipped_count=len(skipped),
            unavailable_sources=unavailable,
        )

        return output.model_copy(update={"summary": summary, "trail": trail})

    def _fetch_all(
        self,
        case_id: str,
        trail: AuditTrail,
    ) -> tuple[list[tuple[str, Any]], list[str]]:
        """Fetch every collaborator in parallel within one shared deadline.

        Returns:
            (source name, payload) pairs from the collaborators that answered,
            and the names of those that failed or timed out
        """
        if not self.sources:
            return [], []

        timeout = self.config.service.fetch_timeout
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.service.max_workers, len(self.sources)),
            thread_name_prefix="extraction-fetch",
        )
        payloads: list[tuple[str, Any]] = []
        unavailable: list[str] = []
        try:
            futures: list[tuple[ExtractionSource, Future]] = [
                (source, executor.submit(source.fetch, case_id)) for source in self.sources
            ]
            deadline = time.monotonic() + timeout
            for source, future in futures:
                try:
                    result = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeoutError:
                    future.cancel()
                    error = ExtractionSourceError(
                        f"Extraction source {source.name} timed out after {timeout}s",
                        source_name=source.name,
                        operation="fetch",
                        timed_out=True,
                    )
                except Exception as e:
                    error = ExtractionSourceError(
                        f"Extraction source {source.name} failed: {e}",
                        source_name=source.name,
                        operation="fetch",
                    )
                else:
                    payloads.extend((source.name, payload) for payload in result or [])
                    continue

                unavailable.append(source.name)
                trail.add_error(
                    code="SOURCE_UNAVAILABLE",
                    message=error.message,
                    reference=source.name,
                    is_recoverable=True,
                )
                logger.warning(
                    "extraction_source_failed",
                    case_id=case_id,
                    source=source.name,
                    timed_out=error.timed_out,
                    error=error.message,
                )
        finally:
            # Never wait on a hung collaborator
            executor.shutdown(wait=False, cancel_futures=True)

        return payloads, unavailable

    # ------------------------------------------------------------------
    # Means test
    # ------------------------------------------------------------------

    def get_means_test(self, case_id: str, as_of: Optional[date] = None) -> MeansTestResult:
        """Means test over the persisted income and current case facts.

        Nothing is cached: every call recomputes from the source-of-truth data.
        """
        self._require_case_id(case_id)
        return self._means_test(case_id, as_of)

    def recompute_means_test(self, case_id: str, as_of: Optional[date] = None) -> MeansTestResult:
        """Recompute income from all evidence, then run the means test."""
        self.recompute_income(case_id)
        return self._means_test(case_id, as_of)

    def _means_test(self, case_id: str, as_of: Optional[date]) -> MeansTestResult:
        raw_facts = self.case_facts.get_case_facts(case_id)
        if raw_facts is None:
            raise CaseValidationError(
                f"Case {case_id} not found",
                field="case_id",
                value=case_id,
            )
        facts = validate_case_input(CaseFacts, raw_facts)

        summary = self.get_income_summary(case_id)
        extra_warnings: list[str] = []

        entries = list(facts.income_entries)
        if not entries:
            as_of = as_of or facts.filing_date or self.clock().date()
            entries = monthly_series_from_sources(self.repository.get_sources(case_id), as_of)
            if summary.sources_needing_review:
                extra_warnings.append(
                    f"{len(summary.sources_needing_review)} income source(s) need review "
                    "and are excluded from current monthly income"
                )
            if not summary.evidence_complete:
                extra_warnings.append(
                    "Income evidence is incomplete; unavailable sources: "
                    + (", ".join(summary.unavailable_sources) or "none reconciled yet")
                )

        data = validate_case_input(MeansTestInput, dict(
            case_id=case_id,
            state=facts.state,
            county=facts.county,
            household_size=facts.household_size,
            income_entries=entries,
            monthly_expenses=facts.monthly_expenses,
            secured_debt_total=facts.secured_debt_total,
            unsecured_debt_total=facts.unsecured_debt_total,
            secured_debt_monthly_payments=facts.secured_debt_monthly_payments,
            priority_debt_monthly_payments=facts.priority_debt_monthly_payments,
            vehicle_count=facts.vehicle_count,
            other_expenses=facts.other_expenses,
        ))
        calculator = MeansTestCalculator(self.config.means_test, standards=self.standards)
        result = calculator.calculate(data)

        if extra_warnings:
            result = result.model_copy(
                update={
                    "warnings": result.warnings + extra_warnings,
                    "is_complete": False,
                }
            )
        return result

    @staticmethod
    def _require_case_id(case_id: str) -> None:
        if not case_id or not str(case_id).strip():
            raise CaseValidationError("Case id is required", field="case_id", value=case_id)
