"""Income reconciliation engine.

Different documents usually describe the SAME income, not additive income: a
W-2, twelve pay stubs and a year of payroll deposits from one employer are
three views of one salary. The reconciler groups normalized claims by income
source and resolves them into one verified figure per source.

Resolution rules, in order:

1. A reviewer override for the group: its figure, manual_override,
   reconciled. Every record stays attached as superseded evidence.
2. No recurring gross evidence: zero figures, needs_review. Records without
   an extracted amount never count as gross evidence.
3. Authoritative annual document (tax return, then W-2) alongside
   projection-based evidence (pay stubs, bank deposits, 1099s): the
   authoritative figure wins (document_priority). Superseded evidence stays
   in the record for audit.
4. One contributing record: single_source, reconciled at or above the review
   threshold.
5. Several records: confidence-weighted average. A relative spread
   (max - min) / average above the tolerance makes the source a conflict
   carrying a Discrepancy; the weighted average is reported provisionally.

For rules 4 and 5, periodic evidence ending in fewer than three calendar
quarters is noted as a partial-year annualization, and a lone periodic
record loses confidence (``partial_year_factor``). When the group also holds
bank deposits, pay stub net and deposit net within
``net_corroboration_tolerance`` corroborate the pay stub gross and raise
confidence.

Reconciliation is deterministic: source ids are derived from the case id and
the grouping key, so re-running over the same evidence yields identical
sources.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from itertools import combinations
from typing import Mapping, Optional, Sequence

import structlog

from .config import ReconciliationConfig
from .employer_matching import (
    GroupKey,
    best_employer_name,
    employer_similarity,
    group_incomes,
)
from .models.audit import AuditEntry
from .models.extraction import DocumentType, NormalizedIncome
from .models.reconciliation import (
    ConflictingValue,
    DeterminationMethod,
    Discrepancy,
    IncomeEvidence,
    IncomeOverride,
    IncomeSummary,
    ReconciledIncomeSource,
    ReconciliationOutput,
    ReconciliationStatus,
)
from .normalizer import monthly_from_annual, to_cents

logger = structlog.get_logger()


# Highest authority first
AUTHORITATIVE_DOCUMENTS: tuple[DocumentType, ...] = (
    DocumentType.TAX_RETURN,
    DocumentType.W2,
)

SOURCE_ID_NAMESPACE = uuid.UUID("6f1c9a52-3d4e-5b7a-9c0d-2e8f4a6b1c3d")

# Names this similar in the same year are flagged as possibly one payer
SIMILAR_PAYER_THRESHOLD = 0.75

# Above this spread the suggestion asks for more documentation
LARGE_DISCREPANCY = 0.25

# Periodic evidence ending in fewer quarters is a partial-year projection
FULL_YEAR_QUARTERS = 3

# Confidence multiplier for a pay stub corroborated by bank deposits
NET_CORROBORATION_BOOST = 1.1


def source_id(case_id: str, key: GroupKey) -> str:
    """Stable id for the reconciled source of one group."""
    return str(uuid.uuid5(SOURCE_ID_NAMESPACE, f"{case_id}|{key.as_string()}"))


def relative_discrepancy(values: Sequence[Decimal]) -> float:
    """(max - min) / arithmetic mean, 0 for fewer than two values or a zero mean."""
    if len(values) < 2:
        return 0.0
    mean = sum(values, Decimal("0")) / len(values)
    if mean == 0:
        return 0.0
    return float((max(values) - min(values)) / mean)


def weighted_average(values: Sequence[Decimal], weights: Sequence[float]) -> Decimal:
    """Weighted mean; falls back to the plain mean when all weights are zero."""
    decimal_weights = [Decimal(str(w)) for w in weights]
    total_weight = sum(decimal_weights, Decimal("0"))
    if total_weight == 0:
        return sum(values, Decimal("0")) / len(values)
    return sum((v * w for v, w in zip(values, decimal_weights)), Decimal("0")) / total_weight


def quarters_covered(incomes: Sequence[NormalizedIncome]) -> int:
    """Distinct calendar quarters the periodic records end in."""
    return len({
        (i.period_end.month - 1) // 3 + 1
        for i in incomes
        if i.period_end is not None and not i.is_annual_document
    })


def net_gap(group: Sequence[NormalizedIncome]) -> Optional[float]:
    """Relative gap between pay stub net and bank deposit net.

    None unless the group holds both a recurring pay stub and a recurring
    bank statement with an annual net figure.
    """
    def mean_net(document_type: DocumentType) -> Optional[Decimal]:
        nets = [
            i.normalized_annual_net for i in group
            if i.is_recurring and i.document_type == document_type and i.normalized_annual_net
        ]
        return sum(nets, Decimal("0")) / len(nets) if nets else None

    stub = mean_net(DocumentType.PAYSTUB)
    bank = mean_net(DocumentType.BANK_STATEMENT)
    if stub is None or bank is None:
        return None
    return float(abs(stub - bank) / max(stub, bank))


def _resolution_suggestion(
    group: Sequence[NormalizedIncome],
    magnitude: float,
    income_year: int,
) -> str:
    """Human-readable hint for resolving a discrepancy."""
    if magnitude > LARGE_DISCREPANCY:
        return (
            f"Large discrepancy detected for {income_year}. Verify the documents are for "
            f"the same employer and time period and consider requesting additional "
            f"documentation."
        )
    if any(i.is_annual_document for i in group):
        return (
            f"An annual document for {income_year} is on file. Confirm it covers the "
            f"same payer and period and treat it as the official total."
        )
    return (
        f"Variance in {income_year} may be due to raises, bonuses or variable hours. "
        f"A W-2 would provide the definitive annual total."
    )


def _evidence(income: NormalizedIncome, superseded: bool = False) -> IncomeEvidence:
    return IncomeEvidence(
        extraction_id=income.extraction_id,
        document_id=income.document_id,
        document_type=income.document_type,
        document_date=income.document_date,
        extracted_amount=income.raw_amount,
        frequency=income.frequency,
        amount_type=income.amount_type,
        monthly_gross=income.normalized_monthly_gross if income.is_recurring else None,
        annual_gross=income.normalized_annual_gross,
        monthly_net=income.normalized_monthly_net,
        confidence=income.confidence,
        recurring=income.is_recurring,
        superseded=superseded,
    )


class IncomeReconciler:
    """Reconcile normalized income into verified income sources.

    Every group resolution is logged to the structured log and to the
    run's audit log.

    Example:
        reconciler = IncomeReconciler()
        output = reconciler.reconcile("case-1", normalized_incomes)
        print(output.summary.total_monthly_gross)
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        self.config = config or ReconciliationConfig()
        self._audit_log: list[AuditEntry] = []

    def _log_step(
        self,
        step: str,
        input_value: str,
        output_value: str,
        source: str,
        notes: Optional[str] = None,
    ) -> None:
        """Add an entry to the audit log."""
        entry = AuditEntry(
            step=step,
            input_value=input_value,
            output_value=output_value,
            source=source,
            notes=notes,
        )
        self._audit_log.append(entry)
        logger.info(
            "calculation_step",
            step=step,
            input=input_value,
            output=output_value,
            source=source,
        )

    def reconcile(
        self,
        case_id: str,
        incomes: Sequence[NormalizedIncome],
        *,
        calculated_at: Optional[datetime] = None,
        overrides: Optional[Mapping[str, IncomeOverride]] = None,
    ) -> ReconciliationOutput:
        """Reconcile every normalized income of a case.

        Args:
            case_id: Case the evidence belongs to
            incomes: All normalized income for the case
            calculated_at: Timestamp for the summary (default: now)
            overrides: Reviewer-verified figures keyed by source id or by
                ``GroupKey.as_string()``; both are stable across runs

        Returns:
            ReconciliationOutput with sources sorted by year (newest first)
            then employer, the summary and the audit log
        """
        self._audit_log = []
        overrides = overrides or {}

        groups = group_incomes(incomes)
        similar_notes = self._similar_payer_notes(groups)

        applied: set[str] = set()
        sources = []
        for key, members in groups.items():
            sid = source_id(case_id, key)
            override_key = sid if sid in overrides else key.as_string()
            override = overrides.get(override_key)
            if override is not None:
                applied.add(override_key)
            sources.append(
                self._reconcile_group(
                    case_id, key, members, similar_notes.get(key, []), override
                )
            )

        unmatched = sorted(set(overrides) - applied)
        if unmatched:
            logger.warning("income_override_unmatched", case_id=case_id, keys=unmatched)

        sources.sort(key=lambda s: (-s.income_year, s.employer_name.lower(), s.id))

        summary = self.summarize(case_id, sources, calculated_at=calculated_at)
        summary = summary.model_copy(
            update={
                "non_recurring_extractions": sorted(
                    i.extraction_id for i in incomes if not i.is_recurring
                ),
            }
        )

        logger.info(
            "income_reconciled",
            case_id=case_id,
            extraction_count=len(incomes),
            source_count=len(sources),
            total_monthly_gross=str(summary.total_monthly_gross),
            sources_needing_review=len(summary.sources_needing_review),
        )

        return ReconciliationOutput(
            sources=sources,
            summary=summary,
            audit_log=list(self._audit_log),
        )

    def summarize(
        self,
        case_id: str,
        sources: Sequence[ReconciledIncomeSource],
        *,
        calculated_at: Optional[datetime] = None,
    ) -> IncomeSummary:
        """Aggregate reconciled sources into the case summary.

        Only ``reconciled`` sources count toward totals. With
        ``summary_latest_year_only`` only the most recent year per employer
        counts.
        """
        counted = [s for s in sources if s.counts_toward_totals]

        if self.config.summary_latest_year_only:
            latest: dict[str, ReconciledIncomeSource] = {}
            for source in counted:
                employer = source.employer_ein or source.employer_name.lower()
                current = latest.get(employer)
                if current is None or source.income_year > current.income_year:
                    latest[employer] = source
            counted = [s for s in counted if latest.get(s.employer_ein or s.employer_name.lower()) is s]

        total_monthly = sum((s.verified_monthly_gross for s in counted), Decimal("0.00"))
        total_annual = sum((s.verified_annual_gross for s in counted), Decimal("0.00"))
        nets = [s.verified_monthly_net for s in counted if s.verified_monthly_net is not None]
        total_monthly_net = sum(nets, Decimal("0.00")) if nets else None

        needing_review = [
            s.id for s in sources
            if s.status in (ReconciliationStatus.NEEDS_REVIEW, ReconciliationStatus.CONFLICT)
        ]

        return IncomeSummary(
            case_id=case_id,
            sources=list(sources),
            total_monthly_gross=total_monthly,
            total_annual_gross=total_annual,
            total_monthly_net=total_monthly_net,
            sources_needing_review=needing_review,
            all_sources_reconciled=not needing_review,
            last_calculated_at=calculated_at or datetime.now(timezone.utc),
        )

    def _similar_payer_notes(
        self,
        groups: dict[GroupKey, list[NormalizedIncome]],
    ) -> dict[GroupKey, list[str]]:
        """Flag distinct payer names in the same year that look like one payer."""
        notes: dict[GroupKey, list[str]] = {}
        for first, second in combinations(groups, 2):
            if (
                first.income_year != second.income_year
                or first.source_key == second.source_key
                or employer_similarity(first.source_key, second.source_key) < SIMILAR_PAYER_THRESHOLD
            ):
                continue
            for key, other in ((first, second), (second, first)):
                notes.setdefault(key, []).append(
                    f"Payer name resembles {best_employer_name(groups[other])!r}; "
                    f"confirm these are separate sources"
                )
        return notes

    def _reconcile_group(
        self,
        case_id: str,
        key: GroupKey,
        group: list[NormalizedIncome],
        extra_notes: list[str],
        override: Optional[IncomeOverride] = None,
    ) -> ReconciledIncomeSource:
        recurring = [i for i in group if i.is_recurring]
        contributing = [i for i in recurring if i.has_gross]
        authoritative = [i for i in contributing if i.document_type in AUTHORITATIVE_DOCUMENTS]
        projections = [i for i in contributing if i.document_type not in AUTHORITATIVE_DOCUMENTS]

        notes: list[str] = []
        for income in group:
            notes.extend(f"{income.extraction_id}: {note}" for note in income.notes)
        notes.extend(extra_notes)

        common = {
            "id": source_id(case_id, key),
            "case_id": case_id,
            "employer_name": best_employer_name(group),
            "employer_ein": key.ein,
            "income_type": key.income_type,
            "income_year": key.income_year,
        }
        step = f"reconcile_{key.as_string()}"

        if override is not None:
            return self._by_override(common, step, group, override, notes)
        if not contributing:
            return self._without_gross(common, step, group, recurring, notes)
        if authoritative and projections:
            return self._by_document_priority(common, step, group, authoritative, notes)
        if len(contributing) == 1:
            return self._single_source(common, step, group, contributing[0], notes)
        return self._by_weighted_average(common, step, group, contributing, notes)

    def _without_gross(
        self,
        common: dict,
        step: str,
        group: list[NormalizedIncome],
        recurring: list[NormalizedIncome],
        notes: list[str],
    ) -> ReconciledIncomeSource:
        """No recurring gross evidence: report zeros and ask for review."""
        nets = [i.normalized_annual_net for i in recurring if i.normalized_annual_net is not None]
        annual_net = to_cents(sum(nets, Decimal("0")) / len(nets)) if nets else None
        confidence = max((i.confidence for i in recurring), default=0.0)

        notes.append(
            "No recurring gross income evidence; gross reported as 0 pending review"
        )
        self._log_step(
            step=step,
            input_value=f"records={len(group)}, recurring={len(recurring)}, with_gross=0",
            output_value="gross=0.00, status=needs_review",
            source="No gross evidence",
        )
        return ReconciledIncomeSource(
            **common,
            verified_annual_gross=Decimal("0.00"),
            verified_monthly_gross=Decimal("0.00"),
            verified_annual_net=annual_net,
            verified_monthly_net=monthly_from_annual(annual_net) if annual_net is not None else None,
            determination_method=(
                DeterminationMethod.SINGLE_SOURCE
                if len(group) == 1
                else DeterminationMethod.WEIGHTED_AVERAGE
            ),
            evidence=[_evidence(i) for i in group],
            confidence=confidence,
            status=ReconciliationStatus.NEEDS_REVIEW,
            notes=notes,
        )

    def _by_override(
        self,
        common: dict,
        step: str,
        group: list[NormalizedIncome],
        override: IncomeOverride,
        notes: list[str],
    ) -> ReconciledIncomeSource:
        """A reviewer's figure replaces the computed one; all evidence is kept."""
        annual = to_cents(override.annual_gross)
        annual_net = to_cents(override.annual_net) if override.annual_net is not None else None
        notes.append(f"Manual override by {override.verified_by}: {override.reason}")
        self._log_step(
            step=step,
            input_value=f"records={len(group)}, verified_by={override.verified_by}",
            output_value=f"annual={annual}, status=reconciled",
            source="Manual override",
            notes=override.reason,
        )
        return ReconciledIncomeSource(
            **common,
            verified_annual_gross=annual,
            verified_monthly_gross=monthly_from_annual(annual),
            verified_annual_net=annual_net,
            verified_monthly_net=monthly_from_annual(annual_net) if annual_net is not None else None,
            determination_method=DeterminationMethod.MANUAL_OVERRIDE,
            evidence=[_evidence(i, superseded=True) for i in group],
            confidence=1.0,
            status=ReconciliationStatus.RECONCILED,
            notes=notes,
            verified_by=override.verified_by,
            verified_at=override.verified_at,
        )

    def _status_for(self, confidence: float) -> ReconciliationStatus:
        if confidence >= self.config.review_threshold:
            return ReconciliationStatus.RECONCILED
        return ReconciliationStatus.NEEDS_REVIEW

    def _corroborate(
        self,
        group: list[NormalizedIncome],
        confidence: float,
        notes: list[str],
    ) -> float:
        """Compare pay stub net with bank deposits; agreement raises confidence."""
        gap = net_gap(group)
        if gap is None:
            return confidence
        if gap <= self.config.net_corroboration_tolerance:
            notes.append(
                f"Pay stub gross corroborated by bank statement net deposits "
                f"({gap * 100:.1f}% apart)"
            )
            return min(1.0, confidence * NET_CORROBORATION_BOOST)
        notes.append(f"Bank statement net deposits differ from pay stub net by {gap * 100:.1f}%")
        return confidence

    def _by_document_priority(
        self,
        common: dict,
        step: str,
        group: list[NormalizedIncome],
        authoritative: list[NormalizedIncome],
        notes: list[str],
    ) -> ReconciledIncomeSource:
        """Authoritative annual document supersedes projections."""
        chosen = sorted(
            authoritative,
            key=lambda i: (
                AUTHORITATIVE_DOCUMENTS.index(i.document_type),
                -i.confidence,
                i.extraction_id,
            ),
        )[0]
        superseded = [
            i for i in group
            if i.extraction_id != chosen.extraction_id and i.is_recurring and i.has_gross
        ]

        projected = [
            i.normalized_annual_gross for i in superseded
            if i.document_type not in AUTHORITATIVE_DOCUMENTS
        ]
        if projected and chosen.normalized_annual_gross:
            projected_mean = sum(projected, Decimal("0")) / len(projected)
            variance = abs(chosen.normalized_annual_gross - projected_mean) / chosen.normalized_annual_gross
            notes.append(
                f"{chosen.document_type.value} figure {chosen.normalized_annual_gross} supersedes "
                f"{len(projected)} projection(s) averaging {to_cents(projected_mean)} "
                f"({float(variance) * 100:.1f}% difference)"
            )

        status = self._status_for(chosen.confidence)
        self._log_step(
            step=step,
            input_value=(
                f"authoritative={chosen.extraction_id}({chosen.document_type.value}), "
                f"superseded={[i.extraction_id for i in superseded]}"
            ),
            output_value=f"annual={chosen.normalized_annual_gross}, status={status.value}",
            source="Document priority: tax return > W-2 > projections",
        )

        superseded_ids = {i.extraction_id for i in superseded}
        return ReconciledIncomeSource(
            **common,
            verified_annual_gross=chosen.normalized_annual_gross,
            verified_monthly_gross=chosen.normalized_monthly_gross,
            verified_annual_net=chosen.normalized_annual_net,
            verified_monthly_net=chosen.normalized_monthly_net,
            determination_method=DeterminationMethod.DOCUMENT_PRIORITY,
            evidence=[_evidence(i, i.extraction_id in superseded_ids) for i in group],
            confidence=chosen.confidence,
            status=status,
            notes=notes,
        )

    def _single_source(
        self,
        common: dict,
        step: str,
        group: list[NormalizedIncome],
        only: NormalizedIncome,
        notes: list[str],
    ) -> ReconciledIncomeSource:
        confidence = only.confidence
        if not only.is_annual_document:
            covered = quarters_covered([only])
            if covered < FULL_YEAR_QUARTERS:
                confidence *= self.config.partial_year_factor
                notes.append(
                    f"Annualized from partial year data ({covered} of 4 quarters covered)"
                )
        confidence = round(self._corroborate(group, confidence, notes), 4)

        status = self._status_for(confidence)
        if status == ReconciliationStatus.NEEDS_REVIEW:
            notes.append(
                f"Confidence {confidence:.2f} below review threshold "
                f"{self.config.review_threshold:.2f}"
            )
        self._log_step(
            step=step,
            input_value=f"{only.extraction_id}({only.document_type.value}), confidence={confidence}",
            output_value=f"annual={only.normalized_annual_gross}, status={status.value}",
            source="Single source",
        )
        return ReconciledIncomeSource(
            **common,
            verified_annual_gross=only.normalized_annual_gross,
            verified_monthly_gross=only.normalized_monthly_gross,
            verified_annual_net=only.normalized_annual_net,
            verified_monthly_net=only.normalized_monthly_net,
            determination_method=DeterminationMethod.SINGLE_SOURCE,
            evidence=[_evidence(i) for i in group],
            confidence=confidence,
            status=status,
            notes=notes,
        )

    def _by_weighted_average(
        self,
        common: dict,
        step: str,
        group: list[NormalizedIncome],
        contributing: list[NormalizedIncome],
        notes: list[str],
    ) -> ReconciledIncomeSource:
        weights = [i.confidence for i in contributing]
        annual = to_cents(
            weighted_average([i.normalized_annual_gross for i in contributing], weights)
        )
        monthly = monthly_from_annual(annual)

        with_net = [i for i in contributing if i.normalized_annual_net is not None]
        annual_net: Optional[Decimal] = None
        if with_net:
            annual_net = to_cents(
                weighted_average(
                    [i.normalized_annual_net for i in with_net],
                    [i.confidence for i in with_net],
                )
            )

        periodic = [i for i in contributing if not i.is_annual_document]
        covered = quarters_covered(periodic)
        if periodic and covered < FULL_YEAR_QUARTERS:
            notes.append(
                f"Annualized from partial year data ({covered} of 4 quarters covered)"
            )
        confidence = round(self._corroborate(group, sum(weights) / len(weights), notes), 4)
        monthly_values = [i.normalized_monthly_gross for i in contributing]
        magnitude = relative_discrepancy(monthly_values)

        discrepancy: Optional[Discrepancy] = None
        if magnitude > self.config.discrepancy_tolerance:
            status = ReconciliationStatus.CONFLICT
            discrepancy = Discrepancy(
                conflicting_values=[
                    ConflictingValue(
                        extraction_id=i.extraction_id,
                        document_type=i.document_type,
                        monthly_gross=i.normalized_monthly_gross,
                        confidence=i.confidence,
                    )
                    for i in contributing
                ],
                minimum=min(monthly_values),
                maximum=max(monthly_values),
                average=to_cents(sum(monthly_values, Decimal("0")) / len(monthly_values)),
                magnitude=round(magnitude, 4),
                source_ids=[i.extraction_id for i in contributing],
                suggested_resolution=_resolution_suggestion(
                    group, magnitude, common["income_year"]
                ),
            )
            notes.append(
                f"Evidence differs by {magnitude * 100:.1f}% (tolerance "
                f"{self.config.discrepancy_tolerance * 100:.1f}%); weighted average is provisional"
            )
        else:
            status = ReconciliationStatus.RECONCILED

        self._log_step(
            step=step,
            input_value=", ".join(
                f"{i.extraction_id}={i.normalized_monthly_gross}@{i.confidence}"
                for i in contributing
            ),
            output_value=f"monthly={monthly}, discrepancy={magnitude:.4f}, status={status.value}",
            source="Confidence-weighted average",
        )

        return ReconciledIncomeSource(
            **common,
            verified_annual_gross=annual,
            verified_monthly_gross=monthly,
            verified_annual_net=annual_net,
            verified_monthly_net=monthly_from_annual(annual_net) if annual_net is not None else None,
            determination_method=DeterminationMethod.WEIGHTED_AVERAGE,
            evidence=[_evidence(i) for i in group],
            confidence=confidence,
            status=status,
            discrepancy=discrepancy,
            notes=notes,
        )
