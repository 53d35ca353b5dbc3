"""Reconciled income models.

A ReconciledIncomeSource is the single verified figure for one payer,
income type and year, backed by the evidence that produced it. The full set
for a case is regenerated on every reconciliation run.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .audit import AuditEntry, AuditTrail
from .extraction import AmountType, DocumentType, IncomeType, PayFrequency


class DeterminationMethod(str, Enum):
    """How the verified figure was chosen."""
    SINGLE_SOURCE = "single_source"
    WEIGHTED_AVERAGE = "weighted_average"
    DOCUMENT_PRIORITY = "document_priority"
    MANUAL_OVERRIDE = "manual_override"


class ReconciliationStatus(str, Enum):
    """Review state of a reconciled source."""
    RECONCILED = "reconciled"
    NEEDS_REVIEW = "needs_review"
    CONFLICT = "conflict"


class IncomeEvidence(BaseModel):
    """One extraction's contribution to a reconciled source."""

    model_config = {"frozen": True}

    extraction_id: str
    document_id: str
    document_type: DocumentType
    document_date: date
    extracted_amount: Optional[Decimal]
    frequency: PayFrequency
    amount_type: AmountType
    monthly_gross: Optional[Decimal] = None
    annual_gross: Optional[Decimal] = None
    monthly_net: Optional[Decimal] = None
    confidence: float = Field(ge=0.0, le=1.0)
    recurring: bool = True
    superseded: bool = Field(
        default=False,
        description="Retained for audit but overridden by an authoritative document or a manual override",
    )


class IncomeOverride(BaseModel):
    """A reviewer-verified figure for one income source.

    Overrides are inputs to reconciliation, not edits of stored sources: the
    persisted set is regenerated on every run, so the override is applied
    again each time and the evidence it replaces stays attached.
    """

    model_config = {"frozen": True}

    annual_gross: Decimal = Field(ge=0)
    annual_net: Optional[Decimal] = Field(default=None, ge=0)
    reason: str = Field(min_length=1)
    verified_by: str = Field(min_length=1)
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConflictingValue(BaseModel):
    """A single value participating in a discrepancy."""

    model_config = {"frozen": True}

    extraction_id: str
    document_type: DocumentType
    monthly_gross: Decimal
    confidence: float


class Discrepancy(BaseModel):
    """Disagreement between evidence for the same source beyond tolerance."""

    model_config = {"frozen": True}

    conflicting_values: list[ConflictingValue]
    minimum: Decimal
    maximum: Decimal
    average: Decimal
    magnitude: float = Field(ge=0.0, description="(max - min) / average")
    source_ids: list[str]
    suggested_resolution: str


class ReconciledIncomeSource(BaseModel):
    """Verified income for one payer, income type and year."""

    model_config = {"frozen": True}

    id: str
    case_id: str
    employer_name: str
    employer_ein: Optional[str] = None
    income_type: IncomeType
    income_year: int

    verified_annual_gross: Decimal
    verified_monthly_gross: Decimal
    verified_annual_net: Optional[Decimal] = None
    verified_monthly_net: Optional[Decimal] = None

    determination_method: DeterminationMethod
    evidence: list[IncomeEvidence] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    status: ReconciliationStatus
    discrepancy: Optional[Discrepancy] = None
    notes: list[str] = Field(default_factory=list)

    # Set only for manual overrides
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None

    @model_validator(mode="after")
    def conflict_has_discrepancy(self):
        if self.status == ReconciliationStatus.CONFLICT and self.discrepancy is None:
            raise ValueError("a conflict source must carry a discrepancy")
        return self

    @property
    def counts_toward_totals(self) -> bool:
        return self.status == ReconciliationStatus.RECONCILED


class IncomeSummary(BaseModel):
    """Case-level aggregation of reconciled sources.

    Only sources in status ``reconciled`` contribute to the totals. Sources
    needing review or in conflict are listed in ``sources_needing_review``.
    """

    case_id: str
    sources: list[ReconciledIncomeSource] = Field(default_factory=list)
    total_monthly_gross: Decimal = Decimal("0.00")
    total_annual_gross: Decimal = Decimal("0.00")
    total_monthly_net: Optional[Decimal] = None
    sources_needing_review: list[str] = Field(default_factory=list)
    all_sources_reconciled: bool = True
    last_calculated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    # Completeness of the evidence the run was based on
    evidence_complete: bool = True
    unavailable_sources: list[str] = Field(default_factory=list)
    skipped_extractions: list[str] = Field(default_factory=list)
    non_recurring_extractions: list[str] = Field(default_factory=list)

    @property
    def source_count(self) -> int:
        return len(self.sources)


class ReconciliationOutput(BaseModel):
    """Everything one reconciliation run produces."""

    sources: list[ReconciledIncomeSource]
    summary: IncomeSummary
    audit_log: list[AuditEntry] = Field(default_factory=list)
    trail: Optional[AuditTrail] = Field(
        default=None,
        description="Run-level trail (skipped evidence, unavailable sources) when run by the service",
    )
