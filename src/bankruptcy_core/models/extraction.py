"""Income evidence models: raw document extractions and their normalized form.

Raw extractions arrive from the external document-understanding collaborator
(OCR + LLM field extraction) or from manually entered income records. Each
document type is its own tagged variant so that field validation happens at
the boundary instead of trusting arbitrary JSON structure.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# ENUMERATIONS
# =============================================================================

class DocumentType(str, Enum):
    """Income-bearing document types."""
    PAYSTUB = "paystub"
    W2 = "w2"
    TAX_RETURN = "tax_return"
    BANK_STATEMENT = "bank_statement"
    FORM_1099 = "1099"


class PayFrequency(str, Enum):
    """Frequency of the amount shown on the document."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMI_MONTHLY = "semi_monthly"
    MONTHLY = "monthly"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


class AmountType(str, Enum):
    """Whether the amount is before or after deductions."""
    GROSS = "gross"
    NET = "net"


class IncomeType(str, Enum):
    """Kind of income a source represents."""
    EMPLOYMENT = "employment"
    SELF_EMPLOYMENT = "self_employment"
    SOCIAL_SECURITY = "social_security"
    PENSION = "pension"
    RENTAL = "rental"
    OTHER = "other"


class NormalizationMethod(str, Enum):
    """How the normalized gross figure was obtained."""
    DIRECT = "direct"                      # Annual document, amount used as-is
    MULTIPLIED = "multiplied"              # Periodic amount x frequency multiplier
    YTD_RATIO = "ytd_ratio"                # Net amount grossed up by YTD gross/net ratio
    YTD_EXTRAPOLATED = "ytd_extrapolated"  # Net amount, gross from YTD gross by day of year
    NET_ONLY = "net_only"                  # No gross figure available
    NON_RECURRING = "non_recurring"        # One-time payment, excluded from monthly figures
    MISSING_AMOUNT = "missing_amount"      # No amount on the document, no figures at all


ANNUAL_DOCUMENT_TYPES = frozenset({
    DocumentType.W2,
    DocumentType.TAX_RETURN,
    DocumentType.FORM_1099,
})


# =============================================================================
# RAW EXTRACTIONS (tagged variants)
# =============================================================================

Money = Annotated[Decimal, Field(ge=0)]


class RawExtractionBase(BaseModel):
    """Fields shared by every raw income extraction. Immutable once created."""

    model_config = {"frozen": True}

    id: str = Field(min_length=1, description="Extraction id")
    document_id: str = Field(min_length=1, description="Originating document id")
    document_date: date
    raw_amount: Optional[Money] = Field(
        description="Amount exactly as shown on the document; None when none was extracted",
    )
    frequency: PayFrequency
    amount_type: AmountType = AmountType.GROSS
    payer_name: str = Field(description="Employer or payer name as printed")
    payer_ein: Optional[str] = None
    income_type: Optional[IncomeType] = Field(
        default=None,
        description="Explicit income type; derived from the document type when absent",
    )

    period_start: Optional[date] = None
    period_end: Optional[date] = None
    tax_year: Optional[int] = Field(default=None, ge=1900, le=2100)

    ytd_gross: Optional[Money] = None
    ytd_net: Optional[Money] = None
    ytd_federal_withheld: Optional[Money] = None

    hours_worked: Optional[Money] = None
    hourly_rate: Optional[Money] = None

    # Range is checked by the normalizer so violations are reported, not clamped
    extraction_confidence: float
    source_text: Optional[str] = None
    intake_notes: list[str] = Field(
        default_factory=list,
        description="Assumptions made while converting the payload",
    )

    @field_validator("payer_name")
    @classmethod
    def payer_name_present(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("payer_name cannot be empty")
        return stripped

    @field_validator("payer_ein")
    @classmethod
    def blank_ein_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def period_is_ordered(self):
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must be on or after period_start")
        return self


class _AnnualDocumentMixin:
    """Annual summary documents carry one full-year figure."""

    @field_validator("frequency")
    @classmethod
    def must_be_annual(cls, v: PayFrequency) -> PayFrequency:
        if v not in (PayFrequency.ANNUAL, PayFrequency.ONE_TIME):
            raise ValueError(f"annual documents must report an annual amount, got {v.value}")
        return v


class PaystubExtraction(RawExtractionBase):
    """One pay stub: a single pay period, optionally with YTD figures."""
    document_type: Literal["paystub"] = "paystub"


class W2Extraction(_AnnualDocumentMixin, RawExtractionBase):
    """W-2 Box 1 wages for one employer and tax year."""
    document_type: Literal["w2"] = "w2"
    frequency: PayFrequency = PayFrequency.ANNUAL


class TaxReturnExtraction(_AnnualDocumentMixin, RawExtractionBase):
    """Wages attributed to one payer on a filed tax return."""
    document_type: Literal["tax_return"] = "tax_return"
    frequency: PayFrequency = PayFrequency.ANNUAL


class BankStatementExtraction(RawExtractionBase):
    """Recurring payroll deposits identified on a bank statement.

    Deposits are net of deductions unless stated otherwise.
    """
    document_type: Literal["bank_statement"] = "bank_statement"
    amount_type: AmountType = AmountType.NET
    is_payroll_deposit: bool = True
    deposit_description: Optional[str] = None


class Form1099Extraction(_AnnualDocumentMixin, RawExtractionBase):
    """1099 compensation from one payer."""
    document_type: Literal["1099"] = "1099"
    frequency: PayFrequency = PayFrequency.ANNUAL
    form_variant: Optional[str] = Field(default=None, description="e.g. NEC, MISC")


RawIncomeExtraction = Annotated[
    Union[
        PaystubExtraction,
        W2Extraction,
        TaxReturnExtraction,
        BankStatementExtraction,
        Form1099Extraction,
    ],
    Field(discriminator="document_type"),
]


# =============================================================================
# NORMALIZED INCOME
# =============================================================================

class NormalizedIncome(BaseModel):
    """Canonical monthly/annual view of one raw extraction.

    A pure function of its RawIncomeExtraction; never mutated.
    """

    model_config = {"frozen": True}

    extraction_id: str = Field(description="Provenance: originating extraction id")
    document_id: str
    document_type: DocumentType
    document_date: date
    income_type: IncomeType
    income_year: int

    payer_name: str
    source_key: str = Field(description="Normalized payer identity used for grouping")
    payer_ein: Optional[str] = Field(default=None, description="EIN, digits only")

    raw_amount: Optional[Decimal]
    frequency: PayFrequency
    amount_type: AmountType

    normalized_monthly_gross: Optional[Decimal] = None
    normalized_annual_gross: Optional[Decimal] = None
    normalized_monthly_net: Optional[Decimal] = None
    normalized_annual_net: Optional[Decimal] = None

    method: NormalizationMethod
    is_recurring: bool = True
    confidence: float = Field(ge=0.0, le=1.0)
    notes: list[str] = Field(default_factory=list)

    period_start: Optional[date] = None
    period_end: Optional[date] = None

    @property
    def is_annual_document(self) -> bool:
        return self.document_type in ANNUAL_DOCUMENT_TYPES

    @property
    def has_gross(self) -> bool:
        return self.normalized_annual_gross is not None
