"""Extraction normalizer.

Converts one raw income claim into a canonical monthly/annual figure.
Normalization is pure and deterministic: the same extraction always yields
the same NormalizedIncome. Missing optional fields degrade to null figures
and lower confidence rather than failing.

Frequency multipliers (periods per year, monthly = annual / 12):
    weekly        52      ->  x 52/12
    biweekly      26      ->  x 26/12
    semi_monthly  24      ->  x 2
    monthly       12      ->  x 1
    annual         1      ->  / 12
    one_time      excluded from monthly income
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

import structlog

from .config import ReconciliationConfig
from .employer_matching import normalize_ein, normalize_employer_name
from .exceptions import DataIntegrityError
from .models.extraction import (
    AmountType,
    DocumentType,
    IncomeType,
    NormalizationMethod,
    NormalizedIncome,
    PayFrequency,
    RawExtractionBase,
)

logger = structlog.get_logger()


CENTS = Decimal("0.01")
MONTHS_PER_YEAR = Decimal("12")
DAYS_PER_YEAR = Decimal("365")

PERIODS_PER_YEAR: dict[PayFrequency, Decimal] = {
    PayFrequency.WEEKLY: Decimal("52"),
    PayFrequency.BIWEEKLY: Decimal("26"),
    PayFrequency.SEMI_MONTHLY: Decimal("24"),
    PayFrequency.MONTHLY: Decimal("12"),
    PayFrequency.ANNUAL: Decimal("1"),
}


def to_cents(amount: Decimal) -> Decimal:
    """Round a money amount to cents (half up)."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def annualize(amount: Decimal, frequency: PayFrequency) -> Decimal:
    """Convert a per-period amount to an annual amount.

    Raises:
        ValueError: For one-time amounts, which have no annual equivalent
    """
    if frequency not in PERIODS_PER_YEAR:
        raise ValueError(f"{frequency.value} amounts cannot be annualized")
    return amount * PERIODS_PER_YEAR[frequency]


def monthly_from_annual(annual: Decimal) -> Decimal:
    return to_cents(annual / MONTHS_PER_YEAR)


def income_year(extraction: RawExtractionBase) -> int:
    """Year the income was earned.

    Priority: explicit tax year, period end, period start, document date.
    """
    if extraction.tax_year:
        return extraction.tax_year
    for candidate in (extraction.period_end, extraction.period_start):
        if candidate is not None:
            return candidate.year
    return extraction.document_date.year


def default_income_type(document_type: DocumentType) -> IncomeType:
    """1099 compensation is self-employment income; everything else wages."""
    if document_type == DocumentType.FORM_1099:
        return IncomeType.SELF_EMPLOYMENT
    return IncomeType.EMPLOYMENT


def ytd_extrapolate(ytd_amount: Decimal, as_of: date) -> Decimal:
    """Extrapolate a year-to-date amount to a full year by day of year."""
    day_of_year = Decimal(as_of.timetuple().tm_yday)
    return ytd_amount / day_of_year * DAYS_PER_YEAR


class ExtractionNormalizer:
    """Normalize raw extractions into monthly and annual figures.

    Confidence is the extraction's own confidence scaled by the document
    type's reliability weight. Net-only evidence without a YTD gross figure
    has no gross and loses ``net_only_penalty`` confidence (floored at 0).

    Example:
        normalizer = ExtractionNormalizer()
        normalized = normalizer.normalize(paystub)
        print(normalized.normalized_monthly_gross)
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        self.config = config or ReconciliationConfig()

    def normalize_all(self, extractions: Iterable[RawExtractionBase]) -> list[NormalizedIncome]:
        return [self.normalize(extraction) for extraction in extractions]

    def normalize(self, extraction: RawExtractionBase) -> NormalizedIncome:
        """Normalize one extraction.

        Raises:
            DataIntegrityError: If extraction_confidence lies outside [0, 1]
        """
        self._check_confidence(extraction)

        document_type = DocumentType(extraction.document_type)
        weight = self.config.document_weights.get(document_type.value, 1.0)
        confidence = extraction.extraction_confidence * weight
        notes = list(extraction.intake_notes)

        annual_gross: Optional[Decimal] = None
        monthly_gross: Optional[Decimal] = None
        annual_net: Optional[Decimal] = None
        monthly_net: Optional[Decimal] = None
        is_recurring = True

        if extraction.raw_amount is None:
            # Absent evidence stays absent; the reconciler asks for review
            method = NormalizationMethod.MISSING_AMOUNT
            is_recurring = extraction.frequency != PayFrequency.ONE_TIME
            notes.append("No amount extracted; excluded from income figures")

        elif extraction.frequency == PayFrequency.ONE_TIME:
            method = NormalizationMethod.NON_RECURRING
            is_recurring = False
            monthly_gross = Decimal("0.00")
            if extraction.amount_type == AmountType.GROSS:
                annual_gross = to_cents(extraction.raw_amount)
            else:
                annual_net = to_cents(extraction.raw_amount)
            notes.append(
                f"One-time payment of {extraction.raw_amount} excluded from monthly income"
            )

        elif extraction.amount_type == AmountType.GROSS:
            annual_gross = to_cents(annualize(extraction.raw_amount, extraction.frequency))
            monthly_gross = monthly_from_annual(annual_gross)
            method = (
                NormalizationMethod.DIRECT
                if extraction.frequency == PayFrequency.ANNUAL
                else NormalizationMethod.MULTIPLIED
            )
            if document_type == DocumentType.PAYSTUB:
                notes.extend(self._ytd_cross_check(extraction, annual_gross))
            if extraction.ytd_gross and extraction.ytd_net:
                annual_net = to_cents(annual_gross * extraction.ytd_net / extraction.ytd_gross)
                monthly_net = monthly_from_annual(annual_net)

        else:
            annual_net = to_cents(annualize(extraction.raw_amount, extraction.frequency))
            monthly_net = monthly_from_annual(annual_net)
            method, annual_gross, gross_note = self._gross_from_net(extraction, annual_net)
            notes.append(gross_note)
            if annual_gross is None:
                confidence = max(0.0, confidence - self.config.net_only_penalty)
            else:
                monthly_gross = monthly_from_annual(annual_gross)

        normalized = NormalizedIncome(
            extraction_id=extraction.id,
            document_id=extraction.document_id,
            document_type=document_type,
            document_date=extraction.document_date,
            income_type=extraction.income_type or default_income_type(document_type),
            income_year=income_year(extraction),
            payer_name=extraction.payer_name,
            source_key=normalize_employer_name(extraction.payer_name),
            payer_ein=normalize_ein(extraction.payer_ein),
            raw_amount=extraction.raw_amount,
            frequency=extraction.frequency,
            amount_type=extraction.amount_type,
            normalized_monthly_gross=monthly_gross,
            normalized_annual_gross=annual_gross,
            normalized_monthly_net=monthly_net,
            normalized_annual_net=annual_net,
            method=method,
            is_recurring=is_recurring,
            confidence=round(confidence, 4),
            notes=notes,
            period_start=extraction.period_start,
            period_end=extraction.period_end,
        )

        logger.debug(
            "extraction_normalized",
            extraction_id=extraction.id,
            document_type=document_type.value,
            method=method.value,
            monthly_gross=str(monthly_gross) if monthly_gross is not None else None,
            confidence=normalized.confidence,
        )
        return normalized

    def _check_confidence(self, extraction: RawExtractionBase) -> None:
        value = extraction.extraction_confidence
        # NaN fails both comparisons
        if not (0.0 <= value <= 1.0):
            logger.error(
                "data_integrity_violation",
                extraction_id=extraction.id,
                field="extraction_confidence",
                value=value,
            )
            raise DataIntegrityError(
                f"Extraction {extraction.id} has confidence {value} outside [0, 1]",
                field="extraction_confidence",
                value=value,
                constraint="0 <= confidence <= 1",
            )

    def _ytd_cross_check(
        self,
        extraction: RawExtractionBase,
        annual_gross: Decimal,
    ) -> list[str]:
        """Compare the YTD extrapolation with the direct annualization.

        Divergence only adds a note; the direct figure stands.
        """
        as_of = extraction.period_end or extraction.document_date
        if not extraction.ytd_gross or annual_gross <= 0:
            return []
        extrapolated = to_cents(ytd_extrapolate(extraction.ytd_gross, as_of))
        variance = abs(extrapolated - annual_gross) / annual_gross
        if variance <= Decimal(str(self.config.ytd_variance_note_threshold)):
            return []
        return [
            f"YTD extrapolation {extrapolated} differs from direct annualization "
            f"{annual_gross} by {variance * 100:.1f}%: possible raise, bonus or "
            f"variable hours"
        ]

    def _gross_from_net(
        self,
        extraction: RawExtractionBase,
        annual_net: Decimal,
    ) -> tuple[NormalizationMethod, Optional[Decimal], str]:
        """Derive a gross figure for net evidence, only from YTD gross."""
        if extraction.ytd_gross and extraction.ytd_net:
            ratio = extraction.ytd_gross / extraction.ytd_net
            return (
                NormalizationMethod.YTD_RATIO,
                to_cents(annual_net * ratio),
                f"Gross derived from YTD gross/net ratio {ratio:.4f}",
            )
        if extraction.ytd_gross:
            as_of = extraction.period_end or extraction.document_date
            return (
                NormalizationMethod.YTD_EXTRAPOLATED,
                to_cents(ytd_extrapolate(extraction.ytd_gross, as_of)),
                f"Gross extrapolated from YTD gross {extraction.ytd_gross} as of {as_of.isoformat()}",
            )
        return (
            NormalizationMethod.NET_ONLY,
            None,
            "Net amount only, no gross figure available",
        )
