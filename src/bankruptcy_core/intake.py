"""Boundary parsing of raw income evidence.

Income claims reach the engine in three shapes:

1. Canonical extraction records (snake_case, one per claim) handed over by
   the document-understanding collaborator.
2. LLM field-extraction output for one document: ``{"incomes": [...]}`` with
   camelCase keys.
3. Manually entered income records kept on the case.

All three are validated into the tagged-variant extraction types. A payload
that cannot be validated raises ExtractionParseError carrying its id, so the
caller can skip it without losing the rest of the evidence.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .exceptions import ExtractionParseError
from .models.extraction import (
    ANNUAL_DOCUMENT_TYPES,
    AmountType,
    DocumentType,
    PayFrequency,
    RawExtractionBase,
    RawIncomeExtraction,
)

logger = structlog.get_logger()


FREQUENCY_ALIASES: dict[str, PayFrequency] = {
    "weekly": PayFrequency.WEEKLY,
    "bi-weekly": PayFrequency.BIWEEKLY,
    "biweekly": PayFrequency.BIWEEKLY,
    "semi-monthly": PayFrequency.SEMI_MONTHLY,
    "semi_monthly": PayFrequency.SEMI_MONTHLY,
    "semimonthly": PayFrequency.SEMI_MONTHLY,
    "monthly": PayFrequency.MONTHLY,
    "annual": PayFrequency.ANNUAL,
    "annually": PayFrequency.ANNUAL,
    "yearly": PayFrequency.ANNUAL,
    "one-time": PayFrequency.ONE_TIME,
    "one_time": PayFrequency.ONE_TIME,
}

DOCUMENT_TYPE_ALIASES: dict[str, DocumentType] = {
    "paystub": DocumentType.PAYSTUB,
    "pay_stub": DocumentType.PAYSTUB,
    "pay-stub": DocumentType.PAYSTUB,
    "w2": DocumentType.W2,
    "w-2": DocumentType.W2,
    "tax_return": DocumentType.TAX_RETURN,
    "tax-return": DocumentType.TAX_RETURN,
    "1040": DocumentType.TAX_RETURN,
    "bank_statement": DocumentType.BANK_STATEMENT,
    "bank-statement": DocumentType.BANK_STATEMENT,
    "1099": DocumentType.FORM_1099,
    "1099-misc": DocumentType.FORM_1099,
    "1099-nec": DocumentType.FORM_1099,
}

# Manually entered figures are typed by a person from a document in hand
MANUAL_RECORD_CONFIDENCE = 0.8
# LLM output that omits its own confidence score
DEFAULT_EXTRACTION_CONFIDENCE = 0.7
UNKNOWN_PAYER = "Unknown Employer"

# camelCase keys used by the field-extraction prompt
_DOCUMENT_INCOME_KEYS: dict[str, str] = {
    "employerName": "payer_name",
    "employerEIN": "payer_ein",
    "rawAmount": "raw_amount",
    "payFrequency": "frequency",
    "amountType": "amount_type",
    "periodStart": "period_start",
    "periodEnd": "period_end",
    "taxYear": "tax_year",
    "ytdGross": "ytd_gross",
    "ytdNet": "ytd_net",
    "ytdFederalWithheld": "ytd_federal_withheld",
    "hoursWorked": "hours_worked",
    "hourlyRate": "hourly_rate",
    "confidence": "extraction_confidence",
    "incomeType": "income_type",
}

_DECIMAL_FIELDS = (
    "raw_amount",
    "ytd_gross",
    "ytd_net",
    "ytd_federal_withheld",
    "hours_worked",
    "hourly_rate",
)

_extraction_adapter: TypeAdapter[RawIncomeExtraction] = TypeAdapter(RawIncomeExtraction)


def map_frequency(value: Optional[str]) -> Optional[PayFrequency]:
    """Map a free-form frequency string to PayFrequency, None if unknown."""
    if value is None:
        return None
    if isinstance(value, PayFrequency):
        return value
    return FREQUENCY_ALIASES.get(str(value).strip().lower())


def map_document_type(value: Optional[str]) -> Optional[DocumentType]:
    """Map a free-form document type string to DocumentType, None if unknown."""
    if value is None:
        return None
    if isinstance(value, DocumentType):
        return value
    return DOCUMENT_TYPE_ALIASES.get(str(value).strip().lower())


def _to_decimal(value: Any, field: str, extraction_id: Optional[str]) -> Optional[Decimal]:
    """Convert numbers and currency strings to Decimal; blanks become None."""
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip()
        if not value:
            return None
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ExtractionParseError(
            f"Invalid numeric value for {field}: {value!r}",
            extraction_id=extraction_id,
            errors=[f"{field}: not a number"],
        ) from e


def _validation_messages(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
        for err in error.errors()
    ]


def _validate(fields: dict[str, Any]) -> RawIncomeExtraction:
    """Validate a canonical field dict into its tagged variant."""
    extraction_id = fields.get("id")
    document_type = fields.get("document_type")
    try:
        return _extraction_adapter.validate_python(fields)
    except ValidationError as e:
        messages = _validation_messages(e)
        logger.warning(
            "extraction_validation_failed",
            extraction_id=extraction_id,
            document_type=document_type,
            errors=messages,
        )
        raise ExtractionParseError(
            f"Extraction {extraction_id} failed validation",
            extraction_id=str(extraction_id) if extraction_id is not None else None,
            document_type=str(document_type) if document_type is not None else None,
            errors=messages,
        ) from e


def parse_extraction(payload: Mapping[str, Any]) -> RawIncomeExtraction:
    """Parse one canonical extraction record.

    Document type and frequency accept the usual spellings ("w-2",
    "bi-weekly", ...). Unlike manual records, unknown values are rejected.

    Raises:
        ExtractionParseError: If the payload is not a valid extraction
    """
    if isinstance(payload, RawExtractionBase):
        return payload  # type: ignore[return-value]
    if not isinstance(payload, Mapping):
        raise ExtractionParseError(
            f"Extraction payload must be a mapping, got {type(payload).__name__}",
            errors=["payload: not a mapping"],
        )

    fields = dict(payload)
    raw_id = fields.get("id")
    extraction_id = str(raw_id) if raw_id is not None else None

    raw_type = fields.get("document_type")
    document_type = map_document_type(raw_type)
    if document_type is None:
        raise ExtractionParseError(
            f"Unknown document type {raw_type!r}",
            extraction_id=extraction_id,
            document_type=str(raw_type) if raw_type is not None else None,
            errors=["document_type: unknown"],
        )
    fields["document_type"] = document_type.value

    if "frequency" in fields and fields["frequency"] is not None:
        frequency = map_frequency(fields["frequency"])
        if frequency is None:
            raise ExtractionParseError(
                f"Unknown frequency {fields['frequency']!r}",
                extraction_id=extraction_id,
                document_type=document_type.value,
                errors=["frequency: unknown"],
            )
        fields["frequency"] = frequency
    else:
        fields.pop("frequency", None)

    for name in _DECIMAL_FIELDS:
        if name in fields:
            fields[name] = _to_decimal(fields[name], name, extraction_id)

    return _validate(fields)


class ManualIncomeRecord(BaseModel):
    """Income record entered by hand on the case."""

    id: str = Field(min_length=1)
    employer: Optional[str] = None
    gross_pay: Optional[Decimal] = None
    net_pay: Optional[Decimal] = None
    pay_period: Optional[str] = None
    pay_date: Optional[date] = None
    ytd_gross: Optional[Decimal] = None
    income_source: Optional[str] = None


def manual_record_to_extraction(
    record: ManualIncomeRecord,
    *,
    today: Optional[date] = None,
) -> RawIncomeExtraction:
    """Convert a manually entered income record into an extraction.

    A missing gross pay stays None so the income surfaces for review instead
    of counting as $0. No payer becomes "Unknown Employer". Unknown
    frequencies and document types fall back to monthly and paystub,
    recorded in ``intake_notes``.

    Raises:
        ExtractionParseError: If the converted record is still invalid
    """
    notes: list[str] = []

    document_type = map_document_type(record.income_source or "paystub")
    if document_type is None:
        notes.append(f"Unknown income source {record.income_source!r}, treated as paystub")
        document_type = DocumentType.PAYSTUB

    default_period = "annual" if document_type in ANNUAL_DOCUMENT_TYPES else "monthly"
    frequency = map_frequency(record.pay_period or default_period)
    if frequency is None:
        notes.append(f"Unknown pay period {record.pay_period!r}, treated as monthly")
        frequency = PayFrequency.MONTHLY

    if record.gross_pay is None:
        notes.append("No gross pay entered")

    document_date = record.pay_date or today or date.today()
    if record.pay_date is None:
        notes.append(f"No pay date entered, dated {document_date.isoformat()}")

    fields: dict[str, Any] = {
        "id": f"manual_{record.id}",
        "document_id": record.id,
        "document_type": document_type.value,
        "document_date": document_date,
        "raw_amount": record.gross_pay,
        "frequency": frequency,
        "amount_type": AmountType.GROSS,
        "payer_name": (record.employer or "").strip() or UNKNOWN_PAYER,
        "period_end": record.pay_date,
        "ytd_gross": record.ytd_gross,
        "extraction_confidence": MANUAL_RECORD_CONFIDENCE,
        "intake_notes": notes,
    }
    return _validate(fields)


def parse_document_incomes(
    document_id: str,
    document_type: str,
    content: Mapping[str, Any],
    *,
    today: Optional[date] = None,
) -> tuple[list[RawIncomeExtraction], list[ExtractionParseError]]:
    """Parse LLM field-extraction output for one document.

    Each entry of ``content["incomes"]`` becomes one extraction with id
    ``doc_<document_id>_<n>``. Entries that fail validation are returned as
    errors instead of aborting the whole document.

    Returns:
        Tuple of (parsed extractions, per-entry parse errors)

    Raises:
        ExtractionParseError: If the content has no ``incomes`` list
    """
    incomes = content.get("incomes") if isinstance(content, Mapping) else None
    if not isinstance(incomes, list):
        raise ExtractionParseError(
            f"Document {document_id} extraction has no incomes list",
            extraction_id=f"doc_{document_id}",
            document_type=document_type,
            errors=["incomes: missing or not a list"],
        )

    mapped_type = map_document_type(document_type)
    type_note: Optional[str] = None
    if mapped_type is None:
        type_note = f"Unknown document type {document_type!r}, treated as paystub"
        mapped_type = DocumentType.PAYSTUB

    extractions: list[RawIncomeExtraction] = []
    errors: list[ExtractionParseError] = []

    for index, income in enumerate(incomes, start=1):
        extraction_id = f"doc_{document_id}_{index}"
        try:
            extractions.append(
                _document_income_to_extraction(
                    income, extraction_id, document_id, mapped_type, type_note, today
                )
            )
        except ExtractionParseError as e:
            logger.warning(
                "extraction_parse_failed",
                extraction_id=extraction_id,
                document_id=document_id,
                errors=e.errors,
            )
            errors.append(e)

    return extractions, errors


def _document_income_to_extraction(
    income: Any,
    extraction_id: str,
    document_id: str,
    document_type: DocumentType,
    type_note: Optional[str],
    today: Optional[date],
) -> RawIncomeExtraction:
    if not isinstance(income, Mapping):
        raise ExtractionParseError(
            f"Income entry {extraction_id} is not an object",
            extraction_id=extraction_id,
            document_type=document_type.value,
            errors=["income: not an object"],
        )

    fields: dict[str, Any] = {}
    for key, value in income.items():
        fields[_DOCUMENT_INCOME_KEYS.get(key, key)] = value

    notes: list[str] = [type_note] if type_note else []

    for name in ("period_start", "period_end", "payer_ein", "tax_year"):
        if fields.get(name) == "":
            fields[name] = None
    if isinstance(fields.get("amount_type"), str):
        fields["amount_type"] = fields["amount_type"].strip().lower()
    elif fields.get("amount_type") is None:
        fields.pop("amount_type", None)

    frequency = map_frequency(fields.get("frequency"))
    if frequency is None:
        fallback = (
            PayFrequency.ANNUAL
            if document_type in ANNUAL_DOCUMENT_TYPES
            else PayFrequency.MONTHLY
        )
        if fields.get("frequency") is not None:
            notes.append(
                f"Unknown pay frequency {fields['frequency']!r}, treated as {fallback.value}"
            )
        frequency = fallback
    fields["frequency"] = frequency

    for name in _DECIMAL_FIELDS:
        if name in fields:
            fields[name] = _to_decimal(fields[name], name, extraction_id)
    if fields.get("raw_amount") is None:
        notes.append("No amount extracted")
        fields["raw_amount"] = None

    if not fields.get("payer_name"):
        fields["payer_name"] = UNKNOWN_PAYER
    if fields.get("extraction_confidence") is None:
        fields["extraction_confidence"] = DEFAULT_EXTRACTION_CONFIDENCE

    document_date = fields.get("period_end") or today or date.today()
    fields.update(
        id=extraction_id,
        document_id=document_id,
        document_type=document_type.value,
        document_date=document_date,
        intake_notes=notes,
    )
    return _validate(fields)
