"""Data models for bankruptcy-core.

This package provides the structures that flow through the engine:
- Raw document extractions and normalized income (extraction.py)
- Reconciled income sources and the case summary (reconciliation.py)
- Means test inputs, allowances and results (means_test.py)
- Audit trail and provenance tracking (audit.py)
"""

from bankruptcy_core.models.extraction import (
    # Enumerations
    DocumentType,
    PayFrequency,
    AmountType,
    IncomeType,
    NormalizationMethod,
    ANNUAL_DOCUMENT_TYPES,
    # Raw extractions
    RawExtractionBase,
    PaystubExtraction,
    W2Extraction,
    TaxReturnExtraction,
    BankStatementExtraction,
    Form1099Extraction,
    RawIncomeExtraction,
    # Normalized
    NormalizedIncome,
)

from bankruptcy_core.models.reconciliation import (
    DeterminationMethod,
    ReconciliationStatus,
    IncomeEvidence,
    IncomeOverride,
    ConflictingValue,
    Discrepancy,
    ReconciledIncomeSource,
    IncomeSummary,
    ReconciliationOutput,
)

from bankruptcy_core.models.means_test import (
    Recommendation,
    CaseFacts,
    MonthlyIncomeEntry,
    MonthlyIncomeTotal,
    CMIDetails,
    NationalStandards,
    LocalStandards,
    OtherExpenses,
    MeansTestAllowances,
    MeansTestInput,
    MeansTestResult,
)

from bankruptcy_core.models.audit import (
    AuditSeverity,
    AuditEntry,
    AuditWarning,
    AuditError,
    AuditTrail,
)

__all__ = [
    # Extraction
    "DocumentType",
    "PayFrequency",
    "AmountType",
    "IncomeType",
    "NormalizationMethod",
    "ANNUAL_DOCUMENT_TYPES",
    "RawExtractionBase",
    "PaystubExtraction",
    "W2Extraction",
    "TaxReturnExtraction",
    "BankStatementExtraction",
    "Form1099Extraction",
    "RawIncomeExtraction",
    "NormalizedIncome",
    # Reconciliation
    "DeterminationMethod",
    "ReconciliationStatus",
    "IncomeEvidence",
    "IncomeOverride",
    "ConflictingValue",
    "Discrepancy",
    "ReconciledIncomeSource",
    "IncomeSummary",
    "ReconciliationOutput",
    # Means test
    "Recommendation",
    "CaseFacts",
    "MonthlyIncomeEntry",
    "MonthlyIncomeTotal",
    "CMIDetails",
    "NationalStandards",
    "LocalStandards",
    "OtherExpenses",
    "MeansTestAllowances",
    "MeansTestInput",
    "MeansTestResult",
    # Audit
    "AuditSeverity",
    "AuditEntry",
    "AuditWarning",
    "AuditError",
    "AuditTrail",
]
