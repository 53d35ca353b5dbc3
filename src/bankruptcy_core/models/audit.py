"""Audit trail models for calculation provenance.

Every figure that feeds a legal eligibility determination must be traceable
to its inputs. Calculators record one AuditEntry per step; the service
collects skipped evidence and degraded dependencies in an AuditTrail.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    """Return current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEntry(BaseModel):
    """Single calculation step.

    Attributes:
        timestamp: When this entry was created (UTC)
        step: Machine-readable step name (e.g., "cmi_month_2024-05")
        input_value: Inputs to the step, rendered as text
        output_value: Result of the step, rendered as text
        source: Rule or data source applied (e.g., "Form B 122A-2 Line 11")
        notes: Additional context
    """
    timestamp: datetime = Field(default_factory=_utc_now)
    step: str
    input_value: str
    output_value: str
    source: str
    notes: Optional[str] = None


class AuditWarning(BaseModel):
    """Condition flagged for human review.

    Attributes:
        code: Machine-readable warning code (e.g., "EXTRACTION_SKIPPED")
        message: Human-readable warning message
        reference: Id of the extraction, source or case the warning concerns
        severity: Warning severity level
        requires_review: Whether this must be reviewed before relying on output
    """
    timestamp: datetime = Field(default_factory=_utc_now)
    code: str
    message: str
    reference: Optional[str] = None
    severity: AuditSeverity = AuditSeverity.WARNING
    requires_review: bool = True


class AuditError(BaseModel):
    """Error recorded during a processing run.

    Attributes:
        code: Machine-readable error code (e.g., "SOURCE_TIMEOUT")
        message: Human-readable error message
        reference: Id of the extraction or source involved
        exception_type: Python exception type name (if from an exception)
        is_recoverable: Whether processing continued despite this error
    """
    timestamp: datetime = Field(default_factory=_utc_now)
    code: str
    message: str
    reference: Optional[str] = None
    exception_type: Optional[str] = None
    is_recoverable: bool = False

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        code: str,
        reference: Optional[str] = None,
        is_recoverable: bool = False,
    ) -> "AuditError":
        """Create an AuditError from a Python exception."""
        return cls(
            code=code,
            message=str(exc),
            reference=reference,
            exception_type=type(exc).__name__,
            is_recoverable=is_recoverable,
        )


class AuditTrail(BaseModel):
    """Complete audit trail for one recompute run.

    Attributes:
        run_id: Unique identifier for this run
        case_id: Case the run belongs to
        started_at: When processing started (UTC)
        completed_at: When processing completed (UTC), None if still running
        status: "running", "completed" or "failed"
        entries: Calculation steps
        warnings: Conditions requiring review
        errors: Recoverable and fatal errors
    """
    run_id: str
    case_id: str
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None
    status: str = "running"
    entries: list[AuditEntry] = Field(default_factory=list)
    warnings: list[AuditWarning] = Field(default_factory=list)
    errors: list[AuditError] = Field(default_factory=list)

    def add_entries(self, entries: list[AuditEntry]) -> None:
        """Append calculation steps produced by a calculator."""
        self.entries.extend(entries)

    def add_warning(
        self,
        code: str,
        message: str,
        reference: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.WARNING,
        requires_review: bool = True,
    ) -> AuditWarning:
        """Add a warning to the trail."""
        warning = AuditWarning(
            code=code,
            message=message,
            reference=reference,
            severity=severity,
            requires_review=requires_review,
        )
        self.warnings.append(warning)
        return warning

    def add_error(
        self,
        code: str,
        message: str,
        reference: Optional[str] = None,
        exception: Optional[Exception] = None,
        is_recoverable: bool = False,
    ) -> AuditError:
        """Add an error to the trail."""
        if exception is not None:
            error = AuditError.from_exception(
                exc=exception,
                code=code,
                reference=reference,
                is_recoverable=is_recoverable,
            )
        else:
            error = AuditError(
                code=code,
                message=message,
                reference=reference,
                is_recoverable=is_recoverable,
            )
        self.errors.append(error)
        return error

    def complete(self, status: str = "completed") -> None:
        """Mark the audit trail as complete."""
        self.completed_at = _utc_now()
        self.status = status

    def fail(self) -> None:
        """Mark the audit trail as failed."""
        self.complete(status="failed")

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def requires_review(self) -> bool:
        """Check if any warnings require human review."""
        return any(w.requires_review for w in self.warnings)

    def summary(self) -> dict[str, object]:
        """Summary statistics for logging and report headers."""
        return {
            "run_id": self.run_id,
            "case_id": self.case_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "entry_count": len(self.entries),
            "warning_count": len(self.warnings),
            "error_count": len(self.errors),
            "requires_review": self.requires_review,
        }
