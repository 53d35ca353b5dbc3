"""Custom exceptions for the bankruptcy financial engine.

This module provides a hierarchy of exception classes for consistent error
handling across normalization, reconciliation and the means test. All
exceptions inherit from BankruptcyEngineError, making it easy to catch all
engine-specific errors.

Example:
    try:
        extraction = parse_extraction(payload)
    except ExtractionParseError as e:
        # Skip this piece of evidence, keep the rest
        logger.warning("extraction_parse_failed", extraction_id=e.extraction_id)
    except BankruptcyEngineError as e:
        logger.error("engine_failed", error=str(e))
        raise
"""

from typing import Any, Optional


class BankruptcyEngineError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
        recoverable: Whether the error is potentially recoverable.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable!r})"
        )


class CaseValidationError(BankruptcyEngineError):
    """Required case context is missing or invalid.

    Raised immediately to the caller; never replaced by a default.

    Example:
        >>> raise CaseValidationError(
        ...     "Case id is required",
        ...     field="case_id",
        ... )
        CaseValidationError: Case id is required
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.field = field
        self.value = value

        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = value


class ExtractionParseError(BankruptcyEngineError):
    """A single raw extraction could not be parsed.

    The offending extraction is skipped and recorded by id; processing
    continues with the remaining evidence.

    Attributes:
        extraction_id: Id of the extraction that failed (if known).
        document_type: Declared document type (if known).
        errors: Field-level validation messages.
    """

    def __init__(
        self,
        message: str,
        *,
        extraction_id: Optional[str] = None,
        document_type: Optional[str] = None,
        errors: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.extraction_id = extraction_id
        self.document_type = document_type
        self.errors = errors or []

        if extraction_id:
            self.details["extraction_id"] = extraction_id
        if document_type:
            self.details["document_type"] = document_type
        if self.errors:
            self.details["errors"] = self.errors


class ExtractionSourceError(BankruptcyEngineError):
    """An external extraction collaborator failed or timed out.

    Reconciliation proceeds with whatever evidence is already available and
    the resulting summary reports reduced completeness.

    Attributes:
        source_name: Name of the collaborator that failed.
        operation: The operation being attempted.
        timed_out: Whether the failure was a timeout.
    """

    def __init__(
        self,
        message: str,
        *,
        source_name: Optional[str] = None,
        operation: Optional[str] = None,
        timed_out: bool = False,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)
        self.source_name = source_name
        self.operation = operation
        self.timed_out = timed_out

        if source_name:
            self.details["source_name"] = source_name
        if operation:
            self.details["operation"] = operation
        self.details["timed_out"] = timed_out


class DataIntegrityError(BankruptcyEngineError):
    """A data-integrity invariant was violated.

    Fatal. Values such as confidences outside [0, 1] are never clamped.

    Attributes:
        field: The field holding the offending value.
        value: The offending value.
        constraint: Description of the invariant.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.field = field
        self.value = value
        self.constraint = constraint

        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)
        if constraint:
            self.details["constraint"] = constraint


class ConfigurationError(BankruptcyEngineError):
    """Configuration or statutory tables are invalid or missing.

    Attributes:
        config_key: The configuration key that is problematic.
        expected: Description of the expected value or format.
        actual: The actual value found (if any).
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.config_key = config_key
        self.expected = expected
        self.actual = actual

        if config_key:
            self.details["config_key"] = config_key
        if expected:
            self.details["expected"] = expected
        if actual is not None:
            self.details["actual"] = actual


__all__ = [
    "BankruptcyEngineError",
    "CaseValidationError",
    "ExtractionParseError",
    "ExtractionSourceError",
    "DataIntegrityError",
    "ConfigurationError",
]
