"""Configuration system for the bankruptcy financial engine.

This module provides Pydantic Settings-based configuration with environment
variable support. Every tunable that is subject to statutory revision or to
calibration against real reconciliation fixtures lives here rather than
inline in the calculators.

Usage:
    from bankruptcy_core.config import EngineConfig

    config = EngineConfig()

    print(config.reconciliation.discrepancy_tolerance)
    print(config.means_test.statutory_floor)
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DOCUMENT_WEIGHTS: dict[str, float] = {
    "tax_return": 1.0,
    "w2": 1.0,
    "1099": 0.9,
    "paystub": 0.9,
    "bank_statement": 0.7,
}


class ReconciliationConfig(BaseSettings):
    """Normalization and reconciliation tunables.

    Environment Variables:
        BANKRUPTCY_RECONCILIATION_DISCREPANCY_TOLERANCE: Relative spread above
            which a multi-record group is a conflict
        BANKRUPTCY_RECONCILIATION_REVIEW_THRESHOLD: Minimum confidence for a
            single-source figure to count as reconciled
        BANKRUPTCY_RECONCILIATION_NET_ONLY_PENALTY: Confidence deducted when
            only a net figure is available
        BANKRUPTCY_RECONCILIATION_DOCUMENT_WEIGHTS: JSON object of
            document-type reliability weights
        BANKRUPTCY_RECONCILIATION_YTD_VARIANCE_NOTE_THRESHOLD: Pay stub YTD
            divergence that adds a review note
        BANKRUPTCY_RECONCILIATION_SUMMARY_LATEST_YEAR_ONLY: Count only the
            most recent year per employer in summary totals
        BANKRUPTCY_RECONCILIATION_PARTIAL_YEAR_FACTOR: Confidence multiplier
            for a lone periodic record covering under three quarters
        BANKRUPTCY_RECONCILIATION_NET_CORROBORATION_TOLERANCE: Pay stub vs
            bank deposit net gap within which the pay stub is corroborated
    """

    model_config = SettingsConfigDict(
        env_prefix="BANKRUPTCY_RECONCILIATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    discrepancy_tolerance: float = Field(
        default=0.15,
        gt=0.0,
        le=1.0,
        description="Relative discrepancy (max - min) / average that triggers a conflict",
    )
    review_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Confidence at or above which a single-source figure is reconciled",
    )
    net_only_penalty: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Confidence penalty for net-only evidence without YTD gross",
    )
    document_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_DOCUMENT_WEIGHTS),
        description="Reliability weight applied to extraction confidence per document type",
    )
    ytd_variance_note_threshold: float = Field(
        default=0.25,
        ge=0.0,
        description="Pay stub YTD vs direct annualization divergence that adds a note",
    )
    summary_latest_year_only: bool = Field(
        default=False,
        description="Sum only the most recent income year per employer into totals",
    )
    partial_year_factor: float = Field(
        default=0.85,
        gt=0.0,
        le=1.0,
        description="Confidence multiplier for a single periodic record covering fewer than 3 quarters",
    )
    net_corroboration_tolerance: float = Field(
        default=0.10,
        ge=0.0,
        le=1.0,
        description="Relative pay stub vs bank deposit net gap that corroborates the pay stub gross",
    )

    @field_validator("document_weights")
    @classmethod
    def validate_document_weights(cls, v: dict[str, float]) -> dict[str, float]:
        """Ensure every weight is a valid confidence multiplier."""
        for doc_type, weight in v.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(
                    f"Document weight for {doc_type} must be within [0, 1], got {weight}"
                )
        merged = dict(DEFAULT_DOCUMENT_WEIGHTS)
        merged.update(v)
        return merged


class MeansTestConfig(BaseSettings):
    """Means test tunables.

    The statutory floor is revised periodically (11 U.S.C. § 707(b)(2)(A)(i))
    and must be updated here, never inline.

    Environment Variables:
        BANKRUPTCY_MEANS_TEST_STATUTORY_FLOOR: 60-month disposable income floor
        BANKRUPTCY_MEANS_TEST_COMMITMENT_MONTHS: Months multiplied in Step 2
        BANKRUPTCY_MEANS_TEST_DEFAULT_STATE: State used when the case has none
        BANKRUPTCY_MEANS_TEST_DEFAULT_HOUSEHOLD_SIZE: Household size used when
            the case has none
        BANKRUPTCY_MEANS_TEST_STANDARDS_PATH: JSON file replacing the built-in
            median income and IRS standards tables
    """

    model_config = SettingsConfigDict(
        env_prefix="BANKRUPTCY_MEANS_TEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    statutory_floor: Decimal = Field(
        default=Decimal("8175"),
        gt=0,
        description="Step 2 threshold for 60-month disposable income",
    )
    cmi_months: int = Field(
        default=6,
        description="CMI lookback months and divisor",
    )
    commitment_months: int = Field(
        default=60,
        gt=0,
        description="Months of disposable income compared against the statutory floor",
    )
    default_state: str = Field(
        default="CA",
        description="State applied (and flagged) when the case has none",
    )
    default_household_size: int = Field(
        default=1,
        ge=1,
        description="Household size applied (and flagged) when the case has none",
    )
    standards_path: Optional[str] = Field(
        default=None,
        description="Optional JSON file with replacement statutory tables",
    )

    @field_validator("cmi_months")
    @classmethod
    def validate_cmi_months(cls, v: int) -> int:
        """CMI is defined over exactly six months."""
        if v != 6:
            raise ValueError("CMI is defined over exactly 6 months")
        return v

    @field_validator("default_state")
    @classmethod
    def validate_default_state(cls, v: str) -> str:
        """Normalize to a two-letter state code."""
        v_upper = v.upper().strip()
        if len(v_upper) != 2 or not v_upper.isalpha():
            raise ValueError(f"Invalid state code: {v}")
        return v_upper


class ServiceConfig(BaseSettings):
    """Boundary I/O settings.

    Environment Variables:
        BANKRUPTCY_SERVICE_FETCH_TIMEOUT: Seconds to wait on each extraction source
        BANKRUPTCY_SERVICE_MAX_WORKERS: Parallel extraction fetches
    """

    model_config = SettingsConfigDict(
        env_prefix="BANKRUPTCY_SERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    fetch_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for each extraction source fetch",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum parallel extraction source fetches",
    )


class EngineConfig(BaseSettings):
    """Root configuration for the engine.

    Environment Variables:
        BANKRUPTCY_ENV: Environment name (development, staging, production, test)
        BANKRUPTCY_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)

    Example:
        config = EngineConfig(
            means_test=MeansTestConfig(statutory_floor=Decimal("9075")),
        )
    """

    model_config = SettingsConfigDict(
        env_prefix="BANKRUPTCY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: str = Field(
        default="development",
        description="Environment name (development, staging, production, test)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    means_test: MeansTestConfig = Field(default_factory=MeansTestConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment name."""
        valid_envs = {"development", "staging", "production", "test"}
        v_lower = v.lower().strip()
        if v_lower not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of: {valid_envs}")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper().strip()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {valid_levels}")
        return v_upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.env == "development"
