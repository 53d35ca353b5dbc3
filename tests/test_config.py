"""Tests for the configuration system."""

from decimal import Decimal

import pytest

from bankruptcy_core.config import (
    DEFAULT_DOCUMENT_WEIGHTS,
    EngineConfig,
    MeansTestConfig,
    ReconciliationConfig,
    ServiceConfig,
)


class TestReconciliationConfig:
    """Test suite for ReconciliationConfig."""

    def test_default_values(self):
        """Defaults match the documented calibration."""
        config = ReconciliationConfig()

        assert config.discrepancy_tolerance == 0.15
        assert config.review_threshold == 0.6
        assert config.net_only_penalty == 0.2
        assert config.document_weights == DEFAULT_DOCUMENT_WEIGHTS
        assert config.summary_latest_year_only is False
        assert config.partial_year_factor == 0.85
        assert config.net_corroboration_tolerance == 0.10

    def test_partial_weights_merge_with_defaults(self):
        """Overriding one weight keeps the others."""
        config = ReconciliationConfig(document_weights={"paystub": 0.8})

        assert config.document_weights["paystub"] == 0.8
        assert config.document_weights["w2"] == 1.0

    def test_weight_bounds(self):
        with pytest.raises(ValueError):
            ReconciliationConfig(document_weights={"paystub": 1.5})

    def test_tolerance_bounds(self):
        with pytest.raises(ValueError):
            ReconciliationConfig(discrepancy_tolerance=0)

        with pytest.raises(ValueError):
            ReconciliationConfig(review_threshold=1.1)

        with pytest.raises(ValueError):
            ReconciliationConfig(partial_year_factor=0)

    def test_from_environment(self, monkeypatch):
        """Tunables load from BANKRUPTCY_RECONCILIATION_* variables."""
        monkeypatch.setenv("BANKRUPTCY_RECONCILIATION_DISCREPANCY_TOLERANCE", "0.1")
        monkeypatch.setenv("BANKRUPTCY_RECONCILIATION_DOCUMENT_WEIGHTS", '{"bank_statement": 0.5}')

        config = ReconciliationConfig()

        assert config.discrepancy_tolerance == 0.1
        assert config.document_weights["bank_statement"] == 0.5
        assert config.document_weights["tax_return"] == 1.0


class TestMeansTestConfig:
    """Test suite for MeansTestConfig."""

    def test_default_values(self):
        config = MeansTestConfig()

        assert config.statutory_floor == Decimal("8175")
        assert config.cmi_months == 6
        assert config.commitment_months == 60
        assert config.default_state == "CA"
        assert config.default_household_size == 1
        assert config.standards_path is None

    def test_cmi_months_is_fixed(self):
        """The CMI window cannot be changed."""
        with pytest.raises(ValueError):
            MeansTestConfig(cmi_months=3)

    def test_default_state_normalized(self):
        assert MeansTestConfig(default_state=" ny ").default_state == "NY"

        with pytest.raises(ValueError):
            MeansTestConfig(default_state="Cal")

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("BANKRUPTCY_MEANS_TEST_STATUTORY_FLOOR", "9075")
        monkeypatch.setenv("BANKRUPTCY_MEANS_TEST_DEFAULT_STATE", "tx")

        config = MeansTestConfig()

        assert config.statutory_floor == Decimal("9075")
        assert config.default_state == "TX"


class TestServiceConfig:
    def test_default_values(self):
        config = ServiceConfig()

        assert config.fetch_timeout == 30.0
        assert config.max_workers == 4

    def test_validation(self):
        with pytest.raises(ValueError):
            ServiceConfig(fetch_timeout=0)

        with pytest.raises(ValueError):
            ServiceConfig(max_workers=0)

        with pytest.raises(ValueError):
            ServiceConfig(max_workers=33)


class TestEngineConfig:
    """Test suite for the root EngineConfig."""

    def test_default_values(self):
        config = EngineConfig()

        assert config.env == "development"
        assert config.log_level == "INFO"
        assert config.is_development is True
        assert config.is_production is False
        assert isinstance(config.reconciliation, ReconciliationConfig)
        assert isinstance(config.means_test, MeansTestConfig)
        assert isinstance(config.service, ServiceConfig)

    def test_env_validation(self):
        assert EngineConfig(env="PRODUCTION").is_production is True

        with pytest.raises(ValueError):
            EngineConfig(env="qa")

    def test_log_level_validation(self):
        assert EngineConfig(log_level="debug").log_level == "DEBUG"

        with pytest.raises(ValueError):
            EngineConfig(log_level="verbose")

    def test_nested_sections_read_their_own_environment(self, monkeypatch):
        monkeypatch.setenv("BANKRUPTCY_ENV", "staging")
        monkeypatch.setenv("BANKRUPTCY_SERVICE_FETCH_TIMEOUT", "5")

        config = EngineConfig()

        assert config.env == "staging"
        assert config.service.fetch_timeout == 5.0
