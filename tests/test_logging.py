"""Tests for structured logging setup."""

import json
from datetime import date
from decimal import Decimal

import pytest
import structlog
from structlog.testing import capture_logs

from bankruptcy_core.config import EngineConfig
from bankruptcy_core.logging import (
    bind_case_context,
    clear_case_context,
    configure_logging,
)
from bankruptcy_core.means_test import calculate_cmi
from bankruptcy_core.models import MonthlyIncomeEntry, PaystubExtraction
from bankruptcy_core.normalizer import ExtractionNormalizer
from bankruptcy_core.reconciler import IncomeReconciler


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    clear_case_context()
    structlog.reset_defaults()


def last_json_line(out: str) -> dict:
    return json.loads(out.strip().splitlines()[-1])


class TestConfigureLogging:
    """Renderer and level follow EngineConfig."""

    def test_json_output_outside_development(self, capsys):
        configure_logging(EngineConfig(env="production"))

        structlog.get_logger().info("income_recomputed", run_id="run-1")

        data = last_json_line(capsys.readouterr().out)
        assert data["event"] == "income_recomputed"
        assert data["run_id"] == "run-1"
        assert data["level"] == "info"
        assert "timestamp" in data

    def test_level_filters_events(self, capsys):
        configure_logging(EngineConfig(env="production", log_level="WARNING"))

        structlog.get_logger().info("calculation_step")
        structlog.get_logger().warning("extraction_source_failed", source="documents")

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "extraction_source_failed"

    def test_case_context_bound_and_cleared(self, capsys):
        configure_logging(EngineConfig(env="test"))

        bind_case_context("case-7")
        structlog.get_logger().info("income_recomputed")
        bound = last_json_line(capsys.readouterr().out)

        clear_case_context()
        structlog.get_logger().info("income_recomputed")
        cleared = last_json_line(capsys.readouterr().out)

        assert bound["case_id"] == "case-7"
        assert "case_id" not in cleared


class TestModuleEvents:
    """Components emit event-named log lines."""

    def test_reconciler_logs_each_step(self):
        extraction = PaystubExtraction(
            id="p1",
            document_id="doc-p1",
            document_date=date(2024, 5, 31),
            raw_amount=Decimal("4000"),
            frequency="monthly",
            payer_name="Acme Widgets",
            extraction_confidence=1.0,
        )

        with capture_logs() as logs:
            IncomeReconciler().reconcile("case-1", ExtractionNormalizer().normalize_all([extraction]))

        events = [log["event"] for log in logs]
        assert "calculation_step" in events
        assert "income_reconciled" in events

    def test_cmi_calculation_does_not_log(self):
        with capture_logs() as logs:
            calculate_cmi([MonthlyIncomeEntry(month="2024-01", gross_amount=Decimal("1000"))])

        assert logs == []
