"""Tests for the income reconciler."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError
from structlog.testing import capture_logs

from bankruptcy_core.config import ReconciliationConfig
from bankruptcy_core.employer_matching import group_incomes
from bankruptcy_core.intake import ManualIncomeRecord, manual_record_to_extraction
from bankruptcy_core.models import (
    BankStatementExtraction,
    DeterminationMethod,
    IncomeOverride,
    IncomeType,
    PayFrequency,
    PaystubExtraction,
    ReconciledIncomeSource,
    ReconciliationStatus,
    TaxReturnExtraction,
    W2Extraction,
)
from bankruptcy_core.normalizer import ExtractionNormalizer
from bankruptcy_core.reconciler import (
    IncomeReconciler,
    relative_discrepancy,
    weighted_average,
)

CALCULATED_AT = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


def paystub(
    extraction_id: str,
    amount: str,
    frequency: PayFrequency = PayFrequency.MONTHLY,
    payer: str = "Acme Widgets",
    period_end: date = date(2024, 5, 31),
    confidence: float = 1.0,
) -> PaystubExtraction:
    return PaystubExtraction(
        id=extraction_id,
        document_id=f"doc-{extraction_id}",
        document_date=period_end,
        raw_amount=Decimal(amount),
        frequency=frequency,
        payer_name=payer,
        period_end=period_end,
        extraction_confidence=confidence,
    )


def w2(extraction_id: str, amount: str, payer: str = "ACME WIDGETS INC", year: int = 2024) -> W2Extraction:
    return W2Extraction(
        id=extraction_id,
        document_id=f"doc-{extraction_id}",
        document_date=date(year + 1, 1, 31),
        raw_amount=Decimal(amount),
        payer_name=payer,
        payer_ein="12-3456789",
        tax_year=year,
        extraction_confidence=0.95,
    )


def amountless(
    extraction_id: str,
    payer: str = "Acme Widgets",
    period_end: date = date(2024, 5, 31),
) -> PaystubExtraction:
    return PaystubExtraction(
        id=extraction_id,
        document_id=f"doc-{extraction_id}",
        document_date=period_end,
        raw_amount=None,
        frequency=PayFrequency.MONTHLY,
        payer_name=payer,
        period_end=period_end,
        extraction_confidence=0.9,
    )


def deposits(extraction_id: str, amount: str, payer: str = "Acme Widgets") -> BankStatementExtraction:
    return BankStatementExtraction(
        id=extraction_id,
        document_id=f"doc-{extraction_id}",
        document_date=date(2024, 5, 31),
        raw_amount=Decimal(amount),
        frequency=PayFrequency.BIWEEKLY,
        payer_name=payer,
        period_end=date(2024, 5, 31),
        extraction_confidence=0.9,
    )


def stub_with_ytd(extraction_id: str, confidence: float = 1.0) -> PaystubExtraction:
    # 2000 biweekly, net ratio 0.75: 52,000 gross and 39,000 net a year
    return PaystubExtraction(
        id=extraction_id,
        document_id=f"doc-{extraction_id}",
        document_date=date(2024, 5, 31),
        raw_amount=Decimal("2000"),
        frequency=PayFrequency.BIWEEKLY,
        payer_name="Acme Widgets",
        period_end=date(2024, 5, 31),
        ytd_gross=Decimal("20000"),
        ytd_net=Decimal("15000"),
        extraction_confidence=confidence,
    )


@pytest.fixture
def normalizer() -> ExtractionNormalizer:
    return ExtractionNormalizer()


@pytest.fixture
def reconciler() -> IncomeReconciler:
    return IncomeReconciler(ReconciliationConfig())


def reconcile(reconciler, normalizer, *extractions):
    return reconciler.reconcile(
        "case-1", normalizer.normalize_all(extractions), calculated_at=CALCULATED_AT
    )


class TestSingleSource:
    """Single-record groups always use single_source."""

    def test_single_paystub_reconciled(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, paystub("p1", "1000", PayFrequency.WEEKLY))

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.SINGLE_SOURCE
        assert source.status == ReconciliationStatus.RECONCILED
        assert source.verified_monthly_gross == Decimal("4333.33")
        assert source.verified_annual_gross == Decimal("52000.00")
        assert output.summary.total_monthly_gross == Decimal("4333.33")
        assert output.summary.all_sources_reconciled is True

    def test_low_confidence_needs_review(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, paystub("p1", "3000", confidence=0.5))

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.SINGLE_SOURCE
        assert source.status == ReconciliationStatus.NEEDS_REVIEW
        assert output.summary.total_monthly_gross == Decimal("0.00")
        assert output.summary.sources_needing_review == [source.id]
        assert output.summary.all_sources_reconciled is False


class TestDocumentPriority:
    """Authoritative annual documents supersede projections."""

    def test_w2_supersedes_paystubs(self, reconciler, normalizer):
        # 2291.67 semi-monthly annualizes to 55,000.08
        stubs = [
            paystub(f"p{i}", "2291.67", PayFrequency.SEMI_MONTHLY, period_end=date(2024, m, 15))
            for i, m in enumerate((3, 4, 5), start=1)
        ]
        output = reconcile(reconciler, normalizer, w2("w2-2024", "60000"), *stubs)

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.DOCUMENT_PRIORITY
        assert source.verified_annual_gross == Decimal("60000.00")
        assert source.verified_monthly_gross == Decimal("5000.00")
        assert source.status == ReconciliationStatus.RECONCILED
        assert source.employer_ein == "123456789"
        assert source.employer_name == "Acme Widgets"

        superseded = {e.extraction_id for e in source.evidence if e.superseded}
        assert superseded == {"p1", "p2", "p3"}
        assert len(source.evidence) == 4
        assert any("supersedes 3 projection" in note for note in source.notes)

    def test_tax_return_outranks_w2(self, reconciler, normalizer):
        tax_return = TaxReturnExtraction(
            id="tr-2024",
            document_id="doc-tr",
            document_date=date(2025, 4, 1),
            raw_amount=Decimal("61000"),
            payer_name="Acme Widgets",
            tax_year=2024,
            extraction_confidence=0.9,
        )
        output = reconcile(
            reconciler, normalizer, w2("w2-2024", "60000"), tax_return, paystub("p1", "4500")
        )

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.DOCUMENT_PRIORITY
        assert source.verified_annual_gross == Decimal("61000.00")

    def test_annual_documents_alone_are_averaged(self, reconciler, normalizer):
        tax_return = TaxReturnExtraction(
            id="tr-2024",
            document_id="doc-tr",
            document_date=date(2025, 4, 1),
            raw_amount=Decimal("60000"),
            payer_name="Acme Widgets",
            payer_ein="123456789",
            tax_year=2024,
            extraction_confidence=0.95,
        )
        output = reconcile(reconciler, normalizer, w2("w2-2024", "60000"), tax_return)

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.WEIGHTED_AVERAGE
        assert source.verified_annual_gross == Decimal("60000.00")


class TestWeightedAverage:
    """Multi-record groups without an authoritative document."""

    def test_within_tolerance_reconciled(self, reconciler, normalizer):
        output = reconcile(
            reconciler, normalizer, paystub("p1", "4000"), paystub("p2", "4200", period_end=date(2024, 4, 30))
        )

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.WEIGHTED_AVERAGE
        assert source.status == ReconciliationStatus.RECONCILED
        assert source.discrepancy is None
        assert source.verified_monthly_gross == Decimal("4100.00")
        assert source.confidence == pytest.approx(0.9)

    def test_beyond_tolerance_is_conflict(self, reconciler, normalizer):
        output = reconcile(
            reconciler, normalizer, paystub("p1", "4000"), paystub("p2", "5000", period_end=date(2024, 4, 30))
        )

        (source,) = output.sources
        assert source.status == ReconciliationStatus.CONFLICT
        assert source.discrepancy is not None
        assert source.discrepancy.source_ids == ["p1", "p2"]
        assert source.discrepancy.minimum == Decimal("4000.00")
        assert source.discrepancy.maximum == Decimal("5000.00")
        assert source.discrepancy.magnitude == pytest.approx(0.2222, abs=1e-4)
        assert source.discrepancy.suggested_resolution.startswith("Variance in 2024")
        # Provisional weighted average is still reported
        assert source.verified_monthly_gross == Decimal("4500.00")
        # Conflicts are excluded from totals
        assert output.summary.total_monthly_gross == Decimal("0.00")
        assert output.summary.sources_needing_review == [source.id]

    def test_confidence_weights_the_average(self, reconciler, normalizer):
        output = reconcile(
            reconciler,
            normalizer,
            paystub("p1", "4000", confidence=1.0),
            paystub("p2", "4100", confidence=0.5, period_end=date(2024, 4, 30)),
        )

        (source,) = output.sources
        # (48000 * 0.9 + 49200 * 0.45) / 1.35
        assert source.verified_annual_gross == Decimal("48400.00")


class TestMissingGross:
    """Absence of gross evidence surfaces as needs_review with zero figures."""

    def test_net_only_deposits_need_review(self, reconciler, normalizer):
        deposit = BankStatementExtraction(
            id="b1",
            document_id="doc-b1",
            document_date=date(2024, 5, 31),
            raw_amount=Decimal("1500"),
            frequency=PayFrequency.BIWEEKLY,
            payer_name="Acme Widgets",
            extraction_confidence=0.9,
        )
        output = reconcile(reconciler, normalizer, deposit)

        (source,) = output.sources
        assert source.status == ReconciliationStatus.NEEDS_REVIEW
        assert source.verified_monthly_gross == Decimal("0.00")
        assert source.verified_monthly_net == Decimal("3250.00")
        assert output.summary.total_monthly_gross == Decimal("0.00")

    def test_one_time_payment_not_summed(self, reconciler, normalizer):
        bonus = paystub("bonus", "5000", PayFrequency.ONE_TIME)
        output = reconcile(reconciler, normalizer, paystub("p1", "4000"), bonus)

        (source,) = output.sources
        assert source.verified_monthly_gross == Decimal("4000.00")
        assert source.determination_method == DeterminationMethod.SINGLE_SOURCE
        assert output.summary.non_recurring_extractions == ["bonus"]
        bonus_evidence = next(e for e in source.evidence if e.extraction_id == "bonus")
        assert bonus_evidence.recurring is False
        assert bonus_evidence.monthly_gross is None

    def test_amountless_claim_needs_review(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, amountless("p1"))

        (source,) = output.sources
        assert source.status == ReconciliationStatus.NEEDS_REVIEW
        assert source.verified_monthly_gross == Decimal("0.00")
        assert source.evidence[0].extracted_amount is None
        assert output.summary.sources_needing_review == [source.id]
        assert output.summary.all_sources_reconciled is False

    def test_manual_record_without_gross_needs_review(self, reconciler, normalizer):
        record = ManualIncomeRecord(id="m1", employer="Beta Logistics", pay_date=date(2024, 5, 31))
        output = reconcile(reconciler, normalizer, manual_record_to_extraction(record))

        (source,) = output.sources
        assert source.status == ReconciliationStatus.NEEDS_REVIEW
        assert output.summary.total_monthly_gross == Decimal("0.00")
        assert output.summary.all_sources_reconciled is False

    def test_amountless_claim_does_not_dilute_real_evidence(self, reconciler, normalizer):
        output = reconcile(
            reconciler,
            normalizer,
            paystub("p1", "5000"),
            amountless("p2", period_end=date(2024, 4, 30)),
        )

        (source,) = output.sources
        assert source.verified_monthly_gross == Decimal("5000.00")
        assert source.status == ReconciliationStatus.RECONCILED
        assert source.discrepancy is None
        missing = next(e for e in source.evidence if e.extraction_id == "p2")
        assert missing.extracted_amount is None
        assert missing.monthly_gross is None


class TestSummary:
    """Totals include reconciled sources only."""

    def test_totals_sum_reconciled_sources(self, reconciler, normalizer):
        output = reconcile(
            reconciler,
            normalizer,
            paystub("p1", "4000"),
            paystub("g1", "1500", payer="Globex Shipping"),
            paystub("x1", "900", payer="Initech", confidence=0.4),
        )

        assert output.summary.source_count == 3
        assert output.summary.total_monthly_gross == Decimal("5500.00")
        assert output.summary.total_annual_gross == Decimal("66000.00")
        assert len(output.summary.sources_needing_review) == 1
        assert output.summary.last_calculated_at == CALCULATED_AT

    def test_latest_year_only(self, normalizer):
        reconciler = IncomeReconciler(ReconciliationConfig(summary_latest_year_only=True))
        output = reconcile(
            reconciler,
            normalizer,
            paystub("old", "3000", period_end=date(2023, 5, 31)),
            paystub("new", "4000"),
        )

        assert output.summary.total_monthly_gross == Decimal("4000.00")

    def test_sources_sorted_by_year_then_employer(self, reconciler, normalizer):
        output = reconcile(
            reconciler,
            normalizer,
            paystub("a", "1000", payer="Zeta Corp", period_end=date(2023, 5, 31)),
            paystub("b", "1000", payer="Beta LLC"),
            paystub("c", "1000", payer="Alpha Inc"),
        )

        assert [(s.income_year, s.employer_name) for s in output.sources] == [
            (2024, "Alpha Inc"),
            (2024, "Beta LLC"),
            (2023, "Zeta Corp"),
        ]


class TestDeterminism:
    """Re-running over the same evidence yields identical sources."""

    def test_idempotent(self, reconciler, normalizer):
        evidence = [
            w2("w2-2024", "60000"),
            paystub("p1", "4500"),
            paystub("g1", "1500", payer="Globex"),
        ]
        first = reconcile(reconciler, normalizer, *evidence)
        second = reconcile(IncomeReconciler(), normalizer, *reversed(evidence))

        assert first.sources == second.sources
        assert first.summary == second.summary

    def test_source_ids_scoped_to_case(self, reconciler, normalizer):
        incomes = normalizer.normalize_all([paystub("p1", "4000")])
        one = reconciler.reconcile("case-1", incomes, calculated_at=CALCULATED_AT)
        two = reconciler.reconcile("case-2", incomes, calculated_at=CALCULATED_AT)

        assert one.sources[0].id != two.sources[0].id

    def test_audit_log_records_each_group(self, reconciler, normalizer):
        output = reconcile(
            reconciler, normalizer, paystub("p1", "4000"), paystub("g1", "1500", payer="Globex")
        )

        assert len(output.audit_log) == 2
        assert all(entry.step.startswith("reconcile_") for entry in output.audit_log)


class TestSimilarPayers:
    def test_similar_names_get_review_note(self, reconciler, normalizer):
        output = reconcile(
            reconciler,
            normalizer,
            paystub("p1", "4000", payer="Acme Widgets"),
            paystub("p2", "4000", payer="Acme Widgets Payroll"),
        )

        assert len(output.sources) == 2
        assert all(any("resembles" in n for n in s.notes) for s in output.sources)


class TestPartialYearCoverage:
    """Periodic evidence covering under three quarters is a partial-year projection."""

    def test_lone_paystub_loses_confidence(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, paystub("p1", "4000"))

        (source,) = output.sources
        # 0.9 paystub weight * 0.85
        assert source.confidence == pytest.approx(0.765)
        assert source.status == ReconciliationStatus.RECONCILED
        assert "Annualized from partial year data (1 of 4 quarters covered)" in source.notes

    def test_factor_is_configurable(self, normalizer):
        reconciler = IncomeReconciler(ReconciliationConfig(partial_year_factor=1.0))
        output = reconcile(reconciler, normalizer, paystub("p1", "4000"))

        assert output.sources[0].confidence == pytest.approx(0.9)

    def test_penalty_can_push_into_review(self, reconciler, normalizer):
        # 0.75 * 0.9 = 0.675 clears the threshold, 0.57 after the penalty does not
        output = reconcile(reconciler, normalizer, paystub("p1", "4000", confidence=0.75))

        assert output.sources[0].status == ReconciliationStatus.NEEDS_REVIEW

    def test_annual_document_not_penalized(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, w2("w2-2024", "60000"))

        (source,) = output.sources
        assert source.confidence == pytest.approx(0.95)
        assert not any("partial year" in note for note in source.notes)

    def test_multi_source_partial_year_noted_without_penalty(self, reconciler, normalizer):
        output = reconcile(
            reconciler, normalizer, paystub("p1", "4000"), paystub("p2", "4000", period_end=date(2024, 4, 30))
        )

        (source,) = output.sources
        assert source.confidence == pytest.approx(0.9)
        assert "Annualized from partial year data (1 of 4 quarters covered)" in source.notes

    def test_three_quarters_is_full_year(self, reconciler, normalizer):
        stubs = [
            paystub(f"p{m}", "4000", period_end=date(2024, m, 28)) for m in (3, 6, 9)
        ]
        output = reconcile(reconciler, normalizer, *stubs)

        assert not any("partial year" in note for note in output.sources[0].notes)


class TestNetCorroboration:
    """Bank deposits corroborate a pay stub when the net figures agree."""

    def test_matching_deposits_corroborate(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, stub_with_ytd("p1"), deposits("b1", "1500"))

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.SINGLE_SOURCE
        assert source.verified_annual_gross == Decimal("52000.00")
        # 0.9 * 0.85 partial year * 1.1 corroboration
        assert source.confidence == pytest.approx(0.8415)
        assert any("corroborated by bank statement net deposits" in n for n in source.notes)
        assert {e.extraction_id for e in source.evidence} == {"p1", "b1"}

    def test_corroboration_lifts_review(self, reconciler, normalizer):
        alone = reconcile(reconciler, normalizer, stub_with_ytd("p1", confidence=0.75))
        corroborated = reconcile(
            reconciler, normalizer, stub_with_ytd("p1", confidence=0.75), deposits("b1", "1480")
        )

        assert alone.sources[0].status == ReconciliationStatus.NEEDS_REVIEW
        assert corroborated.sources[0].status == ReconciliationStatus.RECONCILED

    def test_diverging_deposits_noted(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, stub_with_ytd("p1"), deposits("b1", "1000"))

        (source,) = output.sources
        assert source.confidence == pytest.approx(0.765)
        assert any("differ from pay stub net by 33.3%" in n for n in source.notes)

    def test_no_comparison_without_paystub_net(self, reconciler, normalizer):
        output = reconcile(reconciler, normalizer, paystub("p1", "4333.33"), deposits("b1", "1500"))

        assert not any("bank statement" in n.lower() for n in output.sources[0].notes)


class TestManualOverride:
    """Reviewer overrides are inputs to every run."""

    def override(self, **fields) -> IncomeOverride:
        values = dict(
            annual_gross=Decimal("54000"),
            reason="Raise effective April confirmed by employer letter",
            verified_by="attorney@example.com",
            verified_at=CALCULATED_AT,
        )
        values.update(fields)
        return IncomeOverride(**values)

    def test_override_by_source_id(self, reconciler, normalizer):
        evidence = [paystub("p1", "4000"), paystub("p2", "5000", period_end=date(2024, 4, 30))]
        first = reconcile(reconciler, normalizer, *evidence)
        assert first.sources[0].status == ReconciliationStatus.CONFLICT

        output = reconciler.reconcile(
            "case-1",
            normalizer.normalize_all(evidence),
            calculated_at=CALCULATED_AT,
            overrides={first.sources[0].id: self.override()},
        )

        (source,) = output.sources
        assert source.id == first.sources[0].id
        assert source.determination_method == DeterminationMethod.MANUAL_OVERRIDE
        assert source.status == ReconciliationStatus.RECONCILED
        assert source.discrepancy is None
        assert source.verified_monthly_gross == Decimal("4500.00")
        assert source.verified_by == "attorney@example.com"
        assert source.verified_at == CALCULATED_AT
        assert [e.superseded for e in source.evidence] == [True, True]
        assert output.summary.total_monthly_gross == Decimal("4500.00")
        assert output.summary.all_sources_reconciled is True

    def test_override_by_group_key(self, reconciler, normalizer):
        incomes = normalizer.normalize_all([amountless("p1")])
        key = next(iter(group_incomes(incomes)))

        output = reconciler.reconcile(
            "case-1",
            incomes,
            calculated_at=CALCULATED_AT,
            overrides={key.as_string(): self.override(annual_net=Decimal("40500"))},
        )

        (source,) = output.sources
        assert source.determination_method == DeterminationMethod.MANUAL_OVERRIDE
        assert source.verified_monthly_net == Decimal("3375.00")
        assert any(n.startswith("Manual override by attorney@example.com") for n in source.notes)

    def test_unmatched_override_logged(self, reconciler, normalizer):
        with capture_logs() as logs:
            output = reconciler.reconcile(
                "case-1",
                normalizer.normalize_all([paystub("p1", "4000")]),
                calculated_at=CALCULATED_AT,
                overrides={"gone": self.override()},
            )

        assert output.sources[0].determination_method == DeterminationMethod.SINGLE_SOURCE
        unmatched = [log for log in logs if log["event"] == "income_override_unmatched"]
        assert unmatched[0]["keys"] == ["gone"]

    def test_override_requires_reviewer(self):
        with pytest.raises(ValidationError):
            IncomeOverride(annual_gross=Decimal("1"), reason="x", verified_by="")


class TestReconciledSourceInvariants:
    def test_conflict_requires_discrepancy(self):
        with pytest.raises(ValidationError):
            ReconciledIncomeSource(
                id="s1",
                case_id="case-1",
                employer_name="Acme",
                income_type=IncomeType.EMPLOYMENT,
                income_year=2024,
                verified_annual_gross=Decimal("0"),
                verified_monthly_gross=Decimal("0"),
                determination_method=DeterminationMethod.WEIGHTED_AVERAGE,
                confidence=0.5,
                status=ReconciliationStatus.CONFLICT,
            )

    def test_relative_discrepancy(self):
        assert relative_discrepancy([Decimal("4000"), Decimal("5000")]) == pytest.approx(2 / 9)
        assert relative_discrepancy([Decimal("4000")]) == 0.0
        assert relative_discrepancy([Decimal("0"), Decimal("0")]) == 0.0

    def test_weighted_average_zero_weights(self):
        assert weighted_average([Decimal("10"), Decimal("20")], [0.0, 0.0]) == Decimal("15")
