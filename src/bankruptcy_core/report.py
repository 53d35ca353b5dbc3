"""Compliance report generation for the means test.

Renders the Chapter 7 determination, the reconciled income behind it and the
full calculation audit trail as plain text or markdown.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from .models.audit import AuditEntry, AuditTrail
from .models.means_test import MeansTestResult, Recommendation
from .models.reconciliation import IncomeSummary, ReconciliationStatus

logger = structlog.get_logger()


@dataclass
class ReportSection:
    """A section of the report."""
    title: str
    content: str
    subsections: list["ReportSection"] = field(default_factory=list)


def _money(amount: Optional[Decimal]) -> str:
    if amount is None:
        return "n/a"
    if amount < 0:
        return f"-${-amount:,.2f}"
    return f"${amount:,.2f}"


def _clip(text: str, width: int) -> str:
    return text[: width - 2] + ".." if len(text) > width else text


class MeansTestReportGenerator:
    """
    Generate means test compliance reports.

    Reports include:
    - Determination summary
    - Step 1 (current monthly income vs. state median) with the monthly
      breakdown
    - Step 2 (allowances and disposable income), when applied
    - Reconciled income sources, when an income summary is supplied
    - Warnings, defaults applied and the calculation audit trail
    """

    def __init__(self):
        self._sections: list[ReportSection] = []

    def generate(
        self,
        result: MeansTestResult,
        income_summary: Optional[IncomeSummary] = None,
        trail: Optional[AuditTrail] = None,
        format: str = "text",
    ) -> str:
        """
        Generate a complete means test report.

        Args:
            result: The means test determination
            income_summary: Optional reconciled income for the case
            trail: Optional run trail from the last income recompute
            format: Output format ("text" or "markdown")

        Returns:
            Formatted report string
        """
        self._sections = []

        self._add_header(result)
        self._add_determination(result)
        self._add_step1(result)
        if result.step2_applied:
            self._add_step2(result)
        if income_summary is not None:
            self._add_income_sources(income_summary)
        if result.warnings or result.defaults_applied:
            self._add_warnings(result)
        if trail is not None:
            self._add_run_trail(trail)
        self._add_audit_trail(result.audit_log, result.calculated_at)

        logger.info(
            "report_generated",
            case_id=result.case_id,
            format=format,
            section_count=len(self._sections),
        )

        if format == "markdown":
            return self._format_markdown()
        return self._format_text()

    def _add_header(self, result: MeansTestResult) -> None:
        county = f" ({result.county})" if result.county else ""
        content = f"""
CHAPTER 7 MEANS TEST REPORT
===========================

Case: {result.case_id}
State: {result.state}{county}
Household Size: {result.household_size}

Calculated: {result.calculated_at.strftime('%B %d, %Y %H:%M UTC')}
Standards Version: {result.standards_version}
""".strip()

        self._sections.append(ReportSection(title="Header", content=content))

    def _add_determination(self, result: MeansTestResult) -> None:
        if result.recommendation == Recommendation.CHAPTER7_ELIGIBLE:
            status = "CHAPTER 7 ELIGIBLE"
            if result.passes_step1:
                detail = "Annualized income is at or below the state median"
            else:
                detail = "Disposable income over 60 months is below the statutory floor"
        else:
            status = "CHAPTER 13 RECOMMENDED"
            detail = "Disposable income over 60 months meets the statutory floor"

        completeness = "COMPLETE" if result.is_complete else "INCOMPLETE - REVIEW REQUIRED"
        content = f"""
STATUS: {status}
{detail}

Data completeness: {completeness}

QUICK NUMBERS:
--------------
Current Monthly Income:    {_money(result.current_monthly_income)}
Annualized Income:         {_money(result.annualized_income)}
State Median Income:       {_money(result.state_median_income)}
Monthly Disposable Income: {_money(result.disposable_income)}
60-Month Disposable:       {_money(result.sixty_month_disposable)}
""".strip()

        self._sections.append(ReportSection(title="Determination", content=content))

    def _add_step1(self, result: MeansTestResult) -> None:
        cmi = result.cmi
        lines = ["MONTHLY INCOME (six months before filing):", "-" * 50]

        if not cmi.monthly_breakdown:
            lines.append("  No income recorded")
        for month in cmi.monthly_breakdown:
            lines.append(f"  {month.month}: {_money(month.total_gross)}")
            for source, amount in sorted(month.by_source.items()):
                lines.append(f"      {source}: {_money(amount)}")

        lines.append("")
        lines.append(f"Six-month total:           {_money(cmi.six_month_total)}")
        lines.append(f"Divisor:                   {cmi.divisor}")
        lines.append(f"Current Monthly Income:    {_money(cmi.current_monthly_income)}")
        lines.append(f"Months with income:        {cmi.months_covered} of {cmi.divisor}")
        lines.append("")
        lines.append(f"Annualized (CMI x 12):     {_money(result.annualized_income)}")
        lines.append(f"State median ({result.median_lookup}): {_money(result.state_median_income)}")
        outcome = "PASSES" if result.passes_step1 else "ABOVE MEDIAN"
        lines.append(f"Step 1 result:             {outcome}")

        self._sections.append(ReportSection(title="Step 1 - Income vs. Median", content="\n".join(lines)))

    def _add_step2(self, result: MeansTestResult) -> None:
        allowances = result.allowances
        lines = ["ALLOWED DEDUCTIONS:", "-" * 50]

        if allowances is not None:
            national = allowances.national_standards
            local = allowances.local_standards
            other = allowances.other_expenses
            lines.extend([
                "National Standards:",
                f"  Food:                    {_money(national.food)}",
                f"  Housekeeping:            {_money(national.housekeeping)}",
                f"  Apparel:                 {_money(national.apparel)}",
                f"  Personal care:           {_money(national.personal_care)}",
                f"  Miscellaneous:           {_money(national.miscellaneous)}",
                f"Local Standards ({allowances.housing_lookup}):",
                f"  Housing:                 {_money(local.housing)}",
                f"  Utilities:               {_money(local.utilities)}",
                f"  Transportation:          {_money(local.transportation)}",
                "Other Necessary Expenses:",
                f"  Health insurance:        {_money(other.health_insurance)}",
                f"  Childcare:               {_money(other.childcare)}",
                f"  Court-ordered payments:  {_money(other.court_ordered_payments)}",
                f"  Education:               {_money(other.education)}",
                f"Total allowances:          {_money(allowances.total)}",
            ])

        lines.extend([
            "",
            f"Secured debt payments:     {_money(result.secured_debt_monthly_payments)}",
            f"Priority debt payments:    {_money(result.priority_debt_monthly_payments)}",
            f"Total deductions:          {_money(result.total_deductions)}",
            "",
            f"Disposable income:         {_money(result.disposable_income)}",
            f"x 60 months:               {_money(result.sixty_month_disposable)}",
            f"Statutory floor:           {_money(result.statutory_floor)}",
            f"Step 2 result:             {'PASSES' if result.passes_step2 else 'FAILS'}",
        ])

        self._sections.append(ReportSection(title="Step 2 - Disposable Income", content="\n".join(lines)))

    def _add_income_sources(self, summary: IncomeSummary) -> None:
        lines = [
            f"{'Employer':<28} {'Year':<6} {'Monthly':>12} {'Method':<18} {'Status':<12}",
            "-" * 80,
        ]
        for source in summary.sources:
            lines.append(
                f"{_clip(source.employer_name, 28):<28} "
                f"{source.income_year:<6} "
                f"{_money(source.verified_monthly_gross):>12} "
                f"{source.determination_method.value:<18} "
                f"{source.status.value:<12}"
            )
            if source.verified_by:
                lines.append(f"    verified by {source.verified_by}")
            if source.status != ReconciliationStatus.RECONCILED:
                lines.append(f"    confidence {source.confidence:.0%}")
                if source.discrepancy is not None:
                    lines.append(f"    discrepancy {source.discrepancy.magnitude:.1%}: "
                                 f"{source.discrepancy.suggested_resolution}")

        lines.append("")
        lines.append(f"Total monthly gross (reconciled only): {_money(summary.total_monthly_gross)}")
        lines.append(f"Total annual gross (reconciled only):  {_money(summary.total_annual_gross)}")
        if summary.sources_needing_review:
            lines.append(f"Sources needing review: {len(summary.sources_needing_review)}")
        if not summary.evidence_complete:
            missing = ", ".join(summary.unavailable_sources) or "none reconciled"
            lines.append(f"Evidence incomplete; unavailable: {missing}")
        if summary.skipped_extractions:
            lines.append(f"Skipped extractions: {', '.join(summary.skipped_extractions)}")

        self._sections.append(ReportSection(title="Reconciled Income", content="\n".join(lines)))

    def _add_warnings(self, result: MeansTestResult) -> None:
        lines = []
        if result.defaults_applied:
            lines.append(f"Defaults applied: {', '.join(result.defaults_applied)}")
            lines.append("")
        for warning in result.warnings:
            lines.append(f"  - {warning}")

        self._sections.append(ReportSection(title="Warnings", content="\n".join(lines)))

    def _add_run_trail(self, trail: AuditTrail) -> None:
        lines = [f"Run {trail.run_id} ({trail.status})"]
        for error in trail.errors:
            reference = f" [{error.reference}]" if error.reference else ""
            lines.append(f"  ERROR {error.code}{reference}: {error.message}")
        for warning in trail.warnings:
            reference = f" [{warning.reference}]" if warning.reference else ""
            lines.append(f"  {warning.severity.value.upper()} {warning.code}{reference}: {warning.message}")

        self._sections.append(ReportSection(title="Income Recompute Run", content="\n".join(lines)))

    def _add_audit_trail(self, entries: list[AuditEntry], calculated_at: datetime) -> None:
        lines = [
            "CALCULATION AUDIT TRAIL",
            "-" * 100,
            "",
            f"{'Step':<30} {'Input':<30} {'Output':<15} {'Source':<25}",
            "-" * 100,
        ]

        # Every step is listed; the report is a legal record
        for entry in entries:
            lines.append(
                f"{_clip(entry.step, 30):<30} "
                f"{_clip(entry.input_value, 30):<30} "
                f"{_clip(entry.output_value, 15):<15} "
                f"{_clip(entry.source, 25):<25}"
            )
            if entry.notes:
                lines.append(f"    {entry.notes}")

        lines.append("")
        lines.append(f"Total audit entries: {len(entries)}")
        lines.append(f"Calculated at: {calculated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")

        self._sections.append(ReportSection(title="Audit Trail", content="\n".join(lines)))

    def _format_text(self) -> str:
        """Format report as plain text."""
        output = []

        for section in self._sections:
            if section.title != "Header":
                output.append("")
                output.append("=" * 60)
                output.append(section.title.upper())
                output.append("=" * 60)

            output.append(section.content)

        output.append("")
        output.append("=" * 60)
        output.append("END OF REPORT")
        output.append("=" * 60)
        output.append("")
        output.append("DISCLAIMER: This report is for informational purposes only and")
        output.append("does not constitute legal advice. An attorney must review the")
        output.append("determination before any bankruptcy filing.")

        return "\n".join(output)

    def _format_markdown(self) -> str:
        """Format report as Markdown."""
        output = []

        for section in self._sections:
            if section.title == "Header":
                output.append(section.content)
            else:
                output.append(f"\n## {section.title}\n")
                output.append("```")
                output.append(section.content)
                output.append("```")

        output.append("\n---\n")
        output.append("**DISCLAIMER:** This report is for informational purposes only and ")
        output.append("does not constitute legal advice. An attorney must review the ")
        output.append("determination before any bankruptcy filing.")

        return "\n".join(output)
