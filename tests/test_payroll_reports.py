"""
PayCore - Payroll Report Tests

Summary, remittance, bank schedule, journal and statistics reports over
completed pay runs.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from paycore.config import get_settings
from paycore.models.tax_law import TaxLawVersion
from paycore.services.pay_run_service import PayRunService
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.services.payroll_report_service import PayrollReportService, remittance_due_date
from paycore.services.payslip_service import PayslipService


BASE = "/api/v1/payroll"

MONTHS = {
    1: (date(2026, 1, 1), date(2026, 1, 31)),
    2: (date(2026, 2, 1), date(2026, 2, 28)),
    3: (date(2026, 3, 1), date(2026, 3, 31)),
}


async def create_run(service: PayRunService, tenant_id, month: int = 1):
    period_start, period_end = MONTHS[month]
    return await service.create_pay_run(
        tenant_id=tenant_id,
        name=f"Payroll {period_start:%B %Y}",
        period_start=period_start,
        period_end=period_end,
        pay_date=period_end,
    )


async def complete_run(service: PayRunService, tenant_id, actor_id, month: int = 1):
    pay_run = await create_run(service, tenant_id, month)
    await service.process_pay_run(pay_run, actor_id)
    await service.approve_pay_run(pay_run, actor_id)
    return await service.complete_pay_run(pay_run, actor_id)


@pytest.fixture
def staff(tax_tables, deduction_catalog, employee_factory):
    """
    Three employees on 300,000:
    EMP-001 with a TIN and a GTBank account,
    EMP-002 enrolled in pension with an Access Bank account,
    EMP-003 with neither TIN nor bank details.
    """

    async def create():
        return [
            await employee_factory(
                "EMP-001",
                tin="12345678-0001",
                bank_name="GTBank",
                account_number="0123456789",
            ),
            await employee_factory(
                "EMP-002",
                first_name="Chinedu",
                pension_enabled=True,
                pension_pin="PEN100200300",
                pfa_name="Stanbic IBTC Pension",
                bank_name="Access Bank",
                account_number="9876543210",
                account_name="Chinedu Okafor",
            ),
            await employee_factory("EMP-003", first_name="Bola"),
        ]

    return create


class TestRemittanceDueDate:
    """Due day of the month after the period."""

    def test_next_month(self):
        assert remittance_due_date(date(2026, 1, 31), 10) == date(2026, 2, 10)

    def test_december_rolls_into_next_year(self):
        assert remittance_due_date(date(2025, 12, 31), 7) == date(2026, 1, 7)

    def test_day_clamped_to_month_end(self):
        assert remittance_due_date(date(2026, 1, 31), 31) == date(2026, 2, 28)


class TestPayrollSummary:
    """Issued payslips for a run or date range."""

    @pytest.mark.asyncio
    async def test_totals(self, db_session, tenant_id, actor_id, staff):
        await staff()
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        report = await PayrollReportService(db_session).payroll_summary(tenant_id, pay_run_id=pay_run.id)

        summary = report["summary"]
        assert summary["employee_count"] == 3
        assert summary["total_gross"] == Decimal("900000.00")
        # 36,500 twice and 32,180 for the pension member
        assert summary["total_tax"] == Decimal("105180.00")
        assert summary["total_net"] == Decimal("770820.00")
        assert summary["total_deductions"] == Decimal("129180.00")
        assert summary["total_pension_employee"] == Decimal("24000.00")
        assert summary["total_pension_employer"] == Decimal("30000.00")
        assert [line["employee_code"] for line in report["breakdown"]] == ["EMP-001", "EMP-002", "EMP-003"]

    @pytest.mark.asyncio
    async def test_cancelled_payslips_left_out(self, db_session, tenant_id, actor_id, staff):
        employees = await staff()
        service = PayRunService(db_session)
        pay_run = await complete_run(service, tenant_id, actor_id)
        payslip = next(p for p in await service.get_payslips(pay_run.id) if p.employee_id == employees[2].id)
        await PayslipService(db_session).cancel_payslip(payslip, "Left before pay date", actor_id)

        report = await PayrollReportService(db_session).payroll_summary(tenant_id, pay_run_id=pay_run.id)

        assert report["summary"]["employee_count"] == 2
        assert report["summary"]["total_gross"] == Decimal("600000.00")

    @pytest.mark.asyncio
    async def test_date_range_on_pay_date(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        await complete_run(service, tenant_id, actor_id, month=1)
        await complete_run(service, tenant_id, actor_id, month=2)

        report = await PayrollReportService(db_session).payroll_summary(
            tenant_id, start_date=date(2026, 2, 1), end_date=date(2026, 2, 28),
        )

        assert report["summary"]["payslip_count"] == 1
        assert report["breakdown"][0]["pay_date"] == date(2026, 2, 28)

    @pytest.mark.asyncio
    async def test_other_tenant_sees_nothing(self, db_session, tenant_id, actor_id, employee):
        await complete_run(PayRunService(db_session), tenant_id, actor_id)

        report = await PayrollReportService(db_session).payroll_summary(uuid4())

        assert report["summary"]["payslip_count"] == 0
        assert report["summary"]["total_net"] == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, db_session, tenant_id):
        with pytest.raises(PayrollValidationError):
            await PayrollReportService(db_session).payroll_summary(
                tenant_id, start_date=date(2026, 3, 1), end_date=date(2026, 1, 1),
            )

    @pytest.mark.asyncio
    async def test_unknown_pay_run(self, db_session, tenant_id):
        with pytest.raises(PayrollNotFoundError):
            await PayrollReportService(db_session).payroll_summary(tenant_id, pay_run_id=uuid4())


class TestTaxRemittance:
    """PAYE schedule for the tax authority."""

    @pytest.mark.asyncio
    async def test_schedule(self, db_session, tenant_id, actor_id, staff):
        await staff()
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        report = await PayrollReportService(db_session).tax_remittance(tenant_id, pay_run_id=pay_run.id)

        assert report["summary"]["employee_count"] == 3
        assert report["summary"]["total_tax"] == Decimal("105180.00")
        assert report["due_date"] == date(2026, 2, 10)
        assert report["employees_without_tin"] == ["EMP-002", "EMP-003"]

        first = report["breakdown"][0]
        assert first["tin"] == "12345678-0001"
        assert first["tax_law_version"] == TaxLawVersion.NTA_2025.value
        assert first["effective_rate"] == Decimal("12.17")

    @pytest.mark.asyncio
    async def test_due_day_from_settings(self, db_session, tenant_id, actor_id, employee):
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        settings = get_settings().model_copy(update={"paye_remittance_day": 15})
        report = await PayrollReportService(db_session, settings).tax_remittance(tenant_id, pay_run_id=pay_run.id)

        assert report["due_date"] == date(2026, 2, 15)

    @pytest.mark.asyncio
    async def test_exempt_employees_not_listed(self, db_session, tenant_id, actor_id, tax_tables, deduction_catalog, employee_factory):
        await employee_factory("EMP-001", pay_amount=Decimal("50000.00"))
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        report = await PayrollReportService(db_session).tax_remittance(tenant_id, pay_run_id=pay_run.id)

        assert report["breakdown"] == []
        assert report["summary"]["total_tax"] == Decimal("0.00")
        assert report["due_date"] == date(2026, 2, 10)


class TestPensionRemittance:
    """Employee and employer pension contributions."""

    @pytest.mark.asyncio
    async def test_schedule(self, db_session, tenant_id, actor_id, staff):
        await staff()
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        report = await PayrollReportService(db_session).pension_remittance(tenant_id, pay_run_id=pay_run.id)

        assert report["summary"] == {
            "employee_count": 1,
            "total_employee_contribution": Decimal("24000.00"),
            "total_employer_contribution": Decimal("30000.00"),
            "total_contribution": Decimal("54000.00"),
        }
        assert report["due_date"] == date(2026, 2, 7)
        assert report["by_pfa"] == [
            {"pfa_name": "Stanbic IBTC Pension", "employee_count": 1, "total_contribution": Decimal("54000.00")},
        ]
        assert report["breakdown"][0]["pension_pin"] == "PEN100200300"


class TestBankSchedule:
    """Net pay transfers for a completed run."""

    @pytest.mark.asyncio
    async def test_schedule(self, db_session, tenant_id, actor_id, staff):
        await staff()
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        schedule = await PayrollReportService(db_session).bank_schedule(tenant_id, pay_run.id)

        assert schedule["total_employees"] == 2
        assert schedule["total_amount"] == Decimal("507320.00")
        assert [group["bank_name"] for group in schedule["by_bank"]] == ["Access Bank", "GTBank"]

        transfers = {item["employee_code"]: item for item in schedule["items"]}
        assert transfers["EMP-001"]["amount"] == Decimal("263500.00")
        assert transfers["EMP-001"]["account_name"] == "Adaeze Okafor"
        assert transfers["EMP-001"]["narration"] == "Salary - Payroll January 2026"
        assert transfers["EMP-002"]["amount"] == Decimal("243820.00")
        assert transfers["EMP-002"]["account_name"] == "Chinedu Okafor"

        assert [row["employee_code"] for row in schedule["missing_bank_details"]] == ["EMP-003"]

    @pytest.mark.asyncio
    async def test_uses_bank_details_at_issue(self, db_session, tenant_id, actor_id, staff):
        employees = await staff()
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        employees[0].account_number = "1111111111"
        await db_session.commit()
        schedule = await PayrollReportService(db_session).bank_schedule(tenant_id, pay_run.id)

        transfers = {item["employee_code"]: item for item in schedule["items"]}
        assert transfers["EMP-001"]["account_number"] == "0123456789"

    @pytest.mark.asyncio
    async def test_requires_completed_run(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        with pytest.raises(PayRunStateError):
            await PayrollReportService(db_session).bank_schedule(tenant_id, pay_run.id)


class TestPayrollJournal:
    """Balanced journal lines per completed run."""

    @pytest.mark.asyncio
    async def test_lines_balance(self, db_session, tenant_id, actor_id, staff):
        await staff()
        pay_run = await complete_run(PayRunService(db_session), tenant_id, actor_id)

        journal = await PayrollReportService(db_session).payroll_journal(tenant_id)

        assert journal["pay_run_count"] == 1
        lines = {entry["account"]: entry for entry in journal["entries"]}
        assert lines["Salaries and Wages Expense"]["debit"] == Decimal("900000.00")
        assert lines["Employer Contributions Expense"]["debit"] == Decimal("30000.00")
        assert lines["PAYE Payable"]["credit"] == Decimal("105180.00")
        assert lines["Pension Payable"]["credit"] == Decimal("54000.00")
        assert lines["Net Salaries Payable"]["credit"] == Decimal("770820.00")
        # No NHF members and no other deductions
        assert "NHF Payable" not in lines
        assert "Other Deductions Payable" not in lines
        assert {entry["reference"] for entry in journal["entries"]} == {pay_run.reference}

        assert journal["total_debits"] == Decimal("930000.00")
        assert journal["total_credits"] == Decimal("930000.00")
        assert journal["balanced"] is True

    @pytest.mark.asyncio
    async def test_only_completed_runs(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        await complete_run(service, tenant_id, actor_id, month=1)
        pending = await create_run(service, tenant_id, month=2)
        await service.process_pay_run(pending, actor_id)

        journal = await PayrollReportService(db_session).payroll_journal(tenant_id)

        assert journal["pay_run_count"] == 1
        assert journal["balanced"] is True


class TestPayRunStatistics:
    """Completed run totals by month."""

    @pytest.mark.asyncio
    async def test_monthly_breakdown(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        await complete_run(service, tenant_id, actor_id, month=1)
        await complete_run(service, tenant_id, actor_id, month=2)
        await create_run(service, tenant_id, month=3)

        stats = await PayrollReportService(db_session).pay_run_statistics(tenant_id, 2026)

        assert stats["total_pay_runs"] == 2
        assert stats["total_gross"] == Decimal("600000.00")
        assert stats["total_net"] == Decimal("527000.00")
        assert [month["month"] for month in stats["monthly_breakdown"]] == ["2026-01", "2026-02"]
        assert all(month["employee_count"] == 1 for month in stats["monthly_breakdown"])

    @pytest.mark.asyncio
    async def test_other_year_empty(self, db_session, tenant_id, actor_id, employee):
        await complete_run(PayRunService(db_session), tenant_id, actor_id)

        stats = await PayrollReportService(db_session).pay_run_statistics(tenant_id, 2025)

        assert stats["total_pay_runs"] == 0
        assert stats["monthly_breakdown"] == []


class TestReportEndpoints:
    """Report routes over HTTP."""

    async def completed_run(self, client, headers) -> str:
        created = await client.post(
            f"{BASE}/pay-runs",
            json={
                "name": "January 2026 Payroll",
                "period_start": "2026-01-01",
                "period_end": "2026-01-31",
                "pay_date": "2026-01-31",
            },
            headers=headers,
        )
        pay_run_id = created.json()["id"]
        for action in ("process", "approve", "complete"):
            response = await client.post(f"{BASE}/pay-runs/{pay_run_id}/{action}", headers=headers)
            assert response.status_code == 200
        return pay_run_id

    @pytest.mark.asyncio
    async def test_tax_remittance(self, client, headers, employee):
        pay_run_id = await self.completed_run(client, headers)

        response = await client.get(
            f"{BASE}/reports/tax-remittance", params={"pay_run_id": pay_run_id}, headers=headers,
        )

        assert response.status_code == 200
        report = response.json()
        assert Decimal(report["summary"]["total_tax"]) == Decimal("36500.00")
        assert report["due_date"] == "2026-02-10"
        assert report["employees_without_tin"] == ["EMP-001"]

    @pytest.mark.asyncio
    async def test_summary_and_statistics(self, client, headers, employee):
        await self.completed_run(client, headers)

        summary = await client.get(
            f"{BASE}/reports/summary",
            params={"start_date": "2026-01-01", "end_date": "2026-01-31"},
            headers=headers,
        )
        stats = await client.get(f"{BASE}/reports/statistics", params={"year": 2026}, headers=headers)

        assert summary.status_code == 200
        assert Decimal(summary.json()["summary"]["total_net"]) == Decimal("263500.00")
        assert stats.status_code == 200
        assert stats.json()["total_pay_runs"] == 1

    @pytest.mark.asyncio
    async def test_journal(self, client, headers, employee):
        await self.completed_run(client, headers)

        response = await client.get(f"{BASE}/reports/journal", headers=headers)

        assert response.status_code == 200
        assert response.json()["balanced"] is True

    @pytest.mark.asyncio
    async def test_bank_schedule_without_bank_details(self, client, headers, employee):
        pay_run_id = await self.completed_run(client, headers)

        response = await client.get(f"{BASE}/pay-runs/{pay_run_id}/bank-schedule", headers=headers)

        assert response.status_code == 200
        schedule = response.json()
        assert schedule["items"] == []
        assert schedule["missing_bank_details"][0]["employee_code"] == "EMP-001"

    @pytest.mark.asyncio
    async def test_bank_schedule_for_draft_is_conflict(self, client, headers, employee):
        created = await client.post(
            f"{BASE}/pay-runs",
            json={
                "name": "January 2026 Payroll",
                "period_start": "2026-01-01",
                "period_end": "2026-01-31",
                "pay_date": "2026-01-31",
            },
            headers=headers,
        )

        response = await client.get(f"{BASE}/pay-runs/{created.json()['id']}/bank-schedule", headers=headers)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_pension_remittance_empty(self, client, headers, employee):
        await self.completed_run(client, headers)

        response = await client.get(f"{BASE}/reports/pension-remittance", headers=headers)

        assert response.status_code == 200
        assert response.json()["breakdown"] == []
