"""
PayCore - Pay Run Service Tests

Lifecycle, approval policy, completion side effects and the run totals
invariant, against an in-memory database.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, select, update

from paycore.config import get_settings
from paycore.models.audit import PayrollAuditAction
from paycore.models.pay_run import PayRun, PayRunItemStatus, PayRunStatus, PayslipStatus
from paycore.models.payroll import (
    EmployeeDeductionPosting,
    PayFrequency,
    PayType,
    WageAdvanceRepayment,
    WageAdvanceStatus,
)
from paycore.services.audit_service import PayrollAuditService
from paycore.services.deduction_service import DeductionService, seed_deduction_types
from paycore.services.pay_run_service import PayRunService
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollBusinessRuleError,
    PayrollInvariantError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.services.payslip_service import PayslipService
from paycore.services.wage_advance_service import WageAdvanceService


MONTHS = {
    1: (date(2026, 1, 1), date(2026, 1, 31)),
    2: (date(2026, 2, 1), date(2026, 2, 28)),
    3: (date(2026, 3, 1), date(2026, 3, 31)),
}


async def create_run(service: PayRunService, tenant_id, month: int = 1, **kwargs) -> PayRun:
    period_start, period_end = MONTHS[month]
    return await service.create_pay_run(
        tenant_id=tenant_id,
        name=f"Payroll {period_start:%B %Y}",
        period_start=period_start,
        period_end=period_end,
        pay_date=period_end,
        **kwargs,
    )


async def run_to_completion(service: PayRunService, tenant_id, actor_id, month: int) -> PayRun:
    pay_run = await create_run(service, tenant_id, month)
    await service.process_pay_run(pay_run, actor_id)
    await service.approve_pay_run(pay_run, actor_id)
    return await service.complete_pay_run(pay_run, actor_id)


class TestPayRunLifecycle:
    """draft -> calculating -> pending_review -> approved -> completed."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)

        pay_run = await create_run(service, tenant_id, created_by_id=actor_id)
        assert pay_run.status == PayRunStatus.DRAFT
        assert pay_run.reference == "PR-20260131-0001"

        await service.process_pay_run(pay_run, actor_id)
        assert pay_run.status == PayRunStatus.PENDING_REVIEW
        assert pay_run.employee_count == 1
        assert pay_run.total_gross == Decimal("300000.00")
        assert pay_run.total_tax == Decimal("36500.00")
        assert pay_run.total_net == Decimal("263500.00")

        await service.approve_pay_run(pay_run, actor_id)
        assert pay_run.status == PayRunStatus.APPROVED
        assert pay_run.approved_by_id == actor_id

        await service.complete_pay_run(pay_run, actor_id)
        assert pay_run.status == PayRunStatus.COMPLETED

        payslips = await service.get_payslips(pay_run.id)
        assert len(payslips) == 1
        assert payslips[0].net_pay == Decimal("263500.00")
        assert payslips[0].status == PayslipStatus.ISSUED

    @pytest.mark.asyncio
    async def test_transitions_are_audited(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await run_to_completion(service, tenant_id, actor_id, 1)

        history = await PayrollAuditService(db_session).get_entity_history("pay_run", pay_run.id)
        actions = sorted(entry.action for entry in history)
        assert actions == sorted([
            PayrollAuditAction.PAY_RUN_CREATED.value,
            PayrollAuditAction.PAY_RUN_PROCESSED.value,
            PayrollAuditAction.PAY_RUN_APPROVED.value,
            PayrollAuditAction.PAY_RUN_COMPLETED.value,
        ])

    @pytest.mark.asyncio
    async def test_cannot_approve_draft(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)

        with pytest.raises(PayRunStateError):
            await service.approve_pay_run(pay_run, actor_id)

    @pytest.mark.asyncio
    async def test_cannot_complete_before_approval(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        with pytest.raises(PayRunStateError):
            await service.complete_pay_run(pay_run, actor_id)

    @pytest.mark.asyncio
    async def test_completed_run_is_terminal(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await run_to_completion(service, tenant_id, actor_id, 1)

        with pytest.raises(PayRunStateError):
            await service.cancel_pay_run(pay_run, "Too late", actor_id)
        with pytest.raises(PayRunStateError):
            await service.process_pay_run(pay_run, actor_id)

    @pytest.mark.asyncio
    async def test_cancel_from_review(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        await service.cancel_pay_run(pay_run, "Wrong period", actor_id)

        assert pay_run.status == PayRunStatus.CANCELLED
        assert pay_run.cancellation_reason == "Wrong period"
        assert await service.get_payslips(pay_run.id) == []

    @pytest.mark.asyncio
    async def test_empty_roster_rejected(self, db_session, tenant_id, actor_id, tax_tables):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)

        with pytest.raises(PayrollBusinessRuleError):
            await service.process_pay_run(pay_run, actor_id)
        assert pay_run.status == PayRunStatus.DRAFT

    @pytest.mark.asyncio
    async def test_reprocessing_replaces_items(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)

        await service.process_pay_run(pay_run, actor_id)
        await service.process_pay_run(pay_run, actor_id)

        items = await service.get_items(pay_run.id)
        assert len(items) == 1
        assert pay_run.total_net == Decimal("263500.00")


class TestPayRunCreation:
    """Creation rules."""

    @pytest.mark.asyncio
    async def test_period_end_before_start(self, db_session, tenant_id):
        service = PayRunService(db_session)
        with pytest.raises(PayrollValidationError):
            await service.create_pay_run(
                tenant_id=tenant_id,
                name="Backwards",
                period_start=date(2026, 1, 31),
                period_end=date(2026, 1, 1),
                pay_date=date(2026, 1, 31),
            )

    @pytest.mark.asyncio
    async def test_one_run_per_period(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        first = await create_run(service, tenant_id)

        with pytest.raises(PayrollBusinessRuleError):
            await create_run(service, tenant_id)

        await service.cancel_pay_run(first, "Recreate", actor_id)
        second = await create_run(service, tenant_id)
        assert second.reference == "PR-20260131-0002"

    @pytest.mark.asyncio
    async def test_delete_only_in_draft(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        draft = await create_run(service, tenant_id, 1)
        await service.delete_pay_run(draft, actor_id)

        with pytest.raises(PayrollNotFoundError):
            await service.get_pay_run(tenant_id, draft.id)

        processed = await create_run(service, tenant_id, 2)
        await service.process_pay_run(processed, actor_id)
        with pytest.raises(PayRunStateError):
            await service.delete_pay_run(processed, actor_id)

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, db_session, tenant_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)

        with pytest.raises(PayrollNotFoundError):
            await service.get_pay_run(uuid4(), pay_run.id)


class TestPerEmployeeErrors:
    """One employee's failure never aborts the run."""

    @pytest.mark.asyncio
    async def test_error_item_captured(self, db_session, tenant_id, actor_id, employee, employee_factory):
        hourly = await employee_factory("EMP-002", pay_type=PayType.HOURLY, pay_amount=Decimal("2000.00"))

        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        assert pay_run.status == PayRunStatus.PENDING_REVIEW
        failed = await service.get_item(pay_run.id, hourly.id)
        assert failed.status == PayRunItemStatus.ERROR
        assert "no approved hours" in failed.error_message
        assert failed.net_pay == Decimal("0.00")

        # Only calculated items count towards totals
        assert pay_run.employee_count == 1
        assert pay_run.total_net == Decimal("263500.00")

        summary = await service.get_summary(pay_run)
        assert summary["item_counts"]["error"] == 1
        assert summary["item_counts"]["calculated"] == 1

    @pytest.mark.asyncio
    async def test_errors_block_approval_by_default(self, db_session, tenant_id, actor_id, employee, employee_factory):
        await employee_factory("EMP-002", pay_type=PayType.HOURLY, pay_amount=Decimal("2000.00"))

        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        with pytest.raises(PayrollBusinessRuleError):
            await service.approve_pay_run(pay_run, actor_id)

    @pytest.mark.asyncio
    async def test_errors_allowed_when_configured(self, db_session, tenant_id, actor_id, employee, employee_factory):
        await employee_factory("EMP-002", pay_type=PayType.HOURLY, pay_amount=Decimal("2000.00"))

        settings = get_settings().model_copy(update={"payroll_allow_approval_with_errors": True})
        service = PayRunService(db_session, settings)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)
        await service.approve_pay_run(pay_run, actor_id)
        await service.complete_pay_run(pay_run, actor_id)

        payslips = await service.get_payslips(pay_run.id)
        assert [p.employee_id for p in payslips] == [employee.id]

    @pytest.mark.asyncio
    async def test_missing_pension_catalog_is_an_item_error(self, db_session, tenant_id, actor_id, tax_tables, employee_factory):
        enrolled = await employee_factory("EMP-001", pension_enabled=True)

        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        item = await service.get_item(pay_run.id, enrolled.id)
        assert item.status == PayRunItemStatus.ERROR
        assert "PENSION_EE" in item.error_message

    @pytest.mark.asyncio
    async def test_no_calculated_items_blocks_approval(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.exclude_employee(pay_run, employee.id, "On leave", actor_id)
        await service.process_pay_run(pay_run, actor_id)

        with pytest.raises(PayrollBusinessRuleError):
            await service.approve_pay_run(pay_run, actor_id)


class TestTotalsInvariant:
    """Run totals always equal the sum of calculated items."""

    @pytest.mark.asyncio
    async def test_recalculate_reaggregates(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        employee.pay_amount = Decimal("400000.00")
        await db_session.commit()

        item = await service.recalculate_item(pay_run, employee.id, actor_id)

        assert item.gross_earnings == Decimal("400000.00")
        assert pay_run.total_gross == Decimal("400000.00")
        assert pay_run.total_net == item.net_pay
        await service.verify_totals(pay_run)

    @pytest.mark.asyncio
    async def test_tampered_totals_detected(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        pay_run.total_net = pay_run.total_net + Decimal("1.00")

        with pytest.raises(PayrollInvariantError):
            await service.approve_pay_run(pay_run, actor_id)

    @pytest.mark.asyncio
    async def test_recalculate_only_in_review(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)

        with pytest.raises(PayRunStateError):
            await service.recalculate_item(pay_run, employee.id, actor_id)


class TestExclusions:
    """Excluding and re-including employees."""

    @pytest.mark.asyncio
    async def test_exclude_then_include_in_review(self, db_session, tenant_id, actor_id, employee, employee_factory):
        second = await employee_factory("EMP-002")

        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.exclude_employee(pay_run, second.id, "Joined late", actor_id)
        await service.process_pay_run(pay_run, actor_id)

        excluded = await service.get_item(pay_run.id, second.id)
        assert excluded.status == PayRunItemStatus.EXCLUDED
        assert excluded.exclusion_reason == "Joined late"
        assert pay_run.employee_count == 1
        assert pay_run.total_gross == Decimal("300000.00")

        await service.include_employee(pay_run, second.id, actor_id)

        included = await service.get_item(pay_run.id, second.id)
        assert included.status == PayRunItemStatus.CALCULATED
        assert pay_run.employee_count == 2
        assert pay_run.total_gross == Decimal("600000.00")
        await service.verify_totals(pay_run)

    @pytest.mark.asyncio
    async def test_exclude_in_review_drops_totals(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        await service.exclude_employee(pay_run, employee.id, "Resigned", actor_id)

        assert pay_run.total_gross == Decimal("0.00")
        assert pay_run.employee_count == 0

    @pytest.mark.asyncio
    async def test_exclusion_not_allowed_after_approval(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)
        await service.approve_pay_run(pay_run, actor_id)

        with pytest.raises(PayRunStateError):
            await service.exclude_employee(pay_run, employee.id, "Too late", actor_id)


class TestCancellationDuringProcessing:
    """A cancel that lands while employees are computing wins at the barrier."""

    @pytest.mark.asyncio
    async def test_cancel_observed_at_barrier(self, db_session, tenant_id, actor_id, employee, monkeypatch):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)

        compute_all = service.processor.compute_all

        async def cancel_while_computing(contexts):
            await db_session.execute(
                update(PayRun)
                .where(PayRun.id == pay_run.id)
                .values(status=PayRunStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            return await compute_all(contexts)

        monkeypatch.setattr(service.processor, "compute_all", cancel_while_computing)

        await service.process_pay_run(pay_run, actor_id)

        assert pay_run.status == PayRunStatus.CANCELLED
        assert pay_run.calculated_at is None
        assert pay_run.total_net == Decimal("0.00")
        with pytest.raises(PayRunStateError):
            await service.approve_pay_run(pay_run, actor_id)


class TestCompletionSideEffects:
    """Postings happen exactly once, at completion."""

    @pytest.mark.asyncio
    async def test_loan_deactivates_at_target(self, db_session, tenant_id, actor_id, employee, deduction_catalog):
        deductions = DeductionService(db_session)
        loan = await deductions.assign_deduction(
            employee,
            deduction_catalog["LOAN"],
            effective_from=date(2026, 1, 1),
            amount=Decimal("20000"),
            total_target=Decimal("30000"),
        )
        await db_session.commit()

        service = PayRunService(db_session)
        january = await run_to_completion(service, tenant_id, actor_id, 1)
        assert january.total_net == Decimal("243500.00")
        assert loan.total_deducted == Decimal("20000.00")
        assert loan.is_active is True

        february = await run_to_completion(service, tenant_id, actor_id, 2)
        item = await service.get_item(february.id, employee.id)
        assert item.post_tax_deductions == Decimal("10000.00")
        assert loan.total_deducted == Decimal("30000.00")
        assert loan.is_active is False

        # Posting again for the same run is a no-op
        await deductions.post_deduction(loan, Decimal("10000"), february, actor_id)
        assert loan.total_deducted == Decimal("30000.00")
        postings = (
            await db_session.execute(
                select(func.count()).select_from(EmployeeDeductionPosting)
                .where(EmployeeDeductionPosting.employee_deduction_id == loan.id)
            )
        ).scalar()
        assert postings == 2

    @pytest.mark.asyncio
    async def test_processing_posts_nothing(self, db_session, tenant_id, actor_id, employee, deduction_catalog):
        deductions = DeductionService(db_session)
        loan = await deductions.assign_deduction(
            employee, deduction_catalog["LOAN"], effective_from=date(2026, 1, 1), amount=Decimal("5000"),
        )
        await db_session.commit()

        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)
        await service.process_pay_run(pay_run, actor_id)
        await service.approve_pay_run(pay_run, actor_id)

        assert loan.total_deducted == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_advance_repaid_over_three_runs(self, db_session, tenant_id, actor_id, employee):
        advances = WageAdvanceService(db_session)
        advance = await advances.request_advance(employee, Decimal("30000"), installment_count=3)
        await advances.approve_advance(advance, actor_id)
        await advances.disburse_advance(advance, actor_id)

        service = PayRunService(db_session)
        for month in (1, 2, 3):
            pay_run = await create_run(service, tenant_id, month)
            await service.process_pay_run(pay_run, actor_id)
            # Reprocessing during review never double-counts
            await service.process_pay_run(pay_run, actor_id)
            item = await service.get_item(pay_run.id, employee.id)
            assert item.advance_repayment == Decimal("10000.00")

            await service.approve_pay_run(pay_run, actor_id)
            await service.complete_pay_run(pay_run, actor_id)
            assert advance.installments_paid == month

        assert advance.status == WageAdvanceStatus.REPAID
        assert advance.amount_repaid == Decimal("30000.00")
        assert advance.remaining_balance == Decimal("0.00")

        repayments = await service.ledger.get_repayments(advance.id)
        assert [r.installment_number for r in repayments] == [1, 2, 3]
        assert repayments[-1].balance_after == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_repayment_posting_is_idempotent(self, db_session, tenant_id, actor_id, employee):
        advances = WageAdvanceService(db_session)
        advance = await advances.request_advance(employee, Decimal("30000"), installment_count=3)
        await advances.approve_advance(advance, actor_id)
        await advances.disburse_advance(advance, actor_id)

        service = PayRunService(db_session)
        pay_run = await run_to_completion(service, tenant_id, actor_id, 1)

        await service.ledger.post_repayment(advance, Decimal("10000"), pay_run, actor_id)

        assert advance.amount_repaid == Decimal("10000.00")
        count = (
            await db_session.execute(
                select(func.count()).select_from(WageAdvanceRepayment)
                .where(WageAdvanceRepayment.wage_advance_id == advance.id)
            )
        ).scalar()
        assert count == 1

    @pytest.mark.asyncio
    async def test_loan_larger_than_pay_posts_only_what_was_withheld(
        self, db_session, tenant_id, actor_id, tax_tables, deduction_catalog, employee_factory
    ):
        low_earner = await employee_factory("EMP-010", pay_amount=Decimal("10000.00"))
        deductions = DeductionService(db_session)
        loan = await deductions.assign_deduction(
            low_earner,
            deduction_catalog["LOAN"],
            effective_from=date(2026, 1, 1),
            amount=Decimal("50000"),
            total_target=Decimal("100000"),
        )
        await db_session.commit()

        service = PayRunService(db_session)
        pay_run = await run_to_completion(service, tenant_id, actor_id, 1)

        item = await service.get_item(pay_run.id, low_earner.id)
        assert item.net_pay == Decimal("0.00")
        assert item.gross_earnings - item.total_deductions == item.net_pay
        assert item.post_tax_deductions == Decimal("10000.00") - item.tax_amount
        assert item.deductions_breakdown[0]["amount"] == str(item.post_tax_deductions)
        assert item.tax_breakdown["warnings"]

        assert loan.total_deducted == item.post_tax_deductions
        assert loan.total_deducted <= pay_run.total_gross
        assert loan.is_active is True
        assert pay_run.total_net == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_unbalanced_item_blocks_approval(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await create_run(service, tenant_id)
        await service.process_pay_run(pay_run, actor_id)

        item = await service.get_item(pay_run.id, employee.id)
        item.net_pay = item.net_pay + Decimal("100.00")
        item.total_deductions = item.total_deductions - Decimal("50.00")
        pay_run.total_net = pay_run.total_net + Decimal("100.00")
        pay_run.total_deductions = pay_run.total_deductions - Decimal("50.00")

        with pytest.raises(PayrollInvariantError) as exc_info:
            await service.approve_pay_run(pay_run, actor_id)
        assert exc_info.value.details["employee_ids"] == [str(employee.id)]


class TestPayslips:
    """Payslip issue, year-to-date figures and cancellation."""

    @pytest.mark.asyncio
    async def test_year_to_date_accumulates(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        await run_to_completion(service, tenant_id, actor_id, 1)
        february = await run_to_completion(service, tenant_id, actor_id, 2)

        payslip = (await service.get_payslips(february.id))[0]
        assert payslip.ytd_gross == Decimal("600000.00")
        assert payslip.ytd_tax == Decimal("73000.00")

        history = await service.payslips.get_employee_payslips(tenant_id, employee.id, year=2026)
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_cancel_payslip(self, db_session, tenant_id, actor_id, employee):
        service = PayRunService(db_session)
        pay_run = await run_to_completion(service, tenant_id, actor_id, 1)
        payslip = (await service.get_payslips(pay_run.id))[0]

        payslips = PayslipService(db_session)
        with pytest.raises(PayrollValidationError):
            await payslips.cancel_payslip(payslip, " ", actor_id)

        await payslips.cancel_payslip(payslip, "Issued with wrong bank details", actor_id)
        assert payslip.status == PayslipStatus.CANCELLED

        with pytest.raises(PayRunStateError):
            await payslips.cancel_payslip(payslip, "Again", actor_id)

    @pytest.mark.asyncio
    async def test_payslip_numbers_unique_across_tenants(self, db_session, tenant_id, actor_id, employee, employee_factory):
        other_tenant = uuid4()
        await seed_deduction_types(db_session, other_tenant)
        other_employee = await employee_factory("EMP-001", tenant=other_tenant, email="other@example.com")

        service = PayRunService(db_session)
        ours = await run_to_completion(service, tenant_id, actor_id, 1)
        theirs = await run_to_completion(service, other_tenant, actor_id, 1)

        our_slip = (await service.get_payslips(ours.id))[0]
        their_slip = (await service.get_payslips(theirs.id))[0]
        assert our_slip.payslip_number == "PS-20260131-0001-EMP-001"
        assert their_slip.payslip_number == our_slip.payslip_number
        assert their_slip.tenant_id == other_tenant
        assert their_slip.employee_id == other_employee.id
        assert theirs.status == PayRunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_weekly_runs_in_one_month(self, db_session, tenant_id, actor_id, tax_tables, deduction_catalog, employee_factory):
        await employee_factory("EMP-100", pay_amount=Decimal("70000.00"), pay_frequency=PayFrequency.WEEKLY)
        service = PayRunService(db_session)

        numbers = []
        for period_start, pay_date in ((date(2026, 1, 1), date(2026, 1, 7)), (date(2026, 1, 8), date(2026, 1, 14))):
            pay_run = await service.create_pay_run(
                tenant_id=tenant_id,
                name=f"Week ending {pay_date}",
                period_start=period_start,
                period_end=pay_date,
                pay_date=pay_date,
                frequency=PayFrequency.WEEKLY,
            )
            await service.process_pay_run(pay_run, actor_id)
            await service.approve_pay_run(pay_run, actor_id)
            await service.complete_pay_run(pay_run, actor_id)
            assert pay_run.status == PayRunStatus.COMPLETED
            numbers.append((await service.get_payslips(pay_run.id))[0].payslip_number)

        assert numbers == ["PS-20260107-0001-EMP-100", "PS-20260114-0001-EMP-100"]


class TestWageAdvanceLimits:
    """Advance caps come from the settings the service is given."""

    @pytest.mark.asyncio
    async def test_default_cap_is_half_of_salary(self, db_session, employee):
        advances = WageAdvanceService(db_session)
        assert advances.maximum_advance(employee) == Decimal("150000.00")

        with pytest.raises(PayrollBusinessRuleError) as exc_info:
            await advances.request_advance(employee, Decimal("160000"))
        assert exc_info.value.details["violated_rule"] == "wage_advance_max_salary_percent"

    @pytest.mark.asyncio
    async def test_injected_settings_override_caps(self, db_session, employee):
        settings = get_settings().model_copy(update={
            "wage_advance_max_salary_percent": Decimal("60"),
            "wage_advance_max_installments": 2,
        })
        advances = WageAdvanceService(db_session, settings)

        with pytest.raises(PayrollValidationError):
            await advances.request_advance(employee, Decimal("30000"), installment_count=3)

        advance = await advances.request_advance(employee, Decimal("160000"), installment_count=2)
        assert advance.status == WageAdvanceStatus.PENDING
        assert advance.principal == Decimal("160000.00")
