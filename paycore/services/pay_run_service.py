"""
PayCore - Pay Run Service

Pay run lifecycle:

    draft -> calculating -> pending_review -> approved -> completed
    any non-terminal state -> cancelled

Processing computes every employee independently and concurrently; a
failure for one employee is captured on that employee's item and never
aborts the run. Run totals are written by a single writer after all
employees finish. Payslips, deduction postings and wage-advance
repayments are only written when the run completes.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.config import Settings, get_settings
from paycore.models.audit import PayrollAuditAction
from paycore.models.pay_run import PayRun, PayRunItem, PayRunItemStatus, PayRunStatus, Payslip
from paycore.models.payroll import (
    Employee,
    EmployeeDeduction,
    EmployeeEarning,
    PayFrequency,
    PayPeriodInput,
    WageAdvance,
)
from paycore.services.audit_service import PayrollAuditService
from paycore.services.deduction_engine import DeductionRule, is_assignment_active
from paycore.services.deduction_service import DeductionService
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollBusinessRuleError,
    PayrollComputationError,
    PayrollInvariantError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.services.payslip_composer import (
    ComposedPay,
    EarningLine,
    EmployeePayContext,
    EmployeePayProfile,
    PayslipComposer,
    PeriodInput,
)
from paycore.services.payslip_service import PayslipService
from paycore.services.tax_law_service import TaxLawService
from paycore.services.wage_advance_ledger import AdvanceSnapshot, WageAdvanceLedger
from paycore.utils.error_handling import AppException
from paycore.utils.money import ZERO, to_decimal

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    PayRunStatus.DRAFT: {PayRunStatus.CALCULATING, PayRunStatus.CANCELLED},
    PayRunStatus.CALCULATING: {PayRunStatus.CALCULATING, PayRunStatus.PENDING_REVIEW, PayRunStatus.CANCELLED},
    PayRunStatus.PENDING_REVIEW: {PayRunStatus.CALCULATING, PayRunStatus.APPROVED, PayRunStatus.CANCELLED},
    PayRunStatus.APPROVED: {PayRunStatus.COMPLETED, PayRunStatus.CANCELLED},
    PayRunStatus.COMPLETED: set(),
    PayRunStatus.CANCELLED: set(),
}

ITEM_MONEY_FIELDS = (
    "basic_salary",
    "gross_earnings",
    "pensionable_earnings",
    "pre_tax_deductions",
    "taxable_income",
    "tax_amount",
    "post_tax_deductions",
    "advance_repayment",
    "total_deductions",
    "net_pay",
    "employer_pension",
    "employer_nhf",
    "employer_contributions",
    "total_employer_cost",
)

# Run total -> item field
TOTAL_FIELDS = {
    "total_gross": "gross_earnings",
    "total_deductions": "total_deductions",
    "total_tax": "tax_amount",
    "total_net": "net_pay",
    "total_employer_contributions": "employer_contributions",
    "total_employer_cost": "total_employer_cost",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_transition(pay_run: PayRun, target: PayRunStatus, operation: str) -> None:
    """Raise PayRunStateError unless the run may move to target."""
    if target not in ALLOWED_TRANSITIONS[pay_run.status]:
        raise PayRunStateError("pay run", pay_run.status.value, operation)


def reset_item(item: PayRunItem, status: PayRunItemStatus = PayRunItemStatus.PENDING) -> None:
    for name in ITEM_MONEY_FIELDS:
        setattr(item, name, ZERO)
    item.status = status
    item.tax_law_version = None
    item.earnings_breakdown = []
    item.deductions_breakdown = []
    item.tax_breakdown = {}
    item.advance_breakdown = []
    item.error_message = None
    item.calculated_at = None


def apply_composed(item: PayRunItem, composed: ComposedPay) -> None:
    item.status = PayRunItemStatus.CALCULATED
    item.basic_salary = composed.basic_salary
    item.gross_earnings = composed.gross_earnings
    item.pensionable_earnings = composed.pensionable_earnings
    item.pre_tax_deductions = composed.pre_tax_deductions
    item.taxable_income = composed.taxable_income
    item.tax_amount = composed.tax_amount
    item.post_tax_deductions = composed.post_tax_deductions
    item.advance_repayment = composed.advance_repayment
    item.total_deductions = composed.total_deductions
    item.net_pay = composed.net_pay
    item.employer_pension = composed.employer_pension
    item.employer_nhf = composed.employer_nhf
    item.employer_contributions = composed.employer_contributions
    item.total_employer_cost = composed.total_employer_cost
    item.tax_law_version = composed.tax_law_version
    item.earnings_breakdown = composed.earnings_breakdown()
    item.deductions_breakdown = composed.deductions_breakdown()
    item.advance_breakdown = composed.advance_breakdown()
    tax_breakdown = dict(composed.tax_breakdown)
    if composed.warnings:
        tax_breakdown["warnings"] = list(composed.warnings)
    item.tax_breakdown = tax_breakdown
    item.error_message = None
    item.calculated_at = _now()


def apply_failure(item: PayRunItem, error: Exception) -> None:
    reset_item(item, PayRunItemStatus.ERROR)
    if isinstance(error, AppException):
        item.error_message = error.message
    else:
        item.error_message = f"{type(error).__name__}: {error}"
    item.calculated_at = _now()


# ===========================================
# PROCESSOR
# ===========================================

class PayRunProcessor:
    """
    Loads reference data for a run and fans per-employee computation out
    over a bounded pool.
    
    Everything read from the database is snapshotted into immutable
    contexts first; the pool never touches the session.
    """
    
    def __init__(self, db: AsyncSession, settings: Settings, composer: Optional[PayslipComposer] = None):
        self.db = db
        self.settings = settings
        self.composer = composer or PayslipComposer()
    
    async def build_contexts(
        self,
        pay_run: PayRun,
        employees: Sequence[Employee],
    ) -> Dict[uuid.UUID, EmployeePayContext]:
        if not employees:
            return {}
        employee_ids = [employee.id for employee in employees]
        
        tax_tables = tuple(await TaxLawService(self.db, self.settings).load_tables())
        
        deduction_service = DeductionService(self.db)
        catalog = {
            deduction_type.code: DeductionRule.from_type(deduction_type)
            for deduction_type in await deduction_service.get_catalog(pay_run.tenant_id)
        }
        assignments = await deduction_service.list_assignments(employee_ids)
        active_assignments = {
            employee_id: [a for a in rows if is_assignment_active(a, pay_run.period_end)]
            for employee_id, rows in assignments.items()
        }
        deducted = await deduction_service.deducted_in_year(
            [a.id for rows in active_assignments.values() for a in rows],
            pay_run.pay_date.year,
        )
        
        earnings = await self._load_earnings(employee_ids, pay_run.period_start, pay_run.period_end)
        inputs = await self._load_period_inputs(employee_ids, pay_run.period_start, pay_run.period_end)
        advances = await WageAdvanceLedger(self.db).collectable_advances(employee_ids)
        
        contexts = {}
        for employee in employees:
            rules = tuple(
                DeductionRule.from_assignment(a, deducted.get(a.id, ZERO))
                for a in active_assignments.get(employee.id, [])
            )
            contexts[employee.id] = EmployeePayContext(
                profile=EmployeePayProfile.from_model(employee, self.settings.payroll_default_jurisdiction),
                frequency=pay_run.frequency,
                period_start=pay_run.period_start,
                period_end=pay_run.period_end,
                pay_date=pay_run.pay_date,
                tax_tables=tax_tables,
                earnings=tuple(earnings.get(employee.id, [])),
                period_input=inputs.get(employee.id),
                deduction_rules=rules,
                deduction_catalog=catalog,
                advances=tuple(AdvanceSnapshot.from_model(a) for a in advances.get(employee.id, [])),
                pension_employer_rate_default=self.settings.pension_employer_rate_default,
                nhf_employer_rate_default=self.settings.nhf_employer_rate_default,
            )
        return contexts
    
    async def _load_earnings(
        self,
        employee_ids: List[uuid.UUID],
        period_start: date,
        period_end: date,
    ) -> Dict[uuid.UUID, List[EarningLine]]:
        result = await self.db.execute(
            select(EmployeeEarning).where(
                EmployeeEarning.employee_id.in_(employee_ids),
                EmployeeEarning.is_active == True,
                EmployeeEarning.effective_from <= period_end,
                or_(EmployeeEarning.effective_to.is_(None), EmployeeEarning.effective_to >= period_start),
            )
        )
        lines: Dict[uuid.UUID, List[EarningLine]] = {}
        for earning in result.scalars().all():
            if not earning.earning_type.is_active:
                continue
            lines.setdefault(earning.employee_id, []).append(EarningLine.from_model(earning))
        return lines
    
    async def _load_period_inputs(
        self,
        employee_ids: List[uuid.UUID],
        period_start: date,
        period_end: date,
    ) -> Dict[uuid.UUID, PeriodInput]:
        result = await self.db.execute(
            select(PayPeriodInput).where(
                PayPeriodInput.employee_id.in_(employee_ids),
                PayPeriodInput.period_start == period_start,
                PayPeriodInput.period_end == period_end,
            )
        )
        return {row.employee_id: PeriodInput.from_model(row) for row in result.scalars().all()}
    
    async def compute_one(self, context: EmployeePayContext) -> Union[ComposedPay, Exception]:
        try:
            return await asyncio.to_thread(self.composer.compose, context)
        except PayrollComputationError as exc:
            logger.warning(f"Payroll computation failed for {context.profile.employee_code}: {exc.message}")
            return exc
        except Exception as exc:
            logger.exception(f"Unexpected error computing pay for {context.profile.employee_code}")
            return exc
    
    async def compute_all(
        self,
        contexts: Dict[uuid.UUID, EmployeePayContext],
    ) -> Dict[uuid.UUID, Union[ComposedPay, Exception]]:
        """Compute every employee; returns once all have finished."""
        semaphore = asyncio.Semaphore(max(1, self.settings.payroll_max_concurrency))
        
        async def bounded(context: EmployeePayContext) -> Union[ComposedPay, Exception]:
            async with semaphore:
                return await self.compute_one(context)
        
        employee_ids = list(contexts)
        results = await asyncio.gather(*(bounded(contexts[employee_id]) for employee_id in employee_ids))
        return dict(zip(employee_ids, results))


# ===========================================
# SERVICE
# ===========================================

class PayRunService:
    """Service for pay run lifecycle operations and queries."""
    
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.audit = PayrollAuditService(db)
        self.processor = PayRunProcessor(db, self.settings)
        self.payslips = PayslipService(db, self.audit)
        self.deductions = DeductionService(db, self.audit)
        self.ledger = WageAdvanceLedger(db, self.audit)
    
    # ===========================================
    # QUERIES
    # ===========================================
    
    async def get_pay_run(self, tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> PayRun:
        result = await self.db.execute(
            select(PayRun).where(
                and_(
                    PayRun.id == pay_run_id,
                    PayRun.tenant_id == tenant_id,
                    PayRun.deleted_at.is_(None),
                )
            )
        )
        pay_run = result.scalar_one_or_none()
        if pay_run is None:
            raise PayrollNotFoundError("Pay run", pay_run_id)
        return pay_run
    
    async def list_pay_runs(
        self,
        tenant_id: uuid.UUID,
        status: Optional[PayRunStatus] = None,
        period_from: Optional[date] = None,
        period_to: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[PayRun]:
        query = select(PayRun).where(PayRun.tenant_id == tenant_id, PayRun.deleted_at.is_(None))
        if status is not None:
            query = query.where(PayRun.status == status)
        if period_from is not None:
            query = query.where(PayRun.period_end >= period_from)
        if period_to is not None:
            query = query.where(PayRun.period_start <= period_to)
        query = query.order_by(PayRun.period_start.desc(), PayRun.reference.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
    
    async def get_items(
        self,
        pay_run_id: uuid.UUID,
        status: Optional[PayRunItemStatus] = None,
    ) -> List[PayRunItem]:
        query = select(PayRunItem).where(PayRunItem.pay_run_id == pay_run_id)
        if status is not None:
            query = query.where(PayRunItem.status == status)
        result = await self.db.execute(query.order_by(PayRunItem.created_at, PayRunItem.id))
        return list(result.scalars().all())
    
    async def get_item(self, pay_run_id: uuid.UUID, employee_id: uuid.UUID) -> PayRunItem:
        result = await self.db.execute(
            select(PayRunItem).where(
                PayRunItem.pay_run_id == pay_run_id,
                PayRunItem.employee_id == employee_id,
            )
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise PayrollNotFoundError("Pay run item", employee_id)
        return item
    
    async def get_payslips(self, pay_run_id: uuid.UUID) -> List[Payslip]:
        return await self.payslips.list_payslips_for_run(pay_run_id)
    
    async def get_summary(self, pay_run: PayRun) -> Dict[str, Any]:
        """Item counts by status plus the run totals."""
        result = await self.db.execute(
            select(PayRunItem.status, func.count())
            .where(PayRunItem.pay_run_id == pay_run.id)
            .group_by(PayRunItem.status)
        )
        counts = {status.value: 0 for status in PayRunItemStatus}
        for status, count in result.all():
            counts[status.value] = count
        
        errors = await self.get_items(pay_run.id, PayRunItemStatus.ERROR)
        return {
            "pay_run_id": pay_run.id,
            "reference": pay_run.reference,
            "status": pay_run.status,
            "item_counts": counts,
            "employee_count": pay_run.employee_count,
            "total_gross": pay_run.total_gross,
            "total_deductions": pay_run.total_deductions,
            "total_tax": pay_run.total_tax,
            "total_net": pay_run.total_net,
            "total_employer_contributions": pay_run.total_employer_contributions,
            "total_employer_cost": pay_run.total_employer_cost,
            "errors": [
                {"employee_id": item.employee_id, "error_message": item.error_message}
                for item in errors
            ],
        }
    
    # ===========================================
    # CREATE / DELETE
    # ===========================================
    
    async def _next_reference(self, tenant_id: uuid.UUID, pay_date: date) -> str:
        prefix = f"{self.settings.pay_run_reference_prefix}-{pay_date:%Y%m%d}-"
        result = await self.db.execute(
            select(func.count())
            .select_from(PayRun)
            .where(PayRun.tenant_id == tenant_id, PayRun.reference.like(f"{prefix}%"))
        )
        sequence = (result.scalar() or 0) + 1
        return f"{prefix}{sequence:04d}"
    
    async def create_pay_run(
        self,
        tenant_id: uuid.UUID,
        name: str,
        period_start: date,
        period_end: date,
        pay_date: date,
        frequency: PayFrequency = PayFrequency.MONTHLY,
        employee_ids: Optional[Iterable[uuid.UUID]] = None,
        pay_calendar_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        """Create a draft pay run for a period."""
        if period_end < period_start:
            raise PayrollValidationError("period_end cannot be before period_start", field="period_end")
        
        duplicate = select(PayRun.id).where(
            PayRun.tenant_id == tenant_id,
            PayRun.period_start == period_start,
            PayRun.period_end == period_end,
            PayRun.status != PayRunStatus.CANCELLED,
            PayRun.deleted_at.is_(None),
        )
        if pay_calendar_id is None:
            duplicate = duplicate.where(PayRun.pay_calendar_id.is_(None))
        else:
            duplicate = duplicate.where(PayRun.pay_calendar_id == pay_calendar_id)
        if (await self.db.execute(duplicate)).first() is not None:
            raise PayrollBusinessRuleError(
                f"A pay run already exists for period {period_start} to {period_end}",
                rule="one_pay_run_per_period",
            )
        
        pay_run = PayRun(
            tenant_id=tenant_id,
            reference=await self._next_reference(tenant_id, pay_date),
            name=name,
            frequency=frequency,
            period_start=period_start,
            period_end=period_end,
            pay_date=pay_date,
            pay_calendar_id=pay_calendar_id,
            status=PayRunStatus.DRAFT,
            employee_ids=[str(e) for e in employee_ids] if employee_ids is not None else None,
            excluded_employee_ids=[],
            notes=notes,
            extra_data={},
            created_by_id=created_by_id,
        )
        self.db.add(pay_run)
        await self.db.flush()
        
        await self.audit.record(
            tenant_id=tenant_id,
            action=PayrollAuditAction.PAY_RUN_CREATED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=created_by_id,
            new_values={
                "reference": pay_run.reference,
                "status": pay_run.status,
                "period_start": period_start,
                "period_end": period_end,
                "pay_date": pay_date,
            },
        )
        await self.db.commit()
        
        logger.info(f"Created pay run {pay_run.reference} for tenant {tenant_id}")
        return pay_run
    
    async def delete_pay_run(self, pay_run: PayRun, actor_id: Optional[uuid.UUID] = None) -> PayRun:
        """Soft delete; only draft runs may be deleted."""
        if pay_run.status != PayRunStatus.DRAFT:
            raise PayRunStateError("pay run", pay_run.status.value, "delete")
        
        pay_run.deleted_at = _now()
        pay_run.updated_by_id = actor_id
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.PAY_RUN_DELETED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=actor_id,
            old_values={"deleted_at": None},
            new_values={"deleted_at": pay_run.deleted_at},
        )
        await self.db.commit()
        return pay_run
    
    # ===========================================
    # ROSTER
    # ===========================================
    
    async def resolve_roster(self, pay_run: PayRun) -> List[Employee]:
        """Explicit roster if one was given, otherwise every active employee."""
        query = select(Employee).where(Employee.tenant_id == pay_run.tenant_id, Employee.is_active == True)
        if pay_run.employee_ids is not None:
            query = query.where(Employee.id.in_([uuid.UUID(e) for e in pay_run.employee_ids]))
        result = await self.db.execute(query.order_by(Employee.employee_code))
        return list(result.scalars().all())
    
    async def _get_employee(self, tenant_id: uuid.UUID, employee_id: uuid.UUID) -> Employee:
        result = await self.db.execute(
            select(Employee).where(Employee.id == employee_id, Employee.tenant_id == tenant_id)
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise PayrollNotFoundError("Employee", employee_id)
        return employee
    
    @staticmethod
    def _is_excluded(pay_run: PayRun, employee_id: uuid.UUID) -> bool:
        return str(employee_id) in (pay_run.excluded_employee_ids or [])
    
    async def exclude_employee(
        self,
        pay_run: PayRun,
        employee_id: uuid.UUID,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        if pay_run.status not in (PayRunStatus.DRAFT, PayRunStatus.PENDING_REVIEW):
            raise PayRunStateError("pay run", pay_run.status.value, "exclude an employee from")
        employee = await self._get_employee(pay_run.tenant_id, employee_id)
        if self._is_excluded(pay_run, employee.id):
            return pay_run
        
        pay_run.excluded_employee_ids = [*(pay_run.excluded_employee_ids or []), str(employee.id)]
        
        items = await self.get_items(pay_run.id)
        for item in items:
            if item.employee_id == employee.id:
                reset_item(item, PayRunItemStatus.EXCLUDED)
                item.exclusion_reason = reason
        self._recompute_totals(pay_run, items)
        
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.EMPLOYEE_EXCLUDED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=actor_id,
            metadata={"employee_id": employee.id, "reason": reason},
        )
        await self.db.commit()
        logger.info(f"Employee {employee.employee_code} excluded from pay run {pay_run.reference}")
        return pay_run
    
    async def include_employee(
        self,
        pay_run: PayRun,
        employee_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        """Undo an exclusion; in review the employee is recalculated at once."""
        if pay_run.status not in (PayRunStatus.DRAFT, PayRunStatus.PENDING_REVIEW):
            raise PayRunStateError("pay run", pay_run.status.value, "include an employee in")
        employee = await self._get_employee(pay_run.tenant_id, employee_id)
        if not self._is_excluded(pay_run, employee.id):
            return pay_run
        
        pay_run.excluded_employee_ids = [e for e in pay_run.excluded_employee_ids if e != str(employee.id)]
        
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.EMPLOYEE_INCLUDED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=actor_id,
            metadata={"employee_id": employee.id},
        )
        
        items = await self.get_items(pay_run.id)
        for item in items:
            if item.employee_id == employee.id:
                item.exclusion_reason = None
                reset_item(item)
                if pay_run.status == PayRunStatus.PENDING_REVIEW:
                    await self._compute_items(pay_run, [employee], {employee.id: item})
        self._recompute_totals(pay_run, items)
        
        await self.db.commit()
        return pay_run
    
    # ===========================================
    # PROCESSING
    # ===========================================
    
    async def _compute_items(
        self,
        pay_run: PayRun,
        employees: Sequence[Employee],
        items: Dict[uuid.UUID, PayRunItem],
    ) -> Dict[uuid.UUID, Union[ComposedPay, Exception]]:
        contexts = await self.processor.build_contexts(pay_run, employees)
        results = await self.processor.compute_all(contexts)
        for employee_id, outcome in results.items():
            if isinstance(outcome, Exception):
                apply_failure(items[employee_id], outcome)
            else:
                apply_composed(items[employee_id], outcome)
        return results
    
    @staticmethod
    def _recompute_totals(pay_run: PayRun, items: Iterable[PayRunItem]) -> None:
        """Run totals are the sums of calculated items; nothing else writes them."""
        totals = {name: ZERO for name in TOTAL_FIELDS}
        calculated = 0
        for item in items:
            if item.status != PayRunItemStatus.CALCULATED:
                continue
            calculated += 1
            for total_name, item_field in TOTAL_FIELDS.items():
                totals[total_name] += getattr(item, item_field)
        for total_name, value in totals.items():
            setattr(pay_run, total_name, value)
        pay_run.employee_count = calculated
    
    async def process_pay_run(self, pay_run: PayRun, actor_id: Optional[uuid.UUID] = None) -> PayRun:
        """
        Compute every employee on the roster.
        
        Items are recomputed from scratch, so processing again before
        approval is safe. Ends in pending_review even when some items are
        in error, unless the run was cancelled while computing.
        """
        ensure_transition(pay_run, PayRunStatus.CALCULATING, "process")
        
        employees = await self.resolve_roster(pay_run)
        if not employees:
            raise PayrollBusinessRuleError(
                "No active employees found for payroll processing",
                rule="non_empty_roster",
            )
        
        previous_status = pay_run.status
        pay_run.status = PayRunStatus.CALCULATING
        pay_run.calculated_by_id = actor_id
        await self.db.commit()
        logger.info(f"Pay run {pay_run.reference} calculating for {len(employees)} employees")
        
        existing = {item.employee_id: item for item in await self.get_items(pay_run.id)}
        roster_ids = {employee.id for employee in employees}
        for employee_id, item in existing.items():
            if employee_id not in roster_ids:
                await self.db.delete(item)
        
        items: Dict[uuid.UUID, PayRunItem] = {}
        to_compute: List[Employee] = []
        for employee in employees:
            item = existing.get(employee.id)
            if item is None:
                item = PayRunItem(pay_run_id=pay_run.id, employee_id=employee.id)
                self.db.add(item)
            if self._is_excluded(pay_run, employee.id):
                reset_item(item, PayRunItemStatus.EXCLUDED)
            else:
                reset_item(item)
                item.exclusion_reason = None
                to_compute.append(employee)
            items[employee.id] = item
        await self.db.flush()
        
        results = await self._compute_items(pay_run, to_compute, items)
        
        # Barrier: every employee has finished; honour a cancel issued meanwhile
        await self.db.refresh(pay_run, attribute_names=["status"])
        if pay_run.status == PayRunStatus.CANCELLED:
            logger.info(f"Pay run {pay_run.reference} was cancelled during calculation")
            await self.db.commit()
            return pay_run
        
        self._recompute_totals(pay_run, items.values())
        pay_run.status = PayRunStatus.PENDING_REVIEW
        pay_run.calculated_at = _now()
        
        failed = sum(1 for outcome in results.values() if isinstance(outcome, Exception))
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.PAY_RUN_PROCESSED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=actor_id,
            old_values={"status": previous_status},
            new_values={
                "status": pay_run.status,
                "total_gross": pay_run.total_gross,
                "total_net": pay_run.total_net,
            },
            metadata={"calculated": len(results) - failed, "errors": failed, "excluded": len(items) - len(results)},
        )
        await self.db.commit()
        
        logger.info(
            f"Pay run {pay_run.reference} ready for review: "
            f"{len(results) - failed} calculated, {failed} errors"
        )
        return pay_run
    
    async def recalculate_item(
        self,
        pay_run: PayRun,
        employee_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRunItem:
        """Recompute one employee during review and re-aggregate the run."""
        if pay_run.status != PayRunStatus.PENDING_REVIEW:
            raise PayRunStateError("pay run", pay_run.status.value, "recalculate an item of")
        item = await self.get_item(pay_run.id, employee_id)
        if item.status == PayRunItemStatus.EXCLUDED:
            raise PayrollBusinessRuleError("Excluded employees are not recalculated", rule="item_excluded")
        employee = await self._get_employee(pay_run.tenant_id, employee_id)
        
        old_net = item.net_pay
        await self._compute_items(pay_run, [employee], {employee.id: item})
        self._recompute_totals(pay_run, await self.get_items(pay_run.id))
        
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.ITEM_RECALCULATED,
            entity_type="pay_run_item",
            entity_id=item.id,
            actor_id=actor_id,
            old_values={"net_pay": old_net},
            new_values={"net_pay": item.net_pay, "status": item.status},
        )
        await self.db.commit()
        return item
    
    # ===========================================
    # APPROVAL / COMPLETION
    # ===========================================
    
    async def verify_totals(self, pay_run: PayRun) -> None:
        """Raise PayrollInvariantError when run totals differ from item sums."""
        await self.db.flush()
        columns = [
            func.coalesce(func.sum(getattr(PayRunItem, item_field)), 0)
            for item_field in TOTAL_FIELDS.values()
        ]
        row = (
            await self.db.execute(
                select(*columns).where(
                    PayRunItem.pay_run_id == pay_run.id,
                    PayRunItem.status == PayRunItemStatus.CALCULATED,
                )
            )
        ).one()
        
        mismatches = {}
        for (total_name, _), summed in zip(TOTAL_FIELDS.items(), row):
            stored = getattr(pay_run, total_name)
            if to_decimal(summed, ZERO).quantize(Decimal("0.01")) != stored:
                mismatches[total_name] = {"stored": str(stored), "items": str(summed)}
        if mismatches:
            logger.error(f"Pay run {pay_run.reference} totals do not match its items: {mismatches}")
            raise PayrollInvariantError(
                f"Pay run {pay_run.reference} totals do not match its items",
                details={"mismatches": mismatches},
            )
        
        unbalanced = [
            item.employee_id
            for item in await self.get_items(pay_run.id, PayRunItemStatus.CALCULATED)
            if item.gross_earnings - item.total_deductions != item.net_pay
        ]
        if unbalanced:
            logger.error(f"Pay run {pay_run.reference} has items where gross - deductions != net")
            raise PayrollInvariantError(
                f"Pay run {pay_run.reference} has items whose deductions do not reconcile with net pay",
                details={"employee_ids": [str(employee_id) for employee_id in unbalanced]},
            )
    
    async def approve_pay_run(self, pay_run: PayRun, approved_by_id: uuid.UUID) -> PayRun:
        if approved_by_id is None:
            raise PayrollValidationError("An approver is required", field="approved_by_id")
        if pay_run.status != PayRunStatus.PENDING_REVIEW:
            raise PayRunStateError("pay run", pay_run.status.value, "approve")
        
        items = await self.get_items(pay_run.id)
        pending = [item for item in items if item.status == PayRunItemStatus.PENDING]
        if pending:
            raise PayrollBusinessRuleError(
                f"{len(pending)} items have not been calculated",
                rule="items_calculated",
                details={"employee_ids": [str(item.employee_id) for item in pending]},
            )
        
        errors = [item for item in items if item.status == PayRunItemStatus.ERROR]
        if errors and not self.settings.payroll_allow_approval_with_errors:
            raise PayrollBusinessRuleError(
                f"Pay run has {len(errors)} employees in error",
                rule="payroll_allow_approval_with_errors",
                details={
                    "errors": [
                        {"employee_id": str(item.employee_id), "error_message": item.error_message}
                        for item in errors
                    ]
                },
            )
        
        calculated = [item for item in items if item.status == PayRunItemStatus.CALCULATED]
        if not calculated and self.settings.payroll_require_calculated_items:
            raise PayrollBusinessRuleError(
                "Pay run has no calculated items",
                rule="payroll_require_calculated_items",
            )
        
        await self.verify_totals(pay_run)
        
        pay_run.status = PayRunStatus.APPROVED
        pay_run.approved_by_id = approved_by_id
        pay_run.approved_at = _now()
        
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.PAY_RUN_APPROVED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=approved_by_id,
            old_values={"status": PayRunStatus.PENDING_REVIEW},
            new_values={"status": pay_run.status, "total_net": pay_run.total_net},
            metadata={"error_items": len(errors)},
        )
        await self.db.commit()
        logger.info(f"Pay run {pay_run.reference} approved by {approved_by_id}")
        return pay_run
    
    async def complete_pay_run(self, pay_run: PayRun, actor_id: Optional[uuid.UUID] = None) -> PayRun:
        """
        Finalize an approved run: issue payslips and post deductions,
        wage-advance repayments and one-off earnings. Terminal.
        """
        if pay_run.status != PayRunStatus.APPROVED:
            raise PayRunStateError("pay run", pay_run.status.value, "complete")
        await self.verify_totals(pay_run)
        
        items = await self.get_items(pay_run.id, PayRunItemStatus.CALCULATED)
        employee_ids = [item.employee_id for item in items]
        
        try:
            employees = {
                employee.id: employee
                for employee in (
                    await self.db.execute(select(Employee).where(Employee.id.in_(employee_ids)))
                ).scalars().all()
            }
            assignments = await self._load_by_id(
                EmployeeDeduction,
                [line.get("employee_deduction_id") for item in items for line in item.deductions_breakdown],
            )
            advances = await self._load_by_id(
                WageAdvance,
                [line.get("advance_id") for item in items for line in item.advance_breakdown],
            )
            earnings = await self._load_by_id(
                EmployeeEarning,
                [
                    line.get("employee_earning_id")
                    for item in items
                    for line in item.earnings_breakdown
                    if not line.get("is_recurring", True)
                ],
            )
            
            for item in items:
                await self.payslips.issue_payslip(pay_run, item, employees[item.employee_id], actor_id)
                
                for line in item.deductions_breakdown:
                    assignment = assignments.get(line.get("employee_deduction_id"))
                    if assignment is not None:
                        await self.deductions.post_deduction(
                            assignment, to_decimal(line["amount"]), pay_run, actor_id,
                        )
                
                for line in item.advance_breakdown:
                    advance = advances.get(line.get("advance_id"))
                    if advance is not None:
                        await self.ledger.post_repayment(
                            advance, to_decimal(line["amount"]), pay_run, actor_id,
                        )
            
            for earning in earnings.values():
                earning.is_active = False
            
            pay_run.status = PayRunStatus.COMPLETED
            pay_run.completed_by_id = actor_id
            pay_run.completed_at = _now()
            
            await self.audit.record(
                tenant_id=pay_run.tenant_id,
                action=PayrollAuditAction.PAY_RUN_COMPLETED,
                entity_type="pay_run",
                entity_id=pay_run.id,
                actor_id=actor_id,
                old_values={"status": PayRunStatus.APPROVED},
                new_values={"status": pay_run.status, "total_net": pay_run.total_net},
                metadata={"payslips": len(items)},
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        
        logger.info(f"Pay run {pay_run.reference} completed with {len(items)} payslips")
        return pay_run
    
    async def _load_by_id(self, model, ids: Iterable[Optional[str]]) -> Dict[str, Any]:
        wanted = {uuid.UUID(value) for value in ids if value}
        if not wanted:
            return {}
        result = await self.db.execute(select(model).where(model.id.in_(wanted)))
        return {str(row.id): row for row in result.scalars().all()}
    
    async def cancel_pay_run(
        self,
        pay_run: PayRun,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        """Cancel a run that has not completed; nothing has been posted yet."""
        ensure_transition(pay_run, PayRunStatus.CANCELLED, "cancel")
        
        previous_status = pay_run.status
        pay_run.status = PayRunStatus.CANCELLED
        pay_run.cancelled_by_id = actor_id
        pay_run.cancelled_at = _now()
        pay_run.cancellation_reason = reason
        
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.PAY_RUN_CANCELLED,
            entity_type="pay_run",
            entity_id=pay_run.id,
            actor_id=actor_id,
            old_values={"status": previous_status},
            new_values={"status": pay_run.status},
            metadata={"reason": reason},
        )
        await self.db.commit()
        logger.info(f"Pay run {pay_run.reference} cancelled from {previous_status.value}")
        return pay_run
