"""
PayCore - Payslip Service

Issues payslips from completed pay run items and computes year-to-date
figures by summing the employee's earlier, non-cancelled payslips in the
same tax year.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.models.audit import PayrollAuditAction
from paycore.models.pay_run import PayRun, PayRunItem, Payslip, PayslipStatus
from paycore.models.payroll import Employee
from paycore.services.audit_service import PayrollAuditService
from paycore.services.deduction_engine import PENSION_CODE
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.utils.money import ZERO, to_decimal

logger = logging.getLogger(__name__)


def payslip_number(pay_run: PayRun, employee_code: str) -> str:
    """
    PS-YYYYMMDD-<run sequence>-<employee code>, e.g. PS-20260131-0001-EMP-001.
    
    Pay date and sequence identify the run within its tenant, so the
    number is unique per tenant.
    """
    sequence = pay_run.reference.rsplit("-", 1)[-1]
    return f"PS-{pay_run.pay_date:%Y%m%d}-{sequence}-{employee_code}"


def pension_from_breakdown(item: PayRunItem) -> Decimal:
    return sum(
        (to_decimal(line.get("amount"), ZERO) for line in item.deductions_breakdown or [] if line.get("code") == PENSION_CODE),
        ZERO,
    )


class PayslipService:
    """Service for payslip issue, retrieval and cancellation."""
    
    def __init__(self, db: AsyncSession, audit: Optional[PayrollAuditService] = None):
        self.db = db
        self.audit = audit or PayrollAuditService(db)
    
    async def get_payslip(self, tenant_id: uuid.UUID, payslip_id: uuid.UUID) -> Payslip:
        result = await self.db.execute(
            select(Payslip).where(
                and_(
                    Payslip.id == payslip_id,
                    Payslip.tenant_id == tenant_id,
                    Payslip.deleted_at.is_(None),
                )
            )
        )
        payslip = result.scalar_one_or_none()
        if payslip is None:
            raise PayrollNotFoundError("Payslip", payslip_id)
        return payslip
    
    async def list_payslips_for_run(self, pay_run_id: uuid.UUID) -> List[Payslip]:
        result = await self.db.execute(
            select(Payslip)
            .where(Payslip.pay_run_id == pay_run_id, Payslip.deleted_at.is_(None))
            .order_by(Payslip.payslip_number)
        )
        return list(result.scalars().all())
    
    async def get_employee_payslips(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> List[Payslip]:
        """Payslips for an employee, newest first."""
        query = select(Payslip).where(
            and_(
                Payslip.tenant_id == tenant_id,
                Payslip.employee_id == employee_id,
                Payslip.deleted_at.is_(None),
            )
        )
        if year:
            query = query.where(
                Payslip.pay_date >= date(year, 1, 1),
                Payslip.pay_date <= date(year, 12, 31),
            )
        result = await self.db.execute(query.order_by(Payslip.pay_date.desc()))
        return list(result.scalars().all())
    
    async def ytd_totals(
        self,
        employee_id: uuid.UUID,
        pay_date: date,
        exclude_pay_run_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Decimal]:
        """Sums over issued payslips dated in the tax year up to pay_date."""
        query = select(
            func.coalesce(func.sum(Payslip.gross_pay), 0),
            func.coalesce(func.sum(Payslip.tax_amount), 0),
            func.coalesce(func.sum(Payslip.pension_employee), 0),
            func.coalesce(func.sum(Payslip.net_pay), 0),
        ).where(
            Payslip.employee_id == employee_id,
            Payslip.status == PayslipStatus.ISSUED,
            Payslip.deleted_at.is_(None),
            Payslip.pay_date >= date(pay_date.year, 1, 1),
            Payslip.pay_date <= pay_date,
        )
        if exclude_pay_run_id is not None:
            query = query.where(Payslip.pay_run_id != exclude_pay_run_id)
        row = (await self.db.execute(query)).one()
        return {
            "gross": Decimal(str(row[0])),
            "tax": Decimal(str(row[1])),
            "pension": Decimal(str(row[2])),
            "net": Decimal(str(row[3])),
        }
    
    async def issue_payslip(
        self,
        pay_run: PayRun,
        item: PayRunItem,
        employee: Employee,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Payslip:
        """Create the payslip for a calculated item; one per (run, employee)."""
        existing = await self.db.execute(
            select(Payslip).where(
                Payslip.pay_run_id == pay_run.id,
                Payslip.employee_id == employee.id,
            )
        )
        payslip = existing.scalar_one_or_none()
        if payslip is not None:
            return payslip
        
        pension = pension_from_breakdown(item)
        prior = await self.ytd_totals(employee.id, pay_run.pay_date, exclude_pay_run_id=pay_run.id)
        
        payslip = Payslip(
            tenant_id=pay_run.tenant_id,
            pay_run_id=pay_run.id,
            pay_run_item_id=item.id,
            employee_id=employee.id,
            payslip_number=payslip_number(pay_run, employee.employee_code),
            period_start=pay_run.period_start,
            period_end=pay_run.period_end,
            pay_date=pay_run.pay_date,
            basic_salary=item.basic_salary,
            gross_pay=item.gross_earnings,
            taxable_income=item.taxable_income,
            tax_amount=item.tax_amount,
            pension_employee=pension,
            total_deductions=item.total_deductions,
            net_pay=item.net_pay,
            employer_pension=item.employer_pension,
            employer_nhf=item.employer_nhf,
            earnings_breakdown=list(item.earnings_breakdown or []),
            deductions_breakdown=list(item.deductions_breakdown or []),
            tax_breakdown=dict(item.tax_breakdown or {}),
            ytd_gross=prior["gross"] + item.gross_earnings,
            ytd_tax=prior["tax"] + item.tax_amount,
            ytd_pension=prior["pension"] + pension,
            ytd_net=prior["net"] + item.net_pay,
            bank_name=employee.bank_name,
            account_number=employee.account_number,
            account_name=employee.account_name or employee.full_name,
            status=PayslipStatus.ISSUED,
        )
        self.db.add(payslip)
        await self.db.flush()
        
        await self.audit.record(
            tenant_id=pay_run.tenant_id,
            action=PayrollAuditAction.PAYSLIP_GENERATED,
            entity_type="payslip",
            entity_id=payslip.id,
            actor_id=actor_id,
            new_values={"payslip_number": payslip.payslip_number, "net_pay": payslip.net_pay},
            metadata={"pay_run_id": pay_run.id, "employee_id": employee.id},
        )
        return payslip
    
    async def cancel_payslip(
        self,
        payslip: Payslip,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Payslip:
        """Cancel an issued payslip; the row is kept and drops out of YTD sums."""
        if payslip.status == PayslipStatus.CANCELLED:
            raise PayRunStateError("payslip", payslip.status.value, "cancel")
        if not reason or not reason.strip():
            raise PayrollValidationError("A cancellation reason is required", field="reason")
        
        payslip.status = PayslipStatus.CANCELLED
        payslip.cancelled_at = datetime.now(timezone.utc)
        payslip.cancelled_by_id = actor_id
        payslip.cancellation_reason = reason
        
        await self.audit.record(
            tenant_id=payslip.tenant_id,
            action=PayrollAuditAction.PAYSLIP_CANCELLED,
            entity_type="payslip",
            entity_id=payslip.id,
            actor_id=actor_id,
            old_values={"status": PayslipStatus.ISSUED},
            new_values={"status": PayslipStatus.CANCELLED},
            metadata={"reason": reason},
        )
        await self.db.commit()
        logger.info(f"Payslip {payslip.payslip_number} cancelled")
        return payslip
