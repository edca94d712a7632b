"""
PayCore - Wage Advance Service

Request and approval workflow for salary advances:
pending -> approved -> disbursed -> repaying -> repaid, or pending -> rejected.
Repayments are posted by the WageAdvanceLedger when pay runs complete.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.config import Settings, get_settings
from paycore.models.audit import PayrollAuditAction
from paycore.models.payroll import Employee, PayType, WageAdvance, WageAdvanceStatus
from paycore.services.audit_service import PayrollAuditService
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollBusinessRuleError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.services.wage_advance_ledger import AdvanceInstallment, AdvanceSnapshot, WageAdvanceLedger
from paycore.utils.money import percent_of, round_money

logger = logging.getLogger(__name__)


OPEN_STATUSES = (
    WageAdvanceStatus.PENDING,
    WageAdvanceStatus.APPROVED,
    WageAdvanceStatus.DISBURSED,
    WageAdvanceStatus.REPAYING,
)


class WageAdvanceService:
    """Service for the wage advance lifecycle."""
    
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.audit = PayrollAuditService(db)
    
    async def get_employee(self, tenant_id: uuid.UUID, employee_id: uuid.UUID) -> Employee:
        result = await self.db.execute(
            select(Employee).where(Employee.id == employee_id, Employee.tenant_id == tenant_id)
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise PayrollNotFoundError("Employee", employee_id)
        return employee
    
    async def get_advance(self, advance_id: uuid.UUID, tenant_id: Optional[uuid.UUID] = None) -> WageAdvance:
        query = select(WageAdvance).where(WageAdvance.id == advance_id)
        if tenant_id is not None:
            query = query.where(WageAdvance.tenant_id == tenant_id)
        result = await self.db.execute(query)
        advance = result.scalar_one_or_none()
        if advance is None:
            raise PayrollNotFoundError("Wage advance", advance_id)
        return advance
    
    async def list_advances(
        self,
        tenant_id: uuid.UUID,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[WageAdvanceStatus] = None,
    ) -> List[WageAdvance]:
        query = select(WageAdvance).where(WageAdvance.tenant_id == tenant_id)
        if employee_id is not None:
            query = query.where(WageAdvance.employee_id == employee_id)
        if status is not None:
            query = query.where(WageAdvance.status == status)
        result = await self.db.execute(query.order_by(WageAdvance.created_at.desc()))
        return list(result.scalars().all())
    
    def maximum_advance(self, employee: Employee) -> Optional[Decimal]:
        """Cap on one advance relative to a single period of salary."""
        if employee.pay_type == PayType.HOURLY:
            return None
        return round_money(percent_of(self.settings.wage_advance_max_salary_percent, employee.pay_amount))
    
    async def request_advance(
        self,
        employee: Employee,
        amount: Decimal,
        installment_count: int = 1,
        reason: Optional[str] = None,
        requested_by_id: Optional[uuid.UUID] = None,
    ) -> WageAdvance:
        """Open a new advance request in pending status."""
        amount = round_money(Decimal(amount))
        if amount <= 0:
            raise PayrollValidationError("Advance amount must be positive", field="amount")
        if installment_count < 1 or installment_count > self.settings.wage_advance_max_installments:
            raise PayrollValidationError(
                f"Installment count must be between 1 and {self.settings.wage_advance_max_installments}",
                field="installment_count",
            )
        
        maximum = self.maximum_advance(employee)
        if maximum is not None and amount > maximum:
            raise PayrollBusinessRuleError(
                f"Advance exceeds {self.settings.wage_advance_max_salary_percent}% of salary",
                rule="wage_advance_max_salary_percent",
                details={"requested": str(amount), "maximum": str(maximum)},
            )
        
        open_result = await self.db.execute(
            select(WageAdvance.id).where(
                WageAdvance.employee_id == employee.id,
                WageAdvance.status.in_(OPEN_STATUSES),
            )
        )
        if open_result.first() is not None:
            raise PayrollBusinessRuleError(
                "Employee already has an open wage advance",
                rule="single_open_advance",
            )
        
        advance = WageAdvance(
            tenant_id=employee.tenant_id,
            employee_id=employee.id,
            principal=amount,
            installment_count=installment_count,
            reason=reason,
            status=WageAdvanceStatus.PENDING,
            created_by_id=requested_by_id,
        )
        self.db.add(advance)
        await self.db.flush()
        
        await self.audit.record(
            tenant_id=employee.tenant_id,
            action=PayrollAuditAction.ADVANCE_REQUESTED,
            entity_type="wage_advance",
            entity_id=advance.id,
            actor_id=requested_by_id,
            new_values={"principal": amount, "installment_count": installment_count},
        )
        await self.db.commit()
        logger.info(f"Wage advance {advance.id} requested for employee {employee.id}")
        return advance
    
    async def approve_advance(
        self,
        advance: WageAdvance,
        approved_by_id: uuid.UUID,
        approved_amount: Optional[Decimal] = None,
        installment_count: Optional[int] = None,
    ) -> WageAdvance:
        if advance.status != WageAdvanceStatus.PENDING:
            raise PayRunStateError("wage advance", advance.status.value, "approve")
        
        amount = round_money(Decimal(approved_amount)) if approved_amount is not None else advance.principal
        if amount <= 0 or amount > advance.principal:
            raise PayrollValidationError(
                "Approved amount must be positive and not exceed the requested amount",
                field="approved_amount",
            )
        if installment_count is not None:
            if installment_count < 1 or installment_count > self.settings.wage_advance_max_installments:
                raise PayrollValidationError("Invalid installment count", field="installment_count")
            advance.installment_count = installment_count
        
        advance.approved_amount = amount
        advance.status = WageAdvanceStatus.APPROVED
        advance.approved_by_id = approved_by_id
        advance.approved_at = datetime.now(timezone.utc)
        advance.updated_by_id = approved_by_id
        
        await self.audit.record(
            tenant_id=advance.tenant_id,
            action=PayrollAuditAction.ADVANCE_APPROVED,
            entity_type="wage_advance",
            entity_id=advance.id,
            actor_id=approved_by_id,
            old_values={"status": WageAdvanceStatus.PENDING},
            new_values={
                "status": advance.status,
                "approved_amount": amount,
                "installment_count": advance.installment_count,
            },
        )
        await self.db.commit()
        return advance
    
    async def reject_advance(
        self,
        advance: WageAdvance,
        rejected_by_id: uuid.UUID,
        reason: str,
    ) -> WageAdvance:
        if advance.status != WageAdvanceStatus.PENDING:
            raise PayRunStateError("wage advance", advance.status.value, "reject")
        if not reason or not reason.strip():
            raise PayrollValidationError("A rejection reason is required", field="reason")
        
        advance.status = WageAdvanceStatus.REJECTED
        advance.rejection_reason = reason
        advance.updated_by_id = rejected_by_id
        
        await self.audit.record(
            tenant_id=advance.tenant_id,
            action=PayrollAuditAction.ADVANCE_REJECTED,
            entity_type="wage_advance",
            entity_id=advance.id,
            actor_id=rejected_by_id,
            old_values={"status": WageAdvanceStatus.PENDING},
            new_values={"status": advance.status},
            metadata={"reason": reason},
        )
        await self.db.commit()
        return advance
    
    async def disburse_advance(self, advance: WageAdvance, disbursed_by_id: uuid.UUID) -> WageAdvance:
        """Mark an approved advance as paid out; payroll starts collecting it."""
        if advance.status != WageAdvanceStatus.APPROVED:
            raise PayRunStateError("wage advance", advance.status.value, "disburse")
        
        advance.status = WageAdvanceStatus.DISBURSED
        advance.disbursed_at = datetime.now(timezone.utc)
        advance.updated_by_id = disbursed_by_id
        
        await self.audit.record(
            tenant_id=advance.tenant_id,
            action=PayrollAuditAction.ADVANCE_DISBURSED,
            entity_type="wage_advance",
            entity_id=advance.id,
            actor_id=disbursed_by_id,
            old_values={"status": WageAdvanceStatus.APPROVED},
            new_values={"status": advance.status, "approved_amount": advance.approved_amount},
        )
        await self.db.commit()
        return advance
    
    def repayment_schedule(self, advance: WageAdvance) -> List[AdvanceInstallment]:
        if advance.status in (WageAdvanceStatus.PENDING, WageAdvanceStatus.REJECTED):
            return []
        return WageAdvanceLedger.projected_schedule(AdvanceSnapshot.from_model(advance))
