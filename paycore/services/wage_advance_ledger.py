"""
PayCore - Wage Advance Ledger

Tracks outstanding salary-advance balances and supplies the per-period
installment the pay run withholds. Repayments are only posted when a pay
run completes, at most once per (advance, pay run).
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.models.audit import PayrollAuditAction
from paycore.models.payroll import WageAdvance, WageAdvanceRepayment, WageAdvanceStatus
from paycore.models.pay_run import PayRun
from paycore.services.audit_service import PayrollAuditService
from paycore.services.payroll_exceptions import PayRunStateError, PayrollValidationError
from paycore.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


COLLECTABLE_STATUSES = (WageAdvanceStatus.DISBURSED, WageAdvanceStatus.REPAYING)


@dataclass(frozen=True)
class AdvanceSnapshot:
    """Ledger state of one advance at the start of a computation."""
    advance_id: str
    approved_amount: Decimal
    installment_count: int
    installments_paid: int
    amount_repaid: Decimal
    status: WageAdvanceStatus
    
    @classmethod
    def from_model(cls, advance: WageAdvance) -> "AdvanceSnapshot":
        return cls(
            advance_id=str(advance.id),
            approved_amount=advance.approved_amount or ZERO,
            installment_count=advance.installment_count,
            installments_paid=advance.installments_paid,
            amount_repaid=advance.amount_repaid,
            status=advance.status,
        )
    
    @property
    def remaining_balance(self) -> Decimal:
        return max(ZERO, self.approved_amount - self.amount_repaid)


@dataclass(frozen=True)
class AdvanceInstallment:
    advance_id: str
    installment_number: int
    amount: Decimal
    balance_after: Decimal
    
    def as_breakdown(self) -> Dict[str, str]:
        return {
            "advance_id": self.advance_id,
            "installment_number": self.installment_number,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
        }


class WageAdvanceLedger:
    """Installment computation and repayment posting for wage advances."""
    
    def __init__(self, db: AsyncSession, audit: Optional[PayrollAuditService] = None):
        self.db = db
        self.audit = audit or PayrollAuditService(db)
    
    # ===========================================
    # PURE COMPUTATION
    # ===========================================
    
    @staticmethod
    def installment_amount(snapshot: AdvanceSnapshot) -> Decimal:
        """
        approved / installment_count rounded half-up; the final scheduled
        installment, or any installment larger than the balance, takes the
        exact remaining balance.
        """
        if snapshot.status not in COLLECTABLE_STATUSES:
            return ZERO
        remaining = snapshot.remaining_balance
        if remaining <= 0:
            return ZERO
        regular = round_money(snapshot.approved_amount / max(1, snapshot.installment_count))
        if snapshot.installments_paid + 1 >= snapshot.installment_count or remaining <= regular:
            return remaining
        return regular
    
    @classmethod
    def next_installment(cls, snapshot: AdvanceSnapshot) -> Optional[AdvanceInstallment]:
        amount = cls.installment_amount(snapshot)
        if amount <= 0:
            return None
        return AdvanceInstallment(
            advance_id=snapshot.advance_id,
            installment_number=snapshot.installments_paid + 1,
            amount=amount,
            balance_after=snapshot.remaining_balance - amount,
        )
    
    @staticmethod
    def cut_installments(
        installments: Sequence[AdvanceInstallment],
        shortfall: Decimal,
    ) -> Tuple[List[AdvanceInstallment], Decimal]:
        """
        Reduce installments, last collected first, by at most ``shortfall``.
        
        The uncollected part stays on the advance balance. Returns the reduced
        installments and the shortfall still uncovered.
        """
        kept: List[AdvanceInstallment] = []
        for installment in reversed(installments):
            cut = min(max(shortfall, ZERO), installment.amount)
            shortfall -= cut
            if installment.amount > cut:
                kept.append(replace(
                    installment,
                    amount=installment.amount - cut,
                    balance_after=installment.balance_after + cut,
                ))
            if cut > 0:
                logger.warning(f"Advance {installment.advance_id} installment reduced by {cut} to fit gross pay")
        kept.reverse()
        return kept, max(shortfall, ZERO)
    
    @classmethod
    def projected_schedule(cls, snapshot: AdvanceSnapshot) -> List[AdvanceInstallment]:
        """Remaining installments assuming every future pay run collects one."""
        schedule = []
        current = snapshot
        if current.status == WageAdvanceStatus.APPROVED:
            current = AdvanceSnapshot(
                advance_id=current.advance_id,
                approved_amount=current.approved_amount,
                installment_count=current.installment_count,
                installments_paid=current.installments_paid,
                amount_repaid=current.amount_repaid,
                status=WageAdvanceStatus.DISBURSED,
            )
        while True:
            installment = cls.next_installment(current)
            if installment is None:
                break
            schedule.append(installment)
            current = AdvanceSnapshot(
                advance_id=current.advance_id,
                approved_amount=current.approved_amount,
                installment_count=current.installment_count,
                installments_paid=installment.installment_number,
                amount_repaid=current.amount_repaid + installment.amount,
                status=WageAdvanceStatus.REPAYING,
            )
        return schedule
    
    # ===========================================
    # QUERIES
    # ===========================================
    
    async def collectable_advances(self, employee_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, List[WageAdvance]]:
        """Disbursed or repaying advances per employee, oldest first."""
        if not employee_ids:
            return {}
        result = await self.db.execute(
            select(WageAdvance)
            .where(
                WageAdvance.employee_id.in_(list(employee_ids)),
                WageAdvance.status.in_(COLLECTABLE_STATUSES),
            )
            .order_by(WageAdvance.disbursed_at, WageAdvance.created_at)
        )
        advances: Dict[uuid.UUID, List[WageAdvance]] = {}
        for advance in result.scalars().all():
            advances.setdefault(advance.employee_id, []).append(advance)
        return advances
    
    async def get_repayments(self, advance_id: uuid.UUID) -> List[WageAdvanceRepayment]:
        result = await self.db.execute(
            select(WageAdvanceRepayment)
            .where(WageAdvanceRepayment.wage_advance_id == advance_id)
            .order_by(WageAdvanceRepayment.installment_number)
        )
        return list(result.scalars().all())
    
    # ===========================================
    # POSTING
    # ===========================================
    
    async def post_repayment(
        self,
        advance: WageAdvance,
        amount: Decimal,
        pay_run: PayRun,
        actor_id: Optional[uuid.UUID] = None,
    ) -> WageAdvanceRepayment:
        """
        Record one repayment from a completed pay run.
        
        Posting twice for the same pay run returns the existing entry.
        """
        existing = await self.db.execute(
            select(WageAdvanceRepayment).where(
                WageAdvanceRepayment.wage_advance_id == advance.id,
                WageAdvanceRepayment.pay_run_id == pay_run.id,
            )
        )
        repayment = existing.scalar_one_or_none()
        if repayment is not None:
            logger.info(f"Repayment for advance {advance.id} already posted by pay run {pay_run.reference}")
            return repayment
        
        if advance.status not in COLLECTABLE_STATUSES:
            raise PayRunStateError("wage advance", advance.status.value, "record a repayment against")
        amount = round_money(amount)
        if amount <= 0:
            raise PayrollValidationError("Repayment amount must be positive", field="amount")
        if amount > advance.remaining_balance:
            raise PayrollValidationError(
                "Repayment exceeds the remaining balance",
                field="amount",
                details={"amount": str(amount), "remaining": str(advance.remaining_balance)},
            )
        
        old_values = {
            "status": advance.status,
            "amount_repaid": advance.amount_repaid,
            "installments_paid": advance.installments_paid,
        }
        
        advance.amount_repaid = advance.amount_repaid + amount
        advance.installments_paid = advance.installments_paid + 1
        if advance.amount_repaid >= (advance.approved_amount or ZERO):
            advance.status = WageAdvanceStatus.REPAID
            advance.fully_repaid_at = datetime.now(timezone.utc)
        else:
            advance.status = WageAdvanceStatus.REPAYING
        
        repayment = WageAdvanceRepayment(
            wage_advance_id=advance.id,
            pay_run_id=pay_run.id,
            employee_id=advance.employee_id,
            installment_number=advance.installments_paid,
            amount=amount,
            balance_after=advance.remaining_balance,
            period_start=pay_run.period_start,
            period_end=pay_run.period_end,
        )
        self.db.add(repayment)
        
        new_values = {
            "status": advance.status,
            "amount_repaid": advance.amount_repaid,
            "installments_paid": advance.installments_paid,
        }
        await self.audit.record(
            tenant_id=advance.tenant_id,
            action=PayrollAuditAction.ADVANCE_REPAYMENT_RECORDED,
            entity_type="wage_advance",
            entity_id=advance.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=new_values,
            metadata={"pay_run_id": pay_run.id, "pay_run_reference": pay_run.reference, "amount": amount},
        )
        if advance.status == WageAdvanceStatus.REPAID:
            await self.audit.record(
                tenant_id=advance.tenant_id,
                action=PayrollAuditAction.ADVANCE_REPAID,
                entity_type="wage_advance",
                entity_id=advance.id,
                actor_id=actor_id,
                new_values={"amount_repaid": advance.amount_repaid},
            )
            logger.info(f"Wage advance {advance.id} fully repaid")
        
        return repayment
