"""
PayCore - Deduction Service

Tenant deduction catalog, employee deduction assignments and the postings
written when a pay run completes.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.models.audit import PayrollAuditAction
from paycore.models.pay_run import PayRun
from paycore.models.payroll import (
    DeductionBase,
    DeductionCalculation,
    DeductionCategory,
    DeductionType,
    Employee,
    EmployeeDeduction,
    EmployeeDeductionPosting,
)
from paycore.services.audit_service import PayrollAuditService
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


# Default deduction catalog for Nigerian employers
DEFAULT_DEDUCTION_TYPES: List[Dict[str, Any]] = [
    {
        "code": "PENSION_EE",
        "name": "Pension (Employee)",
        "description": "Employee contribution under the Pension Reform Act 2014",
        "category": DeductionCategory.STATUTORY,
        "calculation": DeductionCalculation.PERCENTAGE,
        "calculation_base": DeductionBase.PENSIONABLE,
        "default_rate": Decimal("8"),
        "is_pre_tax": True,
        "is_mandatory": True,
        "priority": 5,
    },
    {
        "code": "NHF",
        "name": "National Housing Fund",
        "description": "2.5% of basic salary to the Federal Mortgage Bank",
        "category": DeductionCategory.STATUTORY,
        "calculation": DeductionCalculation.PERCENTAGE,
        "calculation_base": DeductionBase.BASIC,
        "default_rate": Decimal("2.5"),
        "is_pre_tax": True,
        "is_mandatory": True,
        "priority": 15,
    },
    {
        "code": "NHIS",
        "name": "National Health Insurance",
        "description": "Employee share of health insurance contributions",
        "category": DeductionCategory.STATUTORY,
        "calculation": DeductionCalculation.PERCENTAGE,
        "calculation_base": DeductionBase.BASIC,
        "default_rate": Decimal("5"),
        "is_pre_tax": True,
        "is_mandatory": True,
        "priority": 20,
    },
    {
        "code": "LOAN",
        "name": "Staff Loan Repayment",
        "category": DeductionCategory.LOAN,
        "calculation": DeductionCalculation.FIXED,
        "priority": 50,
    },
    {
        "code": "UNION",
        "name": "Union Dues",
        "category": DeductionCategory.VOLUNTARY,
        "calculation": DeductionCalculation.PERCENTAGE,
        "calculation_base": DeductionBase.BASIC,
        "default_rate": Decimal("1"),
        "priority": 60,
    },
    {
        "code": "SAVINGS",
        "name": "Cooperative Savings",
        "category": DeductionCategory.VOLUNTARY,
        "calculation": DeductionCalculation.FIXED,
        "priority": 70,
    },
    {
        "code": "INSURANCE",
        "name": "Life Insurance Premium",
        "category": DeductionCategory.VOLUNTARY,
        "calculation": DeductionCalculation.FIXED,
        "priority": 75,
    },
]


async def seed_deduction_types(db: AsyncSession, tenant_id: uuid.UUID) -> List[DeductionType]:
    """Create the default deduction catalog for a tenant; existing codes are kept."""
    result = await db.execute(select(DeductionType.code).where(DeductionType.tenant_id == tenant_id))
    existing = set(result.scalars().all())
    
    created = []
    for spec in DEFAULT_DEDUCTION_TYPES:
        if spec["code"] in existing:
            continue
        deduction_type = DeductionType(
            tenant_id=tenant_id,
            is_system=spec["category"] == DeductionCategory.STATUTORY,
            **spec,
        )
        db.add(deduction_type)
        created.append(deduction_type)
    
    if created:
        await db.flush()
        logger.info(f"Seeded {len(created)} deduction types for tenant {tenant_id}")
    return created


def _deduction_values(assignment: EmployeeDeduction) -> Dict[str, Any]:
    return {
        "amount": assignment.amount,
        "rate": assignment.rate,
        "total_target": assignment.total_target,
        "total_deducted": assignment.total_deducted,
        "effective_from": assignment.effective_from,
        "effective_to": assignment.effective_to,
        "is_active": assignment.is_active,
    }


class DeductionService:
    """Service for deduction catalog lookups, assignments and postings."""
    
    def __init__(self, db: AsyncSession, audit: Optional[PayrollAuditService] = None):
        self.db = db
        self.audit = audit or PayrollAuditService(db)
    
    async def get_catalog(self, tenant_id: uuid.UUID) -> List[DeductionType]:
        result = await self.db.execute(
            select(DeductionType)
            .where(DeductionType.tenant_id == tenant_id, DeductionType.is_active == True)
            .order_by(DeductionType.priority, DeductionType.code)
        )
        return list(result.scalars().all())
    
    async def get_deduction_type(self, tenant_id: uuid.UUID, code: str) -> DeductionType:
        result = await self.db.execute(
            select(DeductionType).where(DeductionType.tenant_id == tenant_id, DeductionType.code == code)
        )
        deduction_type = result.scalar_one_or_none()
        if deduction_type is None:
            raise PayrollNotFoundError("Deduction type", code)
        return deduction_type
    
    async def get_assignment(self, assignment_id: uuid.UUID) -> EmployeeDeduction:
        result = await self.db.execute(
            select(EmployeeDeduction).where(EmployeeDeduction.id == assignment_id)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise PayrollNotFoundError("Employee deduction", assignment_id)
        return assignment
    
    async def list_assignments(
        self,
        employee_ids: Sequence[uuid.UUID],
        active_only: bool = True,
    ) -> Dict[uuid.UUID, List[EmployeeDeduction]]:
        if not employee_ids:
            return {}
        query = select(EmployeeDeduction).where(EmployeeDeduction.employee_id.in_(list(employee_ids)))
        if active_only:
            query = query.where(EmployeeDeduction.is_active == True)
        result = await self.db.execute(query)
        assignments: Dict[uuid.UUID, List[EmployeeDeduction]] = {}
        for assignment in result.scalars().all():
            assignments.setdefault(assignment.employee_id, []).append(assignment)
        return assignments
    
    async def deducted_in_year(self, assignment_ids: Sequence[uuid.UUID], year: int) -> Dict[uuid.UUID, Decimal]:
        """Posted totals per assignment within a calendar year."""
        if not assignment_ids:
            return {}
        result = await self.db.execute(
            select(
                EmployeeDeductionPosting.employee_deduction_id,
                func.coalesce(func.sum(EmployeeDeductionPosting.amount), 0),
            )
            .where(
                EmployeeDeductionPosting.employee_deduction_id.in_(list(assignment_ids)),
                EmployeeDeductionPosting.pay_date >= date(year, 1, 1),
                EmployeeDeductionPosting.pay_date <= date(year, 12, 31),
            )
            .group_by(EmployeeDeductionPosting.employee_deduction_id)
        )
        return {row[0]: Decimal(str(row[1])) for row in result.all()}
    
    # ===========================================
    # ASSIGNMENTS
    # ===========================================
    
    @staticmethod
    def _validate_terms(
        amount: Optional[Decimal],
        rate: Optional[Decimal],
        total_target: Optional[Decimal],
        total_deducted: Decimal,
        effective_from: date,
        effective_to: Optional[date],
    ) -> None:
        if amount is not None and amount < 0:
            raise PayrollValidationError("Deduction amount cannot be negative", field="amount")
        if rate is not None and (rate < 0 or rate > 100):
            raise PayrollValidationError("Deduction rate must be between 0 and 100", field="rate")
        if total_target is not None and total_target < 0:
            raise PayrollValidationError("Deduction target cannot be negative", field="total_target")
        if total_target is not None and total_deducted > total_target:
            raise PayrollValidationError(
                "Amount already deducted exceeds the target",
                field="total_deducted",
            )
        if effective_to is not None and effective_to < effective_from:
            raise PayrollValidationError(
                "effective_to cannot be before effective_from",
                field="effective_to",
            )
    
    async def assign_deduction(
        self,
        employee: Employee,
        deduction_type: DeductionType,
        effective_from: date,
        amount: Optional[Decimal] = None,
        rate: Optional[Decimal] = None,
        total_target: Optional[Decimal] = None,
        total_deducted: Decimal = ZERO,
        effective_to: Optional[date] = None,
        notes: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeDeduction:
        if deduction_type.tenant_id != employee.tenant_id:
            raise PayrollValidationError("Deduction type belongs to another tenant", field="deduction_type_id")
        self._validate_terms(amount, rate, total_target, total_deducted, effective_from, effective_to)
        
        assignment = EmployeeDeduction(
            tenant_id=employee.tenant_id,
            employee_id=employee.id,
            deduction_type_id=deduction_type.id,
            deduction_type=deduction_type,
            amount=amount,
            rate=rate,
            total_target=total_target,
            total_deducted=total_deducted,
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=True,
            notes=notes,
            created_by_id=actor_id,
        )
        self.db.add(assignment)
        await self.db.flush()
        
        await self.audit.record(
            tenant_id=employee.tenant_id,
            action=PayrollAuditAction.DEDUCTION_ASSIGNED,
            entity_type="employee_deduction",
            entity_id=assignment.id,
            actor_id=actor_id,
            new_values={"code": deduction_type.code, **_deduction_values(assignment)},
            metadata={"employee_id": employee.id},
        )
        logger.info(f"Assigned deduction {deduction_type.code} to employee {employee.id}")
        return assignment
    
    async def update_deduction(
        self,
        assignment: EmployeeDeduction,
        actor_id: Optional[uuid.UUID] = None,
        **changes: Any,
    ) -> EmployeeDeduction:
        allowed = {"amount", "rate", "total_target", "effective_from", "effective_to", "notes"}
        unknown = set(changes) - allowed
        if unknown:
            raise PayrollValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        
        old_values = _deduction_values(assignment)
        merged = {**old_values, **changes}
        self._validate_terms(
            merged["amount"],
            merged["rate"],
            merged["total_target"],
            assignment.total_deducted,
            merged["effective_from"],
            merged["effective_to"],
        )
        for key, value in changes.items():
            setattr(assignment, key, value)
        assignment.updated_by_id = actor_id
        
        await self.audit.record(
            tenant_id=assignment.tenant_id,
            action=PayrollAuditAction.DEDUCTION_UPDATED,
            entity_type="employee_deduction",
            entity_id=assignment.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_deduction_values(assignment),
        )
        return assignment
    
    async def end_deduction(
        self,
        assignment: EmployeeDeduction,
        end_date: date,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeDeduction:
        if not assignment.is_active:
            raise PayRunStateError("employee deduction", "inactive", "end")
        if end_date < assignment.effective_from:
            raise PayrollValidationError("End date is before the deduction started", field="end_date")
        
        old_values = _deduction_values(assignment)
        assignment.effective_to = end_date
        assignment.is_active = False
        assignment.updated_by_id = actor_id
        
        await self.audit.record(
            tenant_id=assignment.tenant_id,
            action=PayrollAuditAction.DEDUCTION_ENDED,
            entity_type="employee_deduction",
            entity_id=assignment.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_deduction_values(assignment),
        )
        return assignment
    
    # ===========================================
    # POSTINGS
    # ===========================================
    
    async def post_deduction(
        self,
        assignment: EmployeeDeduction,
        amount: Decimal,
        pay_run: PayRun,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeDeductionPosting:
        """
        Record one completed-run application of an assignment.
        
        At most one posting exists per (assignment, pay run); a repeat call
        returns it unchanged. The assignment deactivates when it reaches its target.
        """
        existing = await self.db.execute(
            select(EmployeeDeductionPosting).where(
                EmployeeDeductionPosting.employee_deduction_id == assignment.id,
                EmployeeDeductionPosting.pay_run_id == pay_run.id,
            )
        )
        posting = existing.scalar_one_or_none()
        if posting is not None:
            return posting
        
        amount = round_money(amount)
        old_total = assignment.total_deducted
        assignment.total_deducted = old_total + amount
        
        posting = EmployeeDeductionPosting(
            employee_deduction_id=assignment.id,
            pay_run_id=pay_run.id,
            employee_id=assignment.employee_id,
            amount=amount,
            pay_date=pay_run.pay_date,
        )
        self.db.add(posting)
        
        await self.audit.record(
            tenant_id=assignment.tenant_id,
            action=PayrollAuditAction.DEDUCTION_APPLIED,
            entity_type="employee_deduction",
            entity_id=assignment.id,
            actor_id=actor_id,
            old_values={"total_deducted": old_total},
            new_values={"total_deducted": assignment.total_deducted},
            metadata={"pay_run_id": pay_run.id, "amount": amount},
        )
        
        if assignment.total_target is not None and assignment.total_deducted >= assignment.total_target:
            assignment.is_active = False
            await self.audit.record(
                tenant_id=assignment.tenant_id,
                action=PayrollAuditAction.DEDUCTION_COMPLETED,
                entity_type="employee_deduction",
                entity_id=assignment.id,
                actor_id=actor_id,
                new_values={"total_deducted": assignment.total_deducted, "is_active": False},
            )
            logger.info(f"Employee deduction {assignment.id} reached its target")
        
        return posting
