"""
PayCore - Payroll Audit Log Model

Audit rows are written in the same transaction as the change they describe
and are the hand-off point for the external audit sink.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from paycore.models.base import BaseModel


class PayrollAuditAction(str, Enum):
    """Auditable payroll events."""
    
    # Pay run lifecycle
    PAY_RUN_CREATED = "pay_run_created"
    PAY_RUN_PROCESSED = "pay_run_processed"
    PAY_RUN_APPROVED = "pay_run_approved"
    PAY_RUN_COMPLETED = "pay_run_completed"
    PAY_RUN_CANCELLED = "pay_run_cancelled"
    PAY_RUN_DELETED = "pay_run_deleted"
    EMPLOYEE_EXCLUDED = "employee_excluded"
    EMPLOYEE_INCLUDED = "employee_included"
    ITEM_RECALCULATED = "item_recalculated"
    
    # Payslips
    PAYSLIP_GENERATED = "payslip_generated"
    PAYSLIP_CANCELLED = "payslip_cancelled"
    
    # Deductions
    DEDUCTION_ASSIGNED = "deduction_assigned"
    DEDUCTION_UPDATED = "deduction_updated"
    DEDUCTION_ENDED = "deduction_ended"
    DEDUCTION_APPLIED = "deduction_applied"
    DEDUCTION_COMPLETED = "deduction_completed"
    
    # Wage advances
    ADVANCE_REQUESTED = "advance_requested"
    ADVANCE_APPROVED = "advance_approved"
    ADVANCE_REJECTED = "advance_rejected"
    ADVANCE_DISBURSED = "advance_disbursed"
    ADVANCE_REPAYMENT_RECORDED = "advance_repayment_recorded"
    ADVANCE_REPAID = "advance_repaid"


class PayrollAuditLog(BaseModel):
    """Audit trail entry for payroll state changes."""
    
    __tablename__ = "payroll_audit_logs"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    old_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    extra_data: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    
    def __repr__(self) -> str:
        return f"<PayrollAuditLog(action={self.action}, entity={self.entity_type}:{self.entity_id})>"
