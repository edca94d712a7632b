"""
PayCore - Pay Run Models

A pay run is one computation pass over a set of employees for a payroll period.
Each employee gets one PayRunItem; completed items become Payslips.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Date, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from paycore.models.base import AuditMixin, BaseModel, SoftDeleteMixin
from paycore.models.payroll import PayFrequency


class PayRunStatus(str, Enum):
    """Pay run lifecycle."""
    DRAFT = "draft"
    CALCULATING = "calculating"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PayRunItemStatus(str, Enum):
    """Per-employee status, independent of the run status."""
    PENDING = "pending"
    CALCULATED = "calculated"
    ERROR = "error"
    EXCLUDED = "excluded"


class PayslipStatus(str, Enum):
    ISSUED = "issued"
    CANCELLED = "cancelled"


def _money_column(comment: Optional[str] = None):
    return mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment=comment,
    )


# ===========================================
# PAY RUN
# ===========================================

class PayRun(BaseModel, AuditMixin, SoftDeleteMixin):
    """
    Payroll run for one tenant and pay period.
    
    Aggregate totals are always the sum of the run's items and are only
    written by the pay run service after item computation.
    """
    
    __tablename__ = "pay_runs"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    reference: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Human reference e.g., PR-20260131-0001",
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    
    # Pay Period
    frequency: Mapped[PayFrequency] = mapped_column(
        SQLEnum(PayFrequency), default=PayFrequency.MONTHLY, nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(
        Date, nullable=False,
        comment="Date employees will be paid; selects the tax law",
    )
    pay_calendar_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    
    status: Mapped[PayRunStatus] = mapped_column(
        SQLEnum(PayRunStatus), default=PayRunStatus.DRAFT, nullable=False, index=True,
    )
    
    # Roster; null employee_ids means every active employee of the tenant
    employee_ids: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    excluded_employee_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    
    # Summary (calculated)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross: Mapped[Decimal] = _money_column()
    total_deductions: Mapped[Decimal] = _money_column()
    total_tax: Mapped[Decimal] = _money_column()
    total_net: Mapped[Decimal] = _money_column()
    total_employer_contributions: Mapped[Decimal] = _money_column()
    total_employer_cost: Mapped[Decimal] = _money_column()
    
    # Workflow
    calculated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extra_data: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False,
    )
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'reference', name='uq_pay_run_tenant_reference'),
    )
    
    @property
    def is_terminal(self) -> bool:
        return self.status in (PayRunStatus.COMPLETED, PayRunStatus.CANCELLED)
    
    def __repr__(self) -> str:
        return f"<PayRun(id={self.id}, reference={self.reference}, status={self.status})>"


class PayRunItem(BaseModel):
    """
    One employee's computed line within a pay run.
    
    Breakdown columns hold JSON lists/dicts with amounts as decimal strings.
    """
    
    __tablename__ = "pay_run_items"
    
    pay_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[PayRunItemStatus] = mapped_column(
        SQLEnum(PayRunItemStatus), default=PayRunItemStatus.PENDING, nullable=False,
    )
    
    basic_salary: Mapped[Decimal] = _money_column()
    gross_earnings: Mapped[Decimal] = _money_column()
    pensionable_earnings: Mapped[Decimal] = _money_column()
    pre_tax_deductions: Mapped[Decimal] = _money_column()
    taxable_income: Mapped[Decimal] = _money_column("Period share of annual taxable income")
    tax_amount: Mapped[Decimal] = _money_column()
    post_tax_deductions: Mapped[Decimal] = _money_column()
    advance_repayment: Mapped[Decimal] = _money_column()
    total_deductions: Mapped[Decimal] = _money_column("Pre-tax + tax + post-tax + advance")
    net_pay: Mapped[Decimal] = _money_column()
    employer_pension: Mapped[Decimal] = _money_column()
    employer_nhf: Mapped[Decimal] = _money_column()
    employer_contributions: Mapped[Decimal] = _money_column()
    total_employer_cost: Mapped[Decimal] = _money_column()
    
    tax_law_version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    earnings_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    deductions_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    tax_breakdown: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    advance_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exclusion_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    __table_args__ = (
        UniqueConstraint('pay_run_id', 'employee_id', name='uq_pay_run_item_run_employee'),
    )
    
    def __repr__(self) -> str:
        return f"<PayRunItem(run={self.pay_run_id}, employee={self.employee_id}, status={self.status})>"


# ===========================================
# PAYSLIP
# ===========================================

class Payslip(BaseModel, SoftDeleteMixin):
    """
    Durable employee-facing record of a completed pay run item.
    
    Never physically deleted once issued; cancellation keeps the row.
    """
    
    __tablename__ = "payslips"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    pay_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    pay_run_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pay_run_items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payslip_number: Mapped[str] = mapped_column(String(80), nullable=False)
    
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    
    basic_salary: Mapped[Decimal] = _money_column()
    gross_pay: Mapped[Decimal] = _money_column()
    taxable_income: Mapped[Decimal] = _money_column()
    tax_amount: Mapped[Decimal] = _money_column()
    pension_employee: Mapped[Decimal] = _money_column()
    total_deductions: Mapped[Decimal] = _money_column()
    net_pay: Mapped[Decimal] = _money_column()
    employer_pension: Mapped[Decimal] = _money_column()
    employer_nhf: Mapped[Decimal] = _money_column()
    
    earnings_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    deductions_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    tax_breakdown: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    
    # Year-to-date (includes this payslip)
    ytd_gross: Mapped[Decimal] = _money_column()
    ytd_tax: Mapped[Decimal] = _money_column()
    ytd_pension: Mapped[Decimal] = _money_column()
    ytd_net: Mapped[Decimal] = _money_column()
    
    # Payment details at issue
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    
    status: Mapped[PayslipStatus] = mapped_column(
        SQLEnum(PayslipStatus), default=PayslipStatus.ISSUED, nullable=False,
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    __table_args__ = (
        UniqueConstraint('pay_run_id', 'employee_id', name='uq_payslip_run_employee'),
        UniqueConstraint('tenant_id', 'payslip_number', name='uq_payslip_tenant_number'),
    )
    
    def __repr__(self) -> str:
        return f"<Payslip(number={self.payslip_number}, status={self.status})>"
