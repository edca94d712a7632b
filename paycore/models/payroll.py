"""
PayCore - Payroll Models

Employee pay configuration, earnings, deductions and wage advances.
Nigerian statutory contributions (Pension, NHF, NHIS) are configured per employee.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycore.models.base import AuditMixin, BaseModel


# ===========================================
# ENUMS
# ===========================================

class PayType(str, Enum):
    """How an employee's basic pay is determined."""
    SALARY = "salary"
    HOURLY = "hourly"
    COMMISSION = "commission"


class PayFrequency(str, Enum):
    """Pay frequency options."""
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    ANNUALLY = "annually"
    
    @property
    def periods_per_year(self) -> int:
        return {
            PayFrequency.WEEKLY: 52,
            PayFrequency.BI_WEEKLY: 26,
            PayFrequency.MONTHLY: 12,
            PayFrequency.ANNUALLY: 1,
        }[self]


class TaxHandling(str, Enum):
    """Who settles the employee's PAYE."""
    EMPLOYER_WITHHOLDS = "employer_withholds"
    EMPLOYEE_SELF_ASSESSES = "employee_self_assesses"


class EarningCategory(str, Enum):
    """Earning categories."""
    BASE = "base"
    ALLOWANCE = "allowance"
    OVERTIME = "overtime"
    BONUS = "bonus"
    COMMISSION = "commission"


class EarningCalculation(str, Enum):
    """How an earning amount is derived."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"     # percent of basic salary
    HOURLY = "hourly"             # rate x regular hours


class DeductionCategory(str, Enum):
    """Deduction categories."""
    STATUTORY = "statutory"
    LOAN = "loan"
    ADVANCE = "advance"
    VOLUNTARY = "voluntary"


class DeductionCalculation(str, Enum):
    """How a deduction amount is derived."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class DeductionBase(str, Enum):
    """Income figure a percentage deduction is computed against."""
    GROSS = "gross"
    BASIC = "basic"
    TAXABLE = "taxable"
    PENSIONABLE = "pensionable"


class WageAdvanceStatus(str, Enum):
    """Wage advance lifecycle."""
    PENDING = "pending"
    APPROVED = "approved"
    DISBURSED = "disbursed"
    REPAYING = "repaying"
    REPAID = "repaid"
    REJECTED = "rejected"


# ===========================================
# EMPLOYEE PAY CONFIGURATION
# ===========================================

class Employee(BaseModel, AuditMixin):
    """
    Employee pay configuration as consumed by payroll.
    
    Contains pay basis, statutory enrolment and personal tax settings.
    """
    
    __tablename__ = "payroll_employees"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True,
    )
    employee_code: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Internal employee ID e.g., EMP-001",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    jurisdiction_code: Mapped[Optional[str]] = mapped_column(
        String(10), nullable=True,
        comment="Tax jurisdiction; falls back to the configured default",
    )
    
    # Pay basis
    pay_type: Mapped[PayType] = mapped_column(
        SQLEnum(PayType), default=PayType.SALARY, nullable=False,
    )
    pay_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
        comment="Salary per pay_frequency, or hourly rate",
    )
    pay_frequency: Mapped[PayFrequency] = mapped_column(
        SQLEnum(PayFrequency), default=PayFrequency.MONTHLY, nullable=False,
    )
    standard_hours_per_week: Mapped[Decimal] = mapped_column(
        Numeric(7, 2), default=Decimal("40"), nullable=False,
    )
    overtime_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(7, 4), default=Decimal("1.5"), nullable=False,
    )
    weekend_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(7, 4), default=Decimal("1.5"), nullable=False,
    )
    holiday_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(7, 4), default=Decimal("2.0"), nullable=False,
    )
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    commission_cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    
    # Statutory enrolment (rates in percent; null uses the deduction type default)
    pension_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pension_employee_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    pension_employer_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    nhf_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    nhf_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    nhis_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    nhis_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    
    # Tax settings
    tax_handling: Mapped[TaxHandling] = mapped_column(
        SQLEnum(TaxHandling), default=TaxHandling.EMPLOYER_WITHHOLDS, nullable=False,
    )
    is_tax_exempt: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    exemption_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    exemption_expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_homeowner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    annual_rent_paid: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    rent_proof_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rent_proof_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    claimed_reliefs: Mapped[List[str]] = mapped_column(
        JSON, default=list, nullable=False,
        comment="Opt-in relief codes",
    )
    relief_proofs: Mapped[List[str]] = mapped_column(
        JSON, default=list, nullable=False,
        comment="Relief codes with supporting evidence on file",
    )
    
    # Identifiers and payment details
    tin: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True,
        comment="Tax Identification Number (required for PAYE)",
    )
    pension_pin: Mapped[Optional[str]] = mapped_column(
        String(30), nullable=True,
        comment="RSA PIN (Retirement Savings Account Pin)",
    )
    pfa_name: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="Pension Fund Administrator",
    )
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'employee_code', name='uq_payroll_employee_tenant_code'),
    )
    
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
    
    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, code={self.employee_code})>"


class PayPeriodInput(BaseModel):
    """
    Approved attendance and sales aggregates for one employee and period.
    
    Supplied by the timesheet and sales subsystems; read-only to payroll.
    """
    
    __tablename__ = "pay_period_inputs"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    regular_hours: Mapped[Decimal] = mapped_column(Numeric(9, 2), default=Decimal("0"), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(9, 2), default=Decimal("0"), nullable=False)
    weekend_hours: Mapped[Decimal] = mapped_column(Numeric(9, 2), default=Decimal("0"), nullable=False)
    holiday_hours: Mapped[Decimal] = mapped_column(Numeric(9, 2), default=Decimal("0"), nullable=False)
    sales_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
        comment="Completed sales credited to the employee in the period",
    )
    
    __table_args__ = (
        UniqueConstraint('employee_id', 'period_start', 'period_end', name='uq_pay_period_input_employee_period'),
    )


# ===========================================
# EARNINGS
# ===========================================

class EarningType(BaseModel):
    """Tenant catalog of earning types."""
    
    __tablename__ = "earning_types"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[EarningCategory] = mapped_column(SQLEnum(EarningCategory), nullable=False)
    calculation: Mapped[EarningCalculation] = mapped_column(
        SQLEnum(EarningCalculation), default=EarningCalculation.FIXED, nullable=False,
    )
    default_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    default_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 4), nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_pensionable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_earning_type_tenant_code'),
    )


class EmployeeEarning(BaseModel):
    """An earning type bound to an employee."""
    
    __tablename__ = "employee_earnings"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    earning_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("earning_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 4), nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    earning_type: Mapped["EarningType"] = relationship("EarningType", lazy="selectin")


# ===========================================
# DEDUCTIONS
# ===========================================

class DeductionType(BaseModel):
    """
    Tenant catalog of deduction types.
    
    Priority strictly orders application within a payslip (lower runs first).
    """
    
    __tablename__ = "deduction_types"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[DeductionCategory] = mapped_column(SQLEnum(DeductionCategory), nullable=False)
    calculation: Mapped[DeductionCalculation] = mapped_column(
        SQLEnum(DeductionCalculation), default=DeductionCalculation.FIXED, nullable=False,
    )
    calculation_base: Mapped[DeductionBase] = mapped_column(
        SQLEnum(DeductionBase), default=DeductionBase.GROSS, nullable=False,
    )
    default_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    default_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    max_amount_per_period: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    annual_cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_deduction_type_tenant_code'),
    )


class EmployeeDeduction(BaseModel, AuditMixin):
    """
    A deduction type bound to an employee.
    
    total_target turns the deduction into an installment plan (e.g., a loan);
    it deactivates once total_deducted reaches the target.
    """
    
    __tablename__ = "employee_deductions"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    deduction_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deduction_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    total_target: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    total_deducted: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    deduction_type: Mapped["DeductionType"] = relationship("DeductionType", lazy="selectin")
    
    @property
    def remaining_target(self) -> Optional[Decimal]:
        if self.total_target is None:
            return None
        return max(Decimal("0.00"), self.total_target - self.total_deducted)


class EmployeeDeductionPosting(BaseModel):
    """One durable application of an EmployeeDeduction by a completed pay run."""
    
    __tablename__ = "employee_deduction_postings"
    
    employee_deduction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_deductions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pay_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('employee_deduction_id', 'pay_run_id', name='uq_deduction_posting_deduction_run'),
    )


# ===========================================
# WAGE ADVANCES
# ===========================================

class WageAdvance(BaseModel, AuditMixin):
    """
    Employer-disbursed salary advance repaid through payroll.
    
    Immutable once fully repaid.
    """
    
    __tablename__ = "wage_advances"
    
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    principal: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False,
        comment="Amount requested",
    )
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    installment_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    installments_paid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount_repaid: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    status: Mapped[WageAdvanceStatus] = mapped_column(
        SQLEnum(WageAdvanceStatus), default=WageAdvanceStatus.PENDING, nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    disbursed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fully_repaid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    @property
    def remaining_balance(self) -> Decimal:
        if self.approved_amount is None:
            return Decimal("0.00")
        return max(Decimal("0.00"), self.approved_amount - self.amount_repaid)
    
    @property
    def is_collectable(self) -> bool:
        """Whether payroll should withhold an installment this period."""
        return self.status in (WageAdvanceStatus.DISBURSED, WageAdvanceStatus.REPAYING)
    
    def __repr__(self) -> str:
        return f"<WageAdvance(id={self.id}, status={self.status})>"


class WageAdvanceRepayment(BaseModel):
    """One repayment posted against a wage advance by a completed pay run."""
    
    __tablename__ = "wage_advance_repayments"
    
    wage_advance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("wage_advances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pay_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('wage_advance_id', 'pay_run_id', name='uq_advance_repayment_advance_run'),
    )
