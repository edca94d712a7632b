"""
PayCore - Payroll Schemas

Pydantic schemas for pay run, payslip, wage advance and tax estimate
requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from paycore.models.pay_run import PayRunItemStatus, PayRunStatus, PayslipStatus
from paycore.models.payroll import PayFrequency, WageAdvanceStatus


# ===========================================
# PAY RUN SCHEMAS
# ===========================================

class PayRunCreate(BaseModel):
    """Schema for creating a pay run."""
    name: str = Field(..., min_length=1, max_length=200)
    period_start: date
    period_end: date
    pay_date: date
    frequency: PayFrequency = PayFrequency.MONTHLY
    employee_ids: Optional[List[UUID]] = Field(
        None, description="Explicit roster; all active employees when omitted"
    )
    pay_calendar_id: Optional[UUID] = None
    notes: Optional[str] = None
    
    @model_validator(mode="after")
    def validate_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end cannot be before period_start")
        return self


class PayRunCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class EmployeeExclusion(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PayRunResponse(BaseModel):
    """Pay run with totals."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    tenant_id: UUID
    reference: str
    name: str
    frequency: PayFrequency
    period_start: date
    period_end: date
    pay_date: date
    status: PayRunStatus
    employee_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_tax: Decimal
    total_net: Decimal
    total_employer_contributions: Decimal
    total_employer_cost: Decimal
    employee_ids: Optional[List[str]] = None
    excluded_employee_ids: List[str] = []
    calculated_at: Optional[datetime] = None
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class PayRunItemResponse(BaseModel):
    """One employee's line in a pay run, with breakdowns."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    pay_run_id: UUID
    employee_id: UUID
    status: PayRunItemStatus
    basic_salary: Decimal
    gross_earnings: Decimal
    pensionable_earnings: Decimal
    pre_tax_deductions: Decimal
    taxable_income: Decimal
    tax_amount: Decimal
    post_tax_deductions: Decimal
    advance_repayment: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    employer_pension: Decimal
    employer_nhf: Decimal
    employer_contributions: Decimal
    total_employer_cost: Decimal
    tax_law_version: Optional[str] = None
    earnings_breakdown: List[Dict[str, Any]] = []
    deductions_breakdown: List[Dict[str, Any]] = []
    tax_breakdown: Dict[str, Any] = {}
    advance_breakdown: List[Dict[str, Any]] = []
    error_message: Optional[str] = None
    exclusion_reason: Optional[str] = None
    calculated_at: Optional[datetime] = None


class ItemError(BaseModel):
    employee_id: UUID
    error_message: Optional[str] = None


class PayRunSummaryResponse(BaseModel):
    """Item counts by status and run totals."""
    pay_run_id: UUID
    reference: str
    status: PayRunStatus
    item_counts: Dict[str, int]
    employee_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_tax: Decimal
    total_net: Decimal
    total_employer_contributions: Decimal
    total_employer_cost: Decimal
    errors: List[ItemError] = []


# ===========================================
# PAYSLIP SCHEMAS
# ===========================================

class PayslipResponse(BaseModel):
    """Issued payslip with year-to-date figures."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    payslip_number: str
    pay_run_id: UUID
    employee_id: UUID
    period_start: date
    period_end: date
    pay_date: date
    basic_salary: Decimal
    gross_pay: Decimal
    taxable_income: Decimal
    tax_amount: Decimal
    pension_employee: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    employer_pension: Decimal
    employer_nhf: Decimal
    earnings_breakdown: List[Dict[str, Any]] = []
    deductions_breakdown: List[Dict[str, Any]] = []
    tax_breakdown: Dict[str, Any] = {}
    ytd_gross: Decimal
    ytd_tax: Decimal
    ytd_pension: Decimal
    ytd_net: Decimal
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    status: PayslipStatus
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class PayslipCancel(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


# ===========================================
# WAGE ADVANCE SCHEMAS
# ===========================================

class WageAdvanceRequest(BaseModel):
    """Schema for requesting a salary advance."""
    employee_id: UUID
    amount: Decimal = Field(..., gt=0)
    installment_count: int = Field(1, ge=1)
    reason: Optional[str] = None


class WageAdvanceApprove(BaseModel):
    approved_amount: Optional[Decimal] = Field(None, gt=0)
    installment_count: Optional[int] = Field(None, ge=1)


class WageAdvanceReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class WageAdvanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    tenant_id: UUID
    employee_id: UUID
    principal: Decimal
    approved_amount: Optional[Decimal] = None
    installment_count: int
    installments_paid: int
    amount_repaid: Decimal
    remaining_balance: Decimal
    status: WageAdvanceStatus
    reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    disbursed_at: Optional[datetime] = None
    fully_repaid_at: Optional[datetime] = None


class AdvanceInstallmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    installment_number: int
    amount: Decimal
    balance_after: Decimal


class RepaymentScheduleResponse(BaseModel):
    advance: WageAdvanceResponse
    installments: List[AdvanceInstallmentResponse]


# ===========================================
# TAX SCHEMAS
# ===========================================

class TaxComparisonRequest(BaseModel):
    """Annual salary and personal circumstances for a PAYE estimate."""
    annual_gross: Decimal = Field(..., ge=0)
    jurisdiction_code: Optional[str] = None
    annual_basic: Optional[Decimal] = Field(None, ge=0)
    annual_pre_tax_deductions: Decimal = Field(Decimal("0"), ge=0)
    annual_rent: Decimal = Field(Decimal("0"), ge=0)
    is_homeowner: bool = False
    rent_proof_valid: bool = False
    pension_enrolled: bool = False
    claimed_reliefs: List[str] = []


class TaxEstimateRequest(TaxComparisonRequest):
    on_date: date = Field(..., description="Date whose tax law applies")


class ReliefLine(BaseModel):
    code: str
    amount: Decimal


class TaxEstimateResponse(BaseModel):
    tax_law_version: str
    annual_gross: Decimal
    annual_pre_tax_deductions: Decimal
    reliefs: List[ReliefLine]
    total_reliefs: Decimal
    taxable_income: Decimal
    annual_tax: Decimal
    monthly_tax: Decimal
    effective_rate: Decimal
    low_income_exempt: bool
    bands: List[Dict[str, Any]] = []


class TaxComparisonResponse(BaseModel):
    annual_gross: Decimal
    before: TaxEstimateResponse
    after: TaxEstimateResponse
    difference: Decimal
    monthly_difference: Decimal


class MessageResponse(BaseModel):
    message: str
    success: bool = True


# ===========================================
# REPORT SCHEMAS
# ===========================================

class PayrollSummaryTotals(BaseModel):
    employee_count: int
    payslip_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_tax: Decimal
    total_net: Decimal
    total_pension_employee: Decimal
    total_pension_employer: Decimal
    total_employer_nhf: Decimal


class PayrollSummaryLine(BaseModel):
    employee_id: UUID
    employee_code: str
    employee_name: str
    payslip_number: str
    pay_date: date
    basic_salary: Decimal
    gross_pay: Decimal
    total_deductions: Decimal
    tax_amount: Decimal
    pension_employee: Decimal
    pension_employer: Decimal
    net_pay: Decimal


class PayrollSummaryResponse(BaseModel):
    """Issued payslips for a pay run or date range."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    pay_run_id: Optional[UUID] = None
    summary: PayrollSummaryTotals
    breakdown: List[PayrollSummaryLine] = []
    generated_at: datetime


class TaxRemittanceTotals(BaseModel):
    employee_count: int
    total_taxable_income: Decimal
    total_tax: Decimal


class TaxRemittanceLine(BaseModel):
    employee_id: UUID
    employee_code: str
    employee_name: str
    tin: Optional[str] = None
    pay_date: date
    tax_law_version: Optional[str] = None
    gross_pay: Decimal
    taxable_income: Decimal
    tax_amount: Decimal
    effective_rate: Decimal


class TaxRemittanceResponse(BaseModel):
    """PAYE withheld and due for remittance."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    pay_run_id: Optional[UUID] = None
    summary: TaxRemittanceTotals
    due_date: Optional[date] = None
    employees_without_tin: List[str] = []
    breakdown: List[TaxRemittanceLine] = []
    generated_at: datetime


class PensionRemittanceTotals(BaseModel):
    employee_count: int
    total_employee_contribution: Decimal
    total_employer_contribution: Decimal
    total_contribution: Decimal


class PensionRemittanceLine(BaseModel):
    employee_id: UUID
    employee_code: str
    employee_name: str
    pension_pin: Optional[str] = None
    pfa_name: Optional[str] = None
    pay_date: date
    gross_pay: Decimal
    employee_contribution: Decimal
    employer_contribution: Decimal
    total_contribution: Decimal


class PfaTotal(BaseModel):
    pfa_name: str
    employee_count: int
    total_contribution: Decimal


class PensionRemittanceResponse(BaseModel):
    """Employee and employer pension contributions due to PFAs."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    pay_run_id: Optional[UUID] = None
    summary: PensionRemittanceTotals
    due_date: Optional[date] = None
    by_pfa: List[PfaTotal] = []
    breakdown: List[PensionRemittanceLine] = []
    generated_at: datetime


class BankScheduleItem(BaseModel):
    """Single transfer in a bank schedule."""
    employee_id: UUID
    employee_code: str
    employee_name: str
    bank_name: str
    account_number: str
    account_name: str
    amount: Decimal
    narration: str


class BankTotal(BaseModel):
    bank_name: str
    count: int
    total: Decimal


class MissingBankDetails(BaseModel):
    employee_id: UUID
    employee_code: str
    employee_name: str
    net_pay: Decimal


class BankScheduleResponse(BaseModel):
    """Bank payment schedule for a completed pay run."""
    pay_run_id: UUID
    pay_run_reference: str
    pay_date: date
    total_employees: int
    total_amount: Decimal
    by_bank: List[BankTotal] = []
    items: List[BankScheduleItem] = []
    missing_bank_details: List[MissingBankDetails] = []
    generated_at: datetime


class JournalEntry(BaseModel):
    entry_date: date
    reference: str
    account: str
    description: str
    debit: Decimal
    credit: Decimal


class PayrollJournalResponse(BaseModel):
    """Journal lines for completed pay runs."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    pay_run_count: int
    entries: List[JournalEntry] = []
    total_debits: Decimal
    total_credits: Decimal
    balanced: bool
    generated_at: datetime


class MonthlyPayrollStatistics(BaseModel):
    month: str
    pay_runs: int
    employee_count: int
    total_gross: Decimal
    total_tax: Decimal
    total_net: Decimal
    total_employer_cost: Decimal


class PayRunStatisticsResponse(BaseModel):
    """Completed pay run totals for a year."""
    year: int
    total_pay_runs: int
    total_gross: Decimal
    total_tax: Decimal
    total_net: Decimal
    total_employer_cost: Decimal
    monthly_breakdown: List[MonthlyPayrollStatistics] = []
    generated_at: datetime
