"""
PayCore - Payslip Composer

Combines one employee's earnings, deductions, PAYE, employer contributions
and wage-advance installment into a single period result.

Composition is pure: it works on frozen snapshots taken from the database
before the pay run fans out, and never touches the session. Tax is computed
on annualised figures:

    annual taxable = (taxable earnings - pre-tax deductions) x periods - reliefs
    period tax     = annual tax / periods

with reliefs evaluated against annual gross income.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from paycore.models.payroll import (
    EarningCalculation,
    EarningCategory,
    Employee,
    EmployeeEarning,
    PayFrequency,
    PayPeriodInput,
    PayType,
    TaxHandling,
)
from paycore.services.deduction_engine import (
    PENSION_CODE,
    DeductionBases,
    DeductionEngine,
    DeductionResult,
    DeductionRule,
)
from paycore.services.payroll_exceptions import PayrollDataError
from paycore.services.tax_calculators import (
    ReliefContext,
    TaxLawTable,
    assess_annual_tax,
    select_tax_law_table,
)
from paycore.services.wage_advance_ledger import AdvanceInstallment, AdvanceSnapshot, WageAdvanceLedger
from paycore.utils.money import ZERO, percent_of, round_money

logger = logging.getLogger(__name__)


BASIC_CODE = "BASIC"
COMMISSION_CODE = "COMMISSION"


# ===========================================
# SNAPSHOTS
# ===========================================

@dataclass(frozen=True)
class EmployeePayProfile:
    """Employee pay configuration as of the start of a pay run."""
    employee_id: uuid.UUID
    employee_code: str
    full_name: str
    jurisdiction_code: str
    pay_type: PayType
    pay_amount: Decimal
    pay_frequency: PayFrequency
    standard_hours_per_week: Decimal = Decimal("40")
    overtime_multiplier: Decimal = Decimal("1.5")
    weekend_multiplier: Decimal = Decimal("1.5")
    holiday_multiplier: Decimal = Decimal("2.0")
    commission_rate: Optional[Decimal] = None
    commission_cap: Optional[Decimal] = None
    pension_enabled: bool = False
    pension_employee_rate: Optional[Decimal] = None
    pension_employer_rate: Optional[Decimal] = None
    nhf_enabled: bool = False
    nhf_rate: Optional[Decimal] = None
    nhis_enabled: bool = False
    nhis_rate: Optional[Decimal] = None
    tax_handling: TaxHandling = TaxHandling.EMPLOYER_WITHHOLDS
    is_tax_exempt: bool = False
    exemption_reason: Optional[str] = None
    exemption_expires_at: Optional[date] = None
    is_homeowner: bool = False
    annual_rent_paid: Decimal = ZERO
    rent_proof_reference: Optional[str] = None
    rent_proof_expiry: Optional[date] = None
    claimed_reliefs: FrozenSet[str] = field(default_factory=frozenset)
    relief_proofs: FrozenSet[str] = field(default_factory=frozenset)
    
    @classmethod
    def from_model(cls, employee: Employee, default_jurisdiction: str) -> "EmployeePayProfile":
        return cls(
            employee_id=employee.id,
            employee_code=employee.employee_code,
            full_name=employee.full_name,
            jurisdiction_code=employee.jurisdiction_code or default_jurisdiction,
            pay_type=employee.pay_type,
            pay_amount=employee.pay_amount,
            pay_frequency=employee.pay_frequency,
            standard_hours_per_week=employee.standard_hours_per_week,
            overtime_multiplier=employee.overtime_multiplier,
            weekend_multiplier=employee.weekend_multiplier,
            holiday_multiplier=employee.holiday_multiplier,
            commission_rate=employee.commission_rate,
            commission_cap=employee.commission_cap,
            pension_enabled=employee.pension_enabled,
            pension_employee_rate=employee.pension_employee_rate,
            pension_employer_rate=employee.pension_employer_rate,
            nhf_enabled=employee.nhf_enabled,
            nhf_rate=employee.nhf_rate,
            nhis_enabled=employee.nhis_enabled,
            nhis_rate=employee.nhis_rate,
            tax_handling=employee.tax_handling,
            is_tax_exempt=employee.is_tax_exempt,
            exemption_reason=employee.exemption_reason,
            exemption_expires_at=employee.exemption_expires_at,
            is_homeowner=employee.is_homeowner,
            annual_rent_paid=employee.annual_rent_paid or ZERO,
            rent_proof_reference=employee.rent_proof_reference,
            rent_proof_expiry=employee.rent_proof_expiry,
            claimed_reliefs=frozenset(employee.claimed_reliefs or ()),
            relief_proofs=frozenset(employee.relief_proofs or ()),
        )
    
    def is_exempt_on(self, on_date: date) -> bool:
        if not self.is_tax_exempt:
            return False
        return self.exemption_expires_at is None or on_date <= self.exemption_expires_at
    
    def rent_proof_valid_on(self, on_date: date) -> bool:
        if not self.rent_proof_reference:
            return False
        return self.rent_proof_expiry is None or on_date <= self.rent_proof_expiry


@dataclass(frozen=True)
class EarningLine:
    """An assigned earning with catalog flags resolved."""
    code: str
    name: str
    category: EarningCategory
    calculation: EarningCalculation
    amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    is_taxable: bool = True
    is_pensionable: bool = False
    is_recurring: bool = True
    employee_earning_id: Optional[str] = None
    
    @classmethod
    def from_model(cls, earning: EmployeeEarning) -> "EarningLine":
        earning_type = earning.earning_type
        return cls(
            code=earning_type.code,
            name=earning_type.name,
            category=earning_type.category,
            calculation=earning_type.calculation,
            amount=earning.amount if earning.amount is not None else earning_type.default_amount,
            rate=earning.rate if earning.rate is not None else earning_type.default_rate,
            is_taxable=earning_type.is_taxable,
            is_pensionable=earning_type.is_pensionable,
            is_recurring=earning_type.is_recurring,
            employee_earning_id=str(earning.id),
        )


@dataclass(frozen=True)
class PeriodInput:
    """Approved hours and sales for the period."""
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    weekend_hours: Decimal = ZERO
    holiday_hours: Decimal = ZERO
    sales_amount: Decimal = ZERO
    
    @classmethod
    def from_model(cls, period_input: PayPeriodInput) -> "PeriodInput":
        return cls(
            regular_hours=period_input.regular_hours,
            overtime_hours=period_input.overtime_hours,
            weekend_hours=period_input.weekend_hours,
            holiday_hours=period_input.holiday_hours,
            sales_amount=period_input.sales_amount,
        )


@dataclass(frozen=True)
class EmployeePayContext:
    """Everything needed to compute one employee's pay for one run."""
    profile: EmployeePayProfile
    frequency: PayFrequency
    period_start: date
    period_end: date
    pay_date: date
    tax_tables: Tuple[TaxLawTable, ...] = ()
    earnings: Tuple[EarningLine, ...] = ()
    period_input: Optional[PeriodInput] = None
    deduction_rules: Tuple[DeductionRule, ...] = ()
    deduction_catalog: Mapping[str, DeductionRule] = field(default_factory=dict)
    advances: Tuple[AdvanceSnapshot, ...] = ()
    pension_employer_rate_default: Decimal = Decimal("10")
    nhf_employer_rate_default: Decimal = Decimal("2.5")


# ===========================================
# RESULT
# ===========================================

@dataclass(frozen=True)
class ComputedEarning:
    code: str
    name: str
    category: EarningCategory
    amount: Decimal
    is_taxable: bool = True
    is_pensionable: bool = False
    is_recurring: bool = True
    employee_earning_id: Optional[str] = None
    
    def as_breakdown(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "category": self.category.value,
            "amount": str(self.amount),
            "is_taxable": self.is_taxable,
            "is_pensionable": self.is_pensionable,
            "is_recurring": self.is_recurring,
            "employee_earning_id": self.employee_earning_id,
        }


@dataclass(frozen=True)
class ComposedPay:
    """One employee's computed pay for a period."""
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
    tax_law_version: Optional[str]
    earnings: Tuple[ComputedEarning, ...]
    deductions: DeductionResult
    advance_installments: Tuple[AdvanceInstallment, ...]
    tax_breakdown: Dict[str, Any]
    warnings: Tuple[str, ...] = ()
    
    @property
    def employer_contributions(self) -> Decimal:
        return self.employer_pension + self.employer_nhf
    
    @property
    def total_employer_cost(self) -> Decimal:
        return self.gross_earnings + self.employer_contributions
    
    @property
    def pension_employee(self) -> Decimal:
        return self.deductions.amount_for(PENSION_CODE)
    
    def earnings_breakdown(self) -> List[Dict[str, Any]]:
        return [earning.as_breakdown() for earning in self.earnings]
    
    def deductions_breakdown(self) -> List[Dict[str, Any]]:
        return [deduction.as_breakdown() for deduction in self.deductions.applied]
    
    def advance_breakdown(self) -> List[Dict[str, Any]]:
        return [installment.as_breakdown() for installment in self.advance_installments]


# ===========================================
# COMPOSER
# ===========================================

class PayslipComposer:
    """Pure per-employee pay computation."""
    
    def __init__(self, deduction_engine: Optional[DeductionEngine] = None):
        self.deduction_engine = deduction_engine or DeductionEngine()
    
    # Earnings
    
    @staticmethod
    def convert_to_run_frequency(amount: Decimal, employee_frequency: PayFrequency, run_frequency: PayFrequency) -> Decimal:
        """Scale a per-period amount between pay frequencies via periods per year."""
        if employee_frequency == run_frequency:
            return round_money(amount)
        annual = amount * employee_frequency.periods_per_year
        return round_money(annual / run_frequency.periods_per_year)
    
    def basic_pay(self, context: EmployeePayContext) -> Tuple[Decimal, List[ComputedEarning]]:
        """Basic salary plus any hours- or sales-driven lines of the pay type."""
        profile = context.profile
        if profile.pay_amount is None or profile.pay_amount < 0:
            raise PayrollDataError("Employee pay amount is missing or negative", field="pay_amount")
        if profile.pay_type in (PayType.SALARY, PayType.HOURLY) and profile.pay_amount == 0:
            raise PayrollDataError(
                f"Employee {profile.employee_code} has no pay amount configured",
                field="pay_amount",
            )
        
        extra: List[ComputedEarning] = []
        
        if profile.pay_type == PayType.HOURLY:
            hours = context.period_input
            if hours is None:
                raise PayrollDataError(
                    f"Hourly employee {profile.employee_code} has no approved hours for the period",
                    field="period_input",
                )
            rate = profile.pay_amount
            basic = round_money(rate * hours.regular_hours)
            for code, name, hours_worked, multiplier in (
                ("OVERTIME", "Overtime", hours.overtime_hours, profile.overtime_multiplier),
                ("WEEKEND_OVERTIME", "Weekend Overtime", hours.weekend_hours, profile.weekend_multiplier),
                ("HOLIDAY_OVERTIME", "Holiday Overtime", hours.holiday_hours, profile.holiday_multiplier),
            ):
                if hours_worked <= 0:
                    continue
                extra.append(ComputedEarning(
                    code=code,
                    name=name,
                    category=EarningCategory.OVERTIME,
                    amount=round_money(hours_worked * rate * multiplier),
                    is_taxable=True,
                    is_pensionable=False,
                    is_recurring=False,
                ))
            return basic, extra
        
        basic = self.convert_to_run_frequency(profile.pay_amount, profile.pay_frequency, context.frequency)
        
        if profile.pay_type == PayType.COMMISSION and profile.commission_rate and context.period_input:
            commission = percent_of(profile.commission_rate, context.period_input.sales_amount)
            if profile.commission_cap is not None:
                commission = min(commission, profile.commission_cap)
            commission = round_money(commission)
            if commission > 0:
                extra.append(ComputedEarning(
                    code=COMMISSION_CODE,
                    name="Sales Commission",
                    category=EarningCategory.COMMISSION,
                    amount=commission,
                    is_taxable=True,
                    is_pensionable=True,
                    is_recurring=False,
                ))
        
        return basic, extra
    
    @staticmethod
    def earning_amount(line: EarningLine, basic: Decimal, period_input: Optional[PeriodInput]) -> Decimal:
        if line.calculation == EarningCalculation.FIXED:
            amount = line.amount or ZERO
        elif line.calculation == EarningCalculation.PERCENTAGE:
            amount = percent_of(line.rate or ZERO, basic)
        elif line.calculation == EarningCalculation.HOURLY:
            if period_input is None:
                raise PayrollDataError(
                    f"Earning {line.code} is hourly but no hours were supplied",
                    field="period_input",
                )
            amount = (line.rate or ZERO) * period_input.regular_hours
        else:
            raise ValueError(f"Unsupported earning calculation: {line.calculation}")
        
        if amount < 0:
            raise PayrollDataError(
                f"Earning {line.code} resolves to a negative amount",
                field="amount",
                details={"code": line.code, "amount": str(amount)},
            )
        return round_money(amount)
    
    def compute_earnings(self, context: EmployeePayContext) -> Tuple[Decimal, List[ComputedEarning]]:
        basic, extra = self.basic_pay(context)
        earnings = [
            ComputedEarning(
                code=BASIC_CODE,
                name="Basic Salary",
                category=EarningCategory.BASE,
                amount=basic,
                is_taxable=True,
                is_pensionable=True,
            )
        ]
        earnings.extend(extra)
        
        for line in context.earnings:
            amount = self.earning_amount(line, basic, context.period_input)
            if amount == 0:
                continue
            earnings.append(ComputedEarning(
                code=line.code,
                name=line.name,
                category=line.category,
                amount=amount,
                is_taxable=line.is_taxable,
                is_pensionable=line.is_pensionable,
                is_recurring=line.is_recurring,
                employee_earning_id=line.employee_earning_id,
            ))
        return basic, earnings
    
    # Tax
    
    def compute_tax(
        self,
        context: EmployeePayContext,
        gross: Decimal,
        basic: Decimal,
        pensionable: Decimal,
        taxable_earnings: Decimal,
        deductions: DeductionResult,
    ) -> Tuple[Decimal, Decimal, Optional[str], Dict[str, Any]]:
        """Return (period tax, period taxable income, tax law version, breakdown)."""
        profile = context.profile
        periods = context.frequency.periods_per_year
        period_taxable = max(ZERO, taxable_earnings - deductions.total_pre_tax)
        
        if profile.tax_handling == TaxHandling.EMPLOYEE_SELF_ASSESSES:
            return ZERO, round_money(period_taxable), None, {
                "tax_handling": profile.tax_handling.value,
                "withheld": False,
            }
        
        if profile.is_exempt_on(context.pay_date):
            return ZERO, round_money(period_taxable), None, {
                "exempt": True,
                "exemption_reason": profile.exemption_reason,
                "exemption_expires_at": profile.exemption_expires_at.isoformat() if profile.exemption_expires_at else None,
            }
        
        table = select_tax_law_table(context.tax_tables, profile.jurisdiction_code, context.pay_date)
        relief_context = ReliefContext(
            annual_gross=gross * periods,
            annual_basic=basic * periods,
            annual_pensionable=pensionable * periods,
            annual_rent=profile.annual_rent_paid,
            is_homeowner=profile.is_homeowner,
            pension_enrolled=profile.pension_enabled,
            housing_fund_enrolled=profile.nhf_enabled,
            health_insurance_enrolled=profile.nhis_enabled,
            rent_proof_valid=profile.rent_proof_valid_on(context.pay_date),
            claimed_codes=profile.claimed_reliefs,
            proven_codes=profile.relief_proofs,
        )
        assessment = assess_annual_tax(
            table,
            relief_context,
            annual_pre_tax_deductions=deductions.total_pre_tax * periods,
            annual_taxable_earnings=taxable_earnings * periods,
        )
        tax = round_money(assessment.annual_tax / periods)
        breakdown = assessment.as_breakdown()
        breakdown["periods_per_year"] = periods
        breakdown["period_tax"] = str(tax)
        return tax, round_money(assessment.taxable_income / periods), table.version.value, breakdown
    
    # Composition
    
    def employer_contributions(self, context: EmployeePayContext, basic: Decimal, pensionable: Decimal) -> Tuple[Decimal, Decimal]:
        profile = context.profile
        pension = ZERO
        if profile.pension_enabled:
            rate = profile.pension_employer_rate
            if rate is None:
                rate = context.pension_employer_rate_default
            pension = round_money(percent_of(rate, pensionable))
        nhf = ZERO
        if profile.nhf_enabled:
            nhf = round_money(percent_of(context.nhf_employer_rate_default, basic))
        return pension, nhf
    
    def compose(self, context: EmployeePayContext) -> ComposedPay:
        """Compute one employee's pay; raises payroll errors for this employee only."""
        profile = context.profile
        warnings: List[str] = []
        
        basic, earnings = self.compute_earnings(context)
        gross = sum((e.amount for e in earnings), ZERO)
        pensionable = sum((e.amount for e in earnings if e.is_pensionable), ZERO)
        taxable_earnings = sum((e.amount for e in earnings if e.is_taxable), ZERO)
        
        rules = DeductionEngine.statutory_rules(
            context.deduction_catalog,
            pension_enabled=profile.pension_enabled,
            pension_rate=profile.pension_employee_rate,
            nhf_enabled=profile.nhf_enabled,
            nhf_rate=profile.nhf_rate,
            nhis_enabled=profile.nhis_enabled,
            nhis_rate=profile.nhis_rate,
        )
        rules.extend(context.deduction_rules)
        deductions = self.deduction_engine.apply(
            rules,
            DeductionBases(gross=gross, basic=basic, pensionable=pensionable, taxable=taxable_earnings),
        )
        
        tax, taxable_income, version, tax_breakdown = self.compute_tax(
            context, gross, basic, pensionable, taxable_earnings, deductions,
        )
        
        installments = []
        for snapshot in context.advances:
            installment = WageAdvanceLedger.next_installment(snapshot)
            if installment is not None:
                installments.append(installment)
        advance_total = sum((i.amount for i in installments), ZERO)
        
        excess = deductions.total_pre_tax + tax + deductions.total_post_tax + advance_total - gross
        if excess > 0:
            installments, shortfall = WageAdvanceLedger.cut_installments(installments, excess)
            deductions, shortfall = deductions.cut_post_tax(shortfall)
            if shortfall > 0:
                raise PayrollDataError(
                    f"Mandatory deductions and tax exceed gross pay for employee {profile.employee_code}",
                    field="gross_earnings",
                    details={"gross": str(gross), "shortfall": str(shortfall)},
                )
            advance_total = sum((i.amount for i in installments), ZERO)
            warnings.append(f"Deductions exceeded gross pay by {excess}; advance and post-tax deductions reduced")
            logger.warning(f"Reduced withholding for employee {profile.employee_code} by {excess} to keep net pay at zero")
        
        total_deductions = deductions.total_pre_tax + tax + deductions.total_post_tax + advance_total
        net = gross - total_deductions
        
        employer_pension, employer_nhf = self.employer_contributions(context, basic, pensionable)
        
        return ComposedPay(
            basic_salary=basic,
            gross_earnings=gross,
            pensionable_earnings=pensionable,
            pre_tax_deductions=deductions.total_pre_tax,
            taxable_income=taxable_income,
            tax_amount=tax,
            post_tax_deductions=deductions.total_post_tax,
            advance_repayment=advance_total,
            total_deductions=total_deductions,
            net_pay=round_money(net),
            employer_pension=employer_pension,
            employer_nhf=employer_nhf,
            tax_law_version=version,
            earnings=tuple(earnings),
            deductions=deductions,
            advance_installments=tuple(installments),
            tax_breakdown=tax_breakdown,
            warnings=tuple(warnings),
        )
