"""
PayCore - Deduction Engine

Resolves an employee's statutory and assigned deductions against one
period's pay, in strict priority order:

1. sort active deductions by priority (ascending)
2. compute the raw amount from its calculation kind and base
3. clamp to the per-period cap, remaining lifetime target and remaining annual cap
4. pre-tax deductions reduce the running taxable base immediately (never below zero)
5. accumulate totals

The engine is pure; cumulative totals are posted when the pay run completes.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from paycore.models.payroll import (
    DeductionBase,
    DeductionCalculation,
    DeductionCategory,
    DeductionType,
    EmployeeDeduction,
)
from paycore.services.payroll_exceptions import MandatoryDeductionError, PayrollDataError
from paycore.utils.money import ZERO, percent_of, round_money

logger = logging.getLogger(__name__)


# Statutory deduction codes synthesised from employee enrolment
PENSION_CODE = "PENSION_EE"
NHF_CODE = "NHF"
NHIS_CODE = "NHIS"


@dataclass(frozen=True)
class DeductionRule:
    """One deduction to evaluate this period, with catalog flags resolved."""
    code: str
    name: str
    category: DeductionCategory
    calculation: DeductionCalculation
    base: DeductionBase
    priority: int
    is_pre_tax: bool = False
    is_mandatory: bool = False
    amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    per_period_cap: Optional[Decimal] = None
    remaining_target: Optional[Decimal] = None
    remaining_annual: Optional[Decimal] = None
    employee_deduction_id: Optional[str] = None
    
    @classmethod
    def from_type(cls, deduction_type: DeductionType) -> "DeductionRule":
        return cls(
            code=deduction_type.code,
            name=deduction_type.name,
            category=deduction_type.category,
            calculation=deduction_type.calculation,
            base=deduction_type.calculation_base,
            priority=deduction_type.priority,
            is_pre_tax=deduction_type.is_pre_tax,
            is_mandatory=deduction_type.is_mandatory,
            amount=deduction_type.default_amount,
            rate=deduction_type.default_rate,
            per_period_cap=deduction_type.max_amount_per_period,
        )
    
    @classmethod
    def from_assignment(
        cls,
        assignment: EmployeeDeduction,
        deducted_this_year: Decimal = ZERO,
    ) -> "DeductionRule":
        deduction_type = assignment.deduction_type
        remaining_annual = None
        if deduction_type.annual_cap is not None:
            remaining_annual = max(ZERO, deduction_type.annual_cap - deducted_this_year)
        return replace(
            cls.from_type(deduction_type),
            amount=assignment.amount if assignment.amount is not None else deduction_type.default_amount,
            rate=assignment.rate if assignment.rate is not None else deduction_type.default_rate,
            remaining_target=assignment.remaining_target,
            remaining_annual=remaining_annual,
            employee_deduction_id=str(assignment.id),
        )


@dataclass(frozen=True)
class DeductionBases:
    """Period income figures deductions are computed against."""
    gross: Decimal
    basic: Decimal
    pensionable: Decimal
    taxable: Decimal


@dataclass(frozen=True)
class AppliedDeduction:
    code: str
    name: str
    category: DeductionCategory
    amount: Decimal
    is_pre_tax: bool
    priority: int
    employee_deduction_id: Optional[str] = None
    target_reached: bool = False
    
    def as_breakdown(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "name": self.name,
            "category": self.category.value,
            "amount": str(self.amount),
            "is_pre_tax": self.is_pre_tax,
            "priority": self.priority,
            "employee_deduction_id": self.employee_deduction_id,
            "target_reached": self.target_reached,
        }


@dataclass(frozen=True)
class DeductionResult:
    applied: Tuple[AppliedDeduction, ...]
    total_pre_tax: Decimal
    total_post_tax: Decimal
    taxable_base: Decimal
    skipped: Tuple[str, ...] = field(default_factory=tuple)
    
    @property
    def total(self) -> Decimal:
        return self.total_pre_tax + self.total_post_tax
    
    def amount_for(self, code: str) -> Decimal:
        return sum((d.amount for d in self.applied if d.code == code), ZERO)
    
    def cut_post_tax(self, shortfall: Decimal) -> Tuple["DeductionResult", Decimal]:
        """
        Reduce post-tax deductions, lowest priority first, by at most
        ``shortfall``. Pre-tax deductions are left untouched.
        
        Returns the reduced result and the shortfall still uncovered.
        """
        if shortfall <= 0:
            return self, ZERO
        
        kept: List[AppliedDeduction] = []
        for deduction in reversed(self.applied):
            if deduction.is_pre_tax or shortfall <= 0:
                kept.append(deduction)
                continue
            cut = min(shortfall, deduction.amount)
            shortfall -= cut
            if deduction.amount > cut:
                kept.append(replace(deduction, amount=deduction.amount - cut, target_reached=False))
            if cut > 0:
                logger.warning(f"Deduction {deduction.code} reduced by {cut} to fit gross pay")
        kept.reverse()
        
        reduced = DeductionResult(
            applied=tuple(kept),
            total_pre_tax=self.total_pre_tax,
            total_post_tax=sum((d.amount for d in kept if not d.is_pre_tax), ZERO),
            taxable_base=self.taxable_base,
            skipped=self.skipped,
        )
        return reduced, shortfall


class DeductionEngine:
    """Priority-ordered deduction resolution for one employee and period."""
    
    @staticmethod
    def statutory_rules(
        catalog: Mapping[str, DeductionRule],
        pension_enabled: bool = False,
        pension_rate: Optional[Decimal] = None,
        nhf_enabled: bool = False,
        nhf_rate: Optional[Decimal] = None,
        nhis_enabled: bool = False,
        nhis_rate: Optional[Decimal] = None,
    ) -> List[DeductionRule]:
        """
        Build statutory contribution rules from employee enrolment, using the
        tenant catalog for flags and priority. Enrolment rate overrides win
        over the catalog default.
        """
        rules = []
        for code, enabled, rate in (
            (PENSION_CODE, pension_enabled, pension_rate),
            (NHF_CODE, nhf_enabled, nhf_rate),
            (NHIS_CODE, nhis_enabled, nhis_rate),
        ):
            if not enabled:
                continue
            template = catalog.get(code)
            if template is None:
                raise MandatoryDeductionError(code, "deduction type is not configured for this tenant")
            rules.append(replace(template, rate=rate if rate is not None else template.rate))
        return rules
    
    def resolve_amount(self, rule: DeductionRule, bases: DeductionBases, taxable_base: Decimal) -> Optional[Decimal]:
        """Raw amount before caps; None when the rule cannot be resolved."""
        if rule.calculation == DeductionCalculation.FIXED:
            raw = rule.amount
        elif rule.calculation == DeductionCalculation.PERCENTAGE:
            if rule.rate is None:
                return None
            if rule.base == DeductionBase.BASIC:
                base_value = bases.basic
            elif rule.base == DeductionBase.PENSIONABLE:
                base_value = bases.pensionable
            elif rule.base == DeductionBase.TAXABLE:
                base_value = taxable_base
            else:
                base_value = bases.gross
            raw = percent_of(rule.rate, base_value)
        else:
            raise ValueError(f"Unsupported deduction calculation: {rule.calculation}")
        
        if raw is None:
            return None
        if raw < 0:
            raise PayrollDataError(
                f"Deduction {rule.code} resolves to a negative amount",
                field="amount",
                details={"code": rule.code, "amount": str(raw)},
            )
        return round_money(raw)
    
    @staticmethod
    def clamp(rule: DeductionRule, amount: Decimal) -> Decimal:
        for limit in (rule.per_period_cap, rule.remaining_target, rule.remaining_annual):
            if limit is not None:
                amount = min(amount, limit)
        return max(ZERO, amount)
    
    def apply(self, rules: Iterable[DeductionRule], bases: DeductionBases) -> DeductionResult:
        """Apply rules in priority order against one period's bases."""
        ordered = sorted(rules, key=lambda r: (r.priority, r.code))
        
        taxable_base = max(ZERO, bases.taxable)
        total_pre_tax = ZERO
        total_post_tax = ZERO
        applied: List[AppliedDeduction] = []
        skipped: List[str] = []
        
        for rule in ordered:
            raw = self.resolve_amount(rule, bases, taxable_base)
            if raw is None:
                if rule.is_mandatory:
                    raise MandatoryDeductionError(rule.code, "no amount or rate configured")
                logger.warning(f"Deduction {rule.code} skipped: no amount or rate configured")
                skipped.append(rule.code)
                continue
            
            amount = self.clamp(rule, raw)
            if amount == 0 and not rule.is_mandatory:
                continue
            
            if rule.is_pre_tax:
                taxable_base = max(ZERO, taxable_base - amount)
                total_pre_tax += amount
            else:
                total_post_tax += amount
            
            applied.append(AppliedDeduction(
                code=rule.code,
                name=rule.name,
                category=rule.category,
                amount=amount,
                is_pre_tax=rule.is_pre_tax,
                priority=rule.priority,
                employee_deduction_id=rule.employee_deduction_id,
                target_reached=rule.remaining_target is not None and amount >= rule.remaining_target,
            ))
        
        return DeductionResult(
            applied=tuple(applied),
            total_pre_tax=total_pre_tax,
            total_post_tax=total_post_tax,
            taxable_base=taxable_base,
            skipped=tuple(skipped),
        )


def is_assignment_active(assignment: EmployeeDeduction, on_date: date) -> bool:
    """Active, effective on the date and with target not yet reached."""
    if not assignment.is_active:
        return False
    if assignment.effective_from > on_date:
        return False
    if assignment.effective_to is not None and assignment.effective_to < on_date:
        return False
    remaining = assignment.remaining_target
    return remaining is None or remaining > 0
