"""
PayCore - Relief Calculator

Computes the reliefs of a tax law table against an employee's annual income.
A low-income exemption is evaluated first and, when it fires, supersedes
every other relief and the band computation.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, List, Optional, Tuple

from paycore.models.tax_law import ReliefBase, ReliefEligibility, ReliefKind
from paycore.services.tax_calculators.tax_law import Relief, TaxLawTable
from paycore.utils.money import ZERO, percent_of, round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReliefContext:
    """Annual income figures and personal circumstances used by reliefs."""
    annual_gross: Decimal
    annual_basic: Decimal = ZERO
    annual_pensionable: Decimal = ZERO
    annual_rent: Decimal = ZERO
    is_homeowner: bool = False
    pension_enrolled: bool = False
    housing_fund_enrolled: bool = False
    health_insurance_enrolled: bool = False
    rent_proof_valid: bool = False
    claimed_codes: FrozenSet[str] = field(default_factory=frozenset)
    proven_codes: FrozenSet[str] = field(default_factory=frozenset)
    
    def base_amount(self, base: ReliefBase) -> Decimal:
        if base == ReliefBase.BASIC:
            return self.annual_basic
        if base == ReliefBase.PENSIONABLE:
            return self.annual_pensionable
        if base == ReliefBase.ANNUAL_RENT:
            return self.annual_rent
        return self.annual_gross


@dataclass(frozen=True)
class ReliefResult:
    """Total relief and per-code amounts for breakdown storage."""
    total: Decimal
    applied: Tuple[Tuple[str, Decimal], ...] = ()
    exempt: bool = False
    skipped: Tuple[Tuple[str, str], ...] = ()
    
    def as_breakdown(self) -> List[dict]:
        return [{"code": code, "amount": str(amount)} for code, amount in self.applied]


class ReliefCalculator:
    """
    Relief calculator for one tax law table.
    
    Eligibility predicates gate whether a relief is evaluated at all; a
    relief whose proof is missing is skipped rather than failed.
    """
    
    def __init__(self, table: TaxLawTable):
        self.table = table
    
    def is_eligible(self, relief: Relief, context: ReliefContext) -> bool:
        eligibility = relief.eligibility
        if eligibility == ReliefEligibility.NON_HOMEOWNER:
            return not context.is_homeowner
        if eligibility == ReliefEligibility.PENSION_ENROLLED:
            return context.pension_enrolled
        if eligibility == ReliefEligibility.HOUSING_FUND_ENROLLED:
            return context.housing_fund_enrolled
        if eligibility == ReliefEligibility.HEALTH_INSURANCE_ENROLLED:
            return context.health_insurance_enrolled
        return True
    
    @staticmethod
    def has_proof(relief: Relief, context: ReliefContext) -> bool:
        if not relief.requires_proof:
            return True
        if relief.base == ReliefBase.ANNUAL_RENT:
            return context.rent_proof_valid
        return relief.code in context.proven_codes
    
    @staticmethod
    def relief_amount(relief: Relief, context: ReliefContext) -> Decimal:
        """Amount contributed by a single non-exemption relief."""
        base = context.base_amount(relief.base)
        
        if relief.kind == ReliefKind.FIXED:
            amount = relief.amount or ZERO
        elif relief.kind == ReliefKind.PERCENTAGE:
            amount = percent_of(relief.rate or ZERO, base)
        elif relief.kind == ReliefKind.CAPPED_PERCENTAGE:
            rated = percent_of(relief.rate or ZERO, base)
            if relief.floor_amount is not None or relief.floor_rate is not None:
                # Consolidated relief: higher of floor amount or floor rate, plus rate
                floor = max(relief.floor_amount or ZERO, percent_of(relief.floor_rate or ZERO, base))
                amount = floor + rated
            elif relief.cap is not None:
                amount = min(relief.cap, rated)
            else:
                amount = rated
        else:
            raise ValueError(f"Unsupported relief kind: {relief.kind}")
        
        return round_money(max(ZERO, amount))
    
    def exemption_applies(self, context: ReliefContext) -> Optional[Relief]:
        exemption = self.table.low_income_exemption
        if exemption is None or exemption.amount is None:
            return None
        if context.annual_gross <= exemption.amount:
            return exemption
        return None
    
    def calculate(self, context: ReliefContext) -> ReliefResult:
        """Evaluate every relief of the table for one employee."""
        exemption = self.exemption_applies(context)
        if exemption is not None:
            return ReliefResult(
                total=round_money(context.annual_gross),
                applied=((exemption.code, round_money(context.annual_gross)),),
                exempt=True,
            )
        
        applied: List[Tuple[str, Decimal]] = []
        skipped: List[Tuple[str, str]] = []
        total = ZERO
        
        for relief in self.table.reliefs:
            if relief.kind == ReliefKind.LOW_INCOME_EXEMPTION:
                continue
            if not relief.is_automatic and relief.code not in context.claimed_codes:
                continue
            if not self.is_eligible(relief, context):
                skipped.append((relief.code, "not eligible"))
                continue
            if not self.has_proof(relief, context):
                logger.warning(f"Relief {relief.code} skipped: proof not on file")
                skipped.append((relief.code, "proof missing"))
                continue
            
            amount = self.relief_amount(relief, context)
            if amount > 0:
                applied.append((relief.code, amount))
                total += amount
        
        return ReliefResult(total=total, applied=tuple(applied), skipped=tuple(skipped))
