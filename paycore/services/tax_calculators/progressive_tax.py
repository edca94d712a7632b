"""
PayCore - Progressive Tax Calculator

Applies relief-adjusted taxable income to a band table using the
cumulative-tax-at-lower-bound lookup:

    tax = band.cumulative_tax + (income - band.lower) * band.rate / 100

for the highest band whose lower bound does not exceed the income.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from paycore.services.tax_calculators.relief_calculator import (
    ReliefCalculator,
    ReliefContext,
    ReliefResult,
)
from paycore.services.tax_calculators.tax_law import TaxBand, TaxLawTable
from paycore.utils.money import ZERO, percent_of, round_money


@dataclass(frozen=True)
class TaxResult:
    """Tax due on a taxable income and the bands it touched."""
    taxable_income: Decimal
    tax: Decimal
    band: Optional[TaxBand] = None
    band_breakdown: List[Dict[str, Any]] = field(default_factory=list)


class ProgressiveTaxCalculator:
    """Band lookup calculator for one tax law table."""
    
    def __init__(self, table: TaxLawTable):
        self.table = table
        self.bands = tuple(sorted(table.bands, key=lambda b: b.ordinal))
    
    def locate_band(self, taxable_income: Decimal) -> TaxBand:
        located = self.bands[0]
        for band in self.bands:
            if band.lower <= taxable_income:
                located = band
            else:
                break
        return located
    
    def band_breakdown(self, taxable_income: Decimal) -> List[Dict[str, Any]]:
        """Per-band slices of the income, for display and export."""
        breakdown = []
        for band in self.bands:
            if taxable_income <= band.lower:
                break
            top = taxable_income if band.upper is None else min(taxable_income, band.upper)
            in_band = top - band.lower
            breakdown.append({
                "ordinal": band.ordinal,
                "lower": str(band.lower),
                "upper": str(band.upper) if band.upper is not None else None,
                "rate": str(band.rate),
                "taxable_in_band": str(round_money(in_band)),
                "tax": str(round_money(percent_of(band.rate, in_band))),
            })
        return breakdown
    
    def calculate(self, taxable_income: Decimal) -> TaxResult:
        """Tax on an annual taxable income; zero or negative income owes nothing."""
        if taxable_income <= 0:
            return TaxResult(taxable_income=ZERO, tax=ZERO)
        
        band = self.locate_band(taxable_income)
        tax = band.cumulative_tax + percent_of(band.rate, taxable_income - band.lower)
        
        return TaxResult(
            taxable_income=taxable_income,
            tax=round_money(tax),
            band=band,
            band_breakdown=self.band_breakdown(taxable_income),
        )


# ===========================================
# ANNUAL ASSESSMENT
# ===========================================

@dataclass(frozen=True)
class AnnualTaxAssessment:
    """Reliefs, taxable income and tax for one year of income."""
    version: str
    annual_gross: Decimal
    annual_pre_tax_deductions: Decimal
    reliefs: ReliefResult
    taxable_income: Decimal
    annual_tax: Decimal
    band_breakdown: List[Dict[str, Any]]
    
    @property
    def is_exempt(self) -> bool:
        return self.reliefs.exempt
    
    def as_breakdown(self) -> Dict[str, Any]:
        return {
            "tax_law_version": self.version,
            "annual_gross": str(self.annual_gross),
            "annual_pre_tax_deductions": str(self.annual_pre_tax_deductions),
            "reliefs": self.reliefs.as_breakdown(),
            "total_reliefs": str(self.reliefs.total),
            "annual_taxable_income": str(self.taxable_income),
            "annual_tax": str(self.annual_tax),
            "bands": self.band_breakdown,
            "low_income_exempt": self.reliefs.exempt,
        }


def assess_annual_tax(
    table: TaxLawTable,
    context: ReliefContext,
    annual_pre_tax_deductions: Decimal = ZERO,
    annual_taxable_earnings: Optional[Decimal] = None,
) -> AnnualTaxAssessment:
    """
    Taxable income = taxable earnings - pre-tax deductions - reliefs, floored
    at zero, then applied to the band table. Taxable earnings default to the
    annual gross; reliefs are always computed on the gross.
    """
    reliefs = ReliefCalculator(table).calculate(context)
    
    if reliefs.exempt:
        return AnnualTaxAssessment(
            version=table.version.value,
            annual_gross=context.annual_gross,
            annual_pre_tax_deductions=annual_pre_tax_deductions,
            reliefs=reliefs,
            taxable_income=ZERO,
            annual_tax=ZERO,
            band_breakdown=[],
        )
    
    earnings = context.annual_gross if annual_taxable_earnings is None else annual_taxable_earnings
    taxable = max(ZERO, earnings - annual_pre_tax_deductions - reliefs.total)
    result = ProgressiveTaxCalculator(table).calculate(taxable)
    
    return AnnualTaxAssessment(
        version=table.version.value,
        annual_gross=context.annual_gross,
        annual_pre_tax_deductions=annual_pre_tax_deductions,
        reliefs=reliefs,
        taxable_income=round_money(taxable),
        annual_tax=result.tax,
        band_breakdown=result.band_breakdown,
    )
