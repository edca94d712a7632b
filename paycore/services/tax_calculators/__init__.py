"""
PayCore - Tax Calculators Package

Pure tax computation over versioned tax law tables.

Modules:
- tax_law: immutable TaxLawTable/TaxBand/Relief values and date-based selection
- relief_calculator: relief evaluation (fixed, percentage, capped, low-income exemption)
- progressive_tax: cumulative band lookup and annual assessment
"""

from paycore.services.tax_calculators.tax_law import (
    Relief,
    TaxBand,
    TaxLawTable,
    build_bands,
    select_tax_law_table,
    validate_bands,
)
from paycore.services.tax_calculators.relief_calculator import (
    ReliefCalculator,
    ReliefContext,
    ReliefResult,
)
from paycore.services.tax_calculators.progressive_tax import (
    AnnualTaxAssessment,
    ProgressiveTaxCalculator,
    TaxResult,
    assess_annual_tax,
)

__all__ = [
    "Relief",
    "TaxBand",
    "TaxLawTable",
    "build_bands",
    "select_tax_law_table",
    "validate_bands",
    "ReliefCalculator",
    "ReliefContext",
    "ReliefResult",
    "AnnualTaxAssessment",
    "ProgressiveTaxCalculator",
    "TaxResult",
    "assess_annual_tax",
]
