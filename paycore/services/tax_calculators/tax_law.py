"""
PayCore - Tax Law Tables

Immutable value objects for a versioned progressive tax table and the
date-based selection of the single table in force for a jurisdiction.

A table is loaded once per computation and passed explicitly into every
calculation; nothing here keeps global state.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from paycore.models.tax_law import ReliefBase, ReliefEligibility, ReliefKind, TaxLawVersion
from paycore.services.payroll_exceptions import (
    AmbiguousTaxLawError,
    NoApplicableTaxLawError,
    PayrollInvariantError,
)
from paycore.utils.money import ZERO, percent_of, round_money


@dataclass(frozen=True)
class TaxBand:
    """
    Tax band definition.
    
    lower is inclusive, upper exclusive (None for the top band).
    cumulative_tax is the tax owed on all income below lower.
    """
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal
    ordinal: int = 0
    cumulative_tax: Decimal = ZERO
    
    def full_band_tax(self) -> Decimal:
        """Tax owed on the whole width of a bounded band."""
        if self.upper is None:
            raise ValueError("Top band has no width")
        return percent_of(self.rate, self.upper - self.lower)
    
    def contains(self, income: Decimal) -> bool:
        return income >= self.lower and (self.upper is None or income < self.upper)


@dataclass(frozen=True)
class Relief:
    """
    A relief as a closed, tagged set of calculation kinds.
    
    - FIXED: `amount`
    - PERCENTAGE: `rate`% of `base`
    - CAPPED_PERCENTAGE: min(`cap`, `rate`% of base), or when a floor is set
      max(`floor_amount`, `floor_rate`% of base) + `rate`% of base
    - LOW_INCOME_EXEMPTION: annual gross <= `amount` means no tax at all
    """
    code: str
    name: str
    kind: ReliefKind
    base: ReliefBase = ReliefBase.GROSS
    rate: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    cap: Optional[Decimal] = None
    floor_amount: Optional[Decimal] = None
    floor_rate: Optional[Decimal] = None
    is_automatic: bool = True
    requires_proof: bool = False
    eligibility: ReliefEligibility = ReliefEligibility.ALWAYS


@dataclass(frozen=True)
class TaxLawTable:
    """One jurisdiction's tax law for a half-open effective date range."""
    jurisdiction_code: str
    version: TaxLawVersion
    name: str
    effective_from: date
    effective_to: Optional[date]
    bands: Tuple[TaxBand, ...]
    reliefs: Tuple[Relief, ...] = field(default_factory=tuple)
    
    def __post_init__(self):
        validate_bands(self.bands)
    
    def covers(self, on_date: date) -> bool:
        if on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date < self.effective_to
    
    def overlaps(self, other: "TaxLawTable") -> bool:
        if self.jurisdiction_code != other.jurisdiction_code:
            return False
        starts_before_other_ends = other.effective_to is None or self.effective_from < other.effective_to
        other_starts_before_self_ends = self.effective_to is None or other.effective_from < self.effective_to
        return starts_before_other_ends and other_starts_before_self_ends
    
    @property
    def low_income_exemption(self) -> Optional[Relief]:
        for relief in self.reliefs:
            if relief.kind == ReliefKind.LOW_INCOME_EXEMPTION:
                return relief
        return None


# ===========================================
# BAND AUTHORING AND VALIDATION
# ===========================================

def build_bands(rows: Iterable[Tuple[Decimal, Optional[Decimal], Decimal]]) -> Tuple[TaxBand, ...]:
    """
    Build an ordered band tuple from (lower, upper, rate) rows, precomputing
    each band's cumulative tax at its lower bound.
    """
    bands: List[TaxBand] = []
    cumulative = ZERO
    for ordinal, (lower, upper, rate) in enumerate(rows, start=1):
        band = TaxBand(
            lower=Decimal(lower),
            upper=Decimal(upper) if upper is not None else None,
            rate=Decimal(rate),
            ordinal=ordinal,
            cumulative_tax=round_money(cumulative),
        )
        bands.append(band)
        if band.upper is not None:
            cumulative += band.full_band_tax()
    validate_bands(bands)
    return tuple(bands)


def validate_bands(bands: Sequence[TaxBand]) -> None:
    """
    Check bands are non-empty, start at zero, are contiguous and ordered,
    only the last is unbounded, and cumulative values are consistent.
    """
    if not bands:
        raise PayrollInvariantError("Tax table has no bands")
    
    ordered = sorted(bands, key=lambda b: b.ordinal)
    if ordered[0].lower != 0:
        raise PayrollInvariantError(
            "First tax band must start at zero",
            details={"lower": str(ordered[0].lower)},
        )
    if ordered[0].cumulative_tax != 0:
        raise PayrollInvariantError("First tax band must have zero cumulative tax")
    
    for previous, current in zip(ordered, ordered[1:]):
        if previous.upper is None:
            raise PayrollInvariantError(
                "Only the last tax band may be unbounded",
                details={"ordinal": previous.ordinal},
            )
        if previous.upper <= previous.lower:
            raise PayrollInvariantError(
                "Tax band upper bound must exceed its lower bound",
                details={"ordinal": previous.ordinal},
            )
        if current.lower != previous.upper:
            raise PayrollInvariantError(
                f"Tax bands {previous.ordinal} and {current.ordinal} are not contiguous",
                details={"upper": str(previous.upper), "next_lower": str(current.lower)},
            )
        expected = round_money(previous.cumulative_tax + previous.full_band_tax())
        if round_money(current.cumulative_tax) != expected:
            raise PayrollInvariantError(
                f"Cumulative tax for band {current.ordinal} is inconsistent",
                details={"expected": str(expected), "stored": str(current.cumulative_tax)},
            )
    
    last = ordered[-1]
    if last.upper is not None and last.upper <= last.lower:
        raise PayrollInvariantError(
            "Tax band upper bound must exceed its lower bound",
            details={"ordinal": last.ordinal},
        )


# ===========================================
# SELECTION
# ===========================================

def select_tax_law_table(
    tables: Iterable[TaxLawTable],
    jurisdiction_code: str,
    on_date: date,
) -> TaxLawTable:
    """
    Return the unique table for jurisdiction_code whose range contains on_date.
    
    Raises:
        NoApplicableTaxLawError: no table covers the date
        AmbiguousTaxLawError: more than one table covers the date
    """
    matches = [
        table for table in tables
        if table.jurisdiction_code == jurisdiction_code and table.covers(on_date)
    ]
    if not matches:
        raise NoApplicableTaxLawError(jurisdiction_code, on_date)
    if len(matches) > 1:
        raise AmbiguousTaxLawError(jurisdiction_code, on_date, [t.version.value for t in matches])
    return matches[0]
