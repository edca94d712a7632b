"""
PayCore - Tax Law Service

Authoring, loading and selection of versioned tax law tables, plus the
Nigerian PAYE tables in force before and after the Nigeria Tax Act 2025
commencement on 1 January 2026.

PITA 2011 (Personal Income Tax Act, as amended):
- Consolidated Relief Allowance: higher of N200,000 or 1% of gross, plus 20% of gross
- Bands: 7% / 11% / 15% / 19% / 21% / 24%

NTA 2025 (Nigeria Tax Act):
- Annual income up to N800,000 is exempt
- Rent relief: 20% of annual rent paid, capped at N500,000 (non-homeowners, with proof)
- Bands: 0% / 15% / 18% / 21% / 23% / 25%
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.config import Settings, get_settings
from paycore.models.tax_law import (
    ReliefBase,
    ReliefEligibility,
    ReliefKind,
    TaxLawVersion,
    TaxTable,
    TaxTableBand,
    TaxTableRelief,
)
from paycore.services.payroll_exceptions import PayrollBusinessRuleError, PayrollValidationError
from paycore.services.tax_calculators import (
    AnnualTaxAssessment,
    Relief,
    ReliefContext,
    TaxBand,
    TaxLawTable,
    assess_annual_tax,
    build_bands,
    select_tax_law_table,
)
from paycore.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


# Last day of PITA 2011 PAYE and first day of NTA 2025 PAYE
PITA_LAST_DAY = date(2025, 12, 31)
NTA_COMMENCEMENT = date(2026, 1, 1)


# ===========================================
# NIGERIAN TAX TABLES
# ===========================================

PITA_2011_BANDS = [
    (Decimal("0"), Decimal("300000"), Decimal("7")),
    (Decimal("300000"), Decimal("600000"), Decimal("11")),
    (Decimal("600000"), Decimal("1100000"), Decimal("15")),
    (Decimal("1100000"), Decimal("1600000"), Decimal("19")),
    (Decimal("1600000"), Decimal("3200000"), Decimal("21")),
    (Decimal("3200000"), None, Decimal("24")),
]

NTA_2025_BANDS = [
    (Decimal("0"), Decimal("800000"), Decimal("0")),
    (Decimal("800000"), Decimal("3000000"), Decimal("15")),
    (Decimal("3000000"), Decimal("12000000"), Decimal("18")),
    (Decimal("12000000"), Decimal("25000000"), Decimal("21")),
    (Decimal("25000000"), Decimal("50000000"), Decimal("23")),
    (Decimal("50000000"), None, Decimal("25")),
]

# Contribution reliefs mirror pre-tax deductions, so they are opt-in
CONTRIBUTION_RELIEFS = (
    Relief(
        code="PENSION_RELIEF",
        name="Pension Contribution Relief",
        kind=ReliefKind.PERCENTAGE,
        base=ReliefBase.PENSIONABLE,
        rate=Decimal("8"),
        is_automatic=False,
        eligibility=ReliefEligibility.PENSION_ENROLLED,
    ),
    Relief(
        code="NHF_RELIEF",
        name="NHF Contribution Relief",
        kind=ReliefKind.PERCENTAGE,
        base=ReliefBase.BASIC,
        rate=Decimal("2.5"),
        is_automatic=False,
        eligibility=ReliefEligibility.HOUSING_FUND_ENROLLED,
    ),
    Relief(
        code="NHIS_RELIEF",
        name="NHIS Contribution Relief",
        kind=ReliefKind.PERCENTAGE,
        base=ReliefBase.BASIC,
        rate=Decimal("1.75"),
        is_automatic=False,
        eligibility=ReliefEligibility.HEALTH_INSURANCE_ENROLLED,
    ),
)

PITA_2011_RELIEFS = (
    Relief(
        code="CRA",
        name="Consolidated Relief Allowance",
        kind=ReliefKind.CAPPED_PERCENTAGE,
        base=ReliefBase.GROSS,
        rate=Decimal("20"),
        floor_amount=Decimal("200000"),
        floor_rate=Decimal("1"),
    ),
    *CONTRIBUTION_RELIEFS,
    Relief(
        code="LIFE_INSURANCE",
        name="Life Insurance Premium Relief",
        kind=ReliefKind.FIXED,
        amount=ZERO,
        is_automatic=False,
        requires_proof=True,
    ),
)

NTA_2025_RELIEFS = (
    Relief(
        code="LOW_INCOME_EXEMPTION",
        name="Low Income Exemption",
        kind=ReliefKind.LOW_INCOME_EXEMPTION,
        amount=Decimal("800000"),
    ),
    Relief(
        code="RENT_RELIEF",
        name="Rent Relief",
        kind=ReliefKind.CAPPED_PERCENTAGE,
        base=ReliefBase.ANNUAL_RENT,
        rate=Decimal("20"),
        cap=Decimal("500000"),
        requires_proof=True,
        eligibility=ReliefEligibility.NON_HOMEOWNER,
    ),
    *CONTRIBUTION_RELIEFS,
)


def table_to_value(table: TaxTable) -> TaxLawTable:
    """Convert a stored table into the immutable value used by calculators."""
    bands = tuple(
        TaxBand(
            lower=band.lower_bound,
            upper=band.upper_bound,
            rate=band.rate,
            ordinal=band.ordinal,
            cumulative_tax=band.cumulative_tax,
        )
        for band in sorted(table.bands, key=lambda b: b.ordinal)
    )
    reliefs = tuple(
        Relief(
            code=relief.code,
            name=relief.name,
            kind=relief.kind,
            base=relief.base,
            rate=relief.rate,
            amount=relief.amount,
            cap=relief.cap,
            floor_amount=relief.floor_amount,
            floor_rate=relief.floor_rate,
            is_automatic=relief.is_automatic,
            requires_proof=relief.requires_proof,
            eligibility=relief.eligibility,
        )
        for relief in table.reliefs
        if relief.is_active
    )
    return TaxLawTable(
        jurisdiction_code=table.jurisdiction_code,
        version=table.version,
        name=table.name,
        effective_from=table.effective_from,
        effective_to=table.effective_to,
        bands=bands,
        reliefs=reliefs,
    )


class TaxLawService:
    """Service for tax law tables and tax estimates."""
    
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
    
    async def list_tables(self, jurisdiction_code: Optional[str] = None) -> List[TaxTable]:
        query = select(TaxTable).where(TaxTable.is_active == True)
        if jurisdiction_code:
            query = query.where(TaxTable.jurisdiction_code == jurisdiction_code)
        result = await self.db.execute(query.order_by(TaxTable.jurisdiction_code, TaxTable.effective_from))
        return list(result.scalars().all())
    
    async def load_tables(self, jurisdiction_code: Optional[str] = None) -> List[TaxLawTable]:
        """Load active tables as immutable values, once per computation."""
        return [table_to_value(table) for table in await self.list_tables(jurisdiction_code)]
    
    async def get_table_for_date(
        self,
        jurisdiction_code: str,
        on_date: date,
    ) -> TaxLawTable:
        tables = await self.load_tables(jurisdiction_code)
        return select_tax_law_table(tables, jurisdiction_code, on_date)
    
    async def create_tax_table(
        self,
        jurisdiction_code: str,
        version: TaxLawVersion,
        name: str,
        effective_from: date,
        effective_to: Optional[date],
        bands: Sequence[Tuple[Decimal, Optional[Decimal], Decimal]],
        reliefs: Iterable[Relief] = (),
        description: Optional[str] = None,
    ) -> TaxTable:
        """
        Author a new tax table.
        
        Cumulative tax per band is computed here, once. A table whose date
        range overlaps another active table of the jurisdiction is refused.
        """
        if effective_to is not None and effective_to <= effective_from:
            raise PayrollValidationError(
                "effective_to must be after effective_from",
                field="effective_to",
            )
        
        band_values = build_bands(bands)
        candidate = TaxLawTable(
            jurisdiction_code=jurisdiction_code,
            version=version,
            name=name,
            effective_from=effective_from,
            effective_to=effective_to,
            bands=band_values,
            reliefs=tuple(reliefs),
        )
        
        for existing in await self.load_tables(jurisdiction_code):
            if existing.version == version:
                raise PayrollBusinessRuleError(
                    f"Tax table {version.value} already exists for {jurisdiction_code}",
                    rule="tax_table_unique_version",
                )
            if candidate.overlaps(existing):
                raise PayrollBusinessRuleError(
                    f"Tax table range overlaps {existing.version.value} for {jurisdiction_code}",
                    rule="tax_table_no_overlap",
                    details={
                        "existing_from": existing.effective_from.isoformat(),
                        "existing_to": existing.effective_to.isoformat() if existing.effective_to else None,
                    },
                )
        
        table = TaxTable(
            jurisdiction_code=jurisdiction_code,
            version=version,
            name=name,
            description=description,
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=True,
        )
        table.bands = [
            TaxTableBand(
                ordinal=band.ordinal,
                lower_bound=band.lower,
                upper_bound=band.upper,
                rate=band.rate,
                cumulative_tax=band.cumulative_tax,
            )
            for band in band_values
        ]
        table.reliefs = [
            TaxTableRelief(
                code=relief.code,
                name=relief.name,
                kind=relief.kind,
                base=relief.base,
                rate=relief.rate,
                amount=relief.amount,
                cap=relief.cap,
                floor_amount=relief.floor_amount,
                floor_rate=relief.floor_rate,
                is_automatic=relief.is_automatic,
                requires_proof=relief.requires_proof,
                eligibility=relief.eligibility,
                is_active=True,
            )
            for relief in candidate.reliefs
        ]
        self.db.add(table)
        await self.db.flush()
        
        logger.info(
            f"Created tax table {version.value} for {jurisdiction_code} "
            f"[{effective_from}, {effective_to or 'open'}) with {len(band_values)} bands"
        )
        return table
    
    # ===========================================
    # ESTIMATES
    # ===========================================
    
    async def estimate_tax(
        self,
        annual_gross: Decimal,
        on_date: date,
        jurisdiction_code: Optional[str] = None,
        annual_basic: Optional[Decimal] = None,
        annual_pre_tax_deductions: Decimal = ZERO,
        annual_rent: Decimal = ZERO,
        is_homeowner: bool = False,
        rent_proof_valid: bool = False,
        pension_enrolled: bool = False,
        claimed_reliefs: Iterable[str] = (),
    ) -> AnnualTaxAssessment:
        """Annual PAYE for a salary under the table in force on a date."""
        if annual_gross < 0:
            raise PayrollValidationError("Annual gross cannot be negative", field="annual_gross")
        
        jurisdiction_code = jurisdiction_code or self.settings.payroll_default_jurisdiction
        table = await self.get_table_for_date(jurisdiction_code, on_date)
        context = ReliefContext(
            annual_gross=round_money(annual_gross),
            annual_basic=round_money(annual_basic if annual_basic is not None else annual_gross),
            annual_pensionable=round_money(annual_gross),
            annual_rent=round_money(annual_rent),
            is_homeowner=is_homeowner,
            pension_enrolled=pension_enrolled,
            rent_proof_valid=rent_proof_valid,
            claimed_codes=frozenset(claimed_reliefs),
        )
        return assess_annual_tax(table, context, annual_pre_tax_deductions=annual_pre_tax_deductions)
    
    async def compare_regimes(
        self,
        annual_gross: Decimal,
        jurisdiction_code: Optional[str] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """Tax on the same salary on the last PITA day and the first NTA day."""
        before = await self.estimate_tax(annual_gross, PITA_LAST_DAY, jurisdiction_code, **kwargs)
        after = await self.estimate_tax(annual_gross, NTA_COMMENCEMENT, jurisdiction_code, **kwargs)
        
        difference = after.annual_tax - before.annual_tax
        return {
            "annual_gross": round_money(annual_gross),
            "before": before,
            "after": after,
            "difference": difference,
            "monthly_difference": round_money(difference / 12),
        }


async def seed_nigerian_tax_tables(db: AsyncSession) -> List[TaxTable]:
    """
    Create the PITA 2011 and NTA 2025 tables for NG if missing.
    
    Safe to call repeatedly.
    """
    service = TaxLawService(db)
    existing = {table.version for table in await service.list_tables("NG")}
    created = []
    
    if TaxLawVersion.PITA_2011 not in existing:
        created.append(await service.create_tax_table(
            jurisdiction_code="NG",
            version=TaxLawVersion.PITA_2011,
            name="Nigeria PAYE Tax Table (PITA 2011)",
            description="Personal Income Tax Act 2011 progressive bands with Consolidated Relief Allowance",
            effective_from=date(2011, 1, 1),
            effective_to=NTA_COMMENCEMENT,
            bands=PITA_2011_BANDS,
            reliefs=PITA_2011_RELIEFS,
        ))
    
    if TaxLawVersion.NTA_2025 not in existing:
        created.append(await service.create_tax_table(
            jurisdiction_code="NG",
            version=TaxLawVersion.NTA_2025,
            name="Nigeria PAYE Tax Table (NTA 2025)",
            description="Nigeria Tax Act 2025 bands with low income exemption and rent relief",
            effective_from=NTA_COMMENCEMENT,
            effective_to=None,
            bands=NTA_2025_BANDS,
            reliefs=NTA_2025_RELIEFS,
        ))
    
    if created:
        await db.commit()
        logger.info(f"Seeded {len(created)} Nigerian tax tables")
    return created
