"""
PayCore - Tax Estimate Router

PAYE estimates for planning screens, including a side-by-side of the
PITA 2011 and NTA 2025 regimes for the same salary.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.database import get_async_session
from paycore.dependencies import get_current_tenant_id
from paycore.schemas.payroll import (
    ReliefLine,
    TaxComparisonRequest,
    TaxComparisonResponse,
    TaxEstimateRequest,
    TaxEstimateResponse,
)
from paycore.services.tax_calculators import AnnualTaxAssessment
from paycore.services.tax_law_service import TaxLawService
from paycore.utils.money import ZERO, round_money


router = APIRouter(dependencies=[Depends(get_current_tenant_id)])


def _estimate_response(assessment: AnnualTaxAssessment) -> TaxEstimateResponse:
    gross = assessment.annual_gross
    effective_rate = round_money(assessment.annual_tax / gross * Decimal("100")) if gross > 0 else ZERO
    return TaxEstimateResponse(
        tax_law_version=assessment.version,
        annual_gross=gross,
        annual_pre_tax_deductions=assessment.annual_pre_tax_deductions,
        reliefs=[ReliefLine(code=code, amount=amount) for code, amount in assessment.reliefs.applied],
        total_reliefs=assessment.reliefs.total,
        taxable_income=assessment.taxable_income,
        annual_tax=assessment.annual_tax,
        monthly_tax=round_money(assessment.annual_tax / 12),
        effective_rate=effective_rate,
        low_income_exempt=assessment.is_exempt,
        bands=assessment.band_breakdown,
    )


@router.post("/tax/estimate", response_model=TaxEstimateResponse, summary="Estimate annual PAYE")
async def estimate_tax(
    data: TaxEstimateRequest,
    db: AsyncSession = Depends(get_async_session),
):
    service = TaxLawService(db)
    assessment = await service.estimate_tax(
        data.annual_gross,
        data.on_date,
        jurisdiction_code=data.jurisdiction_code,
        annual_basic=data.annual_basic,
        annual_pre_tax_deductions=data.annual_pre_tax_deductions,
        annual_rent=data.annual_rent,
        is_homeowner=data.is_homeowner,
        rent_proof_valid=data.rent_proof_valid,
        pension_enrolled=data.pension_enrolled,
        claimed_reliefs=data.claimed_reliefs,
    )
    return _estimate_response(assessment)


@router.post(
    "/tax/compare",
    response_model=TaxComparisonResponse,
    summary="Compare PITA 2011 and NTA 2025",
    description="PAYE for the same salary on 2025-12-31 and 2026-01-01.",
)
async def compare_regimes(
    data: TaxComparisonRequest,
    db: AsyncSession = Depends(get_async_session),
):
    service = TaxLawService(db)
    comparison = await service.compare_regimes(
        data.annual_gross,
        jurisdiction_code=data.jurisdiction_code,
        annual_basic=data.annual_basic,
        annual_pre_tax_deductions=data.annual_pre_tax_deductions,
        annual_rent=data.annual_rent,
        is_homeowner=data.is_homeowner,
        rent_proof_valid=data.rent_proof_valid,
        pension_enrolled=data.pension_enrolled,
        claimed_reliefs=data.claimed_reliefs,
    )
    return TaxComparisonResponse(
        annual_gross=comparison["annual_gross"],
        before=_estimate_response(comparison["before"]),
        after=_estimate_response(comparison["after"]),
        difference=comparison["difference"],
        monthly_difference=comparison["monthly_difference"],
    )
