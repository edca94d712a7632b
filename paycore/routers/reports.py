"""
PayCore - Payroll Report Router

Remittance, bank payment, journal and statistics reports.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.database import get_async_session
from paycore.dependencies import get_current_tenant_id
from paycore.schemas.payroll import (
    BankScheduleResponse,
    PayRunStatisticsResponse,
    PayrollJournalResponse,
    PayrollSummaryResponse,
    PensionRemittanceResponse,
    TaxRemittanceResponse,
)
from paycore.services.payroll_report_service import PayrollReportService


router = APIRouter()


@router.get("/reports/summary", response_model=PayrollSummaryResponse, summary="Payroll summary")
async def payroll_summary(
    pay_run_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None, description="Payslips paid on or after this date"),
    end_date: Optional[date] = Query(None, description="Payslips paid on or before this date"),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayrollReportService(db).payroll_summary(tenant_id, pay_run_id, start_date, end_date)


@router.get(
    "/reports/tax-remittance",
    response_model=TaxRemittanceResponse,
    summary="PAYE remittance schedule",
    description="PAYE withheld per employee, due on the configured day of the following month.",
)
async def tax_remittance(
    pay_run_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayrollReportService(db).tax_remittance(tenant_id, pay_run_id, start_date, end_date)


@router.get(
    "/reports/pension-remittance",
    response_model=PensionRemittanceResponse,
    summary="Pension remittance schedule",
)
async def pension_remittance(
    pay_run_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayrollReportService(db).pension_remittance(tenant_id, pay_run_id, start_date, end_date)


@router.get("/reports/journal", response_model=PayrollJournalResponse, summary="Payroll journal")
async def payroll_journal(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayrollReportService(db).payroll_journal(tenant_id, start_date, end_date)


@router.get("/reports/statistics", response_model=PayRunStatisticsResponse, summary="Pay run statistics")
async def pay_run_statistics(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayrollReportService(db).pay_run_statistics(tenant_id, year)


@router.get(
    "/pay-runs/{pay_run_id}/bank-schedule",
    response_model=BankScheduleResponse,
    summary="Bank payment schedule",
    description="Net pay transfers for a completed pay run.",
)
async def bank_schedule(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayrollReportService(db).bank_schedule(tenant_id, pay_run_id)
