"""
PayCore - Pay Run Router

API endpoints for the pay run lifecycle, pay run items and payslips.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.database import get_async_session
from paycore.dependencies import get_current_actor_id, get_current_tenant_id, require_actor_id
from paycore.models.pay_run import PayRunItemStatus, PayRunStatus
from paycore.schemas.payroll import (
    EmployeeExclusion,
    MessageResponse,
    PayRunCancel,
    PayRunCreate,
    PayRunItemResponse,
    PayRunResponse,
    PayRunSummaryResponse,
    PayslipCancel,
    PayslipResponse,
)
from paycore.services.pay_run_service import PayRunService
from paycore.services.payslip_service import PayslipService


router = APIRouter()


# ===========================================
# PAY RUN ENDPOINTS
# ===========================================

@router.post(
    "/pay-runs",
    response_model=PayRunResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a pay run",
    description="Create a draft pay run for a payroll period.",
)
async def create_pay_run(
    data: PayRunCreate,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    return await service.create_pay_run(
        tenant_id=tenant_id,
        name=data.name,
        period_start=data.period_start,
        period_end=data.period_end,
        pay_date=data.pay_date,
        frequency=data.frequency,
        employee_ids=data.employee_ids,
        pay_calendar_id=data.pay_calendar_id,
        notes=data.notes,
        created_by_id=actor_id,
    )


@router.get(
    "/pay-runs",
    response_model=List[PayRunResponse],
    summary="List pay runs",
)
async def list_pay_runs(
    status_filter: Optional[PayRunStatus] = Query(None, alias="status", description="Status filter"),
    period_from: Optional[date] = Query(None, description="Runs whose period ends on or after this date"),
    period_to: Optional[date] = Query(None, description="Runs whose period starts on or before this date"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    service = PayRunService(db)
    return await service.list_pay_runs(
        tenant_id,
        status=status_filter,
        period_from=period_from,
        period_to=period_to,
        skip=skip,
        limit=limit,
    )


@router.get("/pay-runs/{pay_run_id}", response_model=PayRunResponse, summary="Get a pay run")
async def get_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayRunService(db).get_pay_run(tenant_id, pay_run_id)


@router.post(
    "/pay-runs/{pay_run_id}/process",
    response_model=PayRunResponse,
    summary="Process a pay run",
    description="Calculate every employee on the roster. Failed employees are reported per item.",
)
async def process_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.process_pay_run(pay_run, actor_id)


@router.post("/pay-runs/{pay_run_id}/approve", response_model=PayRunResponse, summary="Approve a pay run")
async def approve_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: uuid.UUID = Depends(require_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.approve_pay_run(pay_run, actor_id)


@router.post(
    "/pay-runs/{pay_run_id}/complete",
    response_model=PayRunResponse,
    summary="Complete a pay run",
    description="Issue payslips and post deductions and wage-advance repayments. Irreversible.",
)
async def complete_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: uuid.UUID = Depends(require_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.complete_pay_run(pay_run, actor_id)


@router.post("/pay-runs/{pay_run_id}/cancel", response_model=PayRunResponse, summary="Cancel a pay run")
async def cancel_pay_run(
    pay_run_id: uuid.UUID,
    data: PayRunCancel,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.cancel_pay_run(pay_run, data.reason, actor_id)


@router.delete("/pay-runs/{pay_run_id}", response_model=MessageResponse, summary="Delete a draft pay run")
async def delete_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    await service.delete_pay_run(pay_run, actor_id)
    return MessageResponse(message=f"Pay run {pay_run.reference} deleted")


@router.get("/pay-runs/{pay_run_id}/summary", response_model=PayRunSummaryResponse, summary="Pay run summary")
async def get_pay_run_summary(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.get_summary(pay_run)


# ===========================================
# ITEM ENDPOINTS
# ===========================================

@router.get("/pay-runs/{pay_run_id}/items", response_model=List[PayRunItemResponse], summary="List pay run items")
async def list_pay_run_items(
    pay_run_id: uuid.UUID,
    status_filter: Optional[PayRunItemStatus] = Query(None, alias="status", description="Item status filter"),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.get_items(pay_run.id, status_filter)


@router.get(
    "/pay-runs/{pay_run_id}/items/{employee_id}",
    response_model=PayRunItemResponse,
    summary="Get one employee's pay run item",
)
async def get_pay_run_item(
    pay_run_id: uuid.UUID,
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.get_item(pay_run.id, employee_id)


@router.post(
    "/pay-runs/{pay_run_id}/items/{employee_id}/recalculate",
    response_model=PayRunItemResponse,
    summary="Recalculate one employee",
)
async def recalculate_pay_run_item(
    pay_run_id: uuid.UUID,
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.recalculate_item(pay_run, employee_id, actor_id)


@router.post(
    "/pay-runs/{pay_run_id}/employees/{employee_id}/exclude",
    response_model=PayRunResponse,
    summary="Exclude an employee from a pay run",
)
async def exclude_employee(
    pay_run_id: uuid.UUID,
    employee_id: uuid.UUID,
    data: EmployeeExclusion,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.exclude_employee(pay_run, employee_id, data.reason, actor_id)


@router.post(
    "/pay-runs/{pay_run_id}/employees/{employee_id}/include",
    response_model=PayRunResponse,
    summary="Include a previously excluded employee",
)
async def include_employee(
    pay_run_id: uuid.UUID,
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.include_employee(pay_run, employee_id, actor_id)


# ===========================================
# PAYSLIP ENDPOINTS
# ===========================================

@router.get("/pay-runs/{pay_run_id}/payslips", response_model=List[PayslipResponse], summary="Payslips of a pay run")
async def list_pay_run_payslips(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    service = PayRunService(db)
    pay_run = await service.get_pay_run(tenant_id, pay_run_id)
    return await service.get_payslips(pay_run.id)


@router.get(
    "/employees/{employee_id}/payslips",
    response_model=List[PayslipResponse],
    summary="Employee payslips",
    description="Payslips for an employee, newest first, optionally limited to one year.",
)
async def list_employee_payslips(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await PayslipService(db).get_employee_payslips(tenant_id, employee_id, year)


@router.post("/payslips/{payslip_id}/cancel", response_model=PayslipResponse, summary="Cancel a payslip")
async def cancel_payslip(
    payslip_id: uuid.UUID,
    data: PayslipCancel,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = PayslipService(db)
    payslip = await service.get_payslip(tenant_id, payslip_id)
    return await service.cancel_payslip(payslip, data.reason, actor_id)
