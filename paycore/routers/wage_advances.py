"""
PayCore - Wage Advance Router

API endpoints for requesting, approving and disbursing salary advances.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.database import get_async_session
from paycore.dependencies import get_current_actor_id, get_current_tenant_id, require_actor_id
from paycore.models.payroll import WageAdvanceStatus
from paycore.schemas.payroll import (
    AdvanceInstallmentResponse,
    RepaymentScheduleResponse,
    WageAdvanceApprove,
    WageAdvanceReject,
    WageAdvanceRequest,
    WageAdvanceResponse,
)
from paycore.services.wage_advance_service import WageAdvanceService


router = APIRouter()


@router.post(
    "/wage-advances",
    response_model=WageAdvanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a wage advance",
)
async def request_wage_advance(
    data: WageAdvanceRequest,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
):
    service = WageAdvanceService(db)
    employee = await service.get_employee(tenant_id, data.employee_id)
    return await service.request_advance(
        employee,
        amount=data.amount,
        installment_count=data.installment_count,
        reason=data.reason,
        requested_by_id=actor_id,
    )


@router.get("/wage-advances", response_model=List[WageAdvanceResponse], summary="List wage advances")
async def list_wage_advances(
    employee_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[WageAdvanceStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await WageAdvanceService(db).list_advances(tenant_id, employee_id, status_filter)


@router.get("/wage-advances/{advance_id}", response_model=WageAdvanceResponse, summary="Get a wage advance")
async def get_wage_advance(
    advance_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    return await WageAdvanceService(db).get_advance(advance_id, tenant_id)


@router.post("/wage-advances/{advance_id}/approve", response_model=WageAdvanceResponse, summary="Approve a wage advance")
async def approve_wage_advance(
    advance_id: uuid.UUID,
    data: WageAdvanceApprove,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: uuid.UUID = Depends(require_actor_id),
):
    service = WageAdvanceService(db)
    advance = await service.get_advance(advance_id, tenant_id)
    return await service.approve_advance(
        advance,
        approved_by_id=actor_id,
        approved_amount=data.approved_amount,
        installment_count=data.installment_count,
    )


@router.post("/wage-advances/{advance_id}/reject", response_model=WageAdvanceResponse, summary="Reject a wage advance")
async def reject_wage_advance(
    advance_id: uuid.UUID,
    data: WageAdvanceReject,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: uuid.UUID = Depends(require_actor_id),
):
    service = WageAdvanceService(db)
    advance = await service.get_advance(advance_id, tenant_id)
    return await service.reject_advance(advance, actor_id, data.reason)


@router.post(
    "/wage-advances/{advance_id}/disburse",
    response_model=WageAdvanceResponse,
    summary="Mark a wage advance as disbursed",
)
async def disburse_wage_advance(
    advance_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    actor_id: uuid.UUID = Depends(require_actor_id),
):
    service = WageAdvanceService(db)
    advance = await service.get_advance(advance_id, tenant_id)
    return await service.disburse_advance(advance, actor_id)


@router.get(
    "/wage-advances/{advance_id}/schedule",
    response_model=RepaymentScheduleResponse,
    summary="Projected repayment schedule",
)
async def get_repayment_schedule(
    advance_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    service = WageAdvanceService(db)
    advance = await service.get_advance(advance_id, tenant_id)
    return RepaymentScheduleResponse(
        advance=WageAdvanceResponse.model_validate(advance),
        installments=[
            AdvanceInstallmentResponse.model_validate(installment)
            for installment in service.repayment_schedule(advance)
        ],
    )
