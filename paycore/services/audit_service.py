"""
PayCore - Payroll Audit Service

Emits audit events for every pay-run state transition and every
deduction/advance mutation. Rows are written in the caller's transaction.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.models.audit import PayrollAuditAction, PayrollAuditLog

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


class PayrollAuditService:
    """Service for recording the payroll audit trail."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def record(
        self,
        tenant_id: uuid.UUID,
        action: PayrollAuditAction,
        entity_type: str,
        entity_id: Any,
        actor_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PayrollAuditLog:
        """
        Record an audit event.
        
        Args:
            tenant_id: Tenant that owns the affected record
            action: Event type
            entity_type: Type of entity (e.g., 'pay_run', 'wage_advance')
            entity_id: ID of the affected entity
            actor_id: User who performed the action, if any
            old_values: Values before the change
            new_values: Values after the change
            metadata: Extra context (e.g., reason, pay run reference)
        """
        entry = PayrollAuditLog(
            tenant_id=tenant_id,
            action=action.value,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=actor_id,
            old_values=_jsonable(old_values) if old_values is not None else None,
            new_values=_jsonable(new_values) if new_values is not None else None,
            extra_data=_jsonable(metadata) if metadata is not None else None,
        )
        self.db.add(entry)
        
        logger.info(
            f"Audit {action.value} on {entity_type}:{entity_id}",
            extra={"tenant_id": str(tenant_id), "actor_id": str(actor_id) if actor_id else None},
        )
        return entry
    
    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: Any,
    ) -> List[PayrollAuditLog]:
        """Audit entries for one entity, oldest first."""
        result = await self.db.execute(
            select(PayrollAuditLog)
            .where(
                PayrollAuditLog.entity_type == entity_type,
                PayrollAuditLog.entity_id == str(entity_id),
            )
            .order_by(PayrollAuditLog.created_at, PayrollAuditLog.id)
        )
        return list(result.scalars().all())
