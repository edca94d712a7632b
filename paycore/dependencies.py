"""
PayCore - Dependencies

FastAPI dependencies for resolving the calling tenant and actor.
Authentication happens upstream; the gateway forwards identity headers.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header must be a UUID",
        )


async def get_current_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> uuid.UUID:
    """
    Get the tenant for the request.
    
    Raises:
        HTTPException: 400 if the header is missing or malformed
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return _parse_uuid(x_tenant_id, "X-Tenant-ID")


async def get_current_actor_id(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-ID"),
) -> Optional[uuid.UUID]:
    """Acting user, if the caller identified one."""
    if not x_actor_id:
        return None
    return _parse_uuid(x_actor_id, "X-Actor-ID")


async def require_actor_id(
    actor_id: Optional[uuid.UUID] = Depends(get_current_actor_id),
) -> uuid.UUID:
    """Acting user for operations that must record who performed them."""
    if actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-ID header is required for this operation",
        )
    return actor_id
