"""
Audit Logs API
Exposes the audit_logs table written by every subnet and address change.
"""
from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from cmdb.database import get_db
from cmdb.middleware.identity import require_any_role
from cmdb.models.audit import AuditLog

router = APIRouter(prefix="/api/logs", tags=["Logs"])


class AuditLogResponse(BaseModel):
    id: int
    timestamp: Optional[datetime] = None
    username: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[str] = None
    source_ip: Optional[str] = None
    success: bool = True

    model_config = {"from_attributes": True}


@router.get("/", response_model=list[AuditLogResponse])
async def list_audit_logs(
    limit: int = Query(200, ge=1, le=1000),
    offset: int = 0,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[str] = None,
    _=Depends(require_any_role()),
    db: AsyncSession = Depends(get_db),
):
    q = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
    if resource_type:
        q = q.where(AuditLog.resource_type == resource_type)
    if resource_id:
        q = q.where(AuditLog.resource_id == resource_id)
    if action:
        q = q.where(AuditLog.action == action)
    q = q.offset(offset).limit(limit)
    result = await db.execute(q)
    return result.scalars().all()
