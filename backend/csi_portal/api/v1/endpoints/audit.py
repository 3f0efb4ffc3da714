from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import ok
from csi_portal.core.database import get_db
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.services.audit_service import audit_service

router = APIRouter()


@router.get("")
async def get_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    username: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200, alias="pageSize"),
    current_user: Dict[str, Any] = Depends(require_permission("audit:read")),
    db: AsyncSession = Depends(get_db),
):
    result = await audit_service.get_audit_logs(
        db,
        user_id=user_id,
        username=username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return ok(result)


@router.get("/entity-history/{entity_type}/{entity_id}")
async def get_entity_history(
    entity_type: str,
    entity_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("audit:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await audit_service.get_entity_history(db, entity_type, entity_id))
