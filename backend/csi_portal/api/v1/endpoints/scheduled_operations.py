from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import ok
from csi_portal.core.database import get_db
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.services.scheduled_operations_processor import scheduled_operations_processor
from csi_portal.services.survey_service import survey_service

router = APIRouter()


@router.get("")
async def list_scheduled_operations(
    survey_id: Optional[str] = Query(None, alias="surveyId"),
    operation_type: Optional[str] = Query(None, alias="operationType"),
    status: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
    db: AsyncSession = Depends(get_db),
):
    operations = await survey_service.get_scheduled_operations(
        db, survey_id=survey_id, operation_type=operation_type, status=status
    )
    return ok(operations, count=len(operations))


@router.get("/processor/status")
async def get_processor_status(
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
):
    return ok(scheduled_operations_processor.get_status())


@router.post("/processor/trigger")
async def trigger_processing(
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
):
    result = await scheduled_operations_processor.trigger_processing()
    return ok(result, message=f"Processed {result['processed']} scheduled operation(s)")


@router.delete("/{operation_id}")
async def cancel_scheduled_operation(
    operation_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    operation = await survey_service.cancel_scheduled_operation(db, operation_id)
    return ok(operation, message="Scheduled operation cancelled successfully")
