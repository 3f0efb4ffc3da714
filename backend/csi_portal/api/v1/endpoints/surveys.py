from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.schemas.survey import (
    ScheduleRequest,
    SurveyConfigUpdate,
    SurveyCreate,
    SurveyLinkRequest,
    SurveyUpdate,
)
from csi_portal.services.survey_service import survey_service

router = APIRouter()


@router.get("")
async def list_surveys(
    status_filter: Optional[str] = Query(None, alias="status"),
    assigned_admin_id: Optional[str] = Query(None, alias="assignedAdminId"),
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
    db: AsyncSession = Depends(get_db),
):
    surveys = await survey_service.list_surveys(db, status=status_filter, assigned_admin_id=assigned_admin_id)
    return ok(surveys)


@router.delete("/scheduled-operations/{operation_id}")
async def cancel_scheduled_operation(
    operation_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    operation = await survey_service.cancel_scheduled_operation(db, operation_id)
    await audit(db, request, current_user, "Update", "ScheduledOperation", operation_id, new_values={"status": "Cancelled"})
    return ok(operation, message="Scheduled operation cancelled successfully")


@router.get("/{survey_id}")
async def get_survey(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await survey_service.get_survey(db, survey_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_survey(
    request: Request,
    body: SurveyCreate,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:create")),
    db: AsyncSession = Depends(get_db),
):
    survey = await survey_service.create_survey(db, body.to_data(), created_by=current_user["user_id"])
    await audit(db, request, current_user, "Create", "Survey", survey["survey_id"], new_values=body.to_data())
    return ok(survey, message="Survey created successfully")


@router.put("/{survey_id}")
async def update_survey(
    survey_id: str,
    request: Request,
    body: SurveyUpdate,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    before = await survey_service.get_survey(db, survey_id)
    survey = await survey_service.update_survey(db, survey_id, body.to_data(), updated_by=current_user["user_id"])
    await audit(
        db, request, current_user, "Update", "Survey", survey_id,
        old_values={k: before.get(k) for k in body.to_data()},
        new_values=body.to_data(),
    )
    return ok(survey, message="Survey updated successfully")


@router.delete("/{survey_id}")
async def delete_survey(
    survey_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:delete")),
    db: AsyncSession = Depends(get_db),
):
    await survey_service.delete_survey(db, survey_id)
    await audit(db, request, current_user, "Delete", "Survey", survey_id)
    return ok(message="Survey deleted successfully")


@router.patch("/{survey_id}/config")
async def update_survey_config(
    survey_id: str,
    body: SurveyConfigUpdate,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    config = await survey_service.update_survey_config(db, survey_id, body.to_data())
    return ok(config, message="Survey configuration updated successfully")


@router.get("/{survey_id}/preview")
async def preview_survey(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await survey_service.generate_preview(db, survey_id))


@router.post("/{survey_id}/link")
async def generate_survey_link(
    survey_id: str,
    body: Optional[SurveyLinkRequest] = None,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    shorten = body.shorten_url if body else False
    return ok(await survey_service.generate_survey_link(db, survey_id, shorten=shorten))


@router.post("/{survey_id}/qrcode")
async def generate_qr_code(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    data_url = await survey_service.generate_qr_code(db, survey_id)
    return ok({"qr_code_data_url": data_url})


@router.post("/{survey_id}/embed")
async def generate_embed_code(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    embed_code = await survey_service.generate_embed_code(db, survey_id)
    return ok({"embed_code": embed_code})


@router.post("/{survey_id}/schedule-blast", status_code=status.HTTP_201_CREATED)
async def schedule_blast(
    survey_id: str,
    body: ScheduleRequest,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    data = {**body.to_data(), "survey_id": survey_id}
    operation = await survey_service.schedule_blast(db, data, created_by=current_user["user_id"])
    return ok(operation, message="Survey blast scheduled successfully")


@router.post("/{survey_id}/schedule-reminder", status_code=status.HTTP_201_CREATED)
async def schedule_reminder(
    survey_id: str,
    body: ScheduleRequest,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    data = {**body.to_data(), "survey_id": survey_id}
    operation = await survey_service.schedule_reminder(db, data, created_by=current_user["user_id"])
    return ok(operation, message="Reminder scheduled successfully")


@router.get("/{survey_id}/scheduled-operations")
async def get_scheduled_operations(
    survey_id: str,
    operation_type: Optional[str] = Query(None, alias="operationType"),
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
    db: AsyncSession = Depends(get_db),
):
    operations = await survey_service.get_scheduled_operations(
        db, survey_id=survey_id, operation_type=operation_type, status=status_filter
    )
    return ok(operations)
