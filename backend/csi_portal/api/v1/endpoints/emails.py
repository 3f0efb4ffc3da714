from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import ok
from csi_portal.core.database import get_db
from csi_portal.core.exceptions import ValidationError
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.schemas.email import BlastRequest, NotificationRequest, ReminderRequest
from csi_portal.services.email_service import email_service

router = APIRouter()


@router.post("/blast")
async def send_survey_blast(
    body: BlastRequest,
    current_user: Dict[str, Any] = Depends(require_permission("emails:send")),
    db: AsyncSession = Depends(get_db),
):
    if not body.survey_id:
        raise ValidationError("Survey ID is required")

    criteria = body.target_criteria.to_data() if body.target_criteria else {}
    result = await email_service.send_survey_blast(
        db,
        body.survey_id,
        target_criteria=criteria,
        email_template=body.email_template,
        embed_cover=body.embed_cover,
        duplicate_prevention_hours=body.duplicate_prevention_hours,
    )
    return ok(result, message="Survey blast completed")


@router.get("/recipients/{survey_id}")
async def get_recipients(
    survey_id: str,
    business_unit_ids: Optional[List[str]] = Query(None, alias="businessUnitIds"),
    division_ids: Optional[List[str]] = Query(None, alias="divisionIds"),
    department_ids: Optional[List[str]] = Query(None, alias="departmentIds"),
    function_ids: Optional[List[str]] = Query(None, alias="functionIds"),
    current_user: Dict[str, Any] = Depends(require_permission("emails:send")),
    db: AsyncSession = Depends(get_db),
):
    criteria = {
        "business_unit_ids": business_unit_ids or [],
        "division_ids": division_ids or [],
        "department_ids": department_ids or [],
        "function_ids": function_ids or [],
    }
    recipients = await email_service.get_target_recipients(db, criteria)
    return ok(recipients, count=len(recipients), survey_id=survey_id)


@router.post("/reminders")
async def send_reminders(
    body: ReminderRequest,
    current_user: Dict[str, Any] = Depends(require_permission("emails:send")),
    db: AsyncSession = Depends(get_db),
):
    if not body.survey_id:
        raise ValidationError("Survey ID is required")

    result = await email_service.send_reminders(
        db,
        body.survey_id,
        email_template=body.email_template,
        embed_cover=body.embed_cover,
        duplicate_prevention_hours=body.duplicate_prevention_hours,
    )
    return ok(result, message=result.get("message") or "Reminders sent")


@router.get("/non-respondents/{survey_id}")
async def get_non_respondents(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("emails:send")),
    db: AsyncSession = Depends(get_db),
):
    pending = await email_service.get_non_respondents(db, survey_id)
    return ok(pending, count=len(pending))


@router.post("/notification")
async def send_notification(
    body: NotificationRequest,
    current_user: Dict[str, Any] = Depends(require_permission("emails:send")),
    db: AsyncSession = Depends(get_db),
):
    if not body.to_email or not body.subject or not body.html_content:
        raise ValidationError("Recipient email, subject, and HTML content are required")
    if not email_service.validate_email(body.to_email):
        raise ValidationError("Invalid email format")

    result = await email_service.send_notification(
        db,
        body.to_email,
        body.subject,
        body.html_content,
        recipient_name=body.recipient_name,
        survey_id=body.survey_id,
    )
    return ok(result, message="Notification sent" if result.get("success") else "Notification failed")
