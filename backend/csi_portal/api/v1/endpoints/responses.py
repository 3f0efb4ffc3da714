"""
Survey responses.

The form, application lookup, duplicate check and submission routes are
public (respondents are not portal users); listing and statistics require
the responses:read permission.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import ok
from csi_portal.core.database import get_db
from csi_portal.modules.auth.dependencies import client_ip, require_permission
from csi_portal.schemas.response import DuplicateCheckRequest, ResponseSubmit
from csi_portal.services.response_service import response_service

router = APIRouter()


# ==================== PUBLIC ====================

@router.get("/survey/{survey_id}/form")
async def get_survey_form(survey_id: str, db: AsyncSession = Depends(get_db)):
    return ok(await response_service.get_survey_form(db, survey_id))


@router.get("/survey/{survey_id}/applications")
async def get_available_applications(
    survey_id: str,
    department_id: Optional[str] = Query(None, alias="departmentId"),
    db: AsyncSession = Depends(get_db),
):
    return ok(await response_service.get_available_applications(db, survey_id, department_id))


@router.post("/check-duplicate")
async def check_duplicate(body: DuplicateCheckRequest, db: AsyncSession = Depends(get_db)):
    is_duplicate = await response_service.check_duplicate_response(
        db, body.survey_id, body.email, body.application_id
    )
    return ok({"is_duplicate": is_duplicate})


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_response(
    request: Request,
    body: ResponseSubmit,
    db: AsyncSession = Depends(get_db),
):
    result = await response_service.submit_response(db, body.to_data(), ip_address=client_ip(request))
    return ok({"response_ids": result["response_ids"]}, message=result["message"])


# ==================== AUTHENTICATED ====================

@router.get("")
async def list_responses(
    survey_id: Optional[str] = Query(None, alias="surveyId"),
    business_unit_id: Optional[str] = Query(None, alias="businessUnitId"),
    division_id: Optional[str] = Query(None, alias="divisionId"),
    department_id: Optional[str] = Query(None, alias="departmentId"),
    application_id: Optional[str] = Query(None, alias="applicationId"),
    email: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    current_user: Dict[str, Any] = Depends(require_permission("responses:read")),
    db: AsyncSession = Depends(get_db),
):
    rows = await response_service.get_responses(
        db,
        survey_id=survey_id,
        business_unit_id=business_unit_id,
        division_id=division_id,
        department_id=department_id,
        application_id=application_id,
        email=email,
        start_date=start_date,
        end_date=end_date,
    )
    return ok(rows, count=len(rows))


@router.get("/survey/{survey_id}/statistics")
async def get_response_statistics(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("responses:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await response_service.get_response_statistics(db, survey_id))


@router.get("/{response_id}")
async def get_response(
    response_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("responses:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await response_service.get_response(db, response_id))
