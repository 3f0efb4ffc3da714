from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.core.exceptions import ValidationError
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.schemas.survey import QuestionCreate, QuestionUpdate, ReorderQuestionsRequest
from csi_portal.services.survey_service import survey_service

router = APIRouter()


@router.get("/survey/{survey_id}")
async def get_questions(
    survey_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await survey_service.get_questions(db, survey_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_question(
    request: Request,
    body: QuestionCreate,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    if not body.survey_id:
        raise ValidationError("Survey ID is required")

    question = await survey_service.add_question(db, body.survey_id, body.to_data(), created_by=current_user["user_id"])
    await audit(db, request, current_user, "Create", "Question", question["question_id"], new_values=body.to_data())
    return ok(question, message="Question added successfully")


# Declared before /{question_id} so "reorder" is not taken as an id
@router.patch("/reorder")
async def reorder_questions(
    body: ReorderQuestionsRequest,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    if not body.survey_id or not body.question_orders:
        raise ValidationError("Survey ID and question orders are required")

    orders = [order.to_data() for order in body.question_orders]
    questions = await survey_service.reorder_questions(db, body.survey_id, orders)
    return ok(questions, message="Questions reordered successfully")


@router.put("/{question_id}")
async def update_question(
    question_id: str,
    request: Request,
    body: QuestionUpdate,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    question = await survey_service.update_question(db, question_id, body.to_data(), updated_by=current_user["user_id"])
    await audit(db, request, current_user, "Update", "Question", question_id, new_values=body.to_data())
    return ok(question, message="Question updated successfully")


@router.delete("/{question_id}")
async def delete_question(
    question_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("surveys:update")),
    db: AsyncSession = Depends(get_db),
):
    await survey_service.delete_question(db, question_id)
    await audit(db, request, current_user, "Delete", "Question", question_id)
    return ok(message="Question deleted successfully")
