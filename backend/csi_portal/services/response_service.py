"""
Response Service - public survey form and response collection

A respondent picks their organizational placement and one or more
applications; the answers are stored once per selected application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import (
    application_department_mappings,
    applications,
    business_units,
    departments,
    divisions,
    question_responses,
    questions,
    responses,
    survey_configurations,
    surveys,
)
from csi_portal.services.survey_service import parse_datetime

FORM_CONFIG_FIELDS = (
    "hero_title", "hero_subtitle", "hero_image_url", "logo_url",
    "background_image_url", "background_color", "primary_color",
    "secondary_color", "font_family", "button_style",
    "show_progress_bar", "show_page_numbers", "multi_page",
)


def _filled(text: Any) -> bool:
    return isinstance(text, str) and text.strip() != ""


def response_has_value(question_type: str, value: Optional[Dict[str, Any]]) -> bool:
    """Whether an answer carries a value for the given question type"""
    if not value:
        return False
    if question_type in ("Text", "Dropdown", "MultipleChoice", "Checkbox", "Signature"):
        return _filled(value.get("text_value"))
    if question_type == "Rating":
        return value.get("numeric_value") is not None
    if question_type == "Date":
        return value.get("date_value") is not None
    if question_type == "MatrixLikert":
        return bool(value.get("matrix_values"))
    return False


def comment_threshold(question: Dict[str, Any]) -> Optional[int]:
    if question.get("comment_required_below_rating") is not None:
        return question["comment_required_below_rating"]
    options = question.get("options")
    if isinstance(options, dict):
        return options.get("comment_required_below_rating") or options.get("commentRequiredBelowRating")
    return None


def validate_answers(form_questions: List[Dict[str, Any]], answers: List[Dict[str, Any]]) -> None:
    """Mandatory questions answered and low ratings commented"""
    by_question = {str(a.get("question_id")): a.get("value") or {} for a in answers}

    for question in form_questions:
        value = by_question.get(str(question["question_id"]))
        prompt = question["prompt_text"]

        if question["is_mandatory"] and not response_has_value(question["type"], value):
            raise ValidationError(f'Question "{prompt}" is mandatory and must be answered')

        threshold = comment_threshold(question)
        if question["type"] == "Rating" and threshold is not None and value:
            rating = value.get("numeric_value")
            if rating is not None and rating < threshold and not _filled(value.get("comment_value")):
                raise ValidationError(
                    f'A comment is required for ratings below {threshold} for question "{prompt}"'
                )


class ResponseService:
    """Public form access, submission and admin listing"""

    async def get_survey_form(self, db: AsyncSession, survey_id: str) -> Dict[str, Any]:
        survey = await BaseRepository(db, surveys, "survey_id").find_by_id(survey_id)
        if not survey:
            raise NotFoundError("Survey", f"Survey with ID {survey_id} not found")

        if survey["status"] != "Active":
            raise ValidationError("Survey is not currently active")

        now = datetime.utcnow()
        if now < survey["start_date"] or now > survey["end_date"]:
            raise ValidationError("Survey is not available at this time")

        config = await BaseRepository(db, survey_configurations, "config_id").find_one({"survey_id": survey_id}) or {}
        result = await db.execute(
            select(
                questions.c.question_id, questions.c.survey_id, questions.c.type,
                questions.c.prompt_text, questions.c.subtitle, questions.c.is_mandatory,
                questions.c.display_order, questions.c.page_number, questions.c.options,
                questions.c.image_url, questions.c.layout_orientation,
                questions.c.comment_required_below_rating,
            )
            .where(questions.c.survey_id == survey_id)
            .order_by(questions.c.page_number, questions.c.display_order)
        )

        return {
            "survey_id": survey["survey_id"],
            "title": survey["title"],
            "description": survey["description"],
            "start_date": survey["start_date"],
            "end_date": survey["end_date"],
            "status": survey["status"],
            "target_respondents": survey["target_respondents"],
            "target_score": survey["target_score"],
            "duplicate_prevention_enabled": survey["duplicate_prevention_enabled"],
            "configuration": {k: config.get(k) for k in FORM_CONFIG_FIELDS},
            "questions": [dict(r._mapping) for r in result.all()],
        }

    async def get_available_applications(
        self,
        db: AsyncSession,
        survey_id: Optional[str],
        department_id: Optional[str],
    ) -> List[Dict[str, Any]]:
        if not survey_id:
            raise ValidationError("Survey ID is required")
        if not department_id:
            raise ValidationError("Department ID is required")

        result = await db.execute(
            select(
                applications.c.application_id, applications.c.code,
                applications.c.name, applications.c.description,
            )
            .distinct()
            .select_from(
                applications.join(
                    application_department_mappings,
                    application_department_mappings.c.application_id == applications.c.application_id,
                )
            )
            .where(
                application_department_mappings.c.department_id == department_id,
                applications.c.is_active.is_(True),
            )
            .order_by(applications.c.name)
        )
        return [dict(r._mapping) for r in result.all()]

    async def check_duplicate_response(
        self,
        db: AsyncSession,
        survey_id: Optional[str],
        email: Optional[str],
        application_id: Optional[str],
    ) -> bool:
        if not survey_id:
            raise ValidationError("Survey ID is required")
        if not email:
            raise ValidationError("Email is required")
        if not application_id:
            raise ValidationError("Application ID is required")

        result = await db.execute(
            select(func.count())
            .select_from(responses)
            .where(
                responses.c.survey_id == survey_id,
                func.lower(func.trim(responses.c.respondent_email)) == email.lower().strip(),
                responses.c.application_id == application_id,
            )
        )
        return bool(result.scalar())

    async def submit_response(
        self,
        db: AsyncSession,
        data: Dict[str, Any],
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        survey_id = data.get("survey_id")
        respondent = data.get("respondent")
        application_ids = data.get("selected_application_ids") or []
        answers = data.get("responses") or []

        if not survey_id:
            raise ValidationError("Survey ID is required")
        if not respondent:
            raise ValidationError("Respondent information is required")
        if not application_ids:
            raise ValidationError("At least one application must be selected")
        if not answers:
            raise ValidationError("Survey responses are required")

        if not respondent.get("business_unit_id"):
            raise ValidationError("Business Unit is required")
        if not respondent.get("division_id"):
            raise ValidationError("Division is required")
        if not respondent.get("department_id"):
            raise ValidationError("Department is required")
        if not _filled(respondent.get("email")):
            raise ValidationError("Email is required")
        if not _filled(respondent.get("name")):
            raise ValidationError("Name is required")

        form = await self.get_survey_form(db, survey_id)
        validate_answers(form["questions"], answers)

        known_questions = {str(q["question_id"]) for q in form["questions"]}
        for answer in answers:
            if str(answer.get("question_id")) not in known_questions:
                raise ValidationError(f"Question {answer.get('question_id')} does not belong to this survey")

        app_repo = BaseRepository(db, applications, "application_id")
        for application_id in application_ids:
            app = await app_repo.find_by_id(application_id)
            if not app:
                raise NotFoundError("Application", f"Application with ID {application_id} not found")
            if form["duplicate_prevention_enabled"] and await self.check_duplicate_response(
                db, survey_id, respondent["email"], application_id
            ):
                raise ConflictError(f"You have already submitted a response for application: {app['name']}")

        response_repo = BaseRepository(db, responses, "response_id")
        answer_repo = BaseRepository(db, question_responses, "question_response_id")
        now = datetime.utcnow()
        response_ids = []

        for application_id in application_ids:
            response = await response_repo.create({
                "survey_id": survey_id,
                "respondent_name": respondent["name"],
                "respondent_email": respondent["email"].strip(),
                "business_unit_id": respondent["business_unit_id"],
                "division_id": respondent["division_id"],
                "department_id": respondent["department_id"],
                "application_id": application_id,
                "ip_address": ip_address,
                "submitted_at": now,
            })
            response_ids.append(response["response_id"])

            for answer in answers:
                value = answer.get("value") or {}
                await answer_repo.create({
                    "response_id": response["response_id"],
                    "question_id": answer["question_id"],
                    "text_value": value.get("text_value"),
                    "numeric_value": value.get("numeric_value"),
                    "date_value": parse_datetime(value["date_value"], "Invalid date value")
                    if value.get("date_value") else None,
                    "matrix_values": value.get("matrix_values"),
                    "comment_value": value.get("comment_value"),
                    "created_at": now,
                })

        logger.info(f"[Responses] Submitted {len(response_ids)} response(s) for survey {survey_id}")
        return {
            "success": True,
            "message": "Survey response submitted successfully",
            "response_ids": response_ids,
        }

    def _list_query(self):
        return (
            select(
                responses,
                surveys.c.title.label("survey_title"),
                business_units.c.name.label("business_unit_name"),
                divisions.c.name.label("division_name"),
                departments.c.name.label("department_name"),
                applications.c.name.label("application_name"),
            )
            .select_from(
                responses.join(surveys, surveys.c.survey_id == responses.c.survey_id)
                .outerjoin(business_units, business_units.c.business_unit_id == responses.c.business_unit_id)
                .outerjoin(divisions, divisions.c.division_id == responses.c.division_id)
                .outerjoin(departments, departments.c.department_id == responses.c.department_id)
                .outerjoin(applications, applications.c.application_id == responses.c.application_id)
            )
        )

    async def get_responses(
        self,
        db: AsyncSession,
        survey_id: Optional[str] = None,
        business_unit_id: Optional[str] = None,
        division_id: Optional[str] = None,
        department_id: Optional[str] = None,
        application_id: Optional[str] = None,
        email: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        query = self._list_query()
        for column, value in (
            (responses.c.survey_id, survey_id),
            (responses.c.business_unit_id, business_unit_id),
            (responses.c.division_id, division_id),
            (responses.c.department_id, department_id),
            (responses.c.application_id, application_id),
        ):
            if value:
                query = query.where(column == value)
        if email:
            query = query.where(func.lower(responses.c.respondent_email).like(f"%{email.lower()}%"))
        if start_date:
            query = query.where(responses.c.submitted_at >= start_date)
        if end_date:
            query = query.where(responses.c.submitted_at <= end_date)

        result = await db.execute(query.order_by(responses.c.submitted_at.desc()))
        return [dict(r._mapping) for r in result.all()]

    async def get_response(self, db: AsyncSession, response_id: str) -> Dict[str, Any]:
        row = (await db.execute(self._list_query().where(responses.c.response_id == response_id))).first()
        if row is None:
            raise NotFoundError("Response", f"Response with ID {response_id} not found")

        response = dict(row._mapping)
        answers = await db.execute(
            select(
                question_responses,
                questions.c.type.label("question_type"),
                questions.c.prompt_text,
            )
            .select_from(question_responses.join(questions, questions.c.question_id == question_responses.c.question_id))
            .where(question_responses.c.response_id == response_id)
            .order_by(questions.c.page_number, questions.c.display_order)
        )
        response["answers"] = [dict(r._mapping) for r in answers.all()]
        return response

    async def get_response_statistics(self, db: AsyncSession, survey_id: str) -> Dict[str, Any]:
        """Counts per department and application plus average ratings"""
        total = await db.execute(
            select(func.count(distinct(responses.c.response_id))).where(responses.c.survey_id == survey_id)
        )

        by_department = await db.execute(
            select(departments.c.department_id, departments.c.name.label("department_name"),
                   func.count(responses.c.response_id).label("response_count"))
            .select_from(responses.join(departments, departments.c.department_id == responses.c.department_id))
            .where(responses.c.survey_id == survey_id)
            .group_by(departments.c.department_id, departments.c.name)
            .order_by(departments.c.name)
        )

        by_application = await db.execute(
            select(applications.c.application_id, applications.c.name.label("application_name"),
                   applications.c.code.label("application_code"),
                   func.count(responses.c.response_id).label("response_count"))
            .select_from(responses.join(applications, applications.c.application_id == responses.c.application_id))
            .where(responses.c.survey_id == survey_id)
            .group_by(applications.c.application_id, applications.c.name, applications.c.code)
            .order_by(applications.c.name)
        )

        ratings = await db.execute(
            select(questions.c.question_id, questions.c.prompt_text.label("question_text"),
                   func.avg(question_responses.c.numeric_value).label("average_rating"),
                   func.count().label("response_count"))
            .select_from(
                question_responses.join(questions, questions.c.question_id == question_responses.c.question_id)
                .join(responses, responses.c.response_id == question_responses.c.response_id)
            )
            .where(
                responses.c.survey_id == survey_id,
                questions.c.type.in_(("Rating", "MatrixLikert")),
                question_responses.c.numeric_value.isnot(None),
            )
            .group_by(questions.c.question_id, questions.c.prompt_text, questions.c.display_order)
            .order_by(questions.c.display_order)
        )

        return {
            "total_responses": int(total.scalar() or 0),
            "by_department": [dict(r._mapping) for r in by_department.all()],
            "by_application": [dict(r._mapping) for r in by_application.all()],
            "average_ratings": [
                {**dict(r._mapping), "average_rating": float(r.average_rating) if r.average_rating is not None else None}
                for r in ratings.all()
            ],
        }


response_service = ResponseService()
