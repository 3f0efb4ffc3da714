"""
Survey Service - authoring, configuration, distribution artifacts and schedules

Handles:
- Survey CRUD with admin assignments and a default configuration row
- Question CRUD, ordering and page grouping
- Preview rendering (read-only projection plus generated CSS)
- Link / QR code / embed code generation
- Registration of scheduled blasts and reminders
"""

import base64
import io
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import qrcode
from dateutil import parser as date_parser
from qrcode.constants import ERROR_CORRECT_M
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.config import settings
from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import (
    OPERATION_FREQUENCIES,
    QUESTION_TYPES,
    SURVEY_STATUSES,
    email_logs,
    questions,
    responses,
    scheduled_operations,
    survey_admin_assignments,
    survey_configurations,
    surveys,
    users,
)
from csi_portal.utils.scheduling import first_execution, parse_time

CONFIG_FLAGS = ("show_progress_bar", "show_page_numbers", "multi_page")

CONFIG_FIELDS = (
    "hero_title", "hero_subtitle", "hero_image_url", "logo_url",
    "background_color", "background_image_url", "primary_color",
    "secondary_color", "font_family", "button_style",
    *CONFIG_FLAGS,
)

QUESTION_FIELDS = (
    "type", "prompt_text", "subtitle", "image_url", "is_mandatory",
    "display_order", "page_number", "layout_orientation", "options",
    "comment_required_below_rating",
)

LAYOUT_ORIENTATIONS = ("vertical", "horizontal")

BUTTON_RADIUS = {
    "rounded": "border-radius: 0.25rem;",
    "pill": "border-radius: 50rem;",
    "square": "border-radius: 0;",
}


def parse_datetime(value: Any, message: str) -> datetime:
    """Naive UTC datetime; offsets such as ``Z`` or ``+05:30`` are converted and dropped"""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            raise ValidationError(message)
    if dt.tzinfo:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def make_qr_data_url(data: str, size: int = 300) -> str:
    """PNG QR code as a ``data:image/png;base64,...`` URL"""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    img = img.resize((size, size))

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")


def group_by_page(items: List[Dict[str, Any]]) -> Dict[int, List[Dict[str, Any]]]:
    pages: Dict[int, List[Dict[str, Any]]] = {}
    for q in items:
        pages.setdefault(q.get("page_number") or 1, []).append(q)
    return pages


def generate_preview_styles(config: Dict[str, Any]) -> Dict[str, Any]:
    """CSS values derived from a survey configuration"""
    styles = {
        "background_color": config.get("background_color") or "#ffffff",
        "background_image": f"url({config['background_image_url']})" if config.get("background_image_url") else "none",
        "primary_color": config.get("primary_color") or "#007bff",
        "secondary_color": config.get("secondary_color") or "#6c757d",
        "font_family": config.get("font_family") or "Arial, sans-serif",
        "button_style": config.get("button_style") or "rounded",
    }

    body = [f"background-color: {styles['background_color']};"]
    if styles["background_image"] != "none":
        body.append(f"background-image: {styles['background_image']};")
    body += ["background-size: cover;", "background-position: center;", f"font-family: {styles['font_family']};"]

    button = [f"background-color: {styles['primary_color']};", f"border-color: {styles['primary_color']};"]
    if styles["button_style"] in BUTTON_RADIUS:
        button.append(BUTTON_RADIUS[styles["button_style"]])

    blocks = [
        ("body", body),
        (".btn-primary", button),
        (".btn-secondary", [
            f"background-color: {styles['secondary_color']};",
            f"border-color: {styles['secondary_color']};",
        ]),
        (".progress-bar", [f"background-color: {styles['primary_color']};"]),
    ]
    styles["css_text"] = "\n".join(
        selector + " {\n" + "\n".join(f"  {line}" for line in lines) + "\n}"
        for selector, lines in blocks
    )
    return styles


class SurveyService:
    """Survey authoring and distribution"""

    # ------------------------------------------------------------ validation

    @staticmethod
    def validate_dates(start_date: Any, end_date: Any) -> tuple:
        start = parse_datetime(start_date, "Invalid start date")
        end = parse_datetime(end_date, "Invalid end date")
        if end <= start:
            raise ValidationError("End date must be after start date")
        return start, end

    @staticmethod
    def validate_status(status: str) -> None:
        if status not in SURVEY_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(SURVEY_STATUSES)}")

    @staticmethod
    def validate_target_score(score: Any) -> None:
        if score is not None and not 0 <= float(score) <= 10:
            raise ValidationError("Target score must be between 0 and 10")

    @staticmethod
    def normalize_admin_ids(data: Dict[str, Any]) -> Optional[List[str]]:
        """Merge ``assigned_admin_ids`` and the single ``assigned_admin_id``; None when neither was sent"""
        if "assigned_admin_ids" not in data and "assigned_admin_id" not in data:
            return None
        merged = list(data.get("assigned_admin_ids") or [])
        if data.get("assigned_admin_id"):
            merged.append(data["assigned_admin_id"])
        seen: List[str] = []
        for item in merged:
            value = str(item).strip()
            if value and value not in seen:
                seen.append(value)
        return seen

    async def validate_assigned_admins(self, db: AsyncSession, admin_ids: List[str]) -> None:
        for admin_id in admin_ids:
            found = await db.execute(
                select(users.c.user_id).where(
                    users.c.user_id == admin_id,
                    users.c.is_active.is_(True),
                    users.c.role == "AdminEvent",
                )
            )
            if found.first() is None:
                raise ValidationError("Assigned admin user not found, inactive, or not Admin Event")

    async def _sync_admin_assignments(self, db: AsyncSession, survey_id: str, admin_ids: List[str]) -> None:
        await db.execute(delete(survey_admin_assignments).where(survey_admin_assignments.c.survey_id == survey_id))
        now = datetime.utcnow()
        for admin_id in admin_ids:
            await db.execute(
                insert(survey_admin_assignments).values(survey_id=survey_id, admin_user_id=admin_id, created_at=now)
            )

    async def _admin_ids(self, db: AsyncSession, survey_id: str) -> List[str]:
        result = await db.execute(
            select(survey_admin_assignments.c.admin_user_id).where(survey_admin_assignments.c.survey_id == survey_id)
        )
        return [row[0] for row in result.all()]

    async def _require_survey(self, db: AsyncSession, survey_id: str) -> Dict[str, Any]:
        survey = await BaseRepository(db, surveys, "survey_id").find_by_id(survey_id)
        if not survey:
            raise NotFoundError("Survey")
        return survey

    async def _response_count(self, db: AsyncSession, survey_id: str) -> int:
        result = await db.execute(
            select(func.count()).select_from(responses).where(responses.c.survey_id == survey_id)
        )
        return int(result.scalar() or 0)

    async def _get_config(self, db: AsyncSession, survey_id: str) -> Optional[Dict[str, Any]]:
        return await BaseRepository(db, survey_configurations, "config_id").find_one({"survey_id": survey_id})

    # --------------------------------------------------------------- surveys

    async def create_survey(self, db: AsyncSession, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        title = data.get("title")
        if not title or not str(title).strip():
            raise ValidationError("Title is required")
        if len(title) > 500:
            raise ValidationError("Title must not exceed 500 characters")
        if not data.get("start_date") or not data.get("end_date"):
            raise ValidationError("Start date and end date are required")

        start, end = self.validate_dates(data["start_date"], data["end_date"])
        admin_ids = self.normalize_admin_ids(data) or []
        if admin_ids:
            await self.validate_assigned_admins(db, admin_ids)
        self.validate_target_score(data.get("target_score"))

        now = datetime.utcnow()
        survey = await BaseRepository(db, surveys, "survey_id").create({
            "title": title,
            "description": data.get("description"),
            "start_date": start,
            "end_date": end,
            "status": "Draft",
            "assigned_admin_id": data.get("assigned_admin_id") or (admin_ids[0] if admin_ids else None),
            "target_respondents": data.get("target_respondents"),
            "target_score": data.get("target_score"),
            "duplicate_prevention_enabled": data.get("duplicate_prevention_enabled") is not False,
            "created_at": now,
            "created_by": created_by,
        })
        await self._sync_admin_assignments(db, survey["survey_id"], admin_ids)

        config = data.get("configuration") or {}
        configuration = await BaseRepository(db, survey_configurations, "config_id").create({
            "survey_id": survey["survey_id"],
            **{k: config.get(k) for k in CONFIG_FIELDS if k not in CONFIG_FLAGS},
            "show_progress_bar": config.get("show_progress_bar") is not False,
            "show_page_numbers": config.get("show_page_numbers") is not False,
            "multi_page": config.get("multi_page") is True,
            "created_at": now,
        })

        logger.info(f"[Surveys] Created {survey['survey_id']}: {title}")
        return {**survey, "assigned_admin_ids": admin_ids, "configuration": configuration}

    async def update_survey(
        self,
        db: AsyncSession,
        survey_id: str,
        data: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        current = await self._require_survey(db, survey_id)

        values: Dict[str, Any] = {}
        if data.get("start_date") or data.get("end_date"):
            start, end = self.validate_dates(
                data.get("start_date") or current["start_date"],
                data.get("end_date") or current["end_date"],
            )
            if data.get("start_date"):
                values["start_date"] = start
            if data.get("end_date"):
                values["end_date"] = end

        if data.get("status") is not None:
            self.validate_status(data["status"])
            values["status"] = data["status"]

        admin_ids = self.normalize_admin_ids(data)
        if admin_ids:
            await self.validate_assigned_admins(db, admin_ids)

        if "target_score" in data:
            self.validate_target_score(data["target_score"])
            values["target_score"] = data["target_score"]

        if "title" in data:
            title = data["title"]
            if not title or not str(title).strip():
                raise ValidationError("Title cannot be empty")
            if len(title) > 500:
                raise ValidationError("Title must not exceed 500 characters")
            values["title"] = title

        for key in ("description", "target_respondents", "duplicate_prevention_enabled"):
            if key in data:
                values[key] = data[key]

        if admin_ids is not None:
            values["assigned_admin_id"] = data.get("assigned_admin_id") or (admin_ids[0] if admin_ids else None)

        if not values:
            raise ValidationError("No fields to update")

        values["updated_at"] = datetime.utcnow()
        values["updated_by"] = updated_by
        updated = await BaseRepository(db, surveys, "survey_id").update(survey_id, values)

        if admin_ids is not None:
            await self._sync_admin_assignments(db, survey_id, admin_ids)

        logger.info(f"[Surveys] Updated {survey_id}")
        return {**updated, "assigned_admin_ids": await self._admin_ids(db, survey_id)}

    async def delete_survey(self, db: AsyncSession, survey_id: str) -> bool:
        await self._require_survey(db, survey_id)
        if await self._response_count(db, survey_id):
            raise ValidationError("Cannot delete survey: responses exist")

        for table in (survey_admin_assignments, survey_configurations, questions, scheduled_operations):
            await db.execute(delete(table).where(table.c.survey_id == survey_id))
        await db.execute(delete(email_logs).where(email_logs.c.survey_id == survey_id))
        deleted = await BaseRepository(db, surveys, "survey_id").delete(survey_id)

        logger.info(f"[Surveys] Deleted {survey_id}")
        return deleted

    async def list_surveys(
        self,
        db: AsyncSession,
        status: Optional[str] = None,
        assigned_admin_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        respondent_counts = (
            select(responses.c.survey_id, func.count().label("respondent_count"))
            .group_by(responses.c.survey_id)
            .subquery()
        )
        admin = users.alias("admin")
        query = (
            select(
                surveys,
                func.coalesce(respondent_counts.c.respondent_count, 0).label("respondent_count"),
                admin.c.display_name.label("assigned_admin_name"),
            )
            .select_from(
                surveys.outerjoin(respondent_counts, respondent_counts.c.survey_id == surveys.c.survey_id)
                .outerjoin(admin, admin.c.user_id == surveys.c.assigned_admin_id)
            )
        )
        if status:
            query = query.where(surveys.c.status == status)
        if assigned_admin_id:
            assigned = select(survey_admin_assignments.c.survey_id).where(
                survey_admin_assignments.c.admin_user_id == assigned_admin_id
            )
            query = query.where(
                surveys.c.survey_id.in_(assigned) | (surveys.c.assigned_admin_id == assigned_admin_id)
            )

        result = await db.execute(query.order_by(surveys.c.created_at.desc()))
        items = [dict(r._mapping) for r in result.all()]

        assignments = await db.execute(
            select(survey_admin_assignments.c.survey_id, survey_admin_assignments.c.admin_user_id, users.c.display_name)
            .select_from(
                survey_admin_assignments.join(users, users.c.user_id == survey_admin_assignments.c.admin_user_id)
            )
        )
        by_survey: Dict[str, List[tuple]] = {}
        for row in assignments.all():
            by_survey.setdefault(row.survey_id, []).append((row.admin_user_id, row.display_name))

        for item in items:
            assigned = by_survey.get(item["survey_id"], [])
            if assigned:
                item["assigned_admin_ids"] = [a[0] for a in assigned]
                item["assigned_admin_names"] = [a[1] for a in assigned]
            else:
                item["assigned_admin_ids"] = [item["assigned_admin_id"]] if item["assigned_admin_id"] else []
                item["assigned_admin_names"] = [item["assigned_admin_name"]] if item["assigned_admin_name"] else []
        return items

    async def get_survey(self, db: AsyncSession, survey_id: str) -> Dict[str, Any]:
        survey = await self._require_survey(db, survey_id)
        survey["assigned_admin_ids"] = await self._admin_ids(db, survey_id)
        survey["configuration"] = await self._get_config(db, survey_id)
        survey["questions"] = await self.get_questions(db, survey_id)
        if survey["configuration"] and survey["configuration"]["multi_page"]:
            survey["pages"] = group_by_page(survey["questions"])
        return survey

    # --------------------------------------------------------- configuration

    async def update_survey_config(self, db: AsyncSession, survey_id: str, config: Dict[str, Any]) -> Dict[str, Any]:
        await self._require_survey(db, survey_id)
        current = await self._get_config(db, survey_id)
        if not current:
            raise NotFoundError("Survey configuration")

        values = {
            k: config[k] for k in CONFIG_FIELDS
            if k in config and not (k in CONFIG_FLAGS and config[k] is None)
        }
        if not values:
            raise ValidationError("No fields to update")
        values["updated_at"] = datetime.utcnow()

        updated = await BaseRepository(db, survey_configurations, "config_id").update(current["config_id"], values)
        logger.info(f"[Surveys] Configuration updated for {survey_id}")
        return updated

    async def generate_preview(self, db: AsyncSession, survey_id: str) -> Dict[str, Any]:
        survey = await self._require_survey(db, survey_id)
        config = await self._get_config(db, survey_id) or {}
        configuration = {k: config.get(k) for k in CONFIG_FIELDS}

        preview: Dict[str, Any] = {
            "survey_id": survey["survey_id"],
            "title": survey["title"],
            "description": survey["description"],
            "start_date": survey["start_date"],
            "end_date": survey["end_date"],
            "status": survey["status"],
            "target_respondents": survey["target_respondents"],
            "target_score": survey["target_score"],
            "configuration": configuration,
            "read_only": True,
        }

        items = await self.get_questions(db, survey_id)
        if configuration["multi_page"]:
            preview["pages"] = group_by_page(items)
            preview["total_pages"] = len(preview["pages"])
        else:
            preview["questions"] = items

        preview["styles"] = generate_preview_styles(configuration)
        logger.info(f"[Surveys] Preview generated for {survey_id}")
        return preview

    # ------------------------------------------------------------- questions

    @staticmethod
    def _validate_question_fields(data: Dict[str, Any]) -> None:
        if data.get("type") is not None and data["type"] not in QUESTION_TYPES:
            raise ValidationError(f"Question type must be one of: {', '.join(QUESTION_TYPES)}")
        if data.get("layout_orientation") and data["layout_orientation"] not in LAYOUT_ORIENTATIONS:
            raise ValidationError('Layout orientation must be either "vertical" or "horizontal"')
        if data.get("page_number") is not None and data["page_number"] < 1:
            raise ValidationError("Page number must be at least 1")

    async def add_question(
        self,
        db: AsyncSession,
        survey_id: str,
        data: Dict[str, Any],
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not data.get("type"):
            raise ValidationError("Question type is required")
        if not data.get("prompt_text") or not str(data["prompt_text"]).strip():
            raise ValidationError("Prompt text is required")
        self._validate_question_fields(data)
        await self._require_survey(db, survey_id)

        display_order = data.get("display_order")
        if display_order is None:
            result = await db.execute(
                select(func.coalesce(func.max(questions.c.display_order), 0)).where(questions.c.survey_id == survey_id)
            )
            display_order = int(result.scalar() or 0) + 1

        question = await BaseRepository(db, questions, "question_id").create({
            "survey_id": survey_id,
            "type": data["type"],
            "prompt_text": data["prompt_text"],
            "subtitle": data.get("subtitle"),
            "image_url": data.get("image_url"),
            "is_mandatory": bool(data.get("is_mandatory")),
            "display_order": display_order,
            "page_number": data.get("page_number") or 1,
            "layout_orientation": data.get("layout_orientation"),
            "options": data.get("options"),
            "comment_required_below_rating": data.get("comment_required_below_rating"),
            "created_at": datetime.utcnow(),
            "created_by": created_by,
        })
        logger.info(f"[Questions] Added {question['question_id']} to survey {survey_id}")
        return question

    async def _require_question(self, db: AsyncSession, question_id: str) -> Dict[str, Any]:
        question = await BaseRepository(db, questions, "question_id").find_by_id(question_id)
        if not question:
            raise NotFoundError("Question")
        return question

    async def update_question(
        self,
        db: AsyncSession,
        question_id: str,
        data: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        question = await self._require_question(db, question_id)
        if await self._response_count(db, question["survey_id"]):
            raise ValidationError("Cannot modify question: survey has responses")

        self._validate_question_fields(data)
        if "prompt_text" in data and (not data["prompt_text"] or not str(data["prompt_text"]).strip()):
            raise ValidationError("Prompt text cannot be empty")

        values = {k: data[k] for k in QUESTION_FIELDS if k in data}
        if not values:
            raise ValidationError("No fields to update")

        values["updated_at"] = datetime.utcnow()
        values["updated_by"] = updated_by
        updated = await BaseRepository(db, questions, "question_id").update(question_id, values)
        logger.info(f"[Questions] Updated {question_id}")
        return updated

    async def delete_question(self, db: AsyncSession, question_id: str) -> bool:
        question = await self._require_question(db, question_id)
        if await self._response_count(db, question["survey_id"]):
            raise ValidationError("Cannot delete question: survey has responses")

        deleted = await BaseRepository(db, questions, "question_id").delete(question_id)
        logger.info(f"[Questions] Deleted {question_id}")
        return deleted

    async def reorder_questions(self, db: AsyncSession, survey_id: str, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not orders:
            raise ValidationError("Question orders array is required")
        await self._require_survey(db, survey_id)

        for item in orders:
            if not item.get("question_id") or item.get("display_order") is None:
                raise ValidationError("Each item must have questionId and displayOrder")

        now = datetime.utcnow()
        for item in orders:
            await db.execute(
                update(questions)
                .where(questions.c.question_id == item["question_id"], questions.c.survey_id == survey_id)
                .values(display_order=item["display_order"], updated_at=now)
            )

        logger.info(f"[Questions] Reordered {len(orders)} questions in survey {survey_id}")
        result = await db.execute(
            select(questions).where(questions.c.survey_id == survey_id).order_by(questions.c.display_order)
        )
        return [dict(r._mapping) for r in result.all()]

    async def get_questions(self, db: AsyncSession, survey_id: str) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(questions)
            .where(questions.c.survey_id == survey_id)
            .order_by(questions.c.page_number, questions.c.display_order)
        )
        return [dict(r._mapping) for r in result.all()]

    # ------------------------------------------------------------- artifacts

    async def generate_survey_link(self, db: AsyncSession, survey_id: str, shorten: bool = False) -> Dict[str, Any]:
        await self._require_survey(db, survey_id)

        survey_link = settings.get_survey_url(survey_id)
        shortened_link = f"{settings.BASE_URL}/s/{str(survey_id)[:8]}" if shorten else None

        await db.execute(
            update(surveys)
            .where(surveys.c.survey_id == survey_id)
            .values(survey_link=survey_link, shortened_link=shortened_link, updated_at=datetime.utcnow())
        )
        logger.info(f"[Surveys] Link generated for {survey_id}")
        return {"survey_link": survey_link, "shortened_link": shortened_link}

    async def generate_qr_code(self, db: AsyncSession, survey_id: str) -> str:
        survey = await self._require_survey(db, survey_id)

        link = survey["shortened_link"] or survey["survey_link"]
        if not link:
            link = (await self.generate_survey_link(db, survey_id))["survey_link"]

        data_url = make_qr_data_url(link)
        await db.execute(
            update(surveys)
            .where(surveys.c.survey_id == survey_id)
            .values(qr_code_data_url=data_url, updated_at=datetime.utcnow())
        )
        logger.info(f"[Surveys] QR code generated for {survey_id}")
        return data_url

    async def generate_embed_code(self, db: AsyncSession, survey_id: str) -> str:
        survey = await self._require_survey(db, survey_id)

        link = survey["survey_link"]
        if not link:
            link = (await self.generate_survey_link(db, survey_id))["survey_link"]

        embed_code = (
            f'<iframe src="{link}" width="100%" height="600px" frameborder="0" '
            f'title="{survey["title"] or "Survey"}"></iframe>'
        )
        await db.execute(
            update(surveys)
            .where(surveys.c.survey_id == survey_id)
            .values(embed_code=embed_code, updated_at=datetime.utcnow())
        )
        logger.info(f"[Surveys] Embed code generated for {survey_id}")
        return embed_code

    # ------------------------------------------------------------ scheduling

    async def _schedule(
        self,
        db: AsyncSession,
        operation_type: str,
        data: Dict[str, Any],
        created_by: Optional[str],
    ) -> Dict[str, Any]:
        survey_id = data.get("survey_id")
        if not survey_id or not data.get("scheduled_date") or not data.get("email_template"):
            raise ValidationError("Survey ID, scheduled date, and email template are required")

        frequency = data.get("frequency") or "once"
        if frequency not in OPERATION_FREQUENCIES:
            raise ValidationError(f"Frequency must be one of: {', '.join(OPERATION_FREQUENCIES)}")

        day_of_week = data.get("day_of_week")
        if frequency == "weekly" and (day_of_week is None or not 0 <= day_of_week <= 6):
            raise ValidationError("Weekly scheduling requires dayOfWeek (0-6)")

        scheduled_time = data.get("scheduled_time")
        if frequency != "once" and parse_time(scheduled_time) is None:
            raise ValidationError("Recurring schedules require scheduledTime in HH:mm format")
        if scheduled_time and parse_time(scheduled_time) is None:
            raise ValidationError("Scheduled time must be in HH:mm format")

        scheduled_date = parse_datetime(data["scheduled_date"], "Invalid scheduled date")
        await self._require_survey(db, survey_id)

        operation = await BaseRepository(db, scheduled_operations, "operation_id").create({
            "survey_id": survey_id,
            "operation_type": operation_type,
            "frequency": frequency,
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
            "day_of_week": day_of_week,
            "email_template": data["email_template"],
            "embed_cover": bool(data.get("embed_cover")),
            "target_criteria": data.get("target_criteria") if operation_type == "Blast" else None,
            "status": "Pending",
            "next_execution_at": first_execution(scheduled_date, frequency, scheduled_time, day_of_week),
            "execution_count": 0,
            "created_at": datetime.utcnow(),
            "created_by": created_by,
        })
        logger.info(
            f"[Schedule] {operation_type} scheduled for survey {survey_id}, "
            f"operation {operation['operation_id']} at {operation['next_execution_at']}"
        )
        return operation

    async def schedule_blast(self, db: AsyncSession, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        return await self._schedule(db, "Blast", data, created_by)

    async def schedule_reminder(self, db: AsyncSession, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        return await self._schedule(db, "Reminder", data, created_by)

    async def get_scheduled_operations(
        self,
        db: AsyncSession,
        survey_id: Optional[str] = None,
        operation_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = (
            select(scheduled_operations, users.c.display_name.label("created_by_name"))
            .select_from(scheduled_operations.outerjoin(users, users.c.user_id == scheduled_operations.c.created_by))
        )
        if survey_id:
            query = query.where(scheduled_operations.c.survey_id == survey_id)
        if operation_type:
            query = query.where(scheduled_operations.c.operation_type == operation_type)
        if status:
            query = query.where(scheduled_operations.c.status == status)

        result = await db.execute(
            query.order_by(scheduled_operations.c.scheduled_date.desc(), scheduled_operations.c.created_at.desc())
        )
        return [dict(r._mapping) for r in result.all()]

    async def cancel_scheduled_operation(self, db: AsyncSession, operation_id: str) -> Dict[str, Any]:
        repo = BaseRepository(db, scheduled_operations, "operation_id")
        operation = await repo.find_by_id(operation_id)
        if not operation:
            raise NotFoundError("Scheduled operation")

        if operation["status"] == "Completed":
            raise ConflictError("Cannot cancel completed operation")
        if operation["status"] == "Cancelled":
            raise ConflictError("Operation is already cancelled")
        if operation["status"] == "Running":
            raise ConflictError("Cannot cancel operation that is currently running")

        cancelled = await repo.update(operation_id, {"status": "Cancelled", "next_execution_at": None})
        logger.info(f"[Schedule] Cancelled operation {operation_id} for survey {operation['survey_id']}")
        return cancelled


survey_service = SurveyService()
