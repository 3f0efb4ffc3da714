"""
Email Service for CSI Portal
============================
Handles survey email delivery:
- Invitation blasts to a slice of the organization
- Reminders to blast recipients who have not responded
- Ad-hoc notifications

Every attempt is recorded in email_logs (Sent / Failed), which also drives
duplicate prevention and non-respondent detection.
"""

import asyncio
import math
import re
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Dict, List, Optional

import aiosmtplib
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.config import settings
from csi_portal.core.exceptions import NotFoundError
from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import (
    application_department_mappings,
    business_units,
    departments,
    divisions,
    email_logs,
    function_application_mappings,
    responses,
    survey_configurations,
    surveys,
    users,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_INVITATION = (
    "<p>Dear {{recipient_name}},</p>"
    "<p>You are invited to take part in <strong>{{survey_title}}</strong>.</p>"
    "<p>{{survey_description}}</p>"
    "<p>The survey is open from {{start_date}} to {{end_date}}.</p>"
    '<p><a href="{{survey_link}}">Open the survey</a></p>'
)

DEFAULT_REMINDER = (
    "<p>Dear {{recipient_name}},</p>"
    "<p><strong>{{survey_title}}</strong> closes on {{end_date}} "
    "({{days_remaining}} day(s) remaining).</p>"
    '<p><a href="{{survey_link}}">Complete the survey</a></p>'
)


def render_template(template: str, data: Dict[str, Any]) -> str:
    """Replace ``{{key}}`` placeholders; unknown keys render empty"""
    def _sub(match):
        value = data.get(match.group(1))
        return "" if value is None else str(value)
    return PLACEHOLDER_PATTERN.sub(_sub, template)


def cover_block(hero_url: Optional[str]) -> str:
    return f'<p><img src="{hero_url}" alt="Survey cover" style="max-width:100%"></p>' if hero_url else ""


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


class EmailService:
    """Async SMTP delivery with logging to email_logs"""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self.batch_size = settings.EMAIL_BATCH_SIZE
        self.batch_delay = settings.EMAIL_BATCH_DELAY

    @property
    def is_configured(self) -> bool:
        """Check if an SMTP relay is configured"""
        return bool(self.smtp_host)

    @staticmethod
    def validate_email(email: Any) -> bool:
        return isinstance(email, str) and bool(EMAIL_PATTERN.match(email))

    async def _deliver(self, to_email: str, subject: str, html_content: str) -> Dict[str, Any]:
        """Send one message over SMTP; never raises"""
        if not self.is_configured:
            logger.warning("[Email] Email service not configured, skipping email send")
            return {"success": False, "error": "Email service not configured"}

        message = MIMEMultipart("alternative")
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to_email
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.attach(MIMEText(html_content, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user or None,
                password=self.smtp_password or None,
                start_tls=self.use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"[Email/SMTP] Failed to send email to {to_email}: {e}")
            return {"success": False, "error": str(e)}

        logger.info(f"[Email/SMTP] Successfully sent email to {to_email}: {subject}")
        return {"success": True, "message_id": message["Message-ID"]}

    async def log_email(
        self,
        db: AsyncSession,
        recipient_email: str,
        subject: str,
        email_type: str,
        status: str,
        survey_id: Optional[str] = None,
        recipient_name: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        await BaseRepository(db, email_logs, "email_log_id").create({
            "survey_id": survey_id,
            "recipient_email": recipient_email,
            "recipient_name": recipient_name,
            "subject": subject[:500],
            "email_type": email_type,
            "status": status,
            "error_message": error_message,
            "sent_at": datetime.utcnow(),
        })

    async def _record(self, db: AsyncSession, email: Dict[str, Any], result: Dict[str, Any]) -> None:
        await self.log_email(
            db,
            recipient_email=email["to"],
            subject=email["subject"],
            email_type=email.get("email_type", "Notification"),
            status="Sent" if result["success"] else "Failed",
            survey_id=email.get("survey_id"),
            recipient_name=email.get("recipient_name"),
            error_message=result.get("error"),
        )

    async def send_email(self, db: AsyncSession, email: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one email and log it.

        ``email`` keys: to, subject, html, survey_id, recipient_name, email_type
        """
        result = await self._deliver(email["to"], email["subject"], email["html"])
        await self._record(db, email, result)
        return result

    async def send_batch(
        self,
        db: AsyncSession,
        emails: List[Dict[str, Any]],
        batch_size: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send in batches, pausing between them to respect relay limits.

        Messages inside a batch go out concurrently; log rows are written
        afterwards on the shared session.
        """
        batch_size = batch_size or self.batch_size
        delay = self.batch_delay if delay is None else delay
        results = {"total": len(emails), "sent": 0, "failed": 0, "errors": []}
        total_batches = math.ceil(len(emails) / batch_size) if emails else 0

        for index in range(0, len(emails), batch_size):
            batch = emails[index:index + batch_size]
            logger.info(f"[Email] Sending batch {index // batch_size + 1} of {total_batches}")

            outcomes = await asyncio.gather(
                *(self._deliver(e["to"], e["subject"], e["html"]) for e in batch)
            )
            for email, outcome in zip(batch, outcomes):
                await self._record(db, email, outcome)
                if outcome["success"]:
                    results["sent"] += 1
                else:
                    results["failed"] += 1
                    results["errors"].append({"email": email["to"], "error": outcome.get("error")})

            if index + batch_size < len(emails):
                await asyncio.sleep(delay)

        logger.info(f"[Email] Batch sending completed: {results['sent']} sent, {results['failed']} failed")
        return results

    async def was_email_sent_recently(
        self,
        db: AsyncSession,
        recipient_email: str,
        survey_id: str,
        hours: int = 24,
        email_type: Optional[str] = None,
    ) -> bool:
        query = select(func.count()).select_from(email_logs).where(
            email_logs.c.recipient_email == recipient_email,
            email_logs.c.survey_id == survey_id,
            email_logs.c.status == "Sent",
            email_logs.c.sent_at >= datetime.utcnow() - timedelta(hours=hours),
        )
        if email_type:
            query = query.where(email_logs.c.email_type == email_type)
        return bool((await db.execute(query)).scalar())

    async def get_target_recipients(self, db: AsyncSession, criteria: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Active users with an email address inside the requested slice.

        Function ids select users whose department uses an application
        mapped to one of those functions.
        """
        criteria = criteria or {}
        query = (
            select(
                users.c.user_id, users.c.email, users.c.display_name.label("name"),
                business_units.c.name.label("business_unit"),
                divisions.c.name.label("division"),
                departments.c.name.label("department"),
            )
            .distinct()
            .select_from(
                users.outerjoin(business_units, business_units.c.business_unit_id == users.c.business_unit_id)
                .outerjoin(divisions, divisions.c.division_id == users.c.division_id)
                .outerjoin(departments, departments.c.department_id == users.c.department_id)
            )
            .where(users.c.is_active.is_(True), users.c.email.isnot(None), users.c.email != "")
        )
        if criteria.get("business_unit_ids"):
            query = query.where(users.c.business_unit_id.in_(criteria["business_unit_ids"]))
        if criteria.get("division_ids"):
            query = query.where(users.c.division_id.in_(criteria["division_ids"]))
        if criteria.get("department_ids"):
            query = query.where(users.c.department_id.in_(criteria["department_ids"]))
        if criteria.get("function_ids"):
            function_departments = (
                select(application_department_mappings.c.department_id)
                .select_from(
                    application_department_mappings.join(
                        function_application_mappings,
                        function_application_mappings.c.application_id == application_department_mappings.c.application_id,
                    )
                )
                .where(function_application_mappings.c.function_id.in_(criteria["function_ids"]))
            )
            query = query.where(users.c.department_id.in_(function_departments))

        result = await db.execute(query.order_by(users.c.display_name))
        return [dict(r._mapping) for r in result.all()]

    async def _survey_with_cover(self, db: AsyncSession, survey_id: str) -> Dict[str, Any]:
        row = (await db.execute(
            select(surveys, survey_configurations.c.hero_image_url)
            .select_from(surveys.outerjoin(survey_configurations, survey_configurations.c.survey_id == surveys.c.survey_id))
            .where(surveys.c.survey_id == survey_id)
        )).first()
        if row is None:
            raise NotFoundError("Survey")
        return dict(row._mapping)

    @staticmethod
    def _survey_link(survey: Dict[str, Any]) -> str:
        return survey["survey_link"] or f"{settings.BASE_URL}/survey/index.html?id={survey['survey_id']}"

    async def _filter_recipients(
        self,
        db: AsyncSession,
        recipients: List[Dict[str, Any]],
        survey_id: str,
        hours: int,
        email_type: str,
    ) -> tuple:
        kept, skipped = [], 0
        for recipient in recipients:
            if not self.validate_email(recipient["email"]):
                logger.warning(f"[Email] Invalid email address: {recipient['email']}")
                skipped += 1
                continue
            if await self.was_email_sent_recently(db, recipient["email"], survey_id, hours, email_type):
                logger.info(f"[Email] Skipping {recipient['email']} - {email_type.lower()} sent recently")
                skipped += 1
                continue
            kept.append(recipient)
        return kept, skipped

    async def send_survey_blast(
        self,
        db: AsyncSession,
        survey_id: str,
        target_criteria: Optional[Dict[str, Any]] = None,
        email_template: Optional[str] = None,
        embed_cover: bool = False,
        duplicate_prevention_hours: Optional[int] = None,
    ) -> Dict[str, Any]:
        hours = duplicate_prevention_hours or settings.EMAIL_DUPLICATE_WINDOW_HOURS
        survey = await self._survey_with_cover(db, survey_id)

        recipients = await self.get_target_recipients(db, target_criteria)
        if not recipients:
            logger.warning(f"[Email] No recipients found for survey blast {survey_id}")
            return {"total": 0, "sent": 0, "failed": 0, "skipped": 0, "errors": []}

        logger.info(f"[Email] Preparing survey blast to {len(recipients)} recipients")
        kept, skipped = await self._filter_recipients(db, recipients, survey_id, hours, "Blast")

        subject = f"Undangan Survey: {survey['title']}"
        template = (email_template or DEFAULT_INVITATION)
        if embed_cover:
            template = cover_block(survey["hero_image_url"]) + template

        emails = [
            {
                "to": r["email"],
                "subject": subject,
                "html": render_template(template, {
                    "recipient_name": r["name"],
                    "survey_title": survey["title"],
                    "survey_description": survey["description"],
                    "survey_link": self._survey_link(survey),
                    "start_date": format_date(survey["start_date"]),
                    "end_date": format_date(survey["end_date"]),
                    "target_respondents": survey["target_respondents"],
                }),
                "survey_id": survey_id,
                "recipient_name": r["name"],
                "email_type": "Blast",
            }
            for r in kept
        ]

        results = await self.send_batch(db, emails)
        return {**results, "skipped": skipped}

    async def get_non_respondents(self, db: AsyncSession, survey_id: str) -> List[Dict[str, Any]]:
        """Blast recipients (Sent) who have not submitted a response"""
        recipients = await db.execute(
            select(email_logs.c.recipient_email, email_logs.c.recipient_name)
            .distinct()
            .where(
                email_logs.c.survey_id == survey_id,
                email_logs.c.email_type == "Blast",
                email_logs.c.status == "Sent",
            )
        )
        blast_recipients = recipients.all()
        if not blast_recipients:
            logger.warning(f"[Email] No blast recipients found for survey {survey_id}")
            return []

        respondents = await db.execute(
            select(distinct(func.lower(responses.c.respondent_email))).where(responses.c.survey_id == survey_id)
        )
        responded = {row[0] for row in respondents.all()}

        seen, pending = set(), []
        for row in blast_recipients:
            email = row.recipient_email
            if email.lower() in responded or email.lower() in seen:
                continue
            seen.add(email.lower())
            pending.append({"email": email, "name": row.recipient_name})

        logger.info(f"[Email] {len(pending)} non-respondents out of {len(blast_recipients)} recipients")
        return pending

    async def send_reminders(
        self,
        db: AsyncSession,
        survey_id: str,
        email_template: Optional[str] = None,
        embed_cover: bool = False,
        duplicate_prevention_hours: Optional[int] = None,
    ) -> Dict[str, Any]:
        hours = duplicate_prevention_hours or settings.EMAIL_DUPLICATE_WINDOW_HOURS
        survey = await self._survey_with_cover(db, survey_id)
        empty = {"total": 0, "sent": 0, "failed": 0, "skipped": 0, "errors": []}

        now = datetime.utcnow()
        if now > survey["end_date"]:
            logger.warning(f"[Email] Survey {survey_id} has ended, skipping reminders")
            return {**empty, "message": "Survey has ended"}

        days_remaining = math.ceil((survey["end_date"] - now).total_seconds() / 86400)

        pending = await self.get_non_respondents(db, survey_id)
        if not pending:
            logger.info(f"[Email] All recipients have responded for survey {survey_id}")
            return {**empty, "message": "All recipients have responded"}

        kept, skipped = await self._filter_recipients(db, pending, survey_id, hours, "Reminder")

        subject = f"Reminder: {survey['title']} - Segera Berakhir"
        template = (email_template or DEFAULT_REMINDER)
        if embed_cover:
            template = cover_block(survey["hero_image_url"]) + template

        emails = [
            {
                "to": r["email"],
                "subject": subject,
                "html": render_template(template, {
                    "recipient_name": r["name"],
                    "survey_title": survey["title"],
                    "survey_link": self._survey_link(survey),
                    "end_date": format_date(survey["end_date"]),
                    "days_remaining": days_remaining,
                }),
                "survey_id": survey_id,
                "recipient_name": r["name"],
                "email_type": "Reminder",
            }
            for r in kept
        ]

        results = await self.send_batch(db, emails)
        return {**results, "skipped": skipped, "days_remaining": days_remaining}

    async def send_notification(
        self,
        db: AsyncSession,
        to_email: str,
        subject: str,
        html_content: str,
        recipient_name: Optional[str] = None,
        survey_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.send_email(db, {
            "to": to_email,
            "subject": subject,
            "html": html_content,
            "recipient_name": recipient_name,
            "survey_id": survey_id,
            "email_type": "Notification",
        })


email_service = EmailService()
