from typing import Optional

from pydantic import AliasChoices, Field

from csi_portal.schemas.common import APIModel
from csi_portal.schemas.survey import TargetCriteria


class BlastRequest(APIModel):
    survey_id: Optional[str] = None
    target_criteria: Optional[TargetCriteria] = None
    email_template: Optional[str] = None
    embed_cover: bool = False
    duplicate_prevention_hours: Optional[int] = None


class ReminderRequest(APIModel):
    survey_id: Optional[str] = None
    email_template: Optional[str] = None
    embed_cover: bool = False
    duplicate_prevention_hours: Optional[int] = None


class NotificationRequest(APIModel):
    to_email: Optional[str] = Field(None, validation_alias=AliasChoices("to_email", "toEmail", "recipientEmail"))
    subject: Optional[str] = None
    html_content: Optional[str] = None
    recipient_name: Optional[str] = None
    survey_id: Optional[str] = None
