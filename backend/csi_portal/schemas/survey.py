from typing import Any, List, Optional

from pydantic import Field

from csi_portal.schemas.common import APIModel


class SurveyConfigUpdate(APIModel):
    hero_title: Optional[str] = None
    hero_subtitle: Optional[str] = None
    hero_image_url: Optional[str] = None
    logo_url: Optional[str] = None
    background_color: Optional[str] = None
    background_image_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    font_family: Optional[str] = None
    button_style: Optional[str] = None
    show_progress_bar: Optional[bool] = None
    show_page_numbers: Optional[bool] = None
    multi_page: Optional[bool] = None


class SurveyCreate(APIModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    assigned_admin_id: Optional[str] = None
    assigned_admin_ids: Optional[List[str]] = None
    target_respondents: Optional[int] = None
    target_score: Optional[float] = None
    duplicate_prevention_enabled: Optional[bool] = None
    configuration: Optional[SurveyConfigUpdate] = None


class SurveyUpdate(SurveyCreate):
    pass


class SurveyLinkRequest(APIModel):
    shorten_url: bool = False


class QuestionCreate(APIModel):
    survey_id: Optional[str] = None
    type: Optional[str] = None
    prompt_text: Optional[str] = None
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    is_mandatory: Optional[bool] = None
    display_order: Optional[int] = None
    page_number: Optional[int] = None
    layout_orientation: Optional[str] = None
    options: Any = None
    comment_required_below_rating: Optional[int] = None


class QuestionUpdate(QuestionCreate):
    pass


class QuestionOrder(APIModel):
    question_id: Optional[str] = None
    display_order: Optional[int] = None
    page_number: Optional[int] = None


class ReorderQuestionsRequest(APIModel):
    survey_id: Optional[str] = None
    question_orders: Optional[List[QuestionOrder]] = None


class TargetCriteria(APIModel):
    business_unit_ids: List[str] = Field(default_factory=list)
    division_ids: List[str] = Field(default_factory=list)
    department_ids: List[str] = Field(default_factory=list)
    function_ids: List[str] = Field(default_factory=list)


class ScheduleRequest(APIModel):
    survey_id: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    frequency: Optional[str] = None
    day_of_week: Optional[int] = None
    email_template: Optional[str] = None
    embed_cover: bool = False
    target_criteria: Optional[TargetCriteria] = None
