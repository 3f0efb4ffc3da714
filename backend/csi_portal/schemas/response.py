from typing import Any, Dict, List, Optional

from csi_portal.schemas.common import APIModel


class Respondent(APIModel):
    name: Optional[str] = None
    email: Optional[str] = None
    business_unit_id: Optional[str] = None
    division_id: Optional[str] = None
    department_id: Optional[str] = None


class AnswerValue(APIModel):
    text_value: Optional[str] = None
    numeric_value: Optional[float] = None
    date_value: Optional[str] = None
    matrix_values: Optional[Dict[str, Any]] = None
    comment_value: Optional[str] = None


class QuestionAnswer(APIModel):
    question_id: Optional[str] = None
    value: Optional[AnswerValue] = None


class ResponseSubmit(APIModel):
    survey_id: Optional[str] = None
    respondent: Optional[Respondent] = None
    selected_application_ids: Optional[List[str]] = None
    responses: Optional[List[QuestionAnswer]] = None


class DuplicateCheckRequest(APIModel):
    survey_id: Optional[str] = None
    email: Optional[str] = None
    application_id: Optional[str] = None
