"""
Table definitions (SQLAlchemy Core).

Services query these tables with parameterized Core statements through
BaseRepository; there are no mapped classes.
"""
from sqlalchemy import (
    MetaData, Table, Column, String, Text, Integer, Boolean, DateTime,
    Numeric, ForeignKey, UniqueConstraint, PrimaryKeyConstraint, Index,
)
from datetime import datetime

from csi_portal.core.types import GUID, JSONText, generate_uuid

metadata = MetaData()

USER_ROLES = ("SuperAdmin", "AdminEvent", "ITLead", "DepartmentHead")
SURVEY_STATUSES = ("Draft", "Active", "Closed", "Archived")
QUESTION_TYPES = (
    "HeroCover", "Text", "MultipleChoice", "Checkbox", "Dropdown",
    "MatrixLikert", "Rating", "Date", "Signature",
)
OPERATION_TYPES = ("Blast", "Reminder")
OPERATION_FREQUENCIES = ("once", "daily", "weekly", "monthly")
OPERATION_STATUSES = ("Pending", "Running", "Completed", "Failed", "Cancelled")
EMAIL_TYPES = ("Blast", "Reminder", "Notification")
AUDIT_ACTIONS = (
    "Create", "Update", "Delete", "Access", "Login", "Logout",
    "LoginFailed", "Approve", "Reject", "Export",
)


def _id(name: str) -> Column:
    return Column(name, GUID(), primary_key=True, default=generate_uuid)


def _audit_columns():
    return [
        Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
        Column("created_by", GUID(), nullable=True),
        Column("updated_at", DateTime, nullable=True),
        Column("updated_by", GUID(), nullable=True),
    ]


# ==========================================
# Master data
# ==========================================

users = Table(
    "users", metadata,
    _id("user_id"),
    Column("username", String(50), nullable=False, unique=True),
    Column("npk", String(50), nullable=True),
    Column("display_name", String(200), nullable=False),
    Column("email", String(255), nullable=False),
    Column("role", String(50), nullable=False),
    Column("use_ldap", Boolean, nullable=False, default=True),
    Column("password_hash", String(255), nullable=True),
    Column("business_unit_id", GUID(), nullable=True),
    Column("division_id", GUID(), nullable=True),
    Column("department_id", GUID(), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    *_audit_columns(),
    Index("ix_users_role", "role"),
)

business_units = Table(
    "business_units", metadata,
    _id("business_unit_id"),
    Column("code", String(20), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    *_audit_columns(),
)

divisions = Table(
    "divisions", metadata,
    _id("division_id"),
    Column("business_unit_id", GUID(), ForeignKey("business_units.business_unit_id"), nullable=False),
    Column("code", String(20), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    *_audit_columns(),
    Index("ix_divisions_business_unit_id", "business_unit_id"),
)

departments = Table(
    "departments", metadata,
    _id("department_id"),
    Column("division_id", GUID(), ForeignKey("divisions.division_id"), nullable=False),
    Column("code", String(20), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    *_audit_columns(),
    Index("ix_departments_division_id", "division_id"),
)

functions = Table(
    "functions", metadata,
    _id("function_id"),
    Column("code", String(20), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("it_dept_head_user_id", GUID(), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    *_audit_columns(),
)

applications = Table(
    "applications", metadata,
    _id("application_id"),
    Column("code", String(20), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("description", String(500), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    *_audit_columns(),
)

# ==========================================
# Mappings
# ==========================================

function_application_mappings = Table(
    "function_application_mappings", metadata,
    _id("mapping_id"),
    Column("function_id", GUID(), ForeignKey("functions.function_id", ondelete="CASCADE"), nullable=False),
    Column("application_id", GUID(), ForeignKey("applications.application_id", ondelete="CASCADE"), nullable=False),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("created_by", GUID(), nullable=True),
    UniqueConstraint("function_id", "application_id", name="uq_function_application"),
)

application_department_mappings = Table(
    "application_department_mappings", metadata,
    _id("mapping_id"),
    Column("application_id", GUID(), ForeignKey("applications.application_id", ondelete="CASCADE"), nullable=False),
    Column("department_id", GUID(), ForeignKey("departments.department_id", ondelete="CASCADE"), nullable=False),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("created_by", GUID(), nullable=True),
    UniqueConstraint("application_id", "department_id", name="uq_application_department"),
)

# ==========================================
# Surveys
# ==========================================

surveys = Table(
    "surveys", metadata,
    _id("survey_id"),
    Column("title", String(500), nullable=False),
    Column("description", Text, nullable=True),
    Column("start_date", DateTime, nullable=False),
    Column("end_date", DateTime, nullable=False),
    Column("status", String(50), nullable=False, default="Draft"),
    Column("assigned_admin_id", GUID(), nullable=True),
    Column("target_respondents", Integer, nullable=True),
    Column("target_score", Numeric(5, 2, asdecimal=False), nullable=True),
    Column("current_score", Numeric(5, 2, asdecimal=False), nullable=True),
    Column("survey_link", String(500), nullable=True),
    Column("shortened_link", String(500), nullable=True),
    Column("qr_code_data_url", Text, nullable=True),
    Column("embed_code", Text, nullable=True),
    Column("duplicate_prevention_enabled", Boolean, nullable=False, default=True),
    *_audit_columns(),
    Index("ix_surveys_status", "status"),
)

survey_configurations = Table(
    "survey_configurations", metadata,
    _id("config_id"),
    Column("survey_id", GUID(), ForeignKey("surveys.survey_id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("hero_title", String(500), nullable=True),
    Column("hero_subtitle", String(500), nullable=True),
    Column("hero_image_url", String(500), nullable=True),
    Column("logo_url", String(500), nullable=True),
    Column("background_color", String(50), nullable=True),
    Column("background_image_url", String(500), nullable=True),
    Column("primary_color", String(50), nullable=True),
    Column("secondary_color", String(50), nullable=True),
    Column("font_family", String(100), nullable=True),
    Column("button_style", String(50), nullable=True),
    Column("show_progress_bar", Boolean, nullable=False, default=True),
    Column("show_page_numbers", Boolean, nullable=False, default=True),
    Column("multi_page", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=True),
)

survey_admin_assignments = Table(
    "survey_admin_assignments", metadata,
    Column("survey_id", GUID(), ForeignKey("surveys.survey_id", ondelete="CASCADE"), nullable=False),
    Column("admin_user_id", GUID(), ForeignKey("users.user_id"), nullable=False),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    PrimaryKeyConstraint("survey_id", "admin_user_id", name="pk_survey_admin_assignments"),
)

questions = Table(
    "questions", metadata,
    _id("question_id"),
    Column("survey_id", GUID(), ForeignKey("surveys.survey_id", ondelete="CASCADE"), nullable=False),
    Column("type", String(50), nullable=False),
    Column("prompt_text", Text, nullable=False),
    Column("subtitle", String(500), nullable=True),
    Column("image_url", String(500), nullable=True),
    Column("is_mandatory", Boolean, nullable=False, default=False),
    Column("display_order", Integer, nullable=False),
    Column("page_number", Integer, nullable=False, default=1),
    Column("layout_orientation", String(20), nullable=True),
    Column("options", JSONText, nullable=True),
    Column("comment_required_below_rating", Integer, nullable=True),
    *_audit_columns(),
    Index("ix_questions_survey_id", "survey_id"),
)

responses = Table(
    "responses", metadata,
    _id("response_id"),
    Column("survey_id", GUID(), ForeignKey("surveys.survey_id"), nullable=False),
    Column("respondent_email", String(255), nullable=False),
    Column("respondent_name", String(200), nullable=False),
    Column("business_unit_id", GUID(), ForeignKey("business_units.business_unit_id"), nullable=False),
    Column("division_id", GUID(), ForeignKey("divisions.division_id"), nullable=False),
    Column("department_id", GUID(), ForeignKey("departments.department_id"), nullable=False),
    Column("application_id", GUID(), ForeignKey("applications.application_id"), nullable=False),
    Column("ip_address", String(50), nullable=True),
    Column("submitted_at", DateTime, nullable=False, default=datetime.utcnow),
    Index("ix_responses_survey_id", "survey_id"),
    Index("ix_responses_respondent_email", "respondent_email"),
)

question_responses = Table(
    "question_responses", metadata,
    _id("question_response_id"),
    Column("response_id", GUID(), ForeignKey("responses.response_id", ondelete="CASCADE"), nullable=False),
    Column("question_id", GUID(), ForeignKey("questions.question_id"), nullable=False),
    Column("text_value", Text, nullable=True),
    Column("numeric_value", Numeric(10, 2, asdecimal=False), nullable=True),
    Column("date_value", DateTime, nullable=True),
    Column("matrix_values", JSONText, nullable=True),
    Column("comment_value", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
)

# ==========================================
# Operational
# ==========================================

scheduled_operations = Table(
    "scheduled_operations", metadata,
    _id("operation_id"),
    Column("survey_id", GUID(), ForeignKey("surveys.survey_id", ondelete="CASCADE"), nullable=False),
    Column("operation_type", String(50), nullable=False),
    Column("frequency", String(50), nullable=False),
    Column("scheduled_date", DateTime, nullable=False),
    Column("scheduled_time", String(5), nullable=True),  # HH:MM
    Column("day_of_week", Integer, nullable=True),  # 0=Sunday, 6=Saturday
    Column("email_template", Text, nullable=False),
    Column("embed_cover", Boolean, nullable=False, default=False),
    Column("target_criteria", JSONText, nullable=True),
    Column("status", String(50), nullable=False, default="Pending"),
    Column("next_execution_at", DateTime, nullable=True),
    Column("last_executed_at", DateTime, nullable=True),
    Column("execution_count", Integer, nullable=False, default=0),
    Column("error_message", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("created_by", GUID(), nullable=True),
    Index("ix_scheduled_operations_due", "status", "next_execution_at"),
)

email_logs = Table(
    "email_logs", metadata,
    _id("email_log_id"),
    Column("survey_id", GUID(), nullable=True),
    Column("recipient_email", String(255), nullable=False),
    Column("recipient_name", String(200), nullable=True),
    Column("subject", String(500), nullable=False),
    Column("email_type", String(50), nullable=False),
    Column("status", String(50), nullable=False),
    Column("error_message", Text, nullable=True),
    Column("sent_at", DateTime, nullable=False, default=datetime.utcnow),
    Index("ix_email_logs_recipient", "recipient_email", "survey_id"),
)

sessions = Table(
    "sessions", metadata,
    _id("session_id"),
    Column("user_id", GUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(255), nullable=False, unique=True),
    Column("refresh_token_hash", String(255), nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("last_activity", DateTime, nullable=False, default=datetime.utcnow),
    Column("expires_at", DateTime, nullable=False),
    Column("max_expires_at", DateTime, nullable=False),
    Column("ip_address", String(50), nullable=True),
    Column("user_agent", String(500), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("invalidated_at", DateTime, nullable=True),
    Index("ix_sessions_user_id", "user_id"),
    Index("ix_sessions_refresh_token_hash", "refresh_token_hash"),
)

audit_logs = Table(
    "audit_logs", metadata,
    _id("log_id"),
    Column("timestamp", DateTime, nullable=False, default=datetime.utcnow),
    Column("user_id", GUID(), nullable=True),
    Column("username", String(50), nullable=True),
    Column("action", String(50), nullable=False),
    Column("entity_type", String(100), nullable=True),
    Column("entity_id", GUID(), nullable=True),
    Column("old_values", JSONText, nullable=True),
    Column("new_values", JSONText, nullable=True),
    Column("ip_address", String(50), nullable=True),
    Column("user_agent", String(500), nullable=True),
    Index("ix_audit_logs_entity", "entity_type", "entity_id"),
)

sap_sync_logs = Table(
    "sap_sync_logs", metadata,
    _id("sync_log_id"),
    Column("sync_type", String(50), nullable=False),
    Column("status", String(50), nullable=False),
    Column("start_time", DateTime, nullable=False),
    Column("end_time", DateTime, nullable=False),
    Column("records_processed", Integer, nullable=False, default=0),
    Column("records_added", Integer, nullable=False, default=0),
    Column("records_updated", Integer, nullable=False, default=0),
    Column("records_deactivated", Integer, nullable=False, default=0),
    Column("error_count", Integer, nullable=False, default=0),
    Column("error_log", Text, nullable=True),
    Column("details", JSONText, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
)
