from fastapi import APIRouter
from csi_portal.api.v1.endpoints import (
    audit,
    auth,
    bulk_import,
    emails,
    integrations,
    mappings,
    master_data,
    questions,
    responses,
    scheduled_operations,
    surveys,
    users,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(users.router, prefix="/users", tags=["User Management"])

# Organizational master data
api_router.include_router(master_data.business_units_router, prefix="/business-units", tags=["Business Units"])
api_router.include_router(master_data.divisions_router, prefix="/divisions", tags=["Divisions"])
api_router.include_router(master_data.departments_router, prefix="/departments", tags=["Departments"])
api_router.include_router(master_data.functions_router, prefix="/functions", tags=["Functions"])
api_router.include_router(master_data.applications_router, prefix="/applications", tags=["Applications"])
api_router.include_router(mappings.router, prefix="/mappings", tags=["Mappings"])

# Surveys are also exposed as "events"
api_router.include_router(surveys.router, prefix="/surveys", tags=["Surveys"])
api_router.include_router(surveys.router, prefix="/events", tags=["Events"])
api_router.include_router(questions.router, prefix="/questions", tags=["Questions"])
api_router.include_router(responses.router, prefix="/responses", tags=["Responses"])
api_router.include_router(emails.router, prefix="/emails", tags=["Emails"])
api_router.include_router(scheduled_operations.router, prefix="/scheduled-operations", tags=["Scheduled Operations"])

api_router.include_router(integrations.router, prefix="/integrations", tags=["Integrations"])
api_router.include_router(bulk_import.router, prefix="/bulk-import", tags=["Bulk Import"])
api_router.include_router(audit.router, prefix="/audit", tags=["Audit"])
