from typing import Any, Dict

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.core.exceptions import ValidationError
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.schemas.mapping import AppDeptMappingCreate, FunctionAppMappingCreate
from csi_portal.services.bulk_import_service import bulk_import_service
from csi_portal.services.mapping_service import mapping_service

router = APIRouter()

MAPPING_IMPORT_TYPES = {
    "function-application": "FunctionAppMapping",
    "application-department": "AppDeptMapping",
}


def csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ==================== FUNCTION <-> APPLICATION ====================

@router.get("/function-application")
async def get_function_app_mappings(
    detailed: bool = Query(False),
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    if detailed:
        return ok(await mapping_service.get_function_app_mappings_with_details(db))
    return ok(await mapping_service.get_function_app_mappings(db))


@router.post("/function-application", status_code=status.HTTP_201_CREATED)
async def create_function_app_mapping(
    request: Request,
    body: FunctionAppMappingCreate,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:create")),
    db: AsyncSession = Depends(get_db),
):
    if not body.function_id:
        raise ValidationError("Function ID is required")

    if body.application_ids:
        result = await mapping_service.create_multiple_function_app_mappings(
            db, body.function_id, body.application_ids, created_by=current_user["user_id"]
        )
        await audit(db, request, current_user, "Create", "FunctionAppMapping", body.function_id, new_values=result)
        return ok(result, message="Function-Application mappings created successfully")

    if not body.application_id:
        raise ValidationError("Either applicationId or applicationIds must be provided")

    mapping = await mapping_service.create_function_app_mapping(
        db, body.function_id, body.application_id, created_by=current_user["user_id"]
    )
    await audit(db, request, current_user, "Create", "FunctionAppMapping", mapping["mapping_id"], new_values=mapping)
    return ok(mapping, message="Function-Application mapping created successfully")


@router.delete("/function-application/{mapping_id}")
async def delete_function_app_mapping(
    mapping_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:delete")),
    db: AsyncSession = Depends(get_db),
):
    await mapping_service.delete_function_app_mapping(db, mapping_id)
    await audit(db, request, current_user, "Delete", "FunctionAppMapping", mapping_id)
    return ok(message="Mapping deleted successfully")


@router.delete("/function-application/function/{function_id}/application/{application_id}")
async def delete_function_app_mapping_by_pair(
    function_id: str,
    application_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:delete")),
    db: AsyncSession = Depends(get_db),
):
    await mapping_service.delete_function_app_mapping_by_entities(db, function_id, application_id)
    await audit(
        db, request, current_user, "Delete", "FunctionAppMapping", f"{function_id}:{application_id}",
    )
    return ok(message="Mapping deleted successfully")


@router.get("/function-application/function/{function_id}")
async def get_applications_by_function(
    function_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await mapping_service.get_applications_by_function(db, function_id))


@router.get("/function-application/application/{application_id}")
async def get_functions_by_application(
    application_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await mapping_service.get_functions_by_application(db, application_id))


@router.get("/function-application/export/csv")
async def export_function_app_mappings(
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    content = await mapping_service.export_function_app_mappings_csv(db)
    return csv_response(content, "function-application-mappings.csv")


# ==================== APPLICATION <-> DEPARTMENT ====================

@router.get("/application-department")
async def get_app_dept_mappings(
    hierarchical: bool = Query(False),
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    if hierarchical:
        return ok(await mapping_service.get_app_dept_mappings_hierarchical(db))
    return ok(await mapping_service.get_app_dept_mappings(db))


@router.post("/application-department", status_code=status.HTTP_201_CREATED)
async def create_app_dept_mapping(
    request: Request,
    body: AppDeptMappingCreate,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:create")),
    db: AsyncSession = Depends(get_db),
):
    if not body.department_id:
        raise ValidationError("Department ID is required")

    if body.application_ids:
        result = await mapping_service.create_multiple_app_dept_mappings(
            db, body.department_id, body.application_ids, created_by=current_user["user_id"]
        )
        await audit(db, request, current_user, "Create", "AppDeptMapping", body.department_id, new_values=result)
        return ok(result, message="Application-Department mappings created successfully")

    if not body.application_id:
        raise ValidationError("Either applicationId or applicationIds must be provided")

    mapping = await mapping_service.create_app_dept_mapping(
        db, body.application_id, body.department_id, created_by=current_user["user_id"]
    )
    await audit(db, request, current_user, "Create", "AppDeptMapping", mapping["mapping_id"], new_values=mapping)
    return ok(mapping, message="Application-Department mapping created successfully")


@router.delete("/application-department/{mapping_id}")
async def delete_app_dept_mapping(
    mapping_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:delete")),
    db: AsyncSession = Depends(get_db),
):
    await mapping_service.delete_app_dept_mapping(db, mapping_id)
    await audit(db, request, current_user, "Delete", "AppDeptMapping", mapping_id)
    return ok(message="Mapping deleted successfully")


@router.delete("/application-department/application/{application_id}/department/{department_id}")
async def delete_app_dept_mapping_by_pair(
    application_id: str,
    department_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:delete")),
    db: AsyncSession = Depends(get_db),
):
    await mapping_service.delete_app_dept_mapping_by_entities(db, application_id, department_id)
    await audit(
        db, request, current_user, "Delete", "AppDeptMapping", f"{application_id}:{department_id}",
    )
    return ok(message="Mapping deleted successfully")


@router.get("/application-department/department/{department_id}")
async def get_applications_by_department(
    department_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await mapping_service.get_applications_by_department(db, department_id))


@router.get("/application-department/application/{application_id}")
async def get_departments_by_application(
    application_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await mapping_service.get_departments_by_application(db, application_id))


@router.get("/application-department/export/csv")
async def export_app_dept_mappings(
    current_user: Dict[str, Any] = Depends(require_permission("mappings:read")),
    db: AsyncSession = Depends(get_db),
):
    content = await mapping_service.export_app_dept_mappings_csv(db)
    return csv_response(content, "application-department-mappings.csv")


@router.post("/bulk-import")
async def bulk_import_mappings(
    file: UploadFile = File(None),
    mapping_type: str = Form(None, alias="mappingType"),
    current_user: Dict[str, Any] = Depends(require_permission("mappings:create")),
    db: AsyncSession = Depends(get_db),
):
    if file is None:
        raise ValidationError("File is required")
    if mapping_type not in MAPPING_IMPORT_TYPES:
        raise ValidationError(
            'Invalid mapping type. Must be "function-application" or "application-department"'
        )

    result = await bulk_import_service.import_data(
        db,
        await file.read(),
        MAPPING_IMPORT_TYPES[mapping_type],
        skip_duplicates=True,
        created_by=current_user["user_id"],
    )
    return ok(result, message="Bulk import completed successfully")
