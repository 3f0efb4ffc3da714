"""
Excel bulk import of master data, mappings and users.

The required permission follows the entity type: users need users:create,
mappings need mappings:create, everything else master-data:create.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.api.v1.endpoints.users import XLSX_MEDIA_TYPE
from csi_portal.core.database import get_db
from csi_portal.core.exceptions import AuthorizationError, ValidationError
from csi_portal.modules.auth.dependencies import get_current_user, has_permission
from csi_portal.services.bulk_import_service import bulk_import_service
from csi_portal.services.template_parser import normalize_entity_type, template_parser

router = APIRouter()


def import_permission(entity_type: str) -> str:
    if entity_type == "User":
        return "users:create"
    if entity_type in ("FunctionAppMapping", "AppDeptMapping"):
        return "mappings:create"
    return "master-data:create"


def authorize(current_user: Dict[str, Any], entity_type: str) -> str:
    entity_type = normalize_entity_type(entity_type)
    if not has_permission(current_user.get("role"), import_permission(entity_type)):
        raise AuthorizationError()
    return entity_type


async def read_upload(file: UploadFile) -> bytes:
    if file is None:
        raise ValidationError("File is required")
    if file.filename and not file.filename.lower().endswith((".xlsx", ".xlsm")):
        raise ValidationError("Only Excel files (.xlsx) are allowed")
    content = await file.read()
    if not content:
        raise ValidationError("Uploaded file is empty")
    return content


@router.get("/templates/{entity_type}")
async def download_template(
    entity_type: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    entity_type = authorize(current_user, entity_type)
    return Response(
        content=bulk_import_service.generate_template(entity_type),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{entity_type}_template.xlsx"'},
    )


@router.post("/{entity_type}/validate")
async def validate_file(
    entity_type: str,
    file: UploadFile = File(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    entity_type = authorize(current_user, entity_type)
    parsed = template_parser.parse_excel_file(await read_upload(file), entity_type)
    return ok(
        {
            "total_rows": parsed["total_rows"],
            "summary": parsed["summary"],
            "errors": parsed["errors"],
            "report": template_parser.generate_error_report(parsed["errors"]),
        },
        message="File is valid" if parsed["success"] else "File contains invalid rows",
    )


@router.post("/{entity_type}")
async def import_file(
    entity_type: str,
    request: Request,
    file: UploadFile = File(None),
    skip_duplicates: bool = Form(False, alias="skipDuplicates"),
    update_existing: bool = Form(False, alias="updateExisting"),
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entity_type = authorize(current_user, entity_type)
    content = await read_upload(file)

    result = await bulk_import_service.import_data(
        db,
        content,
        entity_type,
        skip_duplicates=skip_duplicates,
        update_existing=update_existing,
        created_by=current_user["user_id"],
    )
    await audit(
        db, request, current_user, "Create", entity_type,
        new_values={k: result[k] for k in ("total_rows", "imported", "updated", "skipped", "failed")},
    )
    return ok(
        {**result, "report": bulk_import_service.generate_report(result)},
        message=f"Imported {result['imported']} {entity_type} record(s)",
    )
