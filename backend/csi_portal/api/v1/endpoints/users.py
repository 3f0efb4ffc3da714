from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.schemas.user import SetPasswordRequest, ToggleLDAPRequest, UserCreate, UserUpdate
from csi_portal.services.bulk_import_service import bulk_import_service
from csi_portal.services.user_service import user_service

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("")
async def list_users(
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    include_inactive: bool = Query(False),
    search: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    current_user: Dict[str, Any] = Depends(require_permission("users:read")),
    db: AsyncSession = Depends(get_db),
):
    users = await user_service.list_users(
        db,
        role=role,
        is_active=is_active,
        include_inactive=include_inactive,
        search=search,
        department_id=department_id,
    )
    return ok(users, count=len(users))


@router.get("/template")
async def download_user_template(
    current_user: Dict[str, Any] = Depends(require_permission("users:read")),
):
    return Response(
        content=bulk_import_service.generate_template("User"),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="user_import_template.xlsx"'},
    )


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("users:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await user_service.get_user(db, user_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: Request,
    body: UserCreate,
    current_user: Dict[str, Any] = Depends(require_permission("users:create")),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.create_user(db, body.to_data(), created_by=current_user["user_id"])
    await audit(db, request, current_user, "Create", "User", user["user_id"], new_values=user)
    return ok(user, message="User created successfully")


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    request: Request,
    body: UserUpdate,
    current_user: Dict[str, Any] = Depends(require_permission("users:update")),
    db: AsyncSession = Depends(get_db),
):
    before = await user_service.get_user(db, user_id)
    user = await user_service.update_user(db, user_id, body.to_data(), updated_by=current_user["user_id"])
    await audit(db, request, current_user, "Update", "User", user_id, old_values=before, new_values=user)
    return ok(user, message="User updated successfully")


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("users:delete")),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.deactivate_user(db, user_id, updated_by=current_user["user_id"])
    await audit(db, request, current_user, "Delete", "User", user_id)
    return ok(user, message="User deactivated successfully")


@router.patch("/{user_id}/ldap")
async def toggle_user_ldap(
    user_id: str,
    body: ToggleLDAPRequest,
    current_user: Dict[str, Any] = Depends(require_permission("users:update")),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.toggle_ldap(db, user_id, body.use_ldap)
    return ok(user)


@router.patch("/{user_id}/password")
async def set_user_password(
    user_id: str,
    body: SetPasswordRequest,
    current_user: Dict[str, Any] = Depends(require_permission("users:update")),
    db: AsyncSession = Depends(get_db),
):
    await user_service.set_password(db, user_id, body.password)
    return ok(message="Password updated successfully")
