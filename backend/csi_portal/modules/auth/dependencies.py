from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.database import get_db
from csi_portal.core.exceptions import AuthenticationError, AuthorizationError
from csi_portal.core.logging_config import logger, set_user_id
from csi_portal.services.auth_service import auth_service

security = HTTPBearer(auto_error=False)

SUPER_ADMIN = "SuperAdmin"
ADMIN_EVENT = "AdminEvent"
IT_LEAD = "ITLead"
DEPARTMENT_HEAD = "DepartmentHead"

# permission -> roles allowed
PERMISSIONS: Dict[str, tuple] = {
    "users:read": (SUPER_ADMIN,),
    "users:create": (SUPER_ADMIN,),
    "users:update": (SUPER_ADMIN,),
    "users:delete": (SUPER_ADMIN,),
    "master-data:read": (ADMIN_EVENT, SUPER_ADMIN),
    "master-data:create": (ADMIN_EVENT,),
    "master-data:update": (ADMIN_EVENT,),
    "master-data:delete": (ADMIN_EVENT,),
    "mappings:read": (ADMIN_EVENT, SUPER_ADMIN),
    "mappings:create": (ADMIN_EVENT,),
    "mappings:delete": (ADMIN_EVENT,),
    "surveys:read": (ADMIN_EVENT, SUPER_ADMIN, IT_LEAD, DEPARTMENT_HEAD),
    "surveys:create": (ADMIN_EVENT, SUPER_ADMIN),
    "surveys:update": (ADMIN_EVENT, SUPER_ADMIN),
    "surveys:delete": (ADMIN_EVENT, SUPER_ADMIN),
    "responses:read": (ADMIN_EVENT, IT_LEAD, DEPARTMENT_HEAD),
    "emails:send": (ADMIN_EVENT,),
    "audit:read": (SUPER_ADMIN,),
    "sap:sync": (ADMIN_EVENT, SUPER_ADMIN),
}


def has_permission(role: Optional[str], permission: str) -> bool:
    return role in PERMISSIONS.get(permission, ())


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Resolve the bearer token against the session table"""
    if not credentials or not credentials.credentials:
        raise AuthenticationError("No authentication token provided")

    validation = await auth_service.validate_token(db, credentials.credentials)
    if not validation.is_valid:
        raise AuthenticationError(validation.error_message or "Invalid token")

    user = dict(validation.user)
    user["session_id"] = validation.session_id

    request.state.user_id = user["user_id"]
    request.state.token = credentials.credentials
    set_user_id(str(user["user_id"]))
    return user


def require_permission(permission: str) -> Callable:
    """
    Route dependency enforcing the role/permission matrix.

    Usage:
        @router.get("", dependencies=[Depends(require_permission("surveys:read"))])
    """

    async def checker(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if not has_permission(current_user.get("role"), permission):
            logger.warning(
                f"[Auth] {current_user.get('username')} ({current_user.get('role')}) denied {permission}"
            )
            raise AuthorizationError("Insufficient permissions")
        return current_user

    return checker


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
