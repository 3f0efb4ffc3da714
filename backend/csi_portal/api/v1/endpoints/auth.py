from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from csi_portal.core.rate_limiter import auth_rate_limit
from csi_portal.modules.auth.dependencies import client_ip, get_current_user
from csi_portal.schemas.auth import LoginRequest, RefreshTokenRequest
from csi_portal.services.auth_service import auth_service

router = APIRouter()


@router.post("/login")
@auth_rate_limit()
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with username/password (LDAP or local), rate limited"""
    if not body.username or not body.password:
        raise ValidationError("Username and password are required")

    result = await auth_service.login(
        db,
        body.username,
        body.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    if not result.success:
        await audit(db, request, None, "LoginFailed", "User", username=body.username or "unknown")
        # The failed attempt must survive the error response's rollback
        await db.commit()
        raise AuthenticationError(result.error_message or "Authentication failed")

    await audit(db, request, result.user, "Login", "User", result.user["user_id"])
    return ok(
        token=result.token,
        refresh_token=result.refresh_token,
        user=result.user,
    )


@router.post("/logout")
async def logout(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await auth_service.logout(db, request.state.token)
    await audit(db, request, current_user, "Logout", "User", current_user["user_id"])
    return ok(message="Logged out successfully")


@router.get("/validate")
async def validate(current_user: Dict[str, Any] = Depends(get_current_user)):
    return ok(valid=True, user=current_user)


@router.post("/refresh")
async def refresh(
    request: Request,
    body: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await auth_service.refresh_token(
        db,
        body.refresh_token,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if not result.success:
        raise AuthenticationError(result.error_message or "Token refresh failed")

    return ok(token=result.token, refresh_token=result.refresh_token, user=result.user)


@router.get("/me")
async def me(
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profile = await auth_service.get_current_user(db, current_user["user_id"])
    if not profile:
        raise NotFoundError("User")
    return ok(profile)
