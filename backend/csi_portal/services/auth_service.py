"""
Auth Service - credential check, JWT issuance and server-side sessions

A session row stores SHA-256 hashes of the access and refresh tokens.
Each validated request slides ``expires_at`` forward by
SESSION_TIMEOUT_MINUTES, never past ``max_expires_at`` (login time +
MAX_SESSION_DURATION_HOURS). A new login invalidates every other active
session of the same user.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.config import settings
from csi_portal.core.exceptions import AuthenticationError
from csi_portal.core.logging_config import logger
from csi_portal.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_token,
    verify_password,
)
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import sessions, users
from csi_portal.services.ldap_service import ldap_service


@dataclass
class AuthResult:
    success: bool
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


@dataclass
class TokenValidation:
    is_valid: bool
    user: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    session_id: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def user_info(row: Dict[str, Any]) -> Dict[str, Any]:
    """Public projection of a users row"""
    return {
        "user_id": row["user_id"],
        "username": row["username"],
        "display_name": row["display_name"],
        "email": row["email"],
        "role": row["role"],
    }


class AuthService:
    """Login, token validation, logout and refresh"""

    @property
    def session_timeout(self) -> timedelta:
        return timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)

    @property
    def max_session_duration(self) -> timedelta:
        return timedelta(hours=settings.MAX_SESSION_DURATION_HOURS)

    async def _active_user(self, db: AsyncSession, **criteria) -> Optional[Dict[str, Any]]:
        return await BaseRepository(db, users, "user_id").find_one({**criteria, "is_active": True})

    def _issue_tokens(self, info: Dict[str, Any]) -> tuple:
        claims = {
            "sub": info["user_id"],
            "username": info["username"],
            "role": info["role"],
            "email": info["email"],
        }
        return create_access_token(claims), create_refresh_token(claims)

    async def create_session(
        self,
        db: AsyncSession,
        user_id: str,
        token: str,
        refresh_token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        now = datetime.utcnow()

        # Single active session per user
        await db.execute(
            update(sessions)
            .where(sessions.c.user_id == user_id, sessions.c.is_active.is_(True))
            .values(is_active=False, invalidated_at=now)
        )

        session = await BaseRepository(db, sessions, "session_id").create({
            "user_id": user_id,
            "token_hash": hash_token(token),
            "refresh_token_hash": hash_token(refresh_token),
            "ip_address": (ip_address or "unknown")[:50],
            "user_agent": (user_agent or "unknown")[:500],
            "created_at": now,
            "last_activity": now,
            "expires_at": now + self.session_timeout,
            "max_expires_at": now + self.max_session_duration,
            "is_active": True,
        })
        return session["session_id"]

    async def _invalidate_session(self, db: AsyncSession, session_id: str) -> None:
        await db.execute(
            update(sessions)
            .where(sessions.c.session_id == session_id)
            .values(is_active=False, invalidated_at=datetime.utcnow())
        )

    async def login(
        self,
        db: AsyncSession,
        username: Optional[str],
        password: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        if not username or not password:
            return AuthResult(False, error_message="Username and password are required")

        logger.info(f"[Auth] Login attempt for {username}")
        db_user = await self._active_user(db, username=username)
        if not db_user:
            logger.log_auth_event("login", False, username=username, reason="user not found")
            return AuthResult(False, error_message="Invalid username or password")

        if db_user["use_ldap"]:
            ldap_result = await ldap_service.authenticate(username, password)
            if not ldap_result["success"]:
                logger.log_auth_event("login", False, username=username, reason="ldap")
                return AuthResult(
                    False, error_message=ldap_result["error_message"] or "Invalid username or password"
                )
        elif not verify_password(password, db_user["password_hash"]):
            logger.log_auth_event("login", False, username=username, reason="bad password")
            return AuthResult(False, error_message="Invalid username or password")

        info = user_info(db_user)
        access_token, refresh_token = self._issue_tokens(info)
        await self.create_session(db, db_user["user_id"], access_token, refresh_token, ip_address, user_agent)

        logger.log_auth_event("login", True, username=username)
        return AuthResult(True, token=access_token, refresh_token=refresh_token, user=info)

    async def validate_token(self, db: AsyncSession, token: str) -> TokenValidation:
        try:
            claims = decode_token(token)
        except AuthenticationError as e:
            return TokenValidation(False, error_message=e.message)

        if claims.get("type") != "access":
            return TokenValidation(False, error_message="Invalid token type")

        session = await BaseRepository(db, sessions, "session_id").find_one({"token_hash": hash_token(token)})
        if not session:
            return TokenValidation(False, error_message="Session not found")

        if not session["is_active"]:
            return TokenValidation(False, error_message="Session has been invalidated")

        now = datetime.utcnow()
        if now > session["expires_at"] or now > session["max_expires_at"]:
            await self._invalidate_session(db, session["session_id"])
            # The 401 that follows rolls the request back
            await db.commit()
            return TokenValidation(False, error_message="Session has expired")

        db_user = await self._active_user(db, user_id=claims.get("sub"))
        if not db_user:
            return TokenValidation(False, error_message="User not found")

        # Slide the window, capped at the hard maximum
        expires_at = min(now + self.session_timeout, session["max_expires_at"])
        await db.execute(
            update(sessions)
            .where(sessions.c.session_id == session["session_id"])
            .values(last_activity=now, expires_at=expires_at)
        )

        return TokenValidation(
            True,
            user=user_info(db_user),
            session_id=session["session_id"],
            claims=claims,
        )

    async def logout(self, db: AsyncSession, token: str) -> bool:
        result = await db.execute(
            update(sessions)
            .where(sessions.c.token_hash == hash_token(token))
            .values(is_active=False, invalidated_at=datetime.utcnow())
        )
        logger.log_auth_event("logout", True)
        return result.rowcount > 0

    async def refresh_token(
        self,
        db: AsyncSession,
        refresh_token: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        if not refresh_token:
            return AuthResult(False, error_message="Refresh token is required")

        try:
            claims = decode_token(refresh_token)
        except AuthenticationError as e:
            return AuthResult(False, error_message=e.message)

        if claims.get("type") != "refresh":
            return AuthResult(False, error_message="Invalid token type")

        session = await BaseRepository(db, sessions, "session_id").find_one(
            {"refresh_token_hash": hash_token(refresh_token)}
        )
        if not session:
            return AuthResult(False, error_message="Invalid refresh token")

        now = datetime.utcnow()
        if not session["is_active"] or now > session["expires_at"] or now > session["max_expires_at"]:
            return AuthResult(False, error_message="Refresh session has expired")

        if str(session["user_id"]) != str(claims.get("sub")):
            return AuthResult(False, error_message="Refresh token does not match session")

        db_user = await self._active_user(db, user_id=claims["sub"])
        if not db_user:
            return AuthResult(False, error_message="User not found")

        info = user_info(db_user)
        access_token, new_refresh_token = self._issue_tokens(info)
        await self.create_session(db, db_user["user_id"], access_token, new_refresh_token, ip_address, user_agent)

        logger.log_auth_event("refresh", True, username=db_user["username"])
        return AuthResult(True, token=access_token, refresh_token=new_refresh_token, user=info)

    async def get_current_user(self, db: AsyncSession, user_id: str) -> Optional[Dict[str, Any]]:
        """Profile including organizational placement"""
        row = (await db.execute(
            select(
                users.c.user_id, users.c.username, users.c.npk, users.c.display_name,
                users.c.email, users.c.role, users.c.use_ldap,
                users.c.business_unit_id, users.c.division_id, users.c.department_id,
            ).where(users.c.user_id == user_id, users.c.is_active.is_(True))
        )).first()
        return dict(row._mapping) if row else None


auth_service = AuthService()
