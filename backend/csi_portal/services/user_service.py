"""
User Service - portal accounts with per-user LDAP toggle
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.core.security import get_password_hash
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import (
    USER_ROLES,
    business_units,
    departments,
    divisions,
    sessions,
    users,
)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]{3,50}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_email(email: Any) -> bool:
    return isinstance(email, str) and bool(EMAIL_PATTERN.match(email))


def validate_username(username: Any) -> bool:
    return isinstance(username, str) and bool(USERNAME_PATTERN.match(username))


def public_user(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {k: v for k, v in row.items() if k != "password_hash"}


class UserService:
    """CRUD for users plus password and LDAP settings"""

    def repository(self, db: AsyncSession) -> BaseRepository:
        return BaseRepository(db, users, "user_id")

    def _detail_query(self):
        return (
            select(
                users.c.user_id, users.c.username, users.c.npk, users.c.display_name,
                users.c.email, users.c.role, users.c.use_ldap, users.c.is_active,
                users.c.business_unit_id, users.c.division_id, users.c.department_id,
                business_units.c.name.label("business_unit_name"),
                divisions.c.name.label("division_name"),
                departments.c.name.label("department_name"),
                users.c.created_at, users.c.updated_at,
            )
            .select_from(
                users.outerjoin(business_units, business_units.c.business_unit_id == users.c.business_unit_id)
                .outerjoin(divisions, divisions.c.division_id == users.c.division_id)
                .outerjoin(departments, departments.c.department_id == users.c.department_id)
            )
        )

    async def validate_org_hierarchy(
        self,
        db: AsyncSession,
        business_unit_id: Optional[str],
        division_id: Optional[str],
        department_id: Optional[str],
    ) -> None:
        """All three levels are given together and form one active chain"""
        if not business_unit_id or not division_id or not department_id:
            raise ValidationError("Business Unit, Division, and Department must be filled together")

        bu = await db.execute(
            select(business_units.c.business_unit_id).where(
                business_units.c.business_unit_id == business_unit_id,
                business_units.c.is_active.is_(True),
            )
        )
        if bu.first() is None:
            raise ValidationError("Business Unit not found or inactive")

        div = await db.execute(
            select(divisions.c.division_id).where(
                divisions.c.division_id == division_id,
                divisions.c.business_unit_id == business_unit_id,
                divisions.c.is_active.is_(True),
            )
        )
        if div.first() is None:
            raise ValidationError("Division is not found, inactive, or outside selected Business Unit")

        dept = await db.execute(
            select(departments.c.department_id).where(
                departments.c.department_id == department_id,
                departments.c.division_id == division_id,
                departments.c.is_active.is_(True),
            )
        )
        if dept.first() is None:
            raise ValidationError("Department is not found, inactive, or outside selected Division")

    async def list_users(
        self,
        db: AsyncSession,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
        include_inactive: bool = False,
        search: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = self._detail_query()
        if is_active is not None:
            query = query.where(users.c.is_active.is_(is_active))
        elif not include_inactive:
            query = query.where(users.c.is_active.is_(True))
        if role:
            query = query.where(users.c.role == role)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                users.c.username.like(pattern)
                | users.c.display_name.like(pattern)
                | users.c.email.like(pattern)
            )
        if department_id:
            query = query.where(users.c.department_id == department_id)

        result = await db.execute(query.order_by(users.c.display_name))
        return [dict(r._mapping) for r in result.all()]

    async def get_user(self, db: AsyncSession, user_id: str) -> Dict[str, Any]:
        row = (await db.execute(self._detail_query().where(users.c.user_id == user_id))).first()
        if row is None:
            raise NotFoundError("User")
        return dict(row._mapping)

    async def create_user(self, db: AsyncSession, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        if not validate_username(data.get("username")):
            raise ValidationError(
                "Username must be 3-50 characters: letters, digits, dot, underscore or hyphen"
            )
        if not data.get("display_name") or not str(data["display_name"]).strip():
            raise ValidationError("Display name is required")
        if not validate_email(data.get("email")):
            raise ValidationError("Invalid email format")
        if data.get("role") not in USER_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(USER_ROLES)}")

        org_fields = ("business_unit_id", "division_id", "department_id")
        if any(data.get(f) for f in org_fields):
            await self.validate_org_hierarchy(db, *(data.get(f) for f in org_fields))

        repo = self.repository(db)
        if await repo.find_one({"username": data["username"]}):
            raise ConflictError(f"Username '{data['username']}' already exists")
        if await repo.find_one({"email": data["email"]}):
            raise ConflictError(f"Email '{data['email']}' already exists")

        use_ldap = data.get("use_ldap") is not False
        password_hash = None
        if not use_ldap:
            password = data.get("password")
            if not password:
                raise ValidationError("Password is required for non-LDAP users")
            if len(password) < 8:
                raise ValidationError("Password must be at least 8 characters")
            password_hash = get_password_hash(password)

        created = await repo.create({
            "username": data["username"],
            "npk": data.get("npk"),
            "display_name": str(data["display_name"]).strip(),
            "email": data["email"],
            "role": data["role"],
            "use_ldap": use_ldap,
            "password_hash": password_hash,
            "business_unit_id": data.get("business_unit_id"),
            "division_id": data.get("division_id"),
            "department_id": data.get("department_id"),
            "is_active": True,
            "created_at": datetime.utcnow(),
            "created_by": created_by,
        })
        logger.info(f"[Users] Created {data['username']} (ldap={use_ldap})")
        return public_user(created)

    async def update_user(
        self,
        db: AsyncSession,
        user_id: str,
        data: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        repo = self.repository(db)
        current = await repo.find_by_id(user_id)
        if not current:
            raise NotFoundError("User")

        if data.get("email") is not None:
            if not validate_email(data["email"]):
                raise ValidationError("Invalid email format")
            taken = await db.execute(
                select(users.c.user_id).where(users.c.email == data["email"], users.c.user_id != user_id)
            )
            if taken.first() is not None:
                raise ConflictError(f"Email '{data['email']}' already exists")

        if data.get("role") is not None and data["role"] not in USER_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(USER_ROLES)}")

        org_fields = ("business_unit_id", "division_id", "department_id")
        if any(f in data for f in org_fields):
            await self.validate_org_hierarchy(
                db, *(data[f] if f in data else current[f] for f in org_fields)
            )

        updatable = ("display_name", "npk", "email", "role", *org_fields)
        values = {k: data[k] for k in updatable if k in data and data[k] is not None}
        if not values:
            raise ValidationError("No fields to update")

        values["updated_at"] = datetime.utcnow()
        values["updated_by"] = updated_by
        updated = await repo.update(user_id, values)
        logger.info(f"[Users] Updated {user_id}")
        return public_user(updated)

    async def deactivate_user(self, db: AsyncSession, user_id: str, updated_by: Optional[str] = None) -> Dict[str, Any]:
        repo = self.repository(db)
        if not await repo.exists(user_id):
            raise NotFoundError("User")

        now = datetime.utcnow()
        updated = await repo.update(user_id, {"is_active": False, "updated_at": now, "updated_by": updated_by})
        await db.execute(
            update(sessions)
            .where(sessions.c.user_id == user_id, sessions.c.is_active.is_(True))
            .values(is_active=False, invalidated_at=now)
        )
        logger.info(f"[Users] Deactivated {user_id}")
        return public_user(updated)

    async def toggle_ldap(self, db: AsyncSession, user_id: str, use_ldap: Any) -> Dict[str, Any]:
        if not isinstance(use_ldap, bool):
            raise ValidationError("useLDAP must be boolean")

        repo = self.repository(db)
        current = await repo.find_by_id(user_id)
        if not current:
            raise NotFoundError("User")
        if not use_ldap and not current["password_hash"]:
            raise ValidationError("Cannot disable LDAP: user has no password set. Set a password first.")

        updated = await repo.update(user_id, {"use_ldap": use_ldap, "updated_at": datetime.utcnow()})
        logger.info(f"[Users] LDAP for {user_id} set to {use_ldap}")
        return public_user(updated)

    async def set_password(self, db: AsyncSession, user_id: str, password: Optional[str]) -> Dict[str, Any]:
        if not password or len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")

        repo = self.repository(db)
        if not await repo.exists(user_id):
            raise NotFoundError("User")

        updated = await repo.update(
            user_id, {"password_hash": get_password_hash(password), "updated_at": datetime.utcnow()}
        )
        logger.info(f"[Users] Password updated for {user_id}")
        return public_user(updated)


user_service = UserService()
