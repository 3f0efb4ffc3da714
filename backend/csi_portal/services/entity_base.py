"""
Shared CRUD rules for the organizational master-data entities.

Every entity has a unique ``code`` (2-20 chars, letters, digits, hyphen), a
``name`` (1-200 chars) and an ``is_active`` flag. Subclasses describe their
table, optional parent and delete guards; the rules themselves live here.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository

CODE_PATTERN = re.compile(r"^[a-zA-Z0-9-]{2,20}$")

CODE_MESSAGE = "Code must be 2-20 characters, alphanumeric and hyphen only"
NAME_MESSAGE = "Name is required and must be 1-200 characters"


def validate_code(code: Any) -> bool:
    return isinstance(code, str) and bool(CODE_PATTERN.match(code))


def validate_name(name: Any) -> bool:
    return isinstance(name, str) and bool(name.strip()) and len(name) <= 200


class ParentLink:
    """Foreign key to the parent level of the hierarchy"""

    def __init__(self, field: str, table: Table, pk: str, label: str, required_message: str):
        self.field = field
        self.table = table
        self.pk = pk
        self.label = label
        self.required_message = required_message

    @property
    def invalid_message(self) -> str:
        return f"Parent {self.label} does not exist or is inactive"


class EntityService:
    """Template for code/name master-data services"""

    entity_name: str = "Entity"
    table: Table
    pk: str
    parent: Optional[ParentLink] = None
    extra_fields: tuple = ()

    def repository(self, db: AsyncSession) -> BaseRepository:
        return BaseRepository(db, self.table, self.pk)

    # ---------------------------------------------------------------- checks

    async def _code_taken(self, db: AsyncSession, code: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(func.count()).select_from(self.table).where(self.table.c.code == code)
        if exclude_id:
            stmt = stmt.where(self.table.c[self.pk] != exclude_id)
        return bool((await db.execute(stmt)).scalar())

    async def _ensure_parent_active(self, db: AsyncSession, parent_id: str) -> None:
        link = self.parent
        stmt = (
            select(func.count())
            .select_from(link.table)
            .where(link.table.c[link.pk] == parent_id, link.table.c.is_active.is_(True))
        )
        if not (await db.execute(stmt)).scalar():
            raise ValidationError(link.invalid_message)

    async def _count_where(self, db: AsyncSession, table: Table, column: str, value: Any) -> int:
        stmt = select(func.count()).select_from(table).where(table.c[column] == value)
        return int((await db.execute(stmt)).scalar() or 0)

    def validate_extra(self, data: Dict[str, Any]) -> None:
        """Hook for entity specific field rules"""

    async def check_can_delete(self, db: AsyncSession, entity_id: str) -> None:
        """Hook raising ValidationError when dependents exist"""

    # ------------------------------------------------------------------ read

    async def list(self, db: AsyncSession, include_inactive: bool = False) -> List[Dict[str, Any]]:
        stmt = select(self.table)
        if not include_inactive:
            stmt = stmt.where(self.table.c.is_active.is_(True))
        stmt = stmt.order_by(self.table.c.name)
        result = await db.execute(stmt)
        return [dict(r._mapping) for r in result.all()]

    async def get(self, db: AsyncSession, entity_id: str) -> Dict[str, Any]:
        row = await self.repository(db).find_by_id(entity_id)
        if not row:
            raise NotFoundError(self.entity_name)
        return row

    # ----------------------------------------------------------------- write

    async def create(self, db: AsyncSession, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        if self.parent and not data.get(self.parent.field):
            raise ValidationError(self.parent.required_message)
        if not validate_code(data.get("code")):
            raise ValidationError(CODE_MESSAGE)
        if not validate_name(data.get("name")):
            raise ValidationError(NAME_MESSAGE)
        self.validate_extra(data)

        if self.parent:
            await self._ensure_parent_active(db, data[self.parent.field])

        if await self._code_taken(db, data["code"]):
            raise ConflictError(f"{self.entity_name} with code '{data['code']}' already exists")

        values = {
            "code": data["code"],
            "name": data["name"].strip(),
            "is_active": True,
            "created_at": datetime.utcnow(),
            "created_by": created_by,
        }
        if self.parent:
            values[self.parent.field] = data[self.parent.field]
        for field in self.extra_fields:
            values[field] = data.get(field) or None

        created = await self.repository(db).create(values)
        logger.info(f"[{self.entity_name}] Created {data['code']}")
        return created

    async def update(
        self,
        db: AsyncSession,
        entity_id: str,
        data: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        await self.get(db, entity_id)

        if self.parent and data.get(self.parent.field):
            await self._ensure_parent_active(db, data[self.parent.field])

        if "code" in data and data["code"] is not None:
            if not validate_code(data["code"]):
                raise ValidationError(CODE_MESSAGE)
            if await self._code_taken(db, data["code"], exclude_id=entity_id):
                raise ConflictError(f"{self.entity_name} with code '{data['code']}' already exists")

        if "name" in data and not validate_name(data["name"]):
            raise ValidationError(NAME_MESSAGE)

        if "is_active" in data and not isinstance(data["is_active"], bool):
            raise ValidationError("isActive must be boolean")

        self.validate_extra(data)

        updatable = ["code", "name", "is_active", *self.extra_fields]
        if self.parent:
            updatable.append(self.parent.field)
        values = {k: data[k] for k in updatable if k in data and data[k] is not None}
        # Optional text fields may be cleared explicitly
        values.update({k: None for k in self.extra_fields if k in data and data[k] is None})

        if not values:
            raise ValidationError("No fields to update")

        if "name" in values:
            values["name"] = values["name"].strip()
        values["updated_at"] = datetime.utcnow()
        values["updated_by"] = updated_by

        updated = await self.repository(db).update(entity_id, values)
        logger.info(f"[{self.entity_name}] Updated {entity_id}")
        return updated

    async def delete(self, db: AsyncSession, entity_id: str) -> bool:
        await self.get(db, entity_id)
        await self.check_can_delete(db, entity_id)
        deleted = await self.repository(db).delete(entity_id)
        logger.info(f"[{self.entity_name}] Deleted {entity_id}")
        return deleted
