"""
Generic parameterized CRUD against one table.

Every statement goes through SQLAlchemy Core so values are always bound
parameters; callers share the request-scoped AsyncSession and therefore its
transaction.
"""
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Executable

from csi_portal.core.exceptions import NotFoundError
from csi_portal.core.logging_config import logger
from csi_portal.core.types import generate_uuid


def row_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a Core result row to a plain dict"""
    if row is None:
        return None
    return dict(row._mapping)


class BaseRepository:
    """CRUD helpers for a single table keyed by ``pk``"""

    def __init__(self, db: AsyncSession, table: Table, pk: str):
        self.db = db
        self.table = table
        self.pk = pk

    @property
    def pk_column(self):
        return self.table.c[self.pk]

    def _where(self, stmt, filters: Optional[Dict[str, Any]]):
        for key, value in (filters or {}).items():
            stmt = stmt.where(self.table.c[key] == value)
        return stmt

    async def _run(self, operation: str, stmt: Executable):
        start = time.perf_counter()
        try:
            result = await self.db.execute(stmt)
        except Exception as e:
            logger.error(f"[Repository] {operation} on {self.table.name} failed: {e}")
            raise
        logger.log_db_query(
            operation,
            self.table.name,
            (time.perf_counter() - start) * 1000,
            rows_affected=max(result.rowcount or 0, 0) if operation in ("UPDATE", "DELETE") else 0,
        )
        return result

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored"""
        values = dict(data)
        if values.get(self.pk) is None and self.pk_column.default is not None:
            values[self.pk] = generate_uuid()
        await self._run("INSERT", insert(self.table).values(**values))
        return await self.find_by_id(values[self.pk])

    async def find_by_id(self, id: Any) -> Optional[Dict[str, Any]]:
        result = await self._run("SELECT", select(self.table).where(self.pk_column == id))
        return row_to_dict(result.first())

    async def find_one(self, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        stmt = self._where(select(self.table), filters).limit(1)
        result = await self._run("SELECT", stmt)
        return row_to_dict(result.first())

    async def find_all(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Rows matching every ``column == value`` pair in filters"""
        stmt = self._where(select(self.table), filters)
        if order_by:
            stmt = stmt.order_by(self.table.c[order_by])
        result = await self._run("SELECT", stmt)
        return [row_to_dict(r) for r in result.all()]

    async def update(self, id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._run(
            "UPDATE", update(self.table).where(self.pk_column == id).values(**data)
        )
        if result.rowcount == 0:
            raise NotFoundError(
                self.table.name,
                f"Record with {self.pk} = {id} not found in {self.table.name}",
            )
        return await self.find_by_id(id)

    async def delete(self, id: Any) -> bool:
        result = await self._run("DELETE", delete(self.table).where(self.pk_column == id))
        return result.rowcount > 0

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        stmt = self._where(select(func.count()).select_from(self.table), filters)
        result = await self._run("COUNT", stmt)
        return int(result.scalar() or 0)

    async def exists(self, id: Any) -> bool:
        stmt = select(func.count()).select_from(self.table).where(self.pk_column == id)
        result = await self._run("COUNT", stmt)
        return bool(result.scalar())

    async def execute_query(self, stmt: Executable) -> List[Dict[str, Any]]:
        """Run an arbitrary statement and return its rows (empty for DML)"""
        result = await self._run("QUERY", stmt)
        if not result.returns_rows:
            return []
        return [row_to_dict(r) for r in result.all()]
