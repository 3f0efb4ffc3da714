"""
Audit Service - append-only trail of who changed what

Entries are written inside the caller's unit of work so a rolled back
request leaves no audit row behind.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.core.logging_config import logger
from csi_portal.db.repository import BaseRepository
from csi_portal.db.tables import AUDIT_ACTIONS, audit_logs
from csi_portal.utils.pagination import paginate


def _jsonable(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop secrets and stringify datetimes before storing a snapshot"""
    if not values:
        return None
    cleaned = {}
    for key, value in values.items():
        if key in ("password", "password_hash"):
            continue
        cleaned[key] = value.isoformat() if isinstance(value, datetime) else value
    return cleaned


class AuditService:
    """Writes and queries audit_logs"""

    async def log_action(
        self,
        db: AsyncSession,
        action: str,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        if action not in AUDIT_ACTIONS:
            raise ValidationError(
                f"Invalid action type: {action}. Must be one of: {', '.join(AUDIT_ACTIONS)}"
            )

        entry = await BaseRepository(db, audit_logs, "log_id").create({
            "timestamp": datetime.utcnow(),
            "user_id": user_id,
            "username": (username or "")[:50] or None,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "old_values": _jsonable(old_values),
            "new_values": _jsonable(new_values),
            "ip_address": ip_address,
            "user_agent": (user_agent or "")[:500] or None,
        })
        logger.debug(f"[Audit] {action} {entity_type or ''} {entity_id or ''} by {username or '-'}")
        return entry

    async def get_audit_logs(
        self,
        db: AsyncSession,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        query = select(audit_logs)
        if start_date:
            query = query.where(audit_logs.c.timestamp >= start_date)
        if end_date:
            query = query.where(audit_logs.c.timestamp <= end_date)
        if user_id:
            query = query.where(audit_logs.c.user_id == user_id)
        if username:
            query = query.where(audit_logs.c.username.like(f"%{username}%"))
        if action:
            query = query.where(audit_logs.c.action == action)
        if entity_type:
            query = query.where(audit_logs.c.entity_type == entity_type)
        if entity_id:
            query = query.where(audit_logs.c.entity_id == entity_id)

        return await paginate(db, query.order_by(audit_logs.c.timestamp.desc()), page, page_size)

    async def get_entity_history(self, db: AsyncSession, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """Every audit entry for one record, oldest first"""
        result = await db.execute(
            select(audit_logs)
            .where(audit_logs.c.entity_type == entity_type, audit_logs.c.entity_id == entity_id)
            .order_by(audit_logs.c.timestamp)
        )
        return [dict(r._mapping) for r in result.all()]


audit_service = AuditService()
