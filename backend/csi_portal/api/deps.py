"""Helpers shared by the v1 endpoint modules"""

from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.modules.auth.dependencies import client_ip
from csi_portal.services.audit_service import audit_service


async def audit(
    db: AsyncSession,
    request: Request,
    user: Optional[Dict[str, Any]],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    username: Optional[str] = None,
) -> None:
    """Write an audit_logs row for the current request"""
    await audit_service.log_action(
        db,
        action,
        user_id=user["user_id"] if user else None,
        username=username or (user["username"] if user else None),
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=old_values,
        new_values=new_values,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def ok(data: Any = None, message: Optional[str] = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body
