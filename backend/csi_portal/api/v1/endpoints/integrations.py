from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.core.exceptions import ExternalServiceError
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.services.sap_client import sap_client
from csi_portal.services.sap_sync_service import sap_sync_service

router = APIRouter()


@router.post("/sap/sync")
async def sync_sap(
    request: Request,
    current_user: Dict[str, Any] = Depends(require_permission("sap:sync")),
    db: AsyncSession = Depends(get_db),
):
    result = await sap_sync_service.sync_organizational_data(db)
    await audit(db, request, current_user, "Update", "SAPSync", new_values=result["statistics"])
    message = "SAP sync completed successfully" if result["success"] else "SAP sync completed with errors"
    return ok(result, message=message)


@router.get("/sap/sync/status")
async def get_sync_status(
    current_user: Dict[str, Any] = Depends(require_permission("sap:sync")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await sap_sync_service.get_last_sync_status(db))


@router.get("/sap/sync/history")
async def get_sync_history(
    limit: int = Query(10, ge=1, le=100),
    current_user: Dict[str, Any] = Depends(require_permission("sap:sync")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await sap_sync_service.get_sync_history(db, limit=limit))


@router.get("/sap/test-connection")
async def test_connection(
    current_user: Dict[str, Any] = Depends(require_permission("sap:sync")),
):
    result = await sap_client.test_connection()
    if not result["success"]:
        raise ExternalServiceError("SAP", result["error"])
    return ok(result["data"], message="SAP connection successful")
