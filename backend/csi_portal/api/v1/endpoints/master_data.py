"""
Master data CRUD: business units, divisions, departments, functions and
applications share one route shape, built per entity service.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.api.deps import audit, ok
from csi_portal.core.database import get_db
from csi_portal.modules.auth.dependencies import require_permission
from csi_portal.schemas.master_data import EntityCreate, EntityUpdate
from csi_portal.services.application_service import application_service
from csi_portal.services.business_unit_service import business_unit_service
from csi_portal.services.department_service import department_service
from csi_portal.services.division_service import division_service
from csi_portal.services.entity_base import EntityService
from csi_portal.services.function_service import function_service


def build_entity_router(service: EntityService, entity_type: str) -> APIRouter:
    router = APIRouter()
    label = service.entity_name

    @router.get("")
    async def list_entities(
        include_inactive: bool = Query(False),
        current_user: Dict[str, Any] = Depends(require_permission("master-data:read")),
        db: AsyncSession = Depends(get_db),
    ):
        rows = await service.list(db, include_inactive=include_inactive)
        return ok(rows, count=len(rows))

    @router.get("/{entity_id}")
    async def get_entity(
        entity_id: str,
        current_user: Dict[str, Any] = Depends(require_permission("master-data:read")),
        db: AsyncSession = Depends(get_db),
    ):
        return ok(await service.get(db, entity_id))

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_entity(
        request: Request,
        body: EntityCreate,
        current_user: Dict[str, Any] = Depends(require_permission("master-data:create")),
        db: AsyncSession = Depends(get_db),
    ):
        created = await service.create(db, body.to_data(), created_by=current_user["user_id"])
        await audit(db, request, current_user, "Create", entity_type, created[service.pk], new_values=created)
        return ok(created, message=f"{label} created successfully")

    @router.put("/{entity_id}")
    async def update_entity(
        entity_id: str,
        request: Request,
        body: EntityUpdate,
        current_user: Dict[str, Any] = Depends(require_permission("master-data:update")),
        db: AsyncSession = Depends(get_db),
    ):
        before = await service.get(db, entity_id)
        updated = await service.update(db, entity_id, body.to_data(), updated_by=current_user["user_id"])
        await audit(
            db, request, current_user, "Update", entity_type, entity_id,
            old_values=before, new_values=updated,
        )
        return ok(updated, message=f"{label} updated successfully")

    @router.delete("/{entity_id}")
    async def delete_entity(
        entity_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(require_permission("master-data:delete")),
        db: AsyncSession = Depends(get_db),
    ):
        before = await service.get(db, entity_id)
        await service.delete(db, entity_id)
        await audit(db, request, current_user, "Delete", entity_type, entity_id, old_values=before)
        return ok(message=f"{label} deleted successfully")

    return router


business_units_router = build_entity_router(business_unit_service, "BusinessUnit")
functions_router = build_entity_router(function_service, "Function")
applications_router = build_entity_router(application_service, "Application")

divisions_router = build_entity_router(division_service, "Division")


@divisions_router.get("/business-unit/{business_unit_id}")
async def get_divisions_by_business_unit(
    business_unit_id: str,
    include_inactive: bool = Query(False),
    current_user: Dict[str, Any] = Depends(require_permission("master-data:read")),
    db: AsyncSession = Depends(get_db),
):
    rows = await division_service.get_by_business_unit(db, business_unit_id, include_inactive)
    return ok(rows, count=len(rows))


departments_router = build_entity_router(department_service, "Department")


@departments_router.get("/division/{division_id}")
async def get_departments_by_division(
    division_id: str,
    include_inactive: bool = Query(False),
    current_user: Dict[str, Any] = Depends(require_permission("master-data:read")),
    db: AsyncSession = Depends(get_db),
):
    rows = await department_service.get_by_division(db, division_id, include_inactive)
    return ok(rows, count=len(rows))


@departments_router.get("/{department_id}/hierarchy")
async def verify_department_hierarchy(
    department_id: str,
    current_user: Dict[str, Any] = Depends(require_permission("master-data:read")),
    db: AsyncSession = Depends(get_db),
):
    return ok(await department_service.verify_hierarchy(db, department_id))
