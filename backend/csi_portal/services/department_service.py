"""Department service - leaf of the organizational hierarchy"""

from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.db.tables import (
    application_department_mappings,
    business_units,
    departments,
    divisions,
    responses,
)
from csi_portal.services.entity_base import EntityService, ParentLink


class DepartmentService(EntityService):
    entity_name = "Department"
    table = departments
    pk = "department_id"
    parent = ParentLink(
        "division_id", divisions, "division_id",
        "Division", "Division ID is required",
    )

    async def list(self, db: AsyncSession, include_inactive: bool = False) -> List[Dict[str, Any]]:
        """Departments with their Division and Business Unit names"""
        stmt = (
            select(
                departments,
                divisions.c.name.label("division_name"),
                divisions.c.business_unit_id,
                business_units.c.name.label("business_unit_name"),
            )
            .join(divisions, departments.c.division_id == divisions.c.division_id)
            .join(business_units, divisions.c.business_unit_id == business_units.c.business_unit_id)
        )
        if not include_inactive:
            stmt = stmt.where(departments.c.is_active.is_(True))
        result = await db.execute(stmt.order_by(departments.c.name))
        return [dict(r._mapping) for r in result.all()]

    async def get_by_division(
        self, db: AsyncSession, division_id: str, include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        stmt = select(departments).where(departments.c.division_id == division_id)
        if not include_inactive:
            stmt = stmt.where(departments.c.is_active.is_(True))
        result = await db.execute(stmt.order_by(departments.c.name))
        return [dict(r._mapping) for r in result.all()]

    async def verify_hierarchy(self, db: AsyncSession, department_id: str) -> Dict[str, Any]:
        """Resolve Department -> Division -> Business Unit in one query"""
        stmt = (
            select(
                departments.c.department_id,
                departments.c.code.label("department_code"),
                departments.c.name.label("department_name"),
                divisions.c.division_id,
                divisions.c.code.label("division_code"),
                divisions.c.name.label("division_name"),
                business_units.c.business_unit_id,
                business_units.c.code.label("business_unit_code"),
                business_units.c.name.label("business_unit_name"),
            )
            .join(divisions, departments.c.division_id == divisions.c.division_id)
            .join(business_units, divisions.c.business_unit_id == business_units.c.business_unit_id)
            .where(departments.c.department_id == department_id)
        )
        row = (await db.execute(stmt)).first()
        if not row:
            raise ValidationError("Department hierarchy is broken or department does not exist")
        return dict(row._mapping)

    async def check_can_delete(self, db: AsyncSession, entity_id: str) -> None:
        if await self._count_where(db, application_department_mappings, "department_id", entity_id):
            raise ValidationError("Cannot delete Department: associated Application mappings exist")
        if await self._count_where(db, responses, "department_id", entity_id):
            raise ValidationError("Cannot delete Department: associated survey responses exist")


department_service = DepartmentService()
