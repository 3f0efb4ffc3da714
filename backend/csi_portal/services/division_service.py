"""Division service - second level, owned by a Business Unit"""

from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.db.tables import business_units, departments, divisions
from csi_portal.services.entity_base import EntityService, ParentLink


class DivisionService(EntityService):
    entity_name = "Division"
    table = divisions
    pk = "division_id"
    parent = ParentLink(
        "business_unit_id", business_units, "business_unit_id",
        "Business Unit", "Business Unit ID is required",
    )

    async def list(self, db: AsyncSession, include_inactive: bool = False) -> List[Dict[str, Any]]:
        """Divisions with their Business Unit code and name"""
        stmt = (
            select(
                divisions,
                business_units.c.code.label("business_unit_code"),
                business_units.c.name.label("business_unit_name"),
            )
            .join(business_units, divisions.c.business_unit_id == business_units.c.business_unit_id)
        )
        if not include_inactive:
            stmt = stmt.where(divisions.c.is_active.is_(True))
        stmt = stmt.order_by(divisions.c.name)
        result = await db.execute(stmt)
        return [dict(r._mapping) for r in result.all()]

    async def get_by_business_unit(
        self, db: AsyncSession, business_unit_id: str, include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        stmt = select(divisions).where(divisions.c.business_unit_id == business_unit_id)
        if not include_inactive:
            stmt = stmt.where(divisions.c.is_active.is_(True))
        result = await db.execute(stmt.order_by(divisions.c.name))
        return [dict(r._mapping) for r in result.all()]

    async def check_can_delete(self, db: AsyncSession, entity_id: str) -> None:
        if await self._count_where(db, departments, "division_id", entity_id):
            raise ValidationError("Cannot delete Division: associated Departments exist")


division_service = DivisionService()
