"""Business Unit service - top level of the organizational hierarchy"""

from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.db.tables import business_units, divisions
from csi_portal.services.entity_base import EntityService


class BusinessUnitService(EntityService):
    entity_name = "Business Unit"
    table = business_units
    pk = "business_unit_id"

    async def check_can_delete(self, db: AsyncSession, entity_id: str) -> None:
        if await self._count_where(db, divisions, "business_unit_id", entity_id):
            raise ValidationError("Cannot delete Business Unit: associated Divisions exist")


business_unit_service = BusinessUnitService()
