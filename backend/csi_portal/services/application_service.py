"""Application service - IT applications rated by survey respondents"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.db.tables import (
    application_department_mappings,
    applications,
    function_application_mappings,
    responses,
)
from csi_portal.services.entity_base import EntityService


class ApplicationService(EntityService):
    entity_name = "Application"
    table = applications
    pk = "application_id"
    extra_fields = ("description",)

    def validate_extra(self, data: Dict[str, Any]) -> None:
        description = data.get("description")
        if description and len(description) > 500:
            raise ValidationError("Description must be 500 characters or less")

    async def check_can_delete(self, db: AsyncSession, entity_id: str) -> None:
        if await self._count_where(db, function_application_mappings, "application_id", entity_id):
            raise ValidationError("Cannot delete Application: active Function mappings exist")
        if await self._count_where(db, application_department_mappings, "application_id", entity_id):
            raise ValidationError("Cannot delete Application: active Department mappings exist")
        if await self._count_where(db, responses, "application_id", entity_id):
            raise ValidationError("Cannot delete Application: associated survey responses exist")


application_service = ApplicationService()
