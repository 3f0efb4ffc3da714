"""Function service - business functions owned by an IT department head"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from csi_portal.core.exceptions import ValidationError
from csi_portal.db.tables import function_application_mappings, functions, users
from csi_portal.services.entity_base import EntityService


class FunctionService(EntityService):
    entity_name = "Function"
    table = functions
    pk = "function_id"
    extra_fields = ("it_dept_head_user_id",)

    async def check_can_delete(self, db: AsyncSession, entity_id: str) -> None:
        if await self._count_where(db, function_application_mappings, "function_id", entity_id):
            raise ValidationError("Cannot delete Function: active Application mappings exist")

        # An active IT Lead still assigned as the function's department head
        stmt = (
            select(func.count())
            .select_from(functions.join(users, functions.c.it_dept_head_user_id == users.c.user_id))
            .where(
                functions.c.function_id == entity_id,
                users.c.role == "ITLead",
                users.c.is_active.is_(True),
            )
        )
        if (await db.execute(stmt)).scalar():
            raise ValidationError("Cannot delete Function: IT Lead assignments exist")


function_service = FunctionService()
