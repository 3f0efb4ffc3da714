from typing import Any, Optional

from csi_portal.schemas.common import APIModel


class EntityCreate(APIModel):
    """Shared body for business units, divisions, departments, functions and applications"""

    code: Optional[str] = None
    name: Optional[str] = None
    business_unit_id: Optional[str] = None
    division_id: Optional[str] = None
    description: Optional[str] = None
    it_dept_head_user_id: Optional[str] = None


class EntityUpdate(EntityCreate):
    is_active: Any = None
