from typing import List, Optional

from csi_portal.schemas.common import APIModel


class FunctionAppMappingCreate(APIModel):
    function_id: Optional[str] = None
    application_id: Optional[str] = None
    application_ids: Optional[List[str]] = None


class AppDeptMappingCreate(APIModel):
    department_id: Optional[str] = None
    application_id: Optional[str] = None
    application_ids: Optional[List[str]] = None
