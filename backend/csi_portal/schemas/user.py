from typing import Any, Optional

from pydantic import AliasChoices, Field

from csi_portal.schemas.common import APIModel

LDAP_ALIASES = AliasChoices("use_ldap", "useLDAP", "useLdap")


class UserCreate(APIModel):
    username: Optional[str] = None
    npk: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    use_ldap: Optional[bool] = Field(True, validation_alias=LDAP_ALIASES)
    password: Optional[str] = None
    business_unit_id: Optional[str] = None
    division_id: Optional[str] = None
    department_id: Optional[str] = None


class UserUpdate(APIModel):
    npk: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    business_unit_id: Optional[str] = None
    division_id: Optional[str] = None
    department_id: Optional[str] = None


class ToggleLDAPRequest(APIModel):
    # Left untyped so a non-boolean reaches the "useLDAP must be boolean" check
    use_ldap: Any = Field(None, validation_alias=LDAP_ALIASES)


class SetPasswordRequest(APIModel):
    password: Optional[str] = None
