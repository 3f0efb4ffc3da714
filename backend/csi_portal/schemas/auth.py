from typing import Optional

from csi_portal.schemas.common import APIModel


class LoginRequest(APIModel):
    username: Optional[str] = None
    password: Optional[str] = None


class RefreshTokenRequest(APIModel):
    refresh_token: Optional[str] = None
