# crm_auth/schemas/token.py
from typing import Any, Dict, Optional
from pydantic import Field

from crm_auth.schemas.user import CamelModel, UserOut


class AuthOut(CamelModel):
    """Body of register/login/refresh. The refresh token travels only in the cookie."""
    access_token: str
    access_token_expiry: int
    user: UserOut


class RefreshIn(CamelModel):
    refresh_token: Optional[str] = None


class LogoutIn(CamelModel):
    refresh_token: Optional[str] = None
    all_sessions: bool = False


class ValidateTokenIn(CamelModel):
    access_token: str = Field(min_length=1)


class ValidateTokenOut(CamelModel):
    valid: bool
    expired: bool
    near_expiry: bool
    payload: Optional[Dict[str, Any]] = None


class MessageOut(CamelModel):
    message: str
