# crm_auth/models/__init__.py
from crm_auth.models.user import User  # noqa: F401
from crm_auth.models.refresh_token import RefreshToken  # noqa: F401

__all__ = ["User", "RefreshToken"]
