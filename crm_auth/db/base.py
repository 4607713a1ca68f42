# crm_auth/db/base.py
from crm_auth.db.base_class import Base

# register every table on Base.metadata (alembic autogenerate, create_all in tests)
from crm_auth.models.user import User  # noqa: F401,E402
from crm_auth.models.refresh_token import RefreshToken  # noqa: F401,E402

__all__ = ["Base", "User", "RefreshToken"]
