# crm_auth/db/init_db.py
import logging

from sqlalchemy.orm import Session

from crm_auth.core.config import Settings, settings
from crm_auth.core.rbac import Role
from crm_auth.core.security_password import hash_password
from crm_auth.crud.user import normalize_email, user_crud

logger = logging.getLogger(__name__)


def init_db(db: Session, cfg: Settings = settings) -> None:
    """Creates the bootstrap admin when SEED_ADMIN_EMAIL/SEED_ADMIN_PASSWORD are set."""
    if not cfg.SEED_ADMIN_EMAIL or not cfg.SEED_ADMIN_PASSWORD:
        return
    email = normalize_email(cfg.SEED_ADMIN_EMAIL)
    if user_crud.get_by_email(db, email) is not None:
        return
    user_crud.create(
        db,
        {
            "email": email,
            "hashed_password": hash_password(cfg.SEED_ADMIN_PASSWORD),
            "first_name": "Admin",
            "last_name": cfg.SEED_TENANT_ID,
            "role": Role.ADMIN.name,
            "tenant_id": cfg.SEED_TENANT_ID,
            "created_by": "SEED",
            "is_deleted": False,
        },
    )
    logger.info("seeded admin %s for tenant %s", email, cfg.SEED_TENANT_ID)
