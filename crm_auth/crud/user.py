# crm_auth/crud/user.py
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_auth.crud.base import CRUDBase, db_errors
from crm_auth.models.user import User


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class CRUDUser(CRUDBase[User]):
    def get_by_email(self, db: Session, email: str) -> Optional[User]:
        """Includes soft-deleted rows; callers decide what a deleted principal means."""
        with db_errors(db, "get user by email"):
            return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()

    def get_active(self, db: Session, user_id: str) -> Optional[User]:
        user = self.get(db, user_id)
        if user is None or user.is_deleted:
            return None
        return user


user_crud = CRUDUser(User)
