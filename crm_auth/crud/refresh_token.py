# crm_auth/crud/refresh_token.py
"""Refresh token store.

One row per issued refresh token, keyed by the token's ``jti``. A signed refresh
token whose id is missing here has been rotated, logged out or swept, and must
be refused.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from crm_auth.crud.base import db_errors
from crm_auth.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class RefreshTokenStore:
    def __init__(self, db: Session, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.db = db
        self._clock = clock

    def put(self, record: RefreshToken) -> RefreshToken:
        """Upsert by token_id."""
        with db_errors(self.db, "put refresh token"):
            merged = self.db.merge(record)
            self.db.commit()
            return merged

    def get_by_token_id(self, token_id: str) -> Optional[RefreshToken]:
        with db_errors(self.db, "get refresh token"):
            return self.db.get(RefreshToken, token_id)

    def list_for_principal(self, principal_id: str) -> List[RefreshToken]:
        with db_errors(self.db, "list refresh tokens"):
            stmt = select(RefreshToken).where(RefreshToken.principal_id == principal_id).order_by(RefreshToken.issued_at)
            return list(self.db.scalars(stmt).all())

    def delete_by_token_id(self, token_id: str) -> bool:
        with db_errors(self.db, "delete refresh token"):
            result = self.db.execute(delete(RefreshToken).where(RefreshToken.token_id == token_id))
            self.db.commit()
            return bool(result.rowcount)

    def delete_all_for_principal(self, principal_id: str) -> int:
        with db_errors(self.db, "delete principal refresh tokens"):
            result = self.db.execute(delete(RefreshToken).where(RefreshToken.principal_id == principal_id))
            self.db.commit()
        if result.rowcount:
            logger.info("revoked %d refresh token(s) for principal %s", result.rowcount, principal_id)
        return result.rowcount or 0

    def is_expired(self, record: RefreshToken) -> bool:
        return as_utc(record.expires_at) <= self._clock()

    def sweep_expired(self) -> int:
        with db_errors(self.db, "sweep refresh tokens"):
            result = self.db.execute(delete(RefreshToken).where(RefreshToken.expires_at <= self._clock()))
            self.db.commit()
        count = result.rowcount or 0
        logger.info("swept %d expired refresh token(s)", count)
        return count
