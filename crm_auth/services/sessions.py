# crm_auth/services/sessions.py
"""Login, registration, refresh-token rotation and logout.

Both classes work on a request-scoped SQLAlchemy session. The HTTP layer owns
the cookie; these only hand back the refresh token to be placed in it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_auth.core.errors import (
    AlreadyExists,
    Expired,
    InvalidCredentials,
    InvalidOrExpired,
    InvalidSignature,
    Malformed,
    PrincipalGone,
    Revoked,
)
from crm_auth.core.rbac import normalize_role
from crm_auth.core.security_password import burn_verify, hash_password, verify_and_maybe_upgrade
from crm_auth.core.tokens import REFRESH, IssuedRefreshToken, PrincipalClaims, TokenCodec
from crm_auth.crud.refresh_token import RefreshTokenStore
from crm_auth.crud.user import normalize_email, user_crud
from crm_auth.models.refresh_token import RefreshToken
from crm_auth.models.user import User

logger = logging.getLogger(__name__)

UNASSIGNED_TENANT = "UNASSIGNED"


@dataclass
class AuthResult:
    access_token: str
    access_token_expiry: int  # epoch milliseconds
    refresh: IssuedRefreshToken
    principal: User


def _mint(db: Session, codec: TokenCodec, store: RefreshTokenStore, user: User) -> AuthResult:
    claims = PrincipalClaims.from_principal(user)
    access = codec.issue_access_token(claims)
    refresh = codec.issue_refresh_token(claims)
    store.put(
        RefreshToken(
            token_id=refresh.token_id,
            principal_id=user.id,
            issued_at=refresh.issued_at,
            expires_at=refresh.expires_at,
        )
    )
    exp = codec.inspect(access).payload["exp"]
    return AuthResult(access_token=access, access_token_expiry=int(exp) * 1000, refresh=refresh, principal=user)


class SessionIssuer:
    def __init__(self, db: Session, codec: TokenCodec, store: Optional[RefreshTokenStore] = None) -> None:
        self.db = db
        self.codec = codec
        self.store = store or RefreshTokenStore(db)

    def register(self, email: str, password: str, profile: Dict[str, Any]) -> AuthResult:
        email = normalize_email(email)
        # soft-deleted principals still own their email
        if user_crud.get_by_email(self.db, email) is not None:
            raise AlreadyExists()
        data = {
            "email": email,
            "hashed_password": hash_password(password),
            "first_name": profile.get("first_name") or "",
            "last_name": profile.get("last_name") or "",
            "role": normalize_role(profile.get("role")).name,
            "tenant_id": UNASSIGNED_TENANT,
            "phone_number": profile.get("phone_number") or None,
            "created_by": "SELF_REGISTRATION",
            "is_deleted": False,
        }
        try:
            user = user_crud.create(self.db, data)
        except IntegrityError:
            raise AlreadyExists()
        logger.info("registered principal %s", user.id)
        return _mint(self.db, self.codec, self.store, user)

    def login(self, email: str, password: str) -> AuthResult:
        user = user_crud.get_by_email(self.db, email)
        if user is None or user.is_deleted:
            burn_verify(password)
            logger.info("login rejected: unknown or deleted principal")
            raise InvalidCredentials()
        ok, new_hash = verify_and_maybe_upgrade(password, user.hashed_password)
        if not ok:
            logger.info("login rejected: bad password for principal %s", user.id)
            raise InvalidCredentials()
        if new_hash:
            user_crud.update(self.db, user, {"hashed_password": new_hash})

        # one live session lineage per principal
        self.store.delete_all_for_principal(user.id)
        logger.info("login ok for principal %s", user.id)
        return _mint(self.db, self.codec, self.store, user)


class RefreshCoordinator:
    def __init__(self, db: Session, codec: TokenCodec, store: Optional[RefreshTokenStore] = None) -> None:
        self.db = db
        self.codec = codec
        self.store = store or RefreshTokenStore(db)

    def refresh(self, refresh_token: Optional[str]) -> AuthResult:
        if not refresh_token:
            raise InvalidOrExpired("Refresh token required")
        try:
            claims = self.codec.verify(refresh_token, expected_type=REFRESH)
        except (Malformed, InvalidSignature, Expired) as exc:
            logger.info("refresh rejected: %s", exc.code)
            raise InvalidOrExpired()

        record = self.store.get_by_token_id(claims.jti)
        if record is None:
            # rotated, logged out or swept: treat as replay
            logger.warning("refresh rejected: token %s not in store (principal %s)", claims.jti, claims.sub)
            raise Revoked()
        if self.store.is_expired(record):
            self.store.delete_by_token_id(claims.jti)
            raise Revoked()

        user = user_crud.get_active(self.db, claims.sub)
        if user is None:
            raise PrincipalGone()

        # new record first, old one after: a crash in between leaves two usable tokens, never zero
        result = _mint(self.db, self.codec, self.store, user)
        self.store.delete_by_token_id(claims.jti)
        logger.info("rotated refresh token for principal %s", user.id)
        return result

    def logout(self, refresh_token: Optional[str], *, all_sessions: bool = False) -> int:
        """Deletes the token's record (or all of the principal's). Invalid tokens are ignored."""
        if not refresh_token:
            return 0
        try:
            claims = self.codec.verify(refresh_token, expected_type=REFRESH, allow_expired=True)
        except (Malformed, InvalidSignature, Expired):
            logger.info("logout with unusable refresh token")
            return 0
        if all_sessions:
            return self.store.delete_all_for_principal(claims.sub)
        return int(self.store.delete_by_token_id(claims.jti))
