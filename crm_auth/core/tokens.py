# crm_auth/core/tokens.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import jwt, JWTError
from jose.exceptions import JWTClaimsError

from crm_auth.core.config import Settings, settings
from crm_auth.core.errors import Expired, InvalidSignature, Malformed
from crm_auth.core.rbac import Role, normalize_role

ACCESS = "access"
REFRESH = "refresh"

_REQUIRED = ("type", "sub", "email", "role", "tenant_id", "jti", "iat", "exp")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PrincipalClaims:
    """Identity fields embedded in both token kinds."""
    sub: str
    email: str
    role: Role
    tenant_id: str

    @classmethod
    def from_principal(cls, principal: Any) -> "PrincipalClaims":
        return cls(
            sub=str(principal.id),
            email=principal.email,
            role=normalize_role(principal.role),
            tenant_id=principal.tenant_id,
        )


@dataclass(frozen=True)
class TokenClaims:
    type: str
    sub: str
    email: str
    role: Role
    tenant_id: str
    jti: str
    iat: int
    exp: int

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.iat, tz=timezone.utc)


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenStatus:
    valid: bool
    expired: bool
    near_expiry: bool
    payload: Optional[Dict[str, Any]] = None


class TokenCodec:
    """Signs and verifies access/refresh JWTs.

    Access and refresh tokens use different secrets so one can never be replayed
    as the other. Verification never touches storage.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        algorithm: str = "HS256",
        near_expiry: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = _now,
    ) -> None:
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("token lifetimes must be positive")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.algorithm = algorithm
        self.near_expiry = near_expiry
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "TokenCodec":
        return cls(
            access_secret=cfg.SECRET_KEY,
            refresh_secret=cfg.REFRESH_SECRET_KEY,
            access_ttl=timedelta(minutes=cfg.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=cfg.REFRESH_TOKEN_EXPIRE_DAYS),
            algorithm=cfg.ALGORITHM,
            near_expiry=timedelta(seconds=cfg.ACCESS_TOKEN_NEAR_EXPIRY_SECONDS),
        )

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[REFRESH]

    def _encode(self, claims: PrincipalClaims, token_type: str) -> tuple[str, Dict[str, Any]]:
        now = self._clock()
        payload: Dict[str, Any] = {
            "type": token_type,
            "sub": claims.sub,
            "email": claims.email,
            "role": normalize_role(claims.role).name,
            "tenant_id": claims.tenant_id,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttls[token_type]).timestamp()),
        }
        return jwt.encode(payload, self._secrets[token_type], algorithm=self.algorithm), payload

    def issue_access_token(self, claims: PrincipalClaims) -> str:
        token, _ = self._encode(claims, ACCESS)
        return token

    def issue_refresh_token(self, claims: PrincipalClaims) -> IssuedRefreshToken:
        token, payload = self._encode(claims, REFRESH)
        return IssuedRefreshToken(
            token=token,
            token_id=payload["jti"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def verify(self, token: Any, *, expected_type: str = ACCESS, allow_expired: bool = False) -> TokenClaims:
        if not isinstance(token, str) or token.count(".") != 2:
            raise Malformed()
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            raise Malformed()

        try:
            payload = jwt.decode(
                token,
                self._secrets[expected_type],
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTClaimsError:
            raise Malformed()
        except JWTError:
            raise InvalidSignature()

        if not isinstance(payload, dict) or any(payload.get(k) in (None, "") for k in _REQUIRED):
            raise Malformed()
        if payload["type"] != expected_type:
            raise Malformed()
        try:
            claims = TokenClaims(
                type=payload["type"],
                sub=str(payload["sub"]),
                email=str(payload["email"]),
                role=normalize_role(payload["role"]),
                tenant_id=str(payload["tenant_id"]),
                jti=str(payload["jti"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
            )
        except (TypeError, ValueError):
            raise Malformed()
        # exp is checked against the codec clock
        if not allow_expired and claims.exp < self._clock().timestamp():
            raise Expired()
        return claims

    def inspect(self, token: Any) -> TokenStatus:
        """Structural check without signature verification; feeds expiry hints only."""
        if not isinstance(token, str):
            return TokenStatus(valid=False, expired=False, near_expiry=True)
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError:
            return TokenStatus(valid=False, expired=False, near_expiry=True)
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            return TokenStatus(valid=True, expired=False, near_expiry=True, payload=payload)
        remaining = exp - self._clock().timestamp()
        return TokenStatus(
            valid=True,
            expired=remaining < 0,
            near_expiry=remaining < self.near_expiry.total_seconds(),
            payload=payload,
        )


_codec: Optional[TokenCodec] = None


def get_token_codec() -> TokenCodec:
    global _codec
    if _codec is None:
        _codec = TokenCodec.from_settings()
    return _codec
