# crm_auth/api/deps.py
from dataclasses import dataclass

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from crm_auth.core.errors import Expired, InvalidSignature, Malformed, Unauthenticated
from crm_auth.core.tokens import ACCESS, TokenClaims, TokenCodec, get_token_codec
from crm_auth.crud.refresh_token import RefreshTokenStore
from crm_auth.crud.user import user_crud
from crm_auth.db.session import get_db
from crm_auth.models.user import User


@dataclass
class CurrentPrincipal:
    user: User
    claims: TokenClaims


# ----------------------------------------------------------------------
# Bearer from the Authorization header (no OAuth2PasswordBearer)
# ----------------------------------------------------------------------
def get_bearer_token(authorization: str | None = Header(None, alias="Authorization")) -> str:
    if not authorization:
        raise Unauthenticated("Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthenticated("Invalid Authorization header")
    return parts[1]


def get_refresh_store(db: Session = Depends(get_db)) -> RefreshTokenStore:
    return RefreshTokenStore(db)


# ----------------------------------------------------------------------
# Principal behind the access token; deleted principals are rejected even
# while their token is still within its lifetime
# ----------------------------------------------------------------------
def get_current_principal(
    request: Request,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> CurrentPrincipal:
    try:
        claims = codec.verify(token, expected_type=ACCESS)
    except (Malformed, InvalidSignature, Expired) as exc:
        raise Unauthenticated(exc.message)

    user = user_crud.get_active(db, claims.sub)
    if user is None:
        raise Unauthenticated("User not found")

    # read by TokenExpiryHeadersMiddleware
    status = codec.inspect(token)
    request.state.token_info = {"expires_at": claims.exp * 1000, "near_expiry": status.near_expiry}
    return CurrentPrincipal(user=user, claims=claims)
