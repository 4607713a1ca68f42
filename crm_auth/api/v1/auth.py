# crm_auth/api/v1/auth.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from crm_auth.api.deps import CurrentPrincipal, get_current_principal, get_refresh_store
from crm_auth.core.config import settings
from crm_auth.core.cookies import clear_refresh_cookie, read_refresh_cookie, set_refresh_cookie
from crm_auth.core.errors import ValidationFailed
from crm_auth.core.security_password import hash_password, verify_and_maybe_upgrade
from crm_auth.core.tokens import TokenCodec, get_token_codec
from crm_auth.crud.refresh_token import RefreshTokenStore
from crm_auth.crud.user import user_crud
from crm_auth.db.session import get_db
from crm_auth.schemas.token import AuthOut, LogoutIn, MessageOut, RefreshIn, ValidateTokenIn, ValidateTokenOut
from crm_auth.schemas.user import LoginIn, PasswordChange, ProfileUpdate, RegisterIn, UserOut
from crm_auth.services.sessions import AuthResult, RefreshCoordinator, SessionIssuer

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------- helpers ----------
def _auth_response(response: Response, result: AuthResult, codec: TokenCodec) -> AuthOut:
    set_refresh_cookie(response, result.refresh.token, int(codec.refresh_ttl.total_seconds()))
    return AuthOut(
        access_token=result.access_token,
        access_token_expiry=result.access_token_expiry,
        user=UserOut.from_principal(result.principal),
    )


def _refresh_token_from(request: Request, body_token: Optional[str]) -> Optional[str]:
    token = read_refresh_cookie(request)
    if token:
        return token
    if body_token and settings.ALLOW_BODY_REFRESH_TOKEN:
        logger.warning("refresh token supplied in request body (legacy client)")
        return body_token
    return None


# ---------- session endpoints ----------
@router.post("/register", response_model=AuthOut, status_code=201)
def register(
    body: RegisterIn,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    result = SessionIssuer(db, codec).register(
        body.email,
        body.password,
        {
            "first_name": body.first_name,
            "last_name": body.last_name,
            "role": body.role,
            "phone_number": body.phone_number,
        },
    )
    return _auth_response(response, result, codec)


@router.post("/login", response_model=AuthOut)
def login(
    body: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    result = SessionIssuer(db, codec).login(body.email, body.password)
    return _auth_response(response, result, codec)


@router.post("/refresh", response_model=AuthOut)
def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshIn] = None,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    token = _refresh_token_from(request, body.refresh_token if body else None)
    result = RefreshCoordinator(db, codec).refresh(token)
    return _auth_response(response, result, codec)


@router.post("/logout", response_model=MessageOut)
def logout(
    request: Request,
    response: Response,
    body: Optional[LogoutIn] = None,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    token = _refresh_token_from(request, body.refresh_token if body else None)
    RefreshCoordinator(db, codec).logout(token, all_sessions=bool(body and body.all_sessions))
    clear_refresh_cookie(response)
    return MessageOut(message="Logged out successfully")


@router.post("/validate-token", response_model=ValidateTokenOut)
def validate_token(body: ValidateTokenIn, codec: TokenCodec = Depends(get_token_codec)):
    status = codec.inspect(body.access_token)
    return ValidateTokenOut(
        valid=status.valid,
        expired=status.expired,
        near_expiry=status.near_expiry,
        payload=status.payload,
    )


# ---------- profile ----------
@router.get("/profile", response_model=UserOut)
def get_profile(current: CurrentPrincipal = Depends(get_current_principal)):
    return UserOut.from_principal(current.user)


@router.put("/profile", response_model=UserOut)
def update_profile(
    body: ProfileUpdate,
    db: Session = Depends(get_db),
    current: CurrentPrincipal = Depends(get_current_principal),
):
    # email, password, role and tenant are not editable here
    changes = body.model_dump(exclude_unset=True, by_alias=False)
    user = user_crud.update(db, current.user, changes) if changes else current.user
    return UserOut.from_principal(user)


@router.post("/change-password", response_model=MessageOut)
def change_password(
    body: PasswordChange,
    response: Response,
    db: Session = Depends(get_db),
    store: RefreshTokenStore = Depends(get_refresh_store),
    current: CurrentPrincipal = Depends(get_current_principal),
):
    ok, _ = verify_and_maybe_upgrade(body.current_password, current.user.hashed_password)
    if not ok:
        raise ValidationFailed("Current password is incorrect")
    user_crud.update(db, current.user, {"hashed_password": hash_password(body.new_password)})
    # every other device has to log in again with the new password
    store.delete_all_for_principal(current.user.id)
    clear_refresh_cookie(response)
    return MessageOut(message="Password updated successfully")
