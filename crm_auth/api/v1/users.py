# crm_auth/api/v1/users.py
from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_auth.api.deps import CurrentPrincipal, get_refresh_store
from crm_auth.api.permissions import require_role_at_least, require_roles
from crm_auth.core.errors import Forbidden, NotFound, ValidationFailed
from crm_auth.core.rbac import Role, parse_role
from crm_auth.crud.refresh_token import RefreshTokenStore
from crm_auth.crud.user import user_crud
from crm_auth.db.session import get_db
from crm_auth.models.user import User
from crm_auth.schemas.user import PrincipalAdminUpdate, UserOut
from crm_auth.services.sessions import UNASSIGNED_TENANT

logger = logging.getLogger(__name__)
router = APIRouter()


def _load_manageable(db: Session, user_id: str, admin: CurrentPrincipal) -> User:
    """Admins manage their own tenant plus principals nobody has claimed yet."""
    u = user_crud.get_active(db, user_id)
    if u is None:
        raise NotFound("User not found")
    if u.tenant_id not in {admin.user.tenant_id, UNASSIGNED_TENANT}:
        raise NotFound("User not found")
    return u


@router.get("/", response_model=List[UserOut])
def list_users(
    role: Optional[str] = Query(None, description="filter by role"),
    q: Optional[str] = Query(None, description="filter by name/email"),
    db: Session = Depends(get_db),
    current: CurrentPrincipal = Depends(require_role_at_least(Role.MANAGER)),
):
    stmt = select(User).where(User.tenant_id == current.user.tenant_id, User.is_deleted.is_(False))
    if q:
        like = f"%{q.lower()}%"
        stmt = stmt.where(
            User.email.ilike(like) | User.first_name.ilike(like) | User.last_name.ilike(like)
        )
    users = db.scalars(stmt.order_by(User.email)).all()
    out = [UserOut.from_principal(u) for u in users]
    if role:
        try:
            wanted = parse_role(role)
        except ValueError:
            raise ValidationFailed(f"Unknown role: {role}")
        out = [u for u in out if u.role == wanted]
    return out


@router.patch("/{user_id}", response_model=UserOut)
def reassign_user(
    body: PrincipalAdminUpdate,
    user_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    current: CurrentPrincipal = Depends(require_roles([Role.ADMIN])),
):
    u = _load_manageable(db, user_id, current)
    changes = {}
    if body.role is not None:
        try:
            changes["role"] = parse_role(body.role).name
        except ValueError:
            raise ValidationFailed(f"Unknown role: {body.role}")
    if body.tenant_id is not None:
        if body.tenant_id not in {current.user.tenant_id, UNASSIGNED_TENANT}:
            raise Forbidden("Cannot move users into another tenant")
        changes["tenant_id"] = body.tenant_id
    if u.id == current.user.id and changes:
        raise Forbidden("Admins cannot reassign themselves")
    if changes:
        u = user_crud.update(db, u, changes)
        logger.info("principal %s reassigned by %s: %s", u.id, current.user.id, sorted(changes))
    return UserOut.from_principal(u)


@router.delete("/{user_id}", status_code=204)
def deactivate_user(
    user_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    store: RefreshTokenStore = Depends(get_refresh_store),
    current: CurrentPrincipal = Depends(require_roles([Role.ADMIN])),
):
    u = _load_manageable(db, user_id, current)
    if u.id == current.user.id:
        raise Forbidden("Admins cannot delete themselves")
    user_crud.update(db, u, {"is_deleted": True})
    store.delete_all_for_principal(u.id)
    logger.info("principal %s soft-deleted by %s", u.id, current.user.id)
    return
