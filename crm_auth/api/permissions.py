# crm_auth/api/permissions.py
from typing import Callable, Iterable
from fastapi import Depends

from crm_auth.api.deps import CurrentPrincipal, get_current_principal
from crm_auth.core.errors import Forbidden
from crm_auth.core.rbac import Role, normalize_role


def require_roles(allowed: Iterable[Role]) -> Callable[[CurrentPrincipal], CurrentPrincipal]:
    """
    Use: Depends(require_roles([Role.ADMIN, Role.MANAGER]))
    Blocks anyone whose role is not listed.
    """
    allowed_set = set(allowed)

    def _checker(current: CurrentPrincipal = Depends(get_current_principal)) -> CurrentPrincipal:
        if normalize_role(current.user.role) not in allowed_set:
            raise Forbidden()
        return current

    return _checker


def require_role_at_least(min_role: Role) -> Callable[[CurrentPrincipal], CurrentPrincipal]:
    """
    Use: Depends(require_role_at_least(Role.MANAGER))
    Allows min_role and everything above it (REP < MANAGER < ADMIN).
    """
    def _checker(current: CurrentPrincipal = Depends(get_current_principal)) -> CurrentPrincipal:
        if normalize_role(current.user.role) < min_role:
            raise Forbidden(f"Requires at least the {min_role.name} role")
        return current

    return _checker
