# crm_auth/core/rbac.py
from enum import IntEnum
from typing import Optional, Union


class Role(IntEnum):
    REP = 1
    MANAGER = 2
    ADMIN = 3


# Legacy role strings found in stored principals and old tokens
_ALIASES = {
    "SUPER_ADMIN": Role.ADMIN,
    "SUPERADMIN": Role.ADMIN,
    "ADMIN": Role.ADMIN,
    "SALES_MANAGER": Role.MANAGER,
    "MANAGER": Role.MANAGER,
    "SALES_REP": Role.REP,
    "REP": Role.REP,
}


def normalize_role(raw: Union[Role, str, None]) -> Role:
    """Single place where role strings become a ``Role``; unknown values get the least privilege."""
    if isinstance(raw, Role):
        return raw
    if not raw:
        return Role.REP
    key = str(raw).strip().upper().replace("-", "_").replace(" ", "_")
    return _ALIASES.get(key, Role.REP)


def role_at_least(role: Union[Role, str, None], minimum: Role) -> bool:
    return normalize_role(role) >= minimum


def parse_role(raw: Optional[str]) -> Role:
    """Strict variant for admin input: rejects strings that are not a known alias."""
    key = (raw or "").strip().upper().replace("-", "_").replace(" ", "_")
    if key not in _ALIASES:
        raise ValueError(f"Unknown role: {raw}")
    return _ALIASES[key]
