# crm_auth/core/security_password.py
from __future__ import annotations
from typing import Optional, Tuple
from passlib.context import CryptContext

# argon2 for new hashes; bcrypt stays verifiable for principals imported from the old backend
pwd_context = CryptContext(
    schemes=["argon2", "bcrypt"],
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=19456,
    argon2__parallelism=1,
)

_dummy_hash: Optional[str] = None


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_and_maybe_upgrade(plain: str, stored_hash: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Returns (ok, new_hash); new_hash is set when the stored scheme is deprecated."""
    if not stored_hash:
        burn_verify(plain)
        return False, None
    try:
        ok = pwd_context.verify(plain, stored_hash)
    except (ValueError, TypeError):
        # unrecognised hash format
        return False, None
    if not ok:
        return False, None
    if pwd_context.needs_update(stored_hash):
        return True, pwd_context.hash(plain)
    return True, None


def burn_verify(plain: str) -> None:
    """Spend one verification on a throwaway hash so unknown emails cost the same as wrong passwords."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_context.hash("not-a-real-password")
    pwd_context.verify(plain, _dummy_hash)
