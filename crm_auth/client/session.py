# crm_auth/client/session.py
"""Client-side session state.

``SessionContext`` replaces a process-wide token store: build one per mounted
front end, ``init`` it after login, ``teardown`` it on logout. Components that
hold timers or waiters register a teardown hook so every way a session can end
releases them.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
ACCESS_TOKEN_EXPIRY_KEY = "accessTokenExpiry"
USER_KEY = "user"
LEGACY_REFRESH_TOKEN_KEY = "refreshToken"

TeardownHook = Callable[[str], None]


class ClientStorage:
    """Script-readable key/value storage, the way a browser's localStorage is."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> List[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def __contains__(self, key: object) -> bool:
        return key in self._data


class SessionContext:
    def __init__(self, storage: Optional[ClientStorage] = None, *, persist_refresh_token: bool = False) -> None:
        self.storage = storage if storage is not None else ClientStorage()
        # deprecated: the HTTP-only cookie is the refresh credential
        self.persist_refresh_token = persist_refresh_token
        self.generation = 0
        self._hooks: List[TeardownHook] = []

    # --- state -------------------------------------------------------------

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get(ACCESS_TOKEN_KEY)

    @property
    def access_token_expiry(self) -> Optional[int]:
        return self.storage.get(ACCESS_TOKEN_EXPIRY_KEY)

    @property
    def principal(self) -> Optional[Dict[str, Any]]:
        return self.storage.get(USER_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get(LEGACY_REFRESH_TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    # --- lifecycle -----------------------------------------------------------

    def init(
        self,
        access_token: str,
        principal: Optional[Dict[str, Any]] = None,
        *,
        expiry: Optional[int] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        self.update_access_token(access_token, principal, expiry=expiry)
        if refresh_token is not None:
            if self.persist_refresh_token:
                logger.warning("storing refresh token in client storage; this fallback is deprecated")
                self.storage.set(LEGACY_REFRESH_TOKEN_KEY, refresh_token)
            else:
                self.storage.remove(LEGACY_REFRESH_TOKEN_KEY)

    def update_access_token(
        self,
        access_token: str,
        principal: Optional[Dict[str, Any]] = None,
        *,
        expiry: Optional[int] = None,
    ) -> None:
        self.storage.set(ACCESS_TOKEN_KEY, access_token)
        if expiry is not None:
            self.storage.set(ACCESS_TOKEN_EXPIRY_KEY, expiry)
        if principal is not None:
            self.storage.set(USER_KEY, principal)

    def add_teardown_hook(self, hook: TeardownHook) -> Callable[[], None]:
        self._hooks.append(hook)

        def remove() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return remove

    def teardown(self, reason: str = "logout") -> None:
        """Clear every stored value and run the teardown hooks. Safe to call twice."""
        self.generation += 1
        self.storage.clear()
        logger.info("client session torn down (%s)", reason)
        for hook in list(self._hooks):
            try:
                hook(reason)
            except Exception:
                # one broken hook must not keep timers of the others alive
                logger.exception("teardown hook %r failed", hook)
