# crm_auth/client/errors.py
from __future__ import annotations

from typing import Optional

import httpx


class ClientAuthError(Exception):
    """Base for failures raised by the client-side session guard."""


class Unauthorized(ClientAuthError):
    """A 401 that will not be retried: auth endpoints, or a request already replayed once."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"401 from {response.request.method} {response.request.url.path}")
        self.response = response


class RefreshFailed(ClientAuthError):
    def __init__(self, message: str, *, response: Optional[httpx.Response] = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def code(self) -> Optional[str]:
        if self.response is None:
            return None
        try:
            return self.response.json().get("code")
        except (ValueError, AttributeError):
            return None


class SessionEnded(ClientAuthError):
    """The session was torn down while the caller was still waiting on it."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"session ended: {reason}")
        self.reason = reason
