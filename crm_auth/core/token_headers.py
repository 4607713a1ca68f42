# crm_auth/core/token_headers.py
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

EXPOSED_TOKEN_HEADERS = ["X-Token-Expires-At", "X-Token-Near-Expiry", "X-Token-Refresh-Recommended"]


class TokenExpiryHeadersMiddleware(BaseHTTPMiddleware):
    """Tells clients when their access token is about to lapse.

    Only bearer-authenticated requests carry ``token_info`` (set by
    ``get_current_principal``); everything else passes through unchanged.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        info = getattr(request.state, "token_info", None)
        if info:
            response.headers["X-Token-Expires-At"] = str(info["expires_at"])
            response.headers["X-Token-Near-Expiry"] = "true" if info["near_expiry"] else "false"
            if info["near_expiry"]:
                response.headers["X-Token-Refresh-Recommended"] = "true"
        return response
