# crm_auth/core/cookies.py
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from crm_auth.core.config import Settings, settings


def _samesite(cfg: Settings) -> str:
    value = cfg.COOKIE_SAMESITE if cfg.COOKIE_SAMESITE in {"lax", "strict", "none"} else "lax"
    # browsers drop SameSite=None cookies that are not Secure
    if value == "none" and not cfg.COOKIE_SECURE:
        return "lax"
    return value


def set_refresh_cookie(response: Response, token: str, max_age: int, cfg: Settings = settings) -> None:
    response.set_cookie(
        key=cfg.REFRESH_COOKIE_NAME,
        value=token,
        max_age=max_age,
        path="/",
        domain=cfg.COOKIE_DOMAIN,
        secure=cfg.COOKIE_SECURE,
        httponly=True,
        samesite=_samesite(cfg),
    )


def clear_refresh_cookie(response: Response, cfg: Settings = settings) -> None:
    response.delete_cookie(
        key=cfg.REFRESH_COOKIE_NAME,
        path="/",
        domain=cfg.COOKIE_DOMAIN,
        secure=cfg.COOKIE_SECURE,
        httponly=True,
        samesite=_samesite(cfg),
    )


def read_refresh_cookie(request: Request, cfg: Settings = settings) -> Optional[str]:
    return request.cookies.get(cfg.REFRESH_COOKIE_NAME) or None
