# crm_auth/main.py
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from starlette.requests import Request

from crm_auth.api.v1.router import api_router
from crm_auth.core.config import settings
from crm_auth.core.cookies import clear_refresh_cookie
from crm_auth.core.errors import AuthError, DatabaseUnavailable
from crm_auth.core.logging import setup_logging
from crm_auth.core.token_headers import EXPOSED_TOKEN_HEADERS, TokenExpiryHeadersMiddleware
from crm_auth.db.bootstrap import run_migrations_and_seed
from crm_auth.jobs.sweep_refresh_tokens import sweep_once

setup_logging()
logger = logging.getLogger("crm_auth")

api = FastAPI(
    title="CRM API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    swagger_ui_parameters={"displayRequestDuration": True, "persistAuthorization": True},
)

api.add_middleware(TokenExpiryHeadersMiddleware)
api.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,  # refresh cookie
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=EXPOSED_TOKEN_HEADERS,
)

# /metrics (Prometheus)
Instrumentator().instrument(api).expose(api, include_in_schema=False, should_gzip=True)

api.include_router(api_router, prefix="/api/v1")

_sweeper: Optional[asyncio.Task] = None


async def _sweep_forever(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(sweep_once)
        except DatabaseUnavailable:
            # already logged by the store; try again next round
            continue
        except Exception:
            logger.exception("refresh token sweep failed")


@api.get("/healthz", tags=["health"])
def healthz():
    return {"status": "ok"}


@api.on_event("startup")
async def startup():
    global _sweeper
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        await run_in_threadpool(run_migrations_and_seed)
    if settings.TOKEN_SWEEP_INTERVAL_SECONDS > 0:
        _sweeper = asyncio.create_task(_sweep_forever(settings.TOKEN_SWEEP_INTERVAL_SECONDS))
        logger.info("refresh token sweep every %ss", settings.TOKEN_SWEEP_INTERVAL_SECONDS)


@api.on_event("shutdown")
async def shutdown():
    global _sweeper
    if _sweeper is not None:
        _sweeper.cancel()
        _sweeper = None


@api.exception_handler(AuthError)
def handle_auth_error(request: Request, exc: AuthError):
    content = {"code": exc.code, "message": exc.message}
    if isinstance(exc, DatabaseUnavailable) and exc.details and not settings.is_production:
        content["details"] = exc.details
    response = JSONResponse(status_code=exc.status_code, content=content)
    if exc.clears_refresh_cookie:
        clear_refresh_cookie(response)
    return response


@api.exception_handler(IntegrityError)
def handle_integrity_error(request: Request, exc: IntegrityError):
    return JSONResponse(
        status_code=409,
        content={"code": "UNIQUE_VIOLATION", "message": "Duplicate record."},
    )


@api.exception_handler(Exception)
def handle_unexpected(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    content = {"code": "INTERNAL_ERROR", "message": "Internal error."}
    if not settings.is_production:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)
