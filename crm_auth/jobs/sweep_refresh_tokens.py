# crm_auth/jobs/sweep_refresh_tokens.py
"""Delete refresh token records whose expiry has passed.

Run from cron with ``python -m crm_auth.jobs.sweep_refresh_tokens``, or let the
API do it in-process by setting TOKEN_SWEEP_INTERVAL_SECONDS.
"""
from __future__ import annotations

import argparse
import logging
import sys

from crm_auth.core.errors import DatabaseUnavailable
from crm_auth.core.logging import setup_logging
from crm_auth.crud.refresh_token import RefreshTokenStore
from crm_auth.db.session import SessionLocal

logger = logging.getLogger("crm_auth.jobs.sweep")


def sweep_once() -> int:
    db = SessionLocal()
    try:
        return RefreshTokenStore(db).sweep_expired()
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Remove expired refresh token records")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    try:
        count = sweep_once()
    except DatabaseUnavailable as exc:
        logger.error("sweep failed: %s", exc.details or exc.message)
        return 1
    print(f"removed {count} expired refresh token(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
