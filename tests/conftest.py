import asyncio
import inspect
import os
import sys
import tempfile
from datetime import timedelta
from pathlib import Path

# settings are read at import time
_test_tmp_dir = tempfile.mkdtemp(prefix="crm_auth_test_")
os.environ.setdefault("DATA_DIR", _test_tmp_dir)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("TOKEN_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("SECRET_KEY", "test-access-secret-do-not-use-in-production")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-do-not-use-in-production")
os.environ.setdefault("COOKIE_SECURE", "true")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from crm_auth.core.security_password import hash_password  # noqa: E402
from crm_auth.core.tokens import TokenCodec  # noqa: E402
from crm_auth.crud.user import user_crud  # noqa: E402
from crm_auth.db.base import Base  # noqa: E402
from crm_auth.db.session import get_db  # noqa: E402
from crm_auth.main import api  # noqa: E402

API = "/api/v1"
PASSWORD = "Sup3r-secret-pw"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    api.dependency_overrides[get_db] = _get_db
    yield api
    api.dependency_overrides.clear()


@pytest.fixture
def client(app):
    # https so the Secure refresh cookie comes back on later requests
    return TestClient(app, base_url="https://testserver")


@pytest.fixture
def codec():
    return TokenCodec(
        access_secret="unit-access-secret",
        refresh_secret="unit-refresh-secret",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
    )


@pytest.fixture
def make_user(db):
    def _make(email="rep@example.com", *, role="REP", tenant_id="acme", password=PASSWORD, **extra):
        data = {
            "email": email,
            "hashed_password": hash_password(password),
            "first_name": extra.pop("first_name", "Test"),
            "last_name": extra.pop("last_name", "User"),
            "role": role,
            "tenant_id": tenant_id,
            "created_by": "TEST",
            "is_deleted": False,
        }
        data.update(extra)
        return user_crud.create(db, data)

    return _make


def login(client, email, password=PASSWORD):
    return client.post(f"{API}/auth/login", json={"email": email, "password": password})


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
