"""Error envelopes for database outages and unexpected failures, per environment."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import API, PASSWORD
from crm_auth.core.config import settings
from crm_auth.services.sessions import SessionIssuer


def _db_down(*args, **kwargs):
    raise OperationalError("INSERT INTO refresh_tokens", {}, Exception("db down"))


def _login(client):
    return client.post(f"{API}/auth/login", json={"email": "rep@example.com", "password": PASSWORD})


def test_database_outage_is_503_with_details_outside_production(client, make_user, monkeypatch):
    make_user()
    monkeypatch.setattr(Session, "merge", _db_down)

    response = _login(client)

    assert response.status_code == 503
    body = response.json()
    assert body["code"] == "DATABASE_UNAVAILABLE"
    assert "db down" in body["details"]


def test_database_outage_hides_details_in_production(client, make_user, monkeypatch):
    make_user()
    monkeypatch.setattr(Session, "merge", _db_down)
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")

    response = _login(client)

    assert response.status_code == 503
    assert response.json()["code"] == "DATABASE_UNAVAILABLE"
    assert "details" not in response.json()


@pytest.mark.parametrize("environment, shows_details", [("development", True), ("production", False)])
def test_unexpected_error_is_500(app, make_user, monkeypatch, environment, shows_details):
    def boom(self, email, password):
        raise RuntimeError("secret internals")

    make_user()
    monkeypatch.setattr(SessionIssuer, "login", boom)
    monkeypatch.setattr(settings, "ENVIRONMENT", environment)
    client = TestClient(app, base_url="https://testserver", raise_server_exceptions=False)

    response = _login(client)

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "INTERNAL_ERROR"
    assert body["message"] == "Internal error."
    assert ("details" in body) is shows_details
    if shows_details:
        assert body["details"] == "secret internals"
