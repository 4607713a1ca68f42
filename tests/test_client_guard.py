"""Client session guard: single-flight refresh, failure fan-out, teardown."""
import asyncio
import time

import httpx
import pytest

from conftest import API, PASSWORD
from crm_auth.client.errors import RefreshFailed, SessionEnded, Unauthorized
from crm_auth.client.guard import SessionGuard
from crm_auth.client.inactivity import InactivityMonitor, InactivityState
from crm_auth.client.session import ClientStorage, SessionContext

BASE = "https://crm.example.com"


class FakeApi:
    """Accepts only the current access token; refresh blocks until released."""

    def __init__(self, *, refresh_ok=True, accept_new_token=True, refresh_response=None):
        self.valid = "A1-expired-on-server"
        self.refresh_ok = refresh_ok
        self.accept_new_token = accept_new_token
        self.refresh_response = refresh_response
        self.refresh_calls = 0
        self.refresh_bodies = []
        self.release = asyncio.Event()
        self.seen = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/auth/refresh"):
            self.refresh_calls += 1
            self.refresh_bodies.append(request.content)
            await self.release.wait()
            if self.refresh_response is not None:
                return self.refresh_response
            if not self.refresh_ok:
                return httpx.Response(401, json={"code": "REVOKED", "message": "Refresh token has been revoked"})
            if self.accept_new_token:
                self.valid = "A2"
            return httpx.Response(
                200,
                json={"accessToken": "A2", "accessTokenExpiry": 1, "user": {"email": "alice@example.com"}},
            )
        if path.endswith("/auth/login"):
            return httpx.Response(401, json={"code": "INVALID_CREDENTIALS", "message": "Invalid credentials"})
        if path.endswith("/auth/logout"):
            return httpx.Response(200, json={"message": "Logged out successfully"})
        if path.endswith("/missing"):
            return httpx.Response(404, json={"code": "NOT_FOUND", "message": "Not found"})
        if request.headers.get("Authorization") == f"Bearer {self.valid}":
            self.seen.append(path)
            return httpx.Response(200, json={"path": path})
        return httpx.Response(401, json={"code": "UNAUTHENTICATED", "message": "Token expired"})


async def _until(predicate, timeout=2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


def _session():
    session = SessionContext()
    session.init("A1", {"email": "alice@example.com"}, expiry=1)
    return session


async def test_concurrent_401s_share_one_refresh():
    api = FakeApi()
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        tasks = [asyncio.create_task(guard.get(f"{API}/contacts/{i}")) for i in range(5)]

        await _until(lambda: guard.pending == 4)
        assert guard.refreshing
        assert api.refresh_calls == 1

        api.release.set()
        responses = await asyncio.gather(*tasks)

    assert [r.status_code for r in responses] == [200] * 5
    assert sorted(r.json()["path"] for r in responses) == sorted(f"{API}/contacts/{i}" for i in range(5))
    assert api.refresh_calls == 1
    assert session.access_token == "A2"
    assert not guard.refreshing
    assert guard.pending == 0


async def test_failed_refresh_fails_every_caller_and_ends_session():
    api = FakeApi(refresh_ok=False)
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        tasks = [asyncio.create_task(guard.get(f"{API}/deals/{i}")) for i in range(4)]
        await _until(lambda: guard.pending == 3)
        api.release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, RefreshFailed) for r in results)
    assert results[0].code == "REVOKED"
    assert api.refresh_calls == 1
    assert len(session.storage) == 0
    assert not session.is_authenticated
    assert not guard.refreshing


async def test_cancelling_the_refreshing_caller_still_serves_the_queue():
    api = FakeApi()
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        first = asyncio.create_task(guard.get(f"{API}/contacts/1"))
        await _until(lambda: guard.refreshing)
        second = asyncio.create_task(guard.get(f"{API}/contacts/2"))
        await _until(lambda: guard.pending == 1)

        first.cancel()
        await asyncio.sleep(0)
        api.release.set()
        response = await asyncio.wait_for(second, 1)

        with pytest.raises(asyncio.CancelledError):
            await first

    assert response.status_code == 200
    assert api.refresh_calls == 1
    assert session.access_token == "A2"
    assert not guard.refreshing
    assert guard.pending == 0


@pytest.mark.parametrize(
    "refresh_response",
    [
        httpx.Response(200, text="<html>captive portal</html>", headers={"content-type": "text/html"}),
        httpx.Response(200, json=["A2"]),
        httpx.Response(200, json={"user": {"email": "alice@example.com"}}),
    ],
    ids=["html", "json-list", "no-token"],
)
async def test_unreadable_refresh_body_fails_every_caller(refresh_response):
    api = FakeApi(refresh_response=refresh_response)
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        tasks = [asyncio.create_task(guard.get(f"{API}/deals/{i}")) for i in range(3)]
        await _until(lambda: guard.pending == 2)
        api.release.set()
        results = await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), 1)

    assert all(isinstance(r, RefreshFailed) for r in results)
    assert results[0].code is None
    assert len(session.storage) == 0
    assert not guard.refreshing
    assert guard.pending == 0


async def test_auth_endpoint_401_is_not_refreshed():
    api = FakeApi()
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        with pytest.raises(Unauthorized) as info:
            await guard.post(f"{API}/auth/login", json={"email": "a@example.com", "password": "x"})
        with pytest.raises(Unauthorized):
            await guard.login("a@example.com", "x")

    assert info.value.response.json()["code"] == "INVALID_CREDENTIALS"
    assert api.refresh_calls == 0


async def test_retried_request_is_not_retried_again():
    api = FakeApi(accept_new_token=False)
    api.release.set()
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        with pytest.raises(Unauthorized):
            await guard.get(f"{API}/leads")

    assert api.refresh_calls == 1
    # refresh itself worked, so the session survives
    assert session.access_token == "A2"


async def test_other_errors_pass_through():
    api = FakeApi()
    session = _session()
    api.valid = "A1"
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        response = await guard.get(f"{API}/missing")
        ok = await guard.get(f"{API}/tasks")

    assert response.status_code == 404
    assert ok.status_code == 200
    assert api.refresh_calls == 0


async def test_teardown_rejects_queued_callers():
    api = FakeApi()
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        tasks = [asyncio.create_task(guard.get(f"{API}/quotes/{i}")) for i in range(3)]
        await _until(lambda: guard.pending == 2)

        session.teardown("logout")
        api.release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, SessionEnded) for r in results)
    # a refresh that lands after teardown must not bring the session back
    assert session.access_token is None
    assert len(session.storage) == 0


async def test_queue_drains_first_in_first_out():
    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(FakeApi().handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        loop = asyncio.get_running_loop()
        order = []
        futures = [loop.create_future() for _ in range(5)]
        for i, fut in enumerate(futures):
            fut.add_done_callback(lambda _f, i=i: order.append(i))
            guard._pending.append(fut)

        guard._drain(token="A2")
        await asyncio.sleep(0)
    results = [f.result() for f in futures]

    assert order == [0, 1, 2, 3, 4]
    assert results == ["A2"] * 5


async def test_failed_refresh_stops_inactivity_timers():
    api = FakeApi(refresh_ok=False)
    api.release.set()
    session = _session()
    monitor = InactivityMonitor(session, idle_timeout=60, warning_lead=10)
    monitor.start()
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        with pytest.raises(RefreshFailed):
            await guard.get(f"{API}/contacts")

    assert not monitor.running
    assert monitor.remaining() == 0


async def test_logout_clears_session_even_when_request_fails():
    def broken(request):
        raise httpx.ConnectError("down", request=request)

    session = _session()
    async with httpx.AsyncClient(transport=httpx.MockTransport(broken), base_url=BASE) as client:
        guard = SessionGuard(client, session)
        with pytest.raises(httpx.ConnectError):
            await guard.logout()

    assert len(session.storage) == 0


async def test_legacy_refresh_token_storage_is_opt_in():
    api = FakeApi()
    api.release.set()

    plain = SessionContext()
    plain.init("A1", refresh_token="R1")
    assert plain.refresh_token is None

    legacy = SessionContext(ClientStorage(), persist_refresh_token=True)
    legacy.init("A1", refresh_token="R1")
    assert legacy.refresh_token == "R1"

    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, legacy)
        await guard.get(f"{API}/contacts")

    assert b'"refreshToken":"R1"' in api.refresh_bodies[0].replace(b" ", b"")


async def test_refresh_if_near_expiry():
    api = FakeApi()
    api.release.set()
    session = SessionContext()
    now_ms = int(time.time() * 1000)
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=BASE) as client:
        guard = SessionGuard(client, session, near_expiry_seconds=300)

        session.init("A1", expiry=now_ms + 3_600_000)
        assert await guard.refresh_if_near_expiry() is False

        session.init("A1", expiry=now_ms + 60_000)
        assert await guard.refresh_if_near_expiry() is True

    assert api.refresh_calls == 1
    assert session.access_token == "A2"


async def test_against_the_real_app(app):
    transport = httpx.ASGITransport(app=app)
    session = SessionContext()
    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
        guard = SessionGuard(client, session)
        await guard.register("alice@example.com", PASSWORD, firstName="Alice", lastName="Smith")
        assert session.principal["email"] == "alice@example.com"
        assert session.refresh_token is None

        # pretend the access token lapsed
        session.update_access_token("stale.access.token")
        profile = await guard.get(f"{API}/auth/profile")
        assert profile.status_code == 200
        assert profile.json()["email"] == "alice@example.com"
        assert guard.refresh_calls == 1
        assert session.access_token != "stale.access.token"

        await guard.logout()
        assert len(session.storage) == 0
        after = await client.post(f"{API}/auth/refresh", json={})
        assert after.status_code == 401


async def test_login_arms_the_inactivity_monitor(app):
    session = SessionContext()
    monitor = InactivityMonitor(session, idle_timeout=0.1, warning_lead=0)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
        guard = SessionGuard(client, session, monitor=monitor)
        await guard.register("alice@example.com", PASSWORD, firstName="Alice", lastName="Smith")
        assert monitor.running

        await asyncio.sleep(0.15)
        await monitor.wait_logged_out()
        assert monitor.state is InactivityState.LOGGED_OUT
        assert len(session.storage) == 0

        await guard.login("alice@example.com", PASSWORD)
        assert monitor.running
        assert monitor.state is InactivityState.ACTIVE
        assert session.is_authenticated
        monitor.stop()
