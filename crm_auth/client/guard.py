# crm_auth/client/guard.py
"""Single-flight access-token refresh for API calls.

Every call goes through ``SessionGuard.request``. A 401 starts one refresh;
any other 401 that arrives while that refresh is outstanding parks a future on
a FIFO queue and is replayed with the new token once it lands. A failed
refresh fails every parked caller and tears the session down. The refresh
runs in its own task, so cancelling the caller that started it leaves the
queue intact.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, Optional

import httpx

from crm_auth.client.errors import RefreshFailed, SessionEnded, Unauthorized
from crm_auth.client.inactivity import InactivityMonitor
from crm_auth.client.session import SessionContext

logger = logging.getLogger(__name__)

AUTH_ENDPOINTS = ("login", "register", "refresh", "logout")


class SessionGuard:
    def __init__(
        self,
        client: httpx.AsyncClient,
        session: SessionContext,
        *,
        auth_prefix: str = "/api/v1/auth",
        near_expiry_seconds: int = 300,
        monitor: Optional[InactivityMonitor] = None,
    ) -> None:
        self.client = client
        self.session = session
        self.auth_prefix = auth_prefix.rstrip("/")
        self.near_expiry_seconds = near_expiry_seconds
        self.monitor = monitor
        self.refresh_calls = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._pending: Deque[asyncio.Future] = deque()
        self._remove_hook = session.add_teardown_hook(self._on_teardown)

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def close(self) -> None:
        self._remove_hook()

    # --- requests ------------------------------------------------------------

    def is_auth_endpoint(self, url: Any) -> bool:
        path = httpx.URL(str(url)).path.rstrip("/")
        return any(path.endswith(f"/auth/{name}") for name in AUTH_ENDPOINTS)

    async def _send(self, method: str, url: Any, kwargs: Dict[str, Any], token: Optional[str]) -> httpx.Response:
        headers = dict(kwargs.get("headers") or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        rest = {k: v for k, v in kwargs.items() if k != "headers"}
        return await self.client.request(method, url, headers=headers, **rest)

    async def request(self, method: str, url: Any, **kwargs: Any) -> httpx.Response:
        sent_with = self.session.access_token
        response = await self._send(method, url, kwargs, sent_with)
        if response.status_code != 401:
            return response
        if self.is_auth_endpoint(url):
            raise Unauthorized(response)

        current = self.session.access_token
        if current and current != sent_with:
            # a refresh finished while this request was in flight
            token = current
        else:
            token = await self._wait_or_refresh()

        retried = await self._send(method, url, kwargs, token)
        if retried.status_code == 401:
            raise Unauthorized(retried)
        return retried

    async def get(self, url: Any, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: Any, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: Any, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: Any, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: Any, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    # --- refresh -------------------------------------------------------------

    async def _wait_or_refresh(self) -> str:
        loop = asyncio.get_running_loop()
        if self._refresh_task is not None:
            fut = loop.create_future()
            self._pending.append(fut)
            return await fut

        task = loop.create_task(self._run_refresh())
        self._refresh_task = task
        task.add_done_callback(self._refresh_done)
        # the refresh outlives a cancelled initiator; waiters still get its outcome
        return await asyncio.shield(task)

    async def _run_refresh(self) -> str:
        try:
            return await self._refresh()
        except (RefreshFailed, SessionEnded):
            raise
        except Exception as exc:
            logger.exception("refresh failed unexpectedly")
            raise RefreshFailed(f"refresh failed: {exc}") from exc

    def _refresh_done(self, task: asyncio.Task) -> None:
        self._refresh_task = None
        if task.cancelled():
            self._drain(error=SessionEnded("refresh cancelled"))
            return
        exc = task.exception()
        if exc is None:
            self._drain(token=task.result())
            return
        self._drain(error=exc)
        if isinstance(exc, RefreshFailed):
            self.session.teardown("refresh_failed")

    def _drain(self, *, token: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        while self._pending:
            fut = self._pending.popleft()
            if fut.done():
                continue
            if error is not None:
                fut.set_exception(error)
            else:
                fut.set_result(token)

    async def _refresh(self) -> str:
        generation = self.session.generation
        body: Dict[str, Any] = {}
        if self.session.refresh_token:
            body["refreshToken"] = self.session.refresh_token
        self.refresh_calls += 1
        try:
            response = await self.client.post(f"{self.auth_prefix}/refresh", json=body)
        except httpx.HTTPError as exc:
            logger.warning("refresh request failed: %s", exc)
            raise RefreshFailed(f"refresh request failed: {exc}") from exc

        if self.session.generation != generation:
            raise SessionEnded("session ended during refresh")
        if response.status_code != 200:
            logger.info("refresh rejected with %s", response.status_code)
            raise RefreshFailed("refresh rejected", response=response)
        try:
            data = response.json()
            token = data.get("accessToken")
        except (ValueError, AttributeError) as exc:
            # proxies and captive portals answer 200 with HTML
            raise RefreshFailed("invalid refresh response", response=response) from exc
        if not token or not isinstance(token, str):
            raise RefreshFailed("invalid refresh response", response=response)
        self.session.update_access_token(token, data.get("user"), expiry=data.get("accessTokenExpiry"))
        return token

    async def refresh_if_near_expiry(self) -> bool:
        """Refresh ahead of time when the access token is within the near-expiry window."""
        expiry = self.session.access_token_expiry
        if not self.session.is_authenticated or expiry is None:
            return False
        if expiry - int(time.time() * 1000) > self.near_expiry_seconds * 1000:
            return False
        await self._wait_or_refresh()
        return True

    def _on_teardown(self, reason: str) -> None:
        self._drain(error=SessionEnded(reason))

    # --- auth endpoints ------------------------------------------------------

    def _start_session(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == 401:
            raise Unauthorized(response)
        response.raise_for_status()
        data = response.json()
        self.session.init(
            data["accessToken"],
            data.get("user"),
            expiry=data.get("accessTokenExpiry"),
            refresh_token=data.get("refreshToken"),
        )
        if self.monitor is not None:
            self.monitor.start()
        return data

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        response = await self.client.post(
            f"{self.auth_prefix}/login", json={"email": email, "password": password}
        )
        return self._start_session(response)

    async def register(self, email: str, password: str, **profile: Any) -> Dict[str, Any]:
        response = await self.client.post(
            f"{self.auth_prefix}/register", json={"email": email, "password": password, **profile}
        )
        return self._start_session(response)

    async def logout(self, *, all_sessions: bool = False) -> None:
        body: Dict[str, Any] = {"allSessions": all_sessions}
        if self.session.refresh_token:
            body["refreshToken"] = self.session.refresh_token
        try:
            await self.client.post(f"{self.auth_prefix}/logout", json=body)
        finally:
            self.session.teardown("logout")
