# crm_auth/client/inactivity.py
"""Idle logout for a client session.

ACTIVE -> WARNING -> LOGGED_OUT. Any configured activity event moves the
monitor back to ACTIVE and restarts both timers. Timers live on the running
asyncio loop and are cancelled by the session's teardown hook, whichever way
the session ends.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional

from crm_auth.client.session import SessionContext

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_EVENTS: FrozenSet[str] = frozenset(
    {"mousedown", "mousemove", "keypress", "scroll", "touchstart", "click", "focus", "visibilitychange"}
)


class InactivityState(str, enum.Enum):
    ACTIVE = "active"
    WARNING = "warning"
    LOGGED_OUT = "logged_out"


class InactivityMonitor:
    def __init__(
        self,
        session: SessionContext,
        *,
        idle_timeout: float = 2 * 60 * 60,
        warning_lead: float = 5 * 60,
        activity_events: Iterable[str] = DEFAULT_ACTIVITY_EVENTS,
        on_warning: Optional[Callable[[float], None]] = None,
        on_logout: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        if not 0 <= warning_lead < idle_timeout:
            raise ValueError("warning_lead must be in [0, idle_timeout)")
        self.session = session
        self.idle_timeout = idle_timeout
        self.warning_lead = warning_lead
        self.activity_events = frozenset(activity_events)
        self.on_warning = on_warning
        self.on_logout = on_logout
        self.state = InactivityState.LOGGED_OUT
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._last_activity = 0.0
        self._warning_handle: Optional[asyncio.TimerHandle] = None
        self._logout_handle: Optional[asyncio.TimerHandle] = None
        self._logout_task: Optional[asyncio.Task] = None
        self._remove_hook: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._logout_handle is not None

    def start(self) -> None:
        """Begin watching; must be called from inside the running loop."""
        self._loop = asyncio.get_running_loop()
        if self._remove_hook is None:
            self._remove_hook = self.session.add_teardown_hook(self._on_teardown)
        self.state = InactivityState.ACTIVE
        self._schedule()

    def stop(self) -> None:
        self._cancel_timers()
        if self._remove_hook is not None:
            self._remove_hook()
            self._remove_hook = None

    def record_activity(self, event_type: str) -> bool:
        """Returns True when the event counted as activity and reset the timers."""
        if event_type not in self.activity_events:
            return False
        if self.state is InactivityState.LOGGED_OUT or self._loop is None:
            return False
        self.state = InactivityState.ACTIVE
        self._schedule()
        return True

    def stay_logged_in(self) -> bool:
        if self.state is InactivityState.LOGGED_OUT or self._loop is None:
            return False
        self.state = InactivityState.ACTIVE
        self._schedule()
        return True

    def remaining(self) -> float:
        """Seconds until idle logout; 0 once logged out."""
        if self._loop is None or self.state is InactivityState.LOGGED_OUT:
            return 0.0
        return max(0.0, self._last_activity + self.idle_timeout - self._loop.time())

    async def wait_logged_out(self) -> None:
        if self._logout_task is not None:
            await self._logout_task

    # --- timers --------------------------------------------------------------

    def _schedule(self) -> None:
        self._cancel_timers()
        assert self._loop is not None
        self._last_activity = self._loop.time()
        if self.warning_lead > 0:
            self._warning_handle = self._loop.call_later(self.idle_timeout - self.warning_lead, self._enter_warning)
        self._logout_handle = self._loop.call_later(self.idle_timeout, self._expire)

    def _cancel_timers(self) -> None:
        for handle in (self._warning_handle, self._logout_handle):
            if handle is not None:
                handle.cancel()
        self._warning_handle = None
        self._logout_handle = None

    def _enter_warning(self) -> None:
        self._warning_handle = None
        self.state = InactivityState.WARNING
        left = self.remaining()
        logger.info("inactivity warning: %.0fs until logout", left)
        if self.on_warning is not None:
            self.on_warning(left)

    def _expire(self) -> None:
        self._cancel_timers()
        self.state = InactivityState.LOGGED_OUT
        logger.info("inactivity timeout reached, logging out")
        assert self._loop is not None
        self._logout_task = self._loop.create_task(self._logout())

    async def _logout(self) -> None:
        generation = self.session.generation
        try:
            if self.on_logout is not None:
                await self.on_logout()
        finally:
            if self.session.generation == generation:
                self.session.teardown("inactivity")

    def _on_teardown(self, reason: str) -> None:
        self._cancel_timers()
        self.state = InactivityState.LOGGED_OUT
