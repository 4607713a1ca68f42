import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from crm_auth import main
from crm_auth.crud.refresh_token import RefreshTokenStore
from crm_auth.jobs import sweep_refresh_tokens
from crm_auth.models.refresh_token import RefreshToken


def _record(token_id, expires_at):
    return RefreshToken(
        token_id=token_id,
        principal_id="p-1",
        issued_at=expires_at - timedelta(days=7),
        expires_at=expires_at,
    )


def test_cli_sweeps_expired_records(db, session_factory, monkeypatch, capsys):
    now = datetime.now(timezone.utc)
    store = RefreshTokenStore(db)
    store.put(_record("live", now + timedelta(days=1)))
    store.put(_record("dead", now - timedelta(minutes=1)))
    monkeypatch.setattr(sweep_refresh_tokens, "SessionLocal", session_factory)

    assert sweep_refresh_tokens.main([]) == 0

    assert "removed 1 expired refresh token(s)" in capsys.readouterr().out
    db.expire_all()
    assert store.get_by_token_id("dead") is None
    assert store.get_by_token_id("live") is not None


async def test_periodic_sweep_survives_a_failed_round(monkeypatch):
    calls = []

    def flaky_sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("sweep blew up")
        return 0

    monkeypatch.setattr(main, "sweep_once", flaky_sweep)

    async def _two_rounds():
        while len(calls) < 2:
            await asyncio.sleep(0.01)

    task = asyncio.create_task(main._sweep_forever(0.01))
    await asyncio.wait_for(_two_rounds(), 2)

    # still looping after the failure; only cancellation stops it
    assert not task.done()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
