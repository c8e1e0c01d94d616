"""
Tests for the expired refresh token sweeper.
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from conftest import CLIENT_IP, CLIENT_UA
from main import create_app
from models.refresh_token import RefreshToken
from services.clock import ensure_utc
from services.errors import ErrorKind
from services.sweeper import RevocationSweeper


@pytest.fixture
def sweeper(session_factory, clock) -> RevocationSweeper:
    return RevocationSweeper(session_factory, clock, interval_seconds=3600)


async def _rows(db_session) -> list[RefreshToken]:
    result = await db_session.scalars(
        select(RefreshToken).execution_options(populate_existing=True)
    )
    return list(result)


class TestSweepExpired:
    @pytest.mark.asyncio
    async def test_nothing_to_sweep(self, sweeper, registered_session):
        assert await sweeper.sweep_expired() == 0

    @pytest.mark.asyncio
    async def test_deactivates_expired_rows(self, sweeper, registered_session, db_session, clock):
        now = clock.advance(timedelta(days=8))

        assert await sweeper.sweep_expired() == 1

        (row,) = await _rows(db_session)
        assert row.is_active is False
        assert ensure_utc(row.revoked_at) == now

    @pytest.mark.asyncio
    async def test_rows_are_retained(self, sweeper, registered_session, db_session, clock):
        clock.advance(timedelta(days=8))
        await sweeper.sweep_expired()

        assert len(await _rows(db_session)) == 1

    @pytest.mark.asyncio
    async def test_second_run_reports_zero(self, sweeper, registered_session, db_session, clock):
        clock.advance(timedelta(days=8))
        await sweeper.sweep_expired()
        (before,) = await _rows(db_session)
        revoked_at = before.revoked_at

        clock.advance(timedelta(hours=1))
        assert await sweeper.sweep_expired() == 0

        (after,) = await _rows(db_session)
        assert after.revoked_at == revoked_at

    @pytest.mark.asyncio
    async def test_already_revoked_rows_are_untouched(
        self, sweeper, registered_session, auth_service, db_session, clock
    ):
        await auth_service.logout(registered_session.refresh_token, CLIENT_IP, CLIENT_UA)
        await db_session.commit()
        logout_time = clock.now()

        clock.advance(timedelta(days=8))
        assert await sweeper.sweep_expired() == 0

        (row,) = await _rows(db_session)
        assert ensure_utc(row.revoked_at) == logout_time

    @pytest.mark.asyncio
    async def test_swept_token_is_rejected_as_revoked(
        self, sweeper, registered_session, auth_service, db_session, clock
    ):
        # Move the row's expiry into the past while the claim stays valid
        (row,) = await _rows(db_session)
        row.expires_at = clock.now() - timedelta(seconds=1)
        await db_session.commit()

        assert await sweeper.sweep_expired() == 1

        outcome = await auth_service.refresh(registered_session.refresh_token, CLIENT_IP, CLIENT_UA)
        assert outcome.failure.kind == ErrorKind.REVOKED_TOKEN

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(self, sweeper, registered_session):
        await sweeper._lock.acquire()
        try:
            assert await sweeper.sweep_expired() is None
        finally:
            sweeper._lock.release()

        assert await sweeper.sweep_expired() == 0


class TestSweeperTask:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, clock):
        sweeper = RevocationSweeper(session_factory, clock, interval_seconds=3600)

        sweeper.start()
        assert sweeper.running
        await sweeper.stop()

        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, session_factory, clock):
        sweeper = RevocationSweeper(session_factory, clock, interval_seconds=3600)

        sweeper.start()
        task = sweeper._task
        sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_failed_cycle(self, session_factory, clock):
        sweeper = RevocationSweeper(session_factory, clock, interval_seconds=0)
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            return 0

        with patch.object(sweeper, "sweep_expired", side_effect=flaky):
            sweeper.start()
            for _ in range(50):
                if len(calls) >= 2:
                    break
                await asyncio.sleep(0.01)
            await sweeper.stop()

        assert len(calls) >= 2


class TestAppLifespan:
    @pytest.mark.asyncio
    async def test_lifespan_runs_sweeper(
        self, test_settings, clock, engine, registered_session, db_session
    ):
        settings = test_settings.model_copy(
            update={"TOKEN_SWEEP_ENABLED": True, "TOKEN_SWEEP_INTERVAL_SECONDS": 0}
        )
        app = create_app(settings, clock=clock, engine=engine)

        async with app.router.lifespan_context(app):
            sweeper = app.state.sweeper
            assert sweeper.running

            clock.advance(timedelta(days=8))
            for _ in range(100):
                (row,) = await _rows(db_session)
                # Release the read lock so the sweeper can write
                await db_session.commit()
                if not row.is_active:
                    break
                await asyncio.sleep(0.01)
            assert row.is_active is False

        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_sweeper_not_started_when_disabled(self, test_settings, clock, engine):
        app = create_app(test_settings, clock=clock, engine=engine)

        async with app.router.lifespan_context(app):
            assert not app.state.sweeper.running

        assert not app.state.sweeper.running
