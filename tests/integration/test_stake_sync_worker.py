"""Stake sync worker sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio

from boostledger.boost.query_service import user_boost_balance
from boostledger.database import close_db, init_db
from boostledger.staking import worker
from boostledger.staking.bonus_service import add_boost_bonus
from boostledger.staking.stake_bridge import unawarded_stakes

ONE_TOKEN = 10**18


@pytest_asyncio.fixture
async def worker_db(engine):
    """Point the worker's global engine at the test database."""
    await init_db(engine.url.render_as_string(hide_password=False))
    yield
    await close_db()


@pytest_asyncio.fixture
async def open_competition(make_competition):
    now = datetime.now(timezone.utc)
    return await make_competition(start=now - timedelta(days=1), end=now + timedelta(days=1))


class TestSyncStakeAwards:
    @pytest.mark.asyncio
    async def test_awards_pending_stakes(self, worker_db, db_session, make_user, make_stake, open_competition):
        wallet = "0x00000000000000000000000000000000000000aa"
        user_id = await make_user(wallet)
        now = datetime.now(timezone.utc)
        await make_stake(
            wallet, ONE_TOKEN, staked_at=now - timedelta(days=3), can_unstake_after=now + timedelta(days=3)
        )
        await make_stake(wallet, ONE_TOKEN, staked_at=now - timedelta(hours=1), can_unstake_after=now)

        awarded = await worker.sync_stake_awards({})

        assert awarded == 2
        assert await user_boost_balance(db_session, user_id, open_competition) == 3 * ONE_TOKEN
        assert await unawarded_stakes(db_session, wallet, open_competition) == []

    @pytest.mark.asyncio
    async def test_second_sweep_is_a_noop(self, worker_db, db_session, make_user, make_stake, open_competition):
        wallet = "0x00000000000000000000000000000000000000aa"
        user_id = await make_user(wallet)
        await make_stake(wallet, ONE_TOKEN)

        await worker.sync_stake_awards({})
        awarded = await worker.sync_stake_awards({})

        assert awarded == 0
        assert await user_boost_balance(db_session, user_id, open_competition) == ONE_TOKEN

    @pytest.mark.asyncio
    async def test_failing_wallet_does_not_stop_sweep(
        self, worker_db, db_session, make_user, make_stake, open_competition
    ):
        good = "0x00000000000000000000000000000000000000aa"
        bad = "0x00000000000000000000000000000000000000bb"
        good_user = await make_user(good)
        await make_user(bad)
        await make_stake(good, ONE_TOKEN)
        await make_stake(bad, ONE_TOKEN)

        real_claim = worker.claim_staked_boost

        async def flaky_claim(db, user_id, wallet, competition_id):
            if wallet == bad:
                raise RuntimeError("boom")
            return await real_claim(db, user_id, wallet, competition_id)

        with patch.object(worker, "claim_staked_boost", flaky_claim):
            awarded = await worker.sync_stake_awards({})

        assert awarded == 1
        assert await user_boost_balance(db_session, good_user, open_competition) > 0

    @pytest.mark.asyncio
    async def test_closed_competitions_are_ignored(self, worker_db, make_user, make_stake, make_competition):
        wallet = "0x00000000000000000000000000000000000000aa"
        await make_user(wallet)
        now = datetime.now(timezone.utc)
        await make_competition(start=now - timedelta(days=10), end=now - timedelta(days=1))
        await make_competition(start=now + timedelta(days=1), end=now + timedelta(days=10))
        await make_stake(wallet, ONE_TOKEN)

        awarded = await worker.sync_stake_awards({})

        assert awarded == 0

    @pytest.mark.asyncio
    async def test_zero_amount_stake_leaves_nothing_pending(self, worker_db, make_user, make_stake, open_competition):
        wallet = "0x00000000000000000000000000000000000000aa"
        await make_user(wallet)
        await make_stake(wallet, 0)

        assert await worker.sync_stake_awards({}) == 0
        assert await worker.sync_stake_awards({}) == 0


class TestApplyBonusGrants:
    @pytest.mark.asyncio
    async def test_applies_grants_to_competitions_opened_later(
        self, worker_db, db_session, make_user, make_competition
    ):
        wallet = "0x00000000000000000000000000000000000000aa"
        user_id = await make_user(wallet)
        now = datetime.now(timezone.utc)
        await add_boost_bonus(db_session, wallet, ONE_TOKEN, now + timedelta(days=30))
        competition_id = await make_competition(start=now + timedelta(days=1), end=now + timedelta(days=5))

        assert await worker.apply_bonus_grants({}) == 1
        assert await worker.apply_bonus_grants({}) == 0
        assert await user_boost_balance(db_session, user_id, competition_id) == ONE_TOKEN


def test_worker_settings_schedule():
    assert worker.WorkerSettings.functions == [worker.sync_stake_awards, worker.apply_bonus_grants]
    assert len(worker.WorkerSettings.cron_jobs) == 2
    assert worker.WorkerSettings.on_startup is worker.stake_sync_startup
