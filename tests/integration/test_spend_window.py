"""spend_boost: agent boosts are only accepted while the boost window is open."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from boostledger.boost.ledger_service import increase
from boostledger.boost.query_service import agent_boost_totals, user_boost_balance
from boostledger.boost.schemas import AgentBoostApplied, AgentBoostNoop
from boostledger.errors import (
    BoostWindowNotConfigured,
    CompetitionNotFound,
    OutsideBoostWindow,
    UserNotFound,
)
from boostledger.staking.award_service import spend_boost

BOOST_START = datetime(2026, 3, 1, tzinfo=timezone.utc)
BOOST_END = datetime(2026, 3, 15, tzinfo=timezone.utc)
INSIDE = BOOST_START + timedelta(days=3)


@pytest_asyncio.fixture
async def funded(db_session, ledger, make_agent):
    user_id, competition_id = ledger
    agent_id = await make_agent()
    await increase(db_session, user_id, competition_id, 1000)
    return user_id, agent_id, competition_id


class TestSpendBoost:
    @pytest.mark.asyncio
    async def test_inside_window(self, db_session, funded):
        user_id, agent_id, competition_id = funded

        result = await spend_boost(db_session, user_id, agent_id, competition_id, 400, now=INSIDE)

        assert isinstance(result, AgentBoostApplied)
        assert result.balance_after == 600
        assert await agent_boost_totals(db_session, competition_id) == {agent_id: 400}

    @pytest.mark.asyncio
    async def test_window_start_is_inclusive(self, db_session, funded):
        user_id, agent_id, competition_id = funded

        result = await spend_boost(db_session, user_id, agent_id, competition_id, 1, now=BOOST_START)

        assert isinstance(result, AgentBoostApplied)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "now",
        [BOOST_START - timedelta(seconds=1), BOOST_END, BOOST_END + timedelta(days=1)],
        ids=["before", "at_end", "after"],
    )
    async def test_outside_window_is_rejected(self, db_session, funded, now):
        user_id, agent_id, competition_id = funded

        with pytest.raises(OutsideBoostWindow) as exc_info:
            await spend_boost(db_session, user_id, agent_id, competition_id, 400, now=now)

        assert exc_info.value.competition_id == competition_id
        assert await user_boost_balance(db_session, user_id, competition_id) == 1000
        assert await agent_boost_totals(db_session, competition_id) == {}

    @pytest.mark.asyncio
    async def test_replay_inside_window_is_noop(self, db_session, funded):
        user_id, agent_id, competition_id = funded

        await spend_boost(db_session, user_id, agent_id, competition_id, 100, idempotency_key="vote-1", now=INSIDE)
        replay = await spend_boost(
            db_session, user_id, agent_id, competition_id, 100, idempotency_key="vote-1", now=INSIDE
        )

        assert isinstance(replay, AgentBoostNoop)
        assert replay.balance == 900

    @pytest.mark.asyncio
    async def test_unknown_competition(self, db_session, funded):
        user_id, agent_id, _ = funded
        with pytest.raises(CompetitionNotFound):
            await spend_boost(db_session, user_id, agent_id, uuid.uuid4(), 1, now=INSIDE)

    @pytest.mark.asyncio
    async def test_competition_without_dates(self, db_session, funded, make_competition):
        user_id, agent_id, _ = funded
        undated = await make_competition(start=None, end=None)
        with pytest.raises(BoostWindowNotConfigured):
            await spend_boost(db_session, user_id, agent_id, undated, 1, now=INSIDE)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, funded):
        _, agent_id, competition_id = funded
        with pytest.raises(UserNotFound):
            await spend_boost(db_session, uuid.uuid4(), agent_id, competition_id, 1, now=INSIDE)
