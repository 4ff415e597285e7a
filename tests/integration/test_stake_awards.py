"""Stake conversion bridge and award flows."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from boostledger.boost.ledger_service import increase
from boostledger.boost.query_service import balance_history, user_boost_balance
from boostledger.boost.schemas import BoostApplied, BoostNoop
from boostledger.db.models import BoostChange, StakeBoostAward
from boostledger.errors import BoostWindowNotConfigured, CompetitionNotFound
from boostledger.staking.award_service import (
    award_for_stake,
    award_no_stake,
    claim_staked_boost,
    init_no_stake,
    load_boost_window,
    open_boost_competitions,
)
from boostledger.staking.stake_bridge import (
    record_stake_boost_award,
    unawarded_stakes,
    wallets_with_unawarded_stakes,
)

WALLET = "0x00000000000000000000000000000000000000aa"
ONE_TOKEN = 10**18
START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 15, tzinfo=timezone.utc)


class TestUnawardedStakes:
    @pytest.mark.asyncio
    async def test_newest_first_and_active_only(self, db_session, ledger, make_stake):
        _, competition_id = ledger
        old = await make_stake(WALLET, ONE_TOKEN, created_at=START - timedelta(days=10))
        new = await make_stake(WALLET, ONE_TOKEN, created_at=START - timedelta(days=2))
        await make_stake(WALLET, ONE_TOKEN, unstaked_at=START - timedelta(days=1))
        await make_stake("0x00000000000000000000000000000000000000cc", ONE_TOKEN)

        stakes = await unawarded_stakes(db_session, WALLET, competition_id)

        assert [s.id for s in stakes] == [new, old]

    @pytest.mark.asyncio
    async def test_wallet_match_ignores_case(self, db_session, ledger, make_stake):
        _, competition_id = ledger
        stake_id = await make_stake(WALLET, ONE_TOKEN)

        stakes = await unawarded_stakes(db_session, WALLET.upper().replace("0X", "0x"), competition_id)

        assert [s.id for s in stakes] == [stake_id]

    @pytest.mark.asyncio
    async def test_award_hides_stake_for_that_competition_only(
        self, db_session, ledger, make_competition, make_stake
    ):
        user_id, competition_id = ledger
        other_competition = await make_competition(name="Other")
        stake_id = await make_stake(WALLET, ONE_TOKEN)
        credit = await increase(db_session, user_id, competition_id, ONE_TOKEN)

        award_id = await record_stake_boost_award(
            db_session, stake_id, ONE_TOKEN, Decimal("1"), credit.change_id, competition_id
        )
        duplicate = await record_stake_boost_award(
            db_session, stake_id, ONE_TOKEN, Decimal("1"), credit.change_id, competition_id
        )
        await db_session.commit()

        assert award_id is not None
        assert duplicate is None
        assert await unawarded_stakes(db_session, WALLET, competition_id) == []
        assert [s.id for s in await unawarded_stakes(db_session, WALLET, other_competition)] == [stake_id]

    @pytest.mark.asyncio
    async def test_zero_amount_stakes_are_never_pending(self, db_session, ledger, make_stake):
        _, competition_id = ledger
        await make_stake(WALLET, 0)

        assert await unawarded_stakes(db_session, WALLET, competition_id) == []
        assert await wallets_with_unawarded_stakes(db_session, competition_id) == []


class TestAwardForStake:
    @pytest.mark.asyncio
    async def test_locked_stake_gets_double(self, db_session, ledger, make_stake):
        user_id, competition_id = ledger
        await make_stake(WALLET, ONE_TOKEN)
        window = await load_boost_window(db_session, competition_id)
        stake = (await unawarded_stakes(db_session, WALLET, competition_id))[0]
        await db_session.commit()

        result = await award_for_stake(db_session, stake, window)

        assert result.type == "awarded"
        assert result.user_id == user_id
        assert result.amount == 2 * ONE_TOKEN
        assert result.multiplier == Decimal("2")
        assert await user_boost_balance(db_session, user_id, competition_id) == 2 * ONE_TOKEN
        award = (await db_session.execute(select(StakeBoostAward))).scalar_one()
        assert award.base_amount == ONE_TOKEN
        assert award.multiplier == Decimal("2")

    @pytest.mark.asyncio
    async def test_key_names_competition_and_stake(self, db_session, ledger, make_stake):
        _, competition_id = ledger
        stake_id = await make_stake(WALLET, ONE_TOKEN, staked_at=START + timedelta(days=1))
        window = await load_boost_window(db_session, competition_id)
        stake = (await unawarded_stakes(db_session, WALLET, competition_id))[0]
        await db_session.commit()

        result = await award_for_stake(db_session, stake, window)

        assert result.amount == ONE_TOKEN
        key = await db_session.scalar(select(BoostChange.idempotency_key))
        assert key.startswith(f"competition={competition_id}|stake={stake_id}|nonce=".encode())

    @pytest.mark.asyncio
    async def test_second_award_is_skipped_and_rolled_back(self, db_session, ledger, make_stake):
        user_id, competition_id = ledger
        await make_stake(WALLET, ONE_TOKEN)
        window = await load_boost_window(db_session, competition_id)
        stake = (await unawarded_stakes(db_session, WALLET, competition_id))[0]
        await db_session.commit()

        first = await award_for_stake(db_session, stake, window)
        second = await award_for_stake(db_session, stake, window)

        assert first.type == "awarded"
        assert second.type == "skipped"
        assert second.reason == "already_awarded"
        assert await user_boost_balance(db_session, user_id, competition_id) == 2 * ONE_TOKEN
        assert await db_session.scalar(select(func.count()).select_from(BoostChange)) == 1

    @pytest.mark.asyncio
    async def test_wallet_without_user_is_skipped(self, db_session, ledger, make_stake):
        _, competition_id = ledger
        stranger = "0x00000000000000000000000000000000000000ee"
        await make_stake(stranger, ONE_TOKEN)
        window = await load_boost_window(db_session, competition_id)
        stake = (await unawarded_stakes(db_session, stranger, competition_id))[0]
        await db_session.commit()

        result = await award_for_stake(db_session, stake, window)

        assert result.type == "skipped"
        assert result.reason == "no_user"
        assert await db_session.scalar(select(func.count()).select_from(StakeBoostAward)) == 0


class TestClaimStakedBoost:
    @pytest.mark.asyncio
    async def test_claims_every_unawarded_stake(self, db_session, ledger, make_stake):
        user_id, competition_id = ledger
        await make_stake(WALLET, ONE_TOKEN)  # locked: 2x
        await make_stake(WALLET, 3 * ONE_TOKEN, can_unstake_after=START + timedelta(days=1))  # 1x

        result = await claim_staked_boost(db_session, user_id, WALLET, competition_id)

        assert result.awarded == 2
        assert result.skipped == 0
        assert result.balance == 5 * ONE_TOKEN
        assert await unawarded_stakes(db_session, WALLET, competition_id) == []

    @pytest.mark.asyncio
    async def test_second_claim_awards_nothing(self, db_session, ledger, make_stake):
        user_id, competition_id = ledger
        await make_stake(WALLET, ONE_TOKEN)

        await claim_staked_boost(db_session, user_id, WALLET, competition_id)
        again = await claim_staked_boost(db_session, user_id, WALLET, competition_id)

        assert again.awarded == 0
        assert again.balance == 2 * ONE_TOKEN

    @pytest.mark.asyncio
    async def test_unknown_competition(self, db_session, ledger):
        user_id, _ = ledger
        with pytest.raises(CompetitionNotFound):
            await claim_staked_boost(db_session, user_id, WALLET, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_competition_without_window(self, db_session, ledger, make_competition):
        user_id, _ = ledger
        competition_id = await make_competition(start=None, end=None)
        with pytest.raises(BoostWindowNotConfigured):
            await claim_staked_boost(db_session, user_id, WALLET, competition_id)

    @pytest.mark.asyncio
    async def test_wallets_with_unawarded_stakes(self, db_session, ledger, make_stake):
        user_id, competition_id = ledger
        await make_stake(WALLET, ONE_TOKEN)
        await make_stake("0x00000000000000000000000000000000000000ee", ONE_TOKEN)

        pending = await wallets_with_unawarded_stakes(db_session, competition_id)
        await db_session.commit()
        await claim_staked_boost(db_session, user_id, WALLET, competition_id)
        after = await wallets_with_unawarded_stakes(db_session, competition_id)

        assert pending == [(user_id, WALLET)]
        assert after == []


class TestNoStakeAwards:
    @pytest.mark.asyncio
    async def test_award_is_once_per_reason(self, db_session, ledger):
        user_id, competition_id = ledger

        first = await award_no_stake(db_session, user_id, competition_id)
        replay = await award_no_stake(db_session, user_id, competition_id)
        other = await award_no_stake(db_session, user_id, competition_id, "special-award", amount=5)

        assert isinstance(first, BoostApplied)
        assert first.balance_after == 10**21
        assert isinstance(replay, BoostNoop)
        assert isinstance(other, BoostApplied)
        assert other.balance_after == 10**21 + 5
        history = await balance_history(db_session, user_id, competition_id)
        assert history[-1].meta == {"description": "Boost award: initNoStake"}

    @pytest.mark.asyncio
    async def test_init_no_stake_covers_open_competitions(self, db_session, make_user, make_competition):
        now = datetime(2026, 3, 5, tzinfo=timezone.utc)
        user_id = await make_user(WALLET)
        open_one = await make_competition(start=START, end=END, name="open")
        closed = await make_competition(start=START - timedelta(days=30), end=START, name="closed")
        await make_competition(start=None, end=None, name="no window")

        results = await init_no_stake(db_session, user_id, now)

        assert len(results) == 1
        assert await user_boost_balance(db_session, user_id, open_one) == 10**21
        assert await user_boost_balance(db_session, user_id, closed) == 0

    @pytest.mark.asyncio
    async def test_open_boost_competitions_window_bounds(self, db_session, make_competition):
        competition_id = await make_competition(start=START, end=END)

        assert [w.competition_id for w in await open_boost_competitions(db_session, START)] == [competition_id]
        assert await open_boost_competitions(db_session, END) == []
