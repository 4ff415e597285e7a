"""Award policies that turn stakes (or the lack of them) into Boost.

Stake awards run ``increase`` and ``record_stake_boost_award`` in one unit of
work. The increase carries a fresh nonce in its key, so a retry after a crash
always produces a new journal row; the award row is what stops a stake from
being converted twice for the same competition.

Multiplier rules:
- Staked before the boost window opens and locked until at least its end:
  ``stake_locked_multiplier`` (2x by default)
- Anything else: ``stake_base_multiplier`` (1x by default)
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from fractions import Fraction
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from boostledger.boost.idempotency import derive_idempotency_key
from boostledger.boost.ledger_service import MetaArg, boost_agent, increase, validate_amount
from boostledger.boost.query_service import user_boost_balance
from boostledger.boost.schemas import BoostAgentResult, BoostApplied, BoostDiffResult
from boostledger.config import Settings, get_settings
from boostledger.database import unit_of_work
from boostledger.db.models import Competition, Stake, User
from boostledger.errors import (
    CompetitionNotFound,
    DuplicateAward,
    LedgerInvariantViolation,
    OutsideBoostWindow,
    UserNotFound,
)
from boostledger.staking.schemas import BoostWindow, StakeAwardResult, StakeClaimResult
from boostledger.staking.stake_bridge import record_stake_boost_award, unawarded_stakes, user_id_for_wallet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

NO_STAKE_REASON = "initNoStake"


# ---------------------------------------------------------------------------
# Pure policy
# ---------------------------------------------------------------------------


def stake_multiplier(
    staked_at: datetime,
    can_unstake_after: datetime,
    boost_start: datetime,
    boost_end: datetime,
    settings: Settings | None = None,
) -> Decimal:
    """Multiplier for a stake given the competition's boost window."""
    settings = settings or get_settings()
    if staked_at < boost_start and can_unstake_after >= boost_end:
        return settings.stake_locked_multiplier
    return settings.stake_base_multiplier


def stake_boost_amount(amount: int, multiplier: Decimal) -> int:
    """``amount * multiplier`` in exact arithmetic, fraction truncated."""
    ratio = Fraction(multiplier)
    return amount * ratio.numerator // ratio.denominator


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def load_boost_window(db: AsyncSession, competition_id: uuid.UUID) -> BoostWindow:
    """Raises CompetitionNotFound or BoostWindowNotConfigured."""
    competition = await db.get(Competition, competition_id)
    if competition is None:
        raise CompetitionNotFound(competition_id)
    return BoostWindow.from_competition(competition)


async def open_boost_competitions(db: AsyncSession, now: datetime | None = None) -> list[BoostWindow]:
    """Competitions whose boost window contains ``now``."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(Competition)
        .where(
            Competition.boost_start_date <= now,
            Competition.boost_end_date > now,
        )
        .order_by(Competition.boost_start_date, Competition.id)
    )
    return [BoostWindow.from_competition(c) for c in result.scalars().all()]


# ---------------------------------------------------------------------------
# Stake awards
# ---------------------------------------------------------------------------


async def award_for_stake(
    db: AsyncSession,
    stake: Stake,
    window: BoostWindow,
    *,
    user_id: uuid.UUID | None = None,
    settings: Settings | None = None,
) -> StakeAwardResult:
    """Convert one stake to Boost for the competition of ``window``.

    The staking user is resolved from the stake's wallet unless ``user_id``
    is given. An existing award for (stake, competition) rolls the increase
    back and yields a ``skipped`` result.
    """
    multiplier = stake_multiplier(stake.staked_at, stake.can_unstake_after, window.start, window.end, settings)
    amount = stake_boost_amount(stake.amount, multiplier)
    skipped = StakeAwardResult(
        type="skipped",
        stake_id=stake.id,
        competition_id=window.competition_id,
        multiplier=multiplier,
    )
    if amount <= 0:
        logger.info(
            "stake_award_skipped",
            stake_id=stake.id,
            competition_id=str(window.competition_id),
            reason="zero_amount",
        )
        return skipped.model_copy(update={"reason": "zero_amount"})

    key = derive_idempotency_key(
        competition=window.competition_id,
        stake=stake.id,
        nonce=secrets.token_hex(8),
    )
    try:
        async with unit_of_work(db):
            if user_id is None:
                user_id = await user_id_for_wallet(db, stake.wallet)
                if user_id is None:
                    logger.info("stake_award_skipped", stake_id=stake.id, wallet=stake.wallet, reason="no_user")
                    return skipped.model_copy(update={"reason": "no_user"})

            diff = await increase(
                db,
                user_id,
                window.competition_id,
                amount,
                idempotency_key=key,
                meta={"description": "Stake boost award", "stake_id": stake.id},
            )
            if not isinstance(diff, BoostApplied):
                msg = f"fresh stake award key for stake {stake.id} was already in the journal"
                raise LedgerInvariantViolation(msg)

            award_id = await record_stake_boost_award(
                db, stake.id, stake.amount, multiplier, diff.change_id, window.competition_id
            )
            if award_id is None:
                raise DuplicateAward(stake.id, window.competition_id)
    except DuplicateAward:
        logger.info(
            "stake_award_skipped",
            stake_id=stake.id,
            competition_id=str(window.competition_id),
            reason="already_awarded",
        )
        return skipped.model_copy(update={"user_id": user_id, "reason": "already_awarded"})

    logger.info(
        "stake_award_recorded",
        stake_id=stake.id,
        user_id=str(user_id),
        competition_id=str(window.competition_id),
        amount=amount,
        multiplier=str(multiplier),
        balance_after=diff.balance_after,
    )
    return StakeAwardResult(
        type="awarded",
        stake_id=stake.id,
        competition_id=window.competition_id,
        user_id=user_id,
        amount=amount,
        multiplier=multiplier,
        balance_after=diff.balance_after,
    )


async def claim_staked_boost(
    db: AsyncSession,
    user_id: uuid.UUID,
    wallet: str,
    competition_id: uuid.UUID,
    *,
    settings: Settings | None = None,
) -> StakeClaimResult:
    """Convert every unawarded stake of ``wallet`` for one competition.

    Runs as one unit of work; each stake gets its own savepoint, so a stake
    another worker awarded first is skipped without undoing the rest.

    Raises:
        CompetitionNotFound: unknown ``competition_id``.
        BoostWindowNotConfigured: the competition has no boost dates.
    """
    awarded = skipped = 0
    async with unit_of_work(db):
        window = await load_boost_window(db, competition_id)
        for stake in await unawarded_stakes(db, wallet, competition_id):
            result = await award_for_stake(db, stake, window, user_id=user_id, settings=settings)
            if result.type == "awarded":
                awarded += 1
            else:
                skipped += 1
        balance = await user_boost_balance(db, user_id, competition_id)

    return StakeClaimResult(
        user_id=user_id,
        competition_id=competition_id,
        awarded=awarded,
        skipped=skipped,
        balance=balance,
    )


# ---------------------------------------------------------------------------
# No-stake grants
# ---------------------------------------------------------------------------


async def award_no_stake(
    db: AsyncSession,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    reason: str = NO_STAKE_REASON,
    *,
    amount: int | None = None,
    settings: Settings | None = None,
) -> BoostDiffResult:
    """Grant Boost that does not come from a stake.

    The key depends only on (competition, reason), so each reason pays out
    at most once per user and competition; replays return ``noop``.
    """
    settings = settings or get_settings()
    return await increase(
        db,
        user_id,
        competition_id,
        amount if amount is not None else settings.no_stake_boost_amount,
        idempotency_key=derive_idempotency_key(competition=competition_id, reason=reason),
        meta={"description": f"Boost award: {reason}"},
    )


async def init_no_stake(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime | None = None,
    *,
    settings: Settings | None = None,
) -> list[BoostDiffResult]:
    """Grant the no-stake amount in every competition currently open for boosting."""
    async with unit_of_work(db):
        windows = await open_boost_competitions(db, now)
        results = [
            await award_no_stake(db, user_id, window.competition_id, settings=settings)
            for window in windows
        ]
    logger.info("no_stake_initialized", user_id=str(user_id), competitions=len(windows))
    return results


# ---------------------------------------------------------------------------
# Spending
# ---------------------------------------------------------------------------


async def spend_boost(
    db: AsyncSession,
    user_id: uuid.UUID,
    agent_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
    *,
    idempotency_key: bytes | str | None = None,
    meta: MetaArg = None,
    now: datetime | None = None,
) -> BoostAgentResult:
    """``boost_agent`` gated on the competition's boost window.

    Users may only spend while the window is open. The window check and the
    spend share one unit of work.

    Raises:
        InvalidAmount: ``amount`` is not a positive int. No I/O is performed.
        UserNotFound: unknown ``user_id``.
        CompetitionNotFound: unknown ``competition_id``.
        BoostWindowNotConfigured: the competition has no boost dates.
        OutsideBoostWindow: ``now`` falls outside ``[boost_start, boost_end)``.
        NoSuchBalance, InsufficientBalance: as for ``boost_agent``.
    """
    validate_amount(amount)
    now = now or datetime.now(timezone.utc)
    async with unit_of_work(db):
        if await db.get(User, user_id) is None:
            raise UserNotFound(user_id)
        window = await load_boost_window(db, competition_id)
        if not window.is_open(now):
            logger.info(
                "boost_rejected_outside_window",
                user_id=str(user_id),
                competition_id=str(competition_id),
                window_start=window.start.isoformat(),
                window_end=window.end.isoformat(),
            )
            raise OutsideBoostWindow(competition_id, now)
        return await boost_agent(
            db,
            user_id,
            agent_id,
            competition_id,
            amount,
            idempotency_key=idempotency_key,
            meta=meta,
        )
