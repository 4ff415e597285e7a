"""Stake Conversion Bridge: which stakes still owe Boost, and the award record.

The award table, not the journal, decides whether a stake was converted for
a competition. Awards are scoped per competition, so a stake converted for
one competition stays eligible for every other one.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, and_, exists, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from boostledger.db.models import Stake, StakeBoostAward, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def normalize_wallet(wallet: str) -> str:
    return wallet.strip().lower()


async def user_id_for_wallet(db: AsyncSession, wallet: str) -> uuid.UUID | None:
    result = await db.execute(
        select(User.id).where(func.lower(User.wallet_address) == normalize_wallet(wallet))
    )
    return result.scalar_one_or_none()


def _pending(competition_id: uuid.UUID) -> ColumnElement[bool]:
    """Active, non-empty stakes with no award row for the competition."""
    return and_(
        Stake.unstaked_at.is_(None),
        Stake.amount > 0,
        ~exists().where(
            StakeBoostAward.stake_id == Stake.id,
            StakeBoostAward.competition_id == competition_id,
        ),
    )


async def unawarded_stakes(db: AsyncSession, wallet: str, competition_id: uuid.UUID) -> list[Stake]:
    """Active stakes of ``wallet`` with no award for ``competition_id``, newest first.

    Zero-amount stakes are left out: they convert to no Boost and would
    otherwise stay pending forever.
    """
    result = await db.execute(
        select(Stake)
        .where(
            func.lower(Stake.wallet) == normalize_wallet(wallet),
            _pending(competition_id),
        )
        .order_by(Stake.created_at.desc(), Stake.id.desc())
    )
    return list(result.scalars().all())


async def record_stake_boost_award(
    db: AsyncSession,
    stake_id: int,
    base_amount: int,
    multiplier: Decimal,
    boost_change_id: uuid.UUID,
    competition_id: uuid.UUID,
) -> int | None:
    """Insert the award row for (stake, competition).

    Returns the new award id, or None when the pair was already awarded. Call
    it in the same unit of work as the ``increase`` that produced
    ``boost_change_id`` so the two commit or roll back together.
    """
    stmt = (
        pg_insert(StakeBoostAward)
        .values(
            stake_id=stake_id,
            base_amount=base_amount,
            multiplier=multiplier,
            boost_change_id=boost_change_id,
            competition_id=competition_id,
        )
        .on_conflict_do_nothing(constraint="stake_boost_awards_stake_competition_uniq")
        .returning(StakeBoostAward.id)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def wallets_with_unawarded_stakes(
    db: AsyncSession, competition_id: uuid.UUID
) -> list[tuple[uuid.UUID, str]]:
    """(user_id, wallet) pairs owning at least one active, non-empty unawarded stake.

    Wallets with no matching user are left out; there is nobody to credit.
    """
    wallet = func.lower(Stake.wallet)
    result = await db.execute(
        select(User.id, wallet)
        .select_from(Stake)
        .join(User, func.lower(User.wallet_address) == wallet)
        .where(_pending(competition_id))
        .distinct()
        .order_by(wallet)
    )
    return [(user_id, w) for user_id, w in result.all()]
