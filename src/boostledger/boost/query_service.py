"""Read-only projections over balances, the journal and agent aggregates.

Each function takes the caller's session, so running it inside an open
transaction reads that transaction's own writes. Unknown ids yield zero or
empty results, never errors.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Select, func, select

from boostledger.boost.schemas import AgentBoostRecord, BoostChangeRecord, DebitRecord
from boostledger.db.models import AgentBoost, AgentBoostTotal, BoostBalance, BoostChange, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def user_boost_balance(db: AsyncSession, user_id: uuid.UUID, competition_id: uuid.UUID) -> int:
    """Current balance, 0 when the user never received Boost in the competition."""
    result = await db.execute(
        select(BoostBalance.balance).where(
            BoostBalance.user_id == user_id,
            BoostBalance.competition_id == competition_id,
        )
    )
    return result.scalar_one_or_none() or 0


async def user_boosts(db: AsyncSession, user_id: uuid.UUID, competition_id: uuid.UUID) -> dict[uuid.UUID, int]:
    """Boost a user has spent per agent, rebuilt from the journal.

    Debits are joined through their aggregate links, so the map is consistent
    with the journal by construction.
    """
    spent = func.sum(BoostChange.delta_amount)
    result = await db.execute(
        select(AgentBoostTotal.agent_id, spent)
        .join(AgentBoost, AgentBoost.agent_boost_total_id == AgentBoostTotal.id)
        .join(BoostChange, BoostChange.id == AgentBoost.change_id)
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .where(
            BoostBalance.user_id == user_id,
            AgentBoostTotal.competition_id == competition_id,
            BoostChange.delta_amount < 0,
        )
        .group_by(AgentBoostTotal.agent_id)
    )
    return {agent_id: -int(total) for agent_id, total in result.all()}


async def agent_boost_totals(db: AsyncSession, competition_id: uuid.UUID) -> dict[uuid.UUID, int]:
    """Aggregate Boost per agent in a competition."""
    result = await db.execute(
        select(AgentBoostTotal.agent_id, AgentBoostTotal.total).where(
            AgentBoostTotal.competition_id == competition_id
        )
    )
    return {agent_id: total for agent_id, total in result.all()}


async def balance_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    limit: int = 100,
) -> list[BoostChangeRecord]:
    """Journal rows of one balance, most recent first."""
    result = await db.execute(
        select(BoostChange.id, BoostChange.delta_amount, BoostChange.meta, BoostChange.created_at)
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .where(
            BoostBalance.user_id == user_id,
            BoostBalance.competition_id == competition_id,
        )
        .order_by(BoostChange.created_at.desc(), BoostChange.id.desc())
        .limit(limit)
    )
    return [
        BoostChangeRecord(id=row.id, delta_amount=row.delta_amount, meta=row.meta, created_at=row.created_at)
        for row in result.all()
    ]


async def competition_changes(db: AsyncSession, competition_id: uuid.UUID) -> list[BoostChangeRecord]:
    """Every journal row of every balance in a competition, oldest first."""
    result = await db.execute(
        select(BoostChange.id, BoostChange.delta_amount, BoostChange.meta, BoostChange.created_at)
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .where(BoostBalance.competition_id == competition_id)
        .order_by(BoostChange.created_at, BoostChange.id)
    )
    return [
        BoostChangeRecord(id=row.id, delta_amount=row.delta_amount, meta=row.meta, created_at=row.created_at)
        for row in result.all()
    ]


async def competition_debits(db: AsyncSession, competition_id: uuid.UUID) -> list[DebitRecord]:
    """Every debit in a competition, oldest first. Consumed by reward computation."""
    result = await db.execute(
        select(
            BoostChange.id,
            BoostBalance.user_id,
            User.wallet_address,
            BoostChange.delta_amount,
            BoostChange.created_at,
            AgentBoostTotal.agent_id,
        )
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .join(User, User.id == BoostBalance.user_id)
        .outerjoin(AgentBoost, AgentBoost.change_id == BoostChange.id)
        .outerjoin(AgentBoostTotal, AgentBoostTotal.id == AgentBoost.agent_boost_total_id)
        .where(
            BoostBalance.competition_id == competition_id,
            BoostChange.delta_amount < 0,
        )
        .order_by(BoostChange.created_at, BoostChange.id)
    )
    return [
        DebitRecord(
            change_id=row.id,
            user_id=row.user_id,
            wallet=row.wallet_address,
            delta_amount=row.delta_amount,
            created_at=row.created_at,
            agent_id=row.agent_id,
        )
        for row in result.all()
    ]


def _agent_boosts_query(competition_id: uuid.UUID) -> Select:  # type: ignore[type-arg]
    return (
        select(
            BoostBalance.user_id,
            User.wallet_address,
            AgentBoostTotal.agent_id,
            BoostChange.delta_amount,
            BoostChange.created_at,
            BoostChange.id,
        )
        .select_from(AgentBoost)
        .join(AgentBoostTotal, AgentBoostTotal.id == AgentBoost.agent_boost_total_id)
        .join(BoostChange, BoostChange.id == AgentBoost.change_id)
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .join(User, User.id == BoostBalance.user_id)
        .where(
            AgentBoostTotal.competition_id == competition_id,
            BoostChange.delta_amount < 0,
        )
    )


async def competition_boosts(
    db: AsyncSession,
    competition_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[AgentBoostRecord]:
    """Agent boosts in a competition, most recent first, with positive amounts."""
    query = (
        _agent_boosts_query(competition_id)
        .order_by(BoostChange.created_at.desc(), BoostChange.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(query)
    return [
        AgentBoostRecord(
            user_id=row.user_id,
            wallet=row.wallet_address,
            agent_id=row.agent_id,
            amount=-row.delta_amount,
            created_at=row.created_at,
        )
        for row in result.all()
    ]


async def count_competition_boosts(db: AsyncSession, competition_id: uuid.UUID) -> int:
    """Total number of agent boosts in a competition, for pagination."""
    subq = _agent_boosts_query(competition_id).subquery()
    result = await db.execute(select(func.count()).select_from(subq))
    return result.scalar_one()


async def competition_ids_boosted_during(
    db: AsyncSession, start: datetime, end: datetime
) -> dict[str, list[uuid.UUID]]:
    """Wallet -> competitions it boosted an agent in, for boosts created in [start, end]."""
    result = await db.execute(
        select(User.wallet_address, AgentBoostTotal.competition_id)
        .select_from(AgentBoost)
        .join(AgentBoostTotal, AgentBoostTotal.id == AgentBoost.agent_boost_total_id)
        .join(BoostChange, BoostChange.id == AgentBoost.change_id)
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .join(User, User.id == BoostBalance.user_id)
        .where(
            User.wallet_address.isnot(None),
            AgentBoost.created_at >= start,
            AgentBoost.created_at <= end,
        )
        .distinct()
        .order_by(User.wallet_address, AgentBoostTotal.competition_id)
    )
    boosted: dict[str, list[uuid.UUID]] = defaultdict(list)
    for wallet, competition_id in result.all():
        boosted[wallet.lower()].append(competition_id)
    return dict(boosted)
