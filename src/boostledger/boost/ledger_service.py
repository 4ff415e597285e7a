"""Boost ledger engine: idempotent credits, debits and agent boosts.

Every public operation runs in a single unit of work. The balance row is
locked (SELECT ... FOR UPDATE, or the lock held by our own fresh INSERT)
before the journal insert, so writers to the same balance are serialized
while other balances and other agents proceed independently.

The journal's UNIQUE(balance_id, idempotency_key) is the only replay guard:
an INSERT ... ON CONFLICT DO NOTHING that returns no row means the operation
was already applied, and the balance is left untouched.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError

from boostledger.boost.idempotency import coerce_idempotency_key, key_fingerprint
from boostledger.boost.schemas import (
    AgentBoostApplied,
    AgentBoostNoop,
    BoostAgentResult,
    BoostApplied,
    BoostChangeMeta,
    BoostDiffResult,
    BoostNoop,
    MergedBalance,
)
from boostledger.database import unit_of_work
from boostledger.db.models import AgentBoost, AgentBoostTotal, BoostBalance, BoostChange
from boostledger.errors import (
    InsufficientBalance,
    InvalidAmount,
    LedgerInvariantViolation,
    MergeConflict,
    NoSuchBalance,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

MetaArg = BoostChangeMeta | dict[str, Any] | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def validate_amount(amount: object) -> int:
    """Return ``amount`` if it is a positive int, else raise InvalidAmount."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)
    return amount


def _meta_payload(meta: MetaArg) -> dict[str, Any]:
    if meta is None:
        return {}
    if not isinstance(meta, BoostChangeMeta):
        meta = BoostChangeMeta.model_validate(meta)
    return meta.model_dump(exclude_none=True)


async def _lock_or_create_balance(
    db: AsyncSession, user_id: uuid.UUID, competition_id: uuid.UUID
) -> tuple[uuid.UUID, int]:
    """Lock the (user, competition) balance row, creating it at 0 if missing."""
    stmt = (
        pg_insert(BoostBalance)
        .values(user_id=user_id, competition_id=competition_id, balance=0)
        .on_conflict_do_nothing(constraint="boost_balances_user_competition_uniq")
        .returning(BoostBalance.id, BoostBalance.balance)
    )
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        row = await _lock_balance(db, user_id, competition_id)
        if row is None:
            msg = f"boost balance for user {user_id} in competition {competition_id} neither inserted nor found"
            raise LedgerInvariantViolation(msg)
    return row.id, row.balance


async def _lock_balance(db: AsyncSession, user_id: uuid.UUID, competition_id: uuid.UUID) -> Any:
    result = await db.execute(
        select(BoostBalance.id, BoostBalance.balance)
        .where(
            BoostBalance.user_id == user_id,
            BoostBalance.competition_id == competition_id,
        )
        .with_for_update()
    )
    return result.one_or_none()


async def _insert_change(
    db: AsyncSession,
    balance_id: uuid.UUID,
    delta_amount: int,
    idempotency_key: bytes,
    meta: dict[str, Any],
) -> uuid.UUID | None:
    """Append a journal row. Returns None when the key was already applied to this balance."""
    stmt = (
        pg_insert(BoostChange)
        .values(
            balance_id=balance_id,
            delta_amount=delta_amount,
            idempotency_key=idempotency_key,
            meta=meta,
        )
        .on_conflict_do_nothing(constraint="boost_changes_balance_idem_uq")
        .returning(BoostChange.id)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _apply_delta(db: AsyncSession, balance_id: uuid.UUID, delta_amount: int) -> int:
    stmt = (
        update(BoostBalance)
        .where(BoostBalance.id == balance_id)
        .values(balance=BoostBalance.balance + delta_amount, updated_at=func.now())
        .returning(BoostBalance.balance)
        .execution_options(synchronize_session=False)
    )
    try:
        return (await db.execute(stmt)).scalar_one()
    except IntegrityError as exc:
        # Only the balance >= 0 check can fire here; the engine's own check should have prevented it.
        msg = f"balance {balance_id} would go negative applying {delta_amount}"
        raise LedgerInvariantViolation(msg) from exc


async def _credit(
    db: AsyncSession,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
    idempotency_key: bytes,
    meta: dict[str, Any],
) -> BoostDiffResult:
    balance_id, current = await _lock_or_create_balance(db, user_id, competition_id)
    change_id = await _insert_change(db, balance_id, amount, idempotency_key, meta)
    if change_id is None:
        return BoostNoop(balance=current, idempotency_key=idempotency_key)
    balance_after = await _apply_delta(db, balance_id, amount)
    return BoostApplied(change_id=change_id, balance_after=balance_after, idempotency_key=idempotency_key)


async def _debit(
    db: AsyncSession,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
    idempotency_key: bytes,
    meta: dict[str, Any],
) -> BoostDiffResult:
    row = await _lock_balance(db, user_id, competition_id)
    if row is None:
        raise NoSuchBalance(user_id, competition_id)

    change_id = await _insert_change(db, row.id, -amount, idempotency_key, meta)
    if change_id is None:
        return BoostNoop(balance=row.balance, idempotency_key=idempotency_key)

    # Row is locked, so this read is current. Raising rolls the journal row back with the unit of work.
    if row.balance < amount:
        raise InsufficientBalance(user_id, competition_id, row.balance, amount)

    balance_after = await _apply_delta(db, row.id, -amount)
    return BoostApplied(change_id=change_id, balance_after=balance_after, idempotency_key=idempotency_key)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


async def increase(
    db: AsyncSession,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
    *,
    idempotency_key: bytes | str | None = None,
    meta: MetaArg = None,
) -> BoostDiffResult:
    """Credit Boost to a user's balance in a competition.

    Creates the balance at 0 on first use. Returns ``BoostApplied`` with the
    new balance, or ``BoostNoop`` with the current balance when the key was
    already applied to this balance (whatever amount the replay carries).

    Commit: on a session with no open transaction the credit is committed
    before returning. If the session already has a transaction, including
    one autobegun by an earlier read such as ``user_boost_balance``, the
    credit runs in a SAVEPOINT and is lost unless the caller commits.

    Raises:
        InvalidAmount: ``amount`` is not a positive int. No I/O is performed.
    """
    validate_amount(amount)
    key = coerce_idempotency_key(idempotency_key)
    payload = _meta_payload(meta)

    async with unit_of_work(db):
        result = await _credit(db, user_id, competition_id, amount, key, payload)

    _log_diff("boost_increased", result, user_id, competition_id, amount)
    return result


async def decrease(
    db: AsyncSession,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
    *,
    idempotency_key: bytes | str | None = None,
    meta: MetaArg = None,
) -> BoostDiffResult:
    """Debit Boost from an existing balance.

    Commits like :func:`increase`: immediately on an idle session, otherwise
    only when the caller commits its open transaction.

    Raises:
        InvalidAmount: ``amount`` is not a positive int. No I/O is performed.
        NoSuchBalance: the user never received Boost in this competition.
        InsufficientBalance: the debit would leave a negative balance.
    """
    validate_amount(amount)
    key = coerce_idempotency_key(idempotency_key)
    payload = _meta_payload(meta)

    async with unit_of_work(db):
        result = await _debit(db, user_id, competition_id, amount, key, payload)

    _log_diff("boost_decreased", result, user_id, competition_id, amount)
    return result


async def boost_agent(
    db: AsyncSession,
    user_id: uuid.UUID,
    agent_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
    *,
    idempotency_key: bytes | str | None = None,
    meta: MetaArg = None,
) -> BoostAgentResult:
    """Spend a user's Boost on an agent.

    The debit and the agent credit commit together. The agent side runs
    only when the debit's journal row was newly inserted, so a replayed key
    skips both sides.

    Commits like :func:`increase`: immediately on an idle session, otherwise
    only when the caller commits its open transaction.

    Raises the same errors as :func:`decrease`.
    """
    validate_amount(amount)
    key = coerce_idempotency_key(idempotency_key)
    payload = _meta_payload(meta)

    async with unit_of_work(db):
        debit = await _debit(db, user_id, competition_id, amount, key, payload)
        if isinstance(debit, BoostNoop):
            agent_total = await _agent_total(db, agent_id, competition_id)
            result: BoostAgentResult = AgentBoostNoop(
                balance=debit.balance, agent_total=agent_total, idempotency_key=key
            )
        else:
            total_id, agent_total = await _credit_agent(db, agent_id, competition_id, amount)
            link_id = await _link_change(db, total_id, debit.change_id)
            result = AgentBoostApplied(
                change_id=debit.change_id,
                agent_boost_id=link_id,
                balance_after=debit.balance_after,
                agent_total=agent_total,
                idempotency_key=key,
            )

    if isinstance(result, AgentBoostApplied):
        logger.info(
            "agent_boosted",
            user_id=str(user_id),
            agent_id=str(agent_id),
            competition_id=str(competition_id),
            amount=amount,
            balance_after=result.balance_after,
            agent_total=result.agent_total,
        )
    else:
        logger.info(
            "boost_replayed",
            operation="boost_agent",
            user_id=str(user_id),
            agent_id=str(agent_id),
            competition_id=str(competition_id),
            key=key_fingerprint(key),
        )
    return result


async def _agent_total(db: AsyncSession, agent_id: uuid.UUID, competition_id: uuid.UUID) -> int:
    result = await db.execute(
        select(AgentBoostTotal.total).where(
            AgentBoostTotal.agent_id == agent_id,
            AgentBoostTotal.competition_id == competition_id,
        )
    )
    return result.scalar_one_or_none() or 0


async def _credit_agent(
    db: AsyncSession, agent_id: uuid.UUID, competition_id: uuid.UUID, amount: int
) -> tuple[uuid.UUID, int]:
    stmt = pg_insert(AgentBoostTotal).values(agent_id=agent_id, competition_id=competition_id, total=amount)
    stmt = stmt.on_conflict_do_update(
        constraint="agent_boost_totals_agent_competition_uniq",
        set_={
            "total": AgentBoostTotal.total + amount,
            "updated_at": func.now(),
        },
    ).returning(AgentBoostTotal.id, AgentBoostTotal.total)
    row = (await db.execute(stmt)).one()
    return row.id, row.total


async def _link_change(db: AsyncSession, agent_boost_total_id: uuid.UUID, change_id: uuid.UUID) -> uuid.UUID:
    stmt = (
        pg_insert(AgentBoost)
        .values(agent_boost_total_id=agent_boost_total_id, change_id=change_id)
        .on_conflict_do_nothing(constraint="agent_boosts_total_change_uniq")
        .returning(AgentBoost.id)
    )
    link_id = (await db.execute(stmt)).scalar_one_or_none()
    if link_id is None:
        # The change row was inserted in this unit of work, so no link can exist yet.
        msg = f"change {change_id} already linked to agent total {agent_boost_total_id}"
        raise LedgerInvariantViolation(msg)
    return link_id


def _log_diff(
    event: str,
    result: BoostDiffResult,
    user_id: uuid.UUID,
    competition_id: uuid.UUID,
    amount: int,
) -> None:
    if isinstance(result, BoostApplied):
        logger.info(
            event,
            user_id=str(user_id),
            competition_id=str(competition_id),
            amount=amount,
            balance_after=result.balance_after,
            change_id=str(result.change_id),
        )
    else:
        logger.info(
            "boost_replayed",
            operation=event,
            user_id=str(user_id),
            competition_id=str(competition_id),
            key=key_fingerprint(result.idempotency_key),
        )


# ---------------------------------------------------------------------------
# Account merge
# ---------------------------------------------------------------------------


async def merge_boost(
    db: AsyncSession, from_user_id: uuid.UUID, to_user_id: uuid.UUID
) -> list[MergedBalance]:
    """Move every balance of ``from_user_id`` onto ``to_user_id``.

    Per competition: verify the source balance equals the sum of its
    journal, add it to the target balance (created if missing), re-point the
    source journal rows to the target balance and delete the emptied source
    row. Idempotency keys and metadata travel with the journal rows.

    Raises:
        LedgerInvariantViolation: a source balance disagrees with its journal.
        MergeConflict: a source key is already applied on the target balance.
    """
    if from_user_id == to_user_id:
        msg = "cannot merge a user's boost into itself"
        raise ValueError(msg)

    merged: list[MergedBalance] = []
    async with unit_of_work(db):
        sources = (
            await db.execute(
                select(BoostBalance.id, BoostBalance.competition_id, BoostBalance.balance)
                .where(BoostBalance.user_id == from_user_id)
                .order_by(BoostBalance.competition_id)
                .with_for_update()
            )
        ).all()

        for source in sources:
            journal_sum = (
                await db.execute(
                    select(func.coalesce(func.sum(BoostChange.delta_amount), 0)).where(
                        BoostChange.balance_id == source.id
                    )
                )
            ).scalar_one()
            if int(journal_sum) != source.balance:
                msg = f"balance {source.id} is {source.balance} but its journal sums to {journal_sum}"
                raise LedgerInvariantViolation(msg)

            target_id, _ = await _lock_or_create_balance(db, to_user_id, source.competition_id)

            target_keys = select(BoostChange.idempotency_key).where(BoostChange.balance_id == target_id)
            clash = (
                await db.execute(
                    select(BoostChange.id)
                    .where(
                        BoostChange.balance_id == source.id,
                        BoostChange.idempotency_key.in_(target_keys),
                    )
                    .limit(1)
                )
            ).scalar_one_or_none()
            if clash is not None:
                msg = f"change {clash} reuses an idempotency key already applied to balance {target_id}"
                raise MergeConflict(msg)

            await db.execute(
                update(BoostChange)
                .where(BoostChange.balance_id == source.id)
                .values(balance_id=target_id)
                .execution_options(synchronize_session=False)
            )
            await db.execute(
                delete(BoostBalance)
                .where(BoostBalance.id == source.id)
                .execution_options(synchronize_session=False)
            )
            balance = await _apply_delta(db, target_id, source.balance)
            merged.append(
                MergedBalance(
                    competition_id=source.competition_id,
                    balance_id=target_id,
                    balance=balance,
                    moved_amount=source.balance,
                )
            )

    logger.info(
        "boost_merged",
        from_user_id=str(from_user_id),
        to_user_id=str(to_user_id),
        balances=len(merged),
    )
    return merged
