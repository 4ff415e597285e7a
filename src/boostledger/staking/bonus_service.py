"""Admin bonus grants: Boost given by an operator rather than earned by staking.

A grant is stored once in ``boost_bonus`` and applied as an ``increase`` to
every competition whose boost window overlaps its lifetime. Each application
uses the key ``bonus_boost=<id>|competition=<id>``, so re-applying (by the
cron job or a retried admin call) is a noop. Journal rows carry the grant id
in ``meta.boost_bonus_id``, which is how revocation and cleanup find them.

Revocation only takes Boost back from competitions whose window has not
opened yet; once users can spend, the credit stays.
"""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, insert, select

from boostledger.boost.idempotency import derive_idempotency_key
from boostledger.boost.ledger_service import decrease, increase, validate_amount
from boostledger.boost.query_service import competition_changes
from boostledger.boost.schemas import BoostApplied, BoostDiffResult
from boostledger.config import Settings, get_settings
from boostledger.database import unit_of_work
from boostledger.db.models import BoostBalance, BoostBonus, BoostChange, Competition
from boostledger.errors import (
    BoostBonusAlreadyRevoked,
    BoostBonusNotFound,
    InvalidBoostBonus,
    UserNotFound,
)
from boostledger.staking.schemas import (
    BonusApplySummary,
    BonusChangeRecord,
    BonusCleanupResult,
    BoostBonusGrant,
    BoostBonusRequest,
    BoostBonusRevocation,
)
from boostledger.staking.stake_bridge import user_id_for_wallet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_META_PRIMITIVES = (str, int, float, bool, type(None))


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def validate_boost_bonus(
    amount: object,
    expires_at: datetime,
    meta: dict[str, Any] | None,
    now: datetime,
    settings: Settings | None = None,
) -> None:
    """Reject a grant before touching storage.

    Raises:
        InvalidAmount: ``amount`` is not a positive int.
        InvalidBoostBonus: amount above the cap, expiry too soon, or meta
            that is nested or too long once serialized.
    """
    settings = settings or get_settings()
    validate_amount(amount)
    if amount > settings.bonus_max_amount:  # type: ignore[operator]
        msg = f"bonus amount {amount} exceeds the maximum of {settings.bonus_max_amount}"
        raise InvalidBoostBonus(msg)
    if expires_at < now + timedelta(seconds=settings.bonus_min_expiry_seconds):
        msg = f"bonus must expire at least {settings.bonus_min_expiry_seconds}s in the future"
        raise InvalidBoostBonus(msg)
    if meta:
        if not all(isinstance(value, _META_PRIMITIVES) for value in meta.values()):
            msg = "bonus meta may only hold strings, numbers, booleans and nulls"
            raise InvalidBoostBonus(msg)
        if len(json.dumps(meta, separators=(",", ":"))) > settings.bonus_max_meta_length:
            msg = f"bonus meta exceeds {settings.bonus_max_meta_length} characters"
            raise InvalidBoostBonus(msg)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


async def create_boost_bonus(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    expires_at: datetime,
    *,
    created_by_admin_id: uuid.UUID | None = None,
    meta: dict[str, Any] | None = None,
) -> BoostBonus:
    stmt = (
        insert(BoostBonus)
        .values(
            user_id=user_id,
            amount=amount,
            expires_at=expires_at,
            created_by_admin_id=created_by_admin_id,
            meta=meta or {},
        )
        .returning(BoostBonus)
    )
    return (await db.execute(stmt)).scalar_one()


async def get_boost_bonus(db: AsyncSession, bonus_id: uuid.UUID, *, for_update: bool = False) -> BoostBonus | None:
    query = select(BoostBonus).where(BoostBonus.id == bonus_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    return (await db.execute(query)).scalar_one_or_none()


async def active_boost_bonuses(
    db: AsyncSession, user_id: uuid.UUID | None = None, now: datetime | None = None
) -> list[BoostBonus]:
    """Unrevoked, unexpired grants, oldest first; all users when ``user_id`` is None."""
    query = select(BoostBonus).where(BoostBonus.is_active.is_(True), BoostBonus.expires_at > _now(now))
    if user_id is not None:
        query = query.where(BoostBonus.user_id == user_id)
    result = await db.execute(query.order_by(BoostBonus.created_at, BoostBonus.id))
    return list(result.scalars().all())


async def sum_active_boost_bonuses(db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(BoostBonus.amount), 0)).where(
            BoostBonus.user_id == user_id,
            BoostBonus.is_active.is_(True),
            BoostBonus.expires_at > _now(now),
        )
    )
    return int(result.scalar_one())


async def bonus_changes(db: AsyncSession, bonus_id: uuid.UUID) -> list[BonusChangeRecord]:
    """Journal rows written on behalf of a grant (applications and removals), oldest first."""
    result = await db.execute(
        select(
            BoostChange.id,
            BoostBalance.competition_id,
            BoostChange.delta_amount,
            BoostChange.meta,
            BoostChange.created_at,
        )
        .join(BoostBalance, BoostBalance.id == BoostChange.balance_id)
        .where(BoostChange.meta["boost_bonus_id"].astext == str(bonus_id))
        .order_by(BoostChange.created_at, BoostChange.id)
    )
    return [
        BonusChangeRecord(
            change_id=row.id,
            competition_id=row.competition_id,
            delta_amount=row.delta_amount,
            meta=row.meta,
            created_at=row.created_at,
        )
        for row in result.all()
    ]


async def _eligible_competitions(db: AsyncSession, expires_at: datetime, now: datetime) -> list[Competition]:
    """Competitions whose window has not ended and opens before the grant expires."""
    result = await db.execute(
        select(Competition)
        .where(
            Competition.boost_start_date.isnot(None),
            Competition.boost_end_date > now,
            Competition.boost_start_date < expires_at,
        )
        .order_by(Competition.boost_start_date, Competition.id)
    )
    return list(result.scalars().all())


async def _apply(db: AsyncSession, bonus: BoostBonus, competition_id: uuid.UUID) -> BoostDiffResult:
    return await increase(
        db,
        bonus.user_id,
        competition_id,
        bonus.amount,
        idempotency_key=derive_idempotency_key(bonus_boost=bonus.id, competition=competition_id),
        meta={"description": f"Bonus boost {bonus.id}", "boost_bonus_id": str(bonus.id)},
    )


# ---------------------------------------------------------------------------
# Grant and revoke
# ---------------------------------------------------------------------------


async def add_boost_bonus(
    db: AsyncSession,
    wallet: str,
    amount: int,
    expires_at: datetime,
    *,
    created_by_admin_id: uuid.UUID | None = None,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> BoostBonusGrant:
    """Create a grant for the user owning ``wallet`` and apply it to every eligible competition.

    To change a grant, revoke it and add a new one.

    Raises:
        InvalidAmount, InvalidBoostBonus: validation failed. No I/O is performed.
        UserNotFound: no user owns ``wallet``.
    """
    now = _now(now)
    validate_boost_bonus(amount, expires_at, meta, now, settings)

    applied: list[uuid.UUID] = []
    async with unit_of_work(db):
        user_id = await user_id_for_wallet(db, wallet)
        if user_id is None:
            raise UserNotFound(wallet)
        bonus = await create_boost_bonus(
            db, user_id, amount, expires_at, created_by_admin_id=created_by_admin_id, meta=meta
        )
        for competition in await _eligible_competitions(db, expires_at, now):
            if isinstance(await _apply(db, bonus, competition.id), BoostApplied):
                applied.append(competition.id)

    logger.info(
        "boost_bonus_added",
        bonus_id=str(bonus.id),
        user_id=str(user_id),
        amount=amount,
        expires_at=expires_at.isoformat(),
        competitions=len(applied),
    )
    return BoostBonusGrant(
        bonus_id=bonus.id,
        user_id=user_id,
        amount=amount,
        expires_at=expires_at,
        applied_to_competitions=applied,
    )


async def add_boost_bonus_batch(
    db: AsyncSession,
    requests: list[BoostBonusRequest],
    *,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> list[BoostBonusGrant]:
    """Add several grants atomically: one failure rolls back the whole batch."""
    async with unit_of_work(db):
        return [
            await add_boost_bonus(
                db,
                request.wallet,
                request.amount,
                request.expires_at,
                created_by_admin_id=request.created_by_admin_id,
                meta=request.meta,
                now=now,
                settings=settings,
            )
            for request in requests
        ]


def _net_by_competition(changes: list[BonusChangeRecord]) -> dict[uuid.UUID, int]:
    net: dict[uuid.UUID, int] = defaultdict(int)
    for change in changes:
        net[change.competition_id] += change.delta_amount
    return net


async def revoke_boost_bonus(
    db: AsyncSession, bonus_id: uuid.UUID, now: datetime | None = None
) -> BoostBonusRevocation:
    """Deactivate a grant and take its Boost back where the window has not opened.

    Competitions with an open or finished window keep the credit, since users
    may already have spent it. Competitions without boost dates are skipped.

    Raises:
        BoostBonusNotFound: unknown ``bonus_id``.
        BoostBonusAlreadyRevoked: the grant is no longer active.
    """
    now = _now(now)
    removed: list[uuid.UUID] = []
    kept: list[uuid.UUID] = []

    async with unit_of_work(db):
        bonus = await get_boost_bonus(db, bonus_id, for_update=True)
        if bonus is None:
            raise BoostBonusNotFound(bonus_id)
        if not bonus.is_active:
            raise BoostBonusAlreadyRevoked(bonus_id)

        bonus.is_active = False
        bonus.revoked_at = now
        bonus.updated_at = now
        await db.flush()

        for competition_id, net in _net_by_competition(await bonus_changes(db, bonus_id)).items():
            if net <= 0:
                continue
            competition = await db.get(Competition, competition_id)
            if competition is None or competition.boost_start_date is None or competition.boost_end_date is None:
                logger.warning("boost_bonus_revoke_skipped", bonus_id=str(bonus_id), competition_id=str(competition_id))
                continue
            if competition.boost_start_date <= now:
                kept.append(competition_id)
                continue
            result = await decrease(
                db,
                bonus.user_id,
                competition_id,
                net,
                idempotency_key=derive_idempotency_key(revoke_bonus_boost=bonus_id, competition=competition_id),
                meta={"description": f"Revoke bonus boost {bonus_id}", "boost_bonus_id": str(bonus_id)},
            )
            if isinstance(result, BoostApplied):
                removed.append(competition_id)

    logger.info(
        "boost_bonus_revoked",
        bonus_id=str(bonus_id),
        removed=len(removed),
        kept=len(kept),
    )
    return BoostBonusRevocation(
        bonus_id=bonus_id,
        revoked_at=now,
        removed_from_competitions=removed,
        kept_in_competitions=kept,
    )


async def revoke_boost_bonus_batch(
    db: AsyncSession, bonus_ids: list[uuid.UUID], now: datetime | None = None
) -> list[BoostBonusRevocation]:
    async with unit_of_work(db):
        return [await revoke_boost_bonus(db, bonus_id, now) for bonus_id in bonus_ids]


# ---------------------------------------------------------------------------
# Scheduled application and cleanup
# ---------------------------------------------------------------------------


async def apply_bonus_boosts(db: AsyncSession, now: datetime | None = None) -> BonusApplySummary:
    """Apply every active grant to every competition it is eligible for.

    Picks up competitions created (or given boost dates) after a grant was
    added. Each application runs in its own savepoint; a failure is logged
    and the rest continue.
    """
    now = _now(now)
    summary = BonusApplySummary()

    async with unit_of_work(db):
        bonuses = await active_boost_bonuses(db, now=now)
        if not bonuses:
            return summary

        competitions = (
            await db.execute(
                select(Competition)
                .where(Competition.boost_end_date > now)
                .order_by(Competition.boost_start_date, Competition.id)
            )
        ).scalars().all()

        for competition in competitions:
            if competition.boost_start_date is None:
                summary.competitions_skipped += 1
                continue
            applied_here = 0
            for bonus in bonuses:
                if competition.boost_start_date >= bonus.expires_at:
                    continue
                try:
                    async with unit_of_work(db):
                        result = await _apply(db, bonus, competition.id)
                except Exception:
                    summary.failed += 1
                    logger.exception(
                        "boost_bonus_apply_failed",
                        bonus_id=str(bonus.id),
                        competition_id=str(competition.id),
                    )
                    continue
                if isinstance(result, BoostApplied):
                    applied_here += 1
            if applied_here:
                summary.applied += applied_here
                summary.competitions_processed += 1
            else:
                summary.competitions_skipped += 1

    logger.info("boost_bonuses_applied", **summary.model_dump())
    return summary


async def cleanup_invalid_boost_bonuses(
    db: AsyncSession,
    competition_id: uuid.UUID,
    new_boost_start: datetime,
    old_boost_start: datetime | None = None,
    now: datetime | None = None,
) -> BonusCleanupResult:
    """Take back grants that a moved boost window no longer overlaps.

    Called when a competition's boost start changes. A grant becomes invalid
    when the new start is at or after its expiry. Nothing is removed if
    either the old or the new start is already in the past.
    """
    now = _now(now)
    net: dict[uuid.UUID, int] = defaultdict(int)
    removed: list[uuid.UUID] = []
    kept: list[uuid.UUID] = []

    async with unit_of_work(db):
        for change in await competition_changes(db, competition_id):
            ref = change.meta.get("boost_bonus_id")
            if ref is not None:
                net[uuid.UUID(ref)] += change.delta_amount

        if (old_boost_start is not None and old_boost_start < now) or new_boost_start < now:
            logger.info("boost_bonus_cleanup_skipped", competition_id=str(competition_id), reason="window_opened")
            return BonusCleanupResult(kept_bonus_ids=list(net))

        for bonus_id, amount in net.items():
            bonus = await get_boost_bonus(db, bonus_id)
            if bonus is None or amount <= 0:
                continue
            if new_boost_start < bonus.expires_at:
                kept.append(bonus_id)
                continue
            result = await decrease(
                db,
                bonus.user_id,
                competition_id,
                amount,
                idempotency_key=derive_idempotency_key(cleanup_invalid_boost=bonus_id, competition=competition_id),
                meta={"description": f"Remove expired bonus boost {bonus_id}", "boost_bonus_id": str(bonus_id)},
            )
            if isinstance(result, BoostApplied):
                removed.append(bonus_id)

    logger.info(
        "boost_bonus_cleanup",
        competition_id=str(competition_id),
        removed=len(removed),
        kept=len(kept),
    )
    return BonusCleanupResult(removed_bonus_ids=removed, kept_bonus_ids=kept)
