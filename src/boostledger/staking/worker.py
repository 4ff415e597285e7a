"""Ledger arq worker: converts new stakes into Boost and applies bonus grants on a schedule.

Run with: arq boostledger.staking.worker.WorkerSettings

Each wallet is claimed in its own session and transaction, so one bad
wallet is logged and skipped without stopping the sweep.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from boostledger.config import get_settings
from boostledger.database import close_db, get_session, init_db
from boostledger.logging_setup import setup_logging
from boostledger.staking.award_service import claim_staked_boost, open_boost_competitions
from boostledger.staking.bonus_service import apply_bonus_boosts
from boostledger.staking.stake_bridge import wallets_with_unawarded_stakes

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def stake_sync_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging and the DB engine on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    logger.info("Stake sync worker started")


async def stake_sync_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("Stake sync worker shut down")


async def sync_stake_awards(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: award every open competition's unawarded stakes.

    Returns the number of stakes awarded in this sweep.
    """
    now = datetime.now(timezone.utc)
    db = await _get_db_session()
    try:
        windows = await open_boost_competitions(db, now)
        pending = [(w.competition_id, await wallets_with_unawarded_stakes(db, w.competition_id)) for w in windows]
    finally:
        await db.close()

    awarded = 0
    failed = 0
    for competition_id, wallets in pending:
        for user_id, wallet in wallets:
            db = await _get_db_session()
            try:
                result = await claim_staked_boost(db, user_id, wallet, competition_id)
                awarded += result.awarded
            except Exception:
                failed += 1
                logger.exception("Stake sync failed for wallet %s in competition %s", wallet, competition_id)
            finally:
                await db.close()

    logger.info(
        "Stake sync complete: %d competitions, %d stakes awarded, %d wallets failed",
        len(pending), awarded, failed,
    )
    return awarded


async def apply_bonus_grants(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: apply active bonus grants to newly eligible competitions.

    Returns the number of grants applied in this sweep.
    """
    db = await _get_db_session()
    try:
        summary = await apply_bonus_boosts(db)
    finally:
        await db.close()

    logger.info(
        "Bonus sweep complete: %d applied, %d competitions, %d failed",
        summary.applied, summary.competitions_processed, summary.failed,
    )
    return summary.applied


def _every(minutes: int) -> set[int]:
    interval = max(1, min(60, minutes))
    return set(range(0, 60, interval))


class WorkerSettings:
    """arq worker settings for the stake sync and bonus schedulers."""

    functions = [sync_stake_awards, apply_bonus_grants]
    cron_jobs = [
        cron(sync_stake_awards, minute=_every(get_settings().stake_sync_interval_minutes), run_at_startup=True),
        cron(apply_bonus_grants, minute=_every(get_settings().bonus_apply_interval_minutes)),
    ]
    on_startup = stake_sync_startup
    on_shutdown = stake_sync_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 300  # 5 minutes max per sweep
