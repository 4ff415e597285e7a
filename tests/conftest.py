"""Shared test fixtures.

Integration tests need PostgreSQL (ON CONFLICT, FOR UPDATE, NUMERIC(78)).
The URL comes from BOOST_TEST_DATABASE_URL, falling back to the configured
BOOST_DATABASE_URL; tests that need the database are skipped when it cannot
be reached.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from boostledger.config import get_settings
from boostledger.db.models import Agent, Base, Competition, Stake, User

LEDGER_TABLES = [
    "boost_bonus",
    "stake_boost_awards",
    "agent_boosts",
    "agent_boost_totals",
    "boost_changes",
    "boost_balances",
    "stakes",
    "agents",
    "competitions",
    "users",
]

# Boost window used by most scenarios.
BOOST_START = datetime(2026, 3, 1, tzinfo=timezone.utc)
BOOST_END = datetime(2026, 3, 15, tzinfo=timezone.utc)


def database_url() -> str:
    return os.environ.get("BOOST_TEST_DATABASE_URL") or get_settings().database_url


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine on the test database with the ledger schema in place. Tables are truncated afterwards."""
    eng = create_async_engine(database_url(), poolclass=NullPool)
    try:
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:  # noqa: BLE001
        await eng.dispose()
        pytest.skip(f"PostgreSQL not reachable: {exc}")

    yield eng

    async with eng.begin() as conn:
        await conn.execute(text(f"TRUNCATE TABLE {', '.join(LEDGER_TABLES)} CASCADE"))
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A fresh session with no transaction open, closed before tables are truncated."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Seed helpers (each commits through its own session)
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(session_factory) -> Callable[..., Awaitable[uuid.UUID]]:
    async def _make(wallet: str | None = None) -> uuid.UUID:
        async with session_factory() as session:
            user = User(id=uuid.uuid4(), wallet_address=wallet)
            session.add(user)
            await session.commit()
            return user.id

    return _make


@pytest.fixture
def make_competition(session_factory) -> Callable[..., Awaitable[uuid.UUID]]:
    async def _make(
        start: datetime | None = BOOST_START,
        end: datetime | None = BOOST_END,
        name: str = "Test Competition",
    ) -> uuid.UUID:
        async with session_factory() as session:
            competition = Competition(id=uuid.uuid4(), name=name, boost_start_date=start, boost_end_date=end)
            session.add(competition)
            await session.commit()
            return competition.id

    return _make


@pytest.fixture
def make_agent(session_factory) -> Callable[..., Awaitable[uuid.UUID]]:
    async def _make(name: str = "agent") -> uuid.UUID:
        async with session_factory() as session:
            agent = Agent(id=uuid.uuid4(), name=name)
            session.add(agent)
            await session.commit()
            return agent.id

    return _make


@pytest.fixture
def make_stake(session_factory) -> Callable[..., Awaitable[int]]:
    counter = iter(range(1, 1_000_000))

    async def _make(
        wallet: str,
        amount: int,
        staked_at: datetime = BOOST_START - timedelta(days=7),
        can_unstake_after: datetime = BOOST_END + timedelta(days=7),
        unstaked_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> int:
        stake_id = next(counter)
        async with session_factory() as session:
            session.add(
                Stake(
                    id=stake_id,
                    wallet=wallet,
                    amount=amount,
                    staked_at=staked_at,
                    can_unstake_after=can_unstake_after,
                    unstaked_at=unstaked_at,
                    created_at=created_at or staked_at,
                )
            )
            await session.commit()
        return stake_id

    return _make


@pytest_asyncio.fixture
async def ledger(make_user, make_competition) -> tuple[uuid.UUID, uuid.UUID]:
    """One user and one competition: the (u, c) pair most scenarios start from."""
    user_id = await make_user("0x00000000000000000000000000000000000000aa")
    competition_id = await make_competition()
    return user_id, competition_id
