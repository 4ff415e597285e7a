"""ORM models for the Boost ledger.

The identity tables (users, competitions, agents) and the stake feed are
owned by other services; they are mapped here only so foreign keys hold and
the ledger can read them.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from boostledger.db.base import Base, TokenAmount

# ---------------------------------------------------------------------------
# External identities (read-only for the ledger)
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wallet_address: Mapped[str | None] = mapped_column(String(42), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class Competition(Base):
    """Maps to the 'competitions' table. Only the boost window matters here."""

    __tablename__ = "competitions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    boost_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    boost_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class Agent(Base):
    """Maps to the 'agents' table."""

    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class Stake(Base):
    """On-chain staking position, maintained by the staking indexer."""

    __tablename__ = "stakes"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="stakes_amount_nonnegative"),
        Index("stakes_wallet_idx", "wallet"),
        Index("stakes_created_at_idx", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    wallet: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    staked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    can_unstake_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    unstaked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Boost balances and journal
# ---------------------------------------------------------------------------


class BoostBalance(Base):
    """Current spendable Boost, one mutable row per (user, competition).

    Every change to ``balance`` is paired with a BoostChange row in the same
    transaction.
    """

    __tablename__ = "boost_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "competition_id", name="boost_balances_user_competition_uniq"),
        CheckConstraint("balance >= 0", name="boost_balances_balance_nonnegative"),
        Index("boost_balances_competition_balance_idx", "competition_id", "balance"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    competition_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    balance: Mapped[int] = mapped_column(TokenAmount, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class BoostChange(Base):
    """Immutable journal of signed Boost deltas, unique per (balance_id, idempotency_key)."""

    __tablename__ = "boost_changes"
    __table_args__ = (
        UniqueConstraint("balance_id", "idempotency_key", name="boost_changes_balance_idem_uq"),
        Index("boost_changes_balance_created_idx", "balance_id", "created_at"),
        Index("boost_changes_created_at_idx", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    balance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("boost_balances.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    delta_amount: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    idempotency_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Agent aggregates
# ---------------------------------------------------------------------------


class AgentBoostTotal(Base):
    """Total Boost directed at one agent in one competition, summed across users."""

    __tablename__ = "agent_boost_totals"
    __table_args__ = (
        UniqueConstraint("agent_id", "competition_id", name="agent_boost_totals_agent_competition_uniq"),
        CheckConstraint("total >= 0", name="agent_boost_totals_total_nonnegative"),
        Index("agent_boost_totals_competition_idx", "competition_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    competition_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    total: Mapped[int] = mapped_column(TokenAmount, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


class AgentBoost(Base):
    """Link between a user's debit and the agent aggregate it credited."""

    __tablename__ = "agent_boosts"
    __table_args__ = (
        UniqueConstraint("agent_boost_total_id", "change_id", name="agent_boosts_total_change_uniq"),
        Index("agent_boosts_change_idx", "change_id"),
        Index("agent_boosts_created_at_idx", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_boost_total_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agent_boost_totals.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    change_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("boost_changes.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Stake conversion
# ---------------------------------------------------------------------------


class StakeBoostAward(Base):
    """Presence means the stake was converted to Boost for the competition."""

    __tablename__ = "stake_boost_awards"
    __table_args__ = (
        UniqueConstraint("stake_id", "competition_id", name="stake_boost_awards_stake_competition_uniq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stake_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("stakes.id", ondelete="CASCADE"), nullable=False)
    base_amount: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    boost_change_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("boost_changes.id", ondelete="CASCADE"), nullable=False
    )
    competition_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Admin bonus grants
# ---------------------------------------------------------------------------


class BoostBonus(Base):
    """Admin-granted Boost, applied to every eligible competition until it expires or is revoked.

    The grant itself holds no balance; each application is an ``increase``
    whose journal meta carries ``boost_bonus_id``.
    """

    __tablename__ = "boost_bonus"
    __table_args__ = (
        CheckConstraint("amount > 0", name="boost_bonus_amount_positive"),
        Index(
            "boost_bonus_user_active_idx",
            "user_id",
            "is_active",
            "expires_at",
            postgresql_where=text("is_active = true"),
        ),
        Index("boost_bonus_user_id_idx", "user_id"),
        Index("boost_bonus_expires_at_idx", "expires_at"),
        Index("boost_bonus_is_active_idx", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_admin_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
