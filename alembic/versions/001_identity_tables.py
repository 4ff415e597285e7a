"""Baseline: identity tables and the stake feed.

users, competitions, agents and stakes are owned by other services. They are
created here only when missing so a standalone ledger database has the rows
its foreign keys point at.

Revision ID: 001_identity_tables
Revises: None
Create Date: 2026-10-05
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_identity_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY,
            wallet_address VARCHAR(42) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Competitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competitions (
            id UUID PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            boost_start_date TIMESTAMPTZ,
            boost_end_date TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Agents ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS agents (
            id UUID PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Stakes (read-only feed from the staking indexer) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS stakes (
            id BIGINT PRIMARY KEY,
            wallet VARCHAR(42) NOT NULL,
            amount NUMERIC(78, 0) NOT NULL,
            staked_at TIMESTAMPTZ NOT NULL,
            can_unstake_after TIMESTAMPTZ NOT NULL,
            unstaked_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT stakes_amount_nonnegative CHECK (amount >= 0)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS stakes_wallet_idx ON stakes(wallet)")
    op.execute("CREATE INDEX IF NOT EXISTS stakes_created_at_idx ON stakes(created_at)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS stakes CASCADE")
    op.execute("DROP TABLE IF EXISTS agents CASCADE")
    op.execute("DROP TABLE IF EXISTS competitions CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
