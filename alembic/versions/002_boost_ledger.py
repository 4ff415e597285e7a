"""Boost ledger: balances, change journal, agent aggregates, stake awards.

Amounts are NUMERIC(78, 0) so any uint256 token amount fits without loss.

Revision ID: 002_boost_ledger
Revises: 001_identity_tables
Create Date: 2026-10-05
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_boost_ledger"
down_revision: str | None = "001_identity_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Balances ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS boost_balances (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            competition_id UUID NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            balance NUMERIC(78, 0) NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT boost_balances_user_competition_uniq UNIQUE (user_id, competition_id),
            CONSTRAINT boost_balances_balance_nonnegative CHECK (balance >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS boost_balances_competition_balance_idx
        ON boost_balances(competition_id, balance)
    """)

    # --- Change journal ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS boost_changes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            balance_id UUID NOT NULL
                REFERENCES boost_balances(id) ON DELETE CASCADE ON UPDATE CASCADE,
            delta_amount NUMERIC(78, 0) NOT NULL,
            meta JSONB NOT NULL DEFAULT '{}',
            idempotency_key BYTEA NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT boost_changes_balance_idem_uq UNIQUE (balance_id, idempotency_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS boost_changes_balance_created_idx
        ON boost_changes(balance_id, created_at)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS boost_changes_created_at_idx ON boost_changes(created_at)")

    # --- Agent aggregates ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS agent_boost_totals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            agent_id UUID NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
            competition_id UUID NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            total NUMERIC(78, 0) NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT agent_boost_totals_agent_competition_uniq UNIQUE (agent_id, competition_id),
            CONSTRAINT agent_boost_totals_total_nonnegative CHECK (total >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS agent_boost_totals_competition_idx
        ON agent_boost_totals(competition_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS agent_boosts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            agent_boost_total_id UUID NOT NULL
                REFERENCES agent_boost_totals(id) ON DELETE CASCADE ON UPDATE CASCADE,
            change_id UUID NOT NULL REFERENCES boost_changes(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT agent_boosts_total_change_uniq UNIQUE (agent_boost_total_id, change_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS agent_boosts_change_idx ON agent_boosts(change_id)")
    op.execute("CREATE INDEX IF NOT EXISTS agent_boosts_created_at_idx ON agent_boosts(created_at)")

    # --- Stake awards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS stake_boost_awards (
            id SERIAL PRIMARY KEY,
            stake_id BIGINT NOT NULL REFERENCES stakes(id) ON DELETE CASCADE,
            base_amount NUMERIC(78, 0) NOT NULL,
            multiplier NUMERIC(6, 4) NOT NULL,
            boost_change_id UUID NOT NULL REFERENCES boost_changes(id) ON DELETE CASCADE,
            competition_id UUID NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT stake_boost_awards_stake_competition_uniq UNIQUE (stake_id, competition_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS stake_boost_awards CASCADE")
    op.execute("DROP TABLE IF EXISTS agent_boosts CASCADE")
    op.execute("DROP TABLE IF EXISTS agent_boost_totals CASCADE")
    op.execute("DROP TABLE IF EXISTS boost_changes CASCADE")
    op.execute("DROP TABLE IF EXISTS boost_balances CASCADE")
