"""Admin bonus grants.

Revision ID: 003_boost_bonus
Revises: 002_boost_ledger
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "003_boost_bonus"
down_revision: str | None = "002_boost_ledger"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS boost_bonus (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount NUMERIC(78, 0) NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            revoked_at TIMESTAMPTZ,
            created_by_admin_id UUID,
            meta JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT boost_bonus_amount_positive CHECK (amount > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS boost_bonus_user_active_idx
        ON boost_bonus(user_id, is_active, expires_at)
        WHERE is_active = true
    """)
    op.execute("CREATE INDEX IF NOT EXISTS boost_bonus_user_id_idx ON boost_bonus(user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS boost_bonus_expires_at_idx ON boost_bonus(expires_at)")
    op.execute("CREATE INDEX IF NOT EXISTS boost_bonus_is_active_idx ON boost_bonus(is_active)")

    # Journal rows written by bonus grants are looked up by the grant id in meta.
    op.execute("""
        CREATE INDEX IF NOT EXISTS boost_changes_boost_bonus_idx
        ON boost_changes((meta->>'boost_bonus_id'))
        WHERE meta ? 'boost_bonus_id'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS boost_changes_boost_bonus_idx")
    op.execute("DROP TABLE IF EXISTS boost_bonus CASCADE")
