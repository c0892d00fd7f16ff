"""009: create market_disputes table, allow DISPUTED markets

Revision ID: 009
Revises: 008
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "009"
down_revision: Union[str, None] = "008"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TABLE markets DROP CONSTRAINT ck_markets_status;")
    op.execute("""
        ALTER TABLE markets ADD CONSTRAINT ck_markets_status CHECK (
            status IN ('ACTIVE', 'RESOLVED', 'DISPUTED', 'FINALIZING', 'FINALIZED', 'CANCELLED')
        );
    """)
    op.execute("""
        CREATE TABLE market_disputes (
            id              VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::text,
            market_id       VARCHAR(64)     NOT NULL REFERENCES markets (id),
            user_id         VARCHAR(64)     NOT NULL,
            reason          TEXT            NOT NULL,
            evidence        TEXT,
            status          VARCHAR(16)     NOT NULL DEFAULT 'OPEN',
            admin_response  TEXT,
            resolved_by     VARCHAR(64),
            resolved_at     TIMESTAMPTZ,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_market_disputes_status CHECK (
                status IN ('OPEN', 'UPHELD', 'REJECTED')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_market_disputes_market ON market_disputes (market_id, created_at DESC);
    """)
    # One open dispute per user per market
    op.execute("""
        CREATE UNIQUE INDEX uq_market_disputes_open_per_user
            ON market_disputes (market_id, user_id)
            WHERE status = 'OPEN';
    """)
    op.execute("""
        CREATE TRIGGER trg_market_disputes_updated_at
            BEFORE UPDATE ON market_disputes
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS market_disputes CASCADE;")
    op.execute("UPDATE markets SET status = 'RESOLVED' WHERE status = 'DISPUTED';")
    op.execute("ALTER TABLE markets DROP CONSTRAINT ck_markets_status;")
    op.execute("""
        ALTER TABLE markets ADD CONSTRAINT ck_markets_status CHECK (
            status IN ('ACTIVE', 'RESOLVED', 'FINALIZING', 'FINALIZED', 'CANCELLED')
        );
    """)
