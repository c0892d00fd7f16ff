"""003: create markets table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE markets (
            id                  VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::text,
            title               VARCHAR(500)    NOT NULL,
            status              VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            pool_yes_shares     NUMERIC         NOT NULL,
            pool_no_shares      NUMERIC         NOT NULL,
            pool_k              NUMERIC         NOT NULL,
            yes_price           NUMERIC(10, 6)  NOT NULL,
            no_price            NUMERIC(10, 6)  NOT NULL,
            volume_ngwee        BIGINT          NOT NULL DEFAULT 0,
            winning_outcome     VARCHAR(3),
            resolve_time        TIMESTAMPTZ,
            resolved_at         TIMESTAMPTZ,
            dispute_deadline    TIMESTAMPTZ,
            finalized_at        TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_markets_pool_positive CHECK (
                pool_yes_shares > 0 AND pool_no_shares > 0 AND pool_k > 0
            ),
            CONSTRAINT ck_markets_status CHECK (
                status IN ('ACTIVE', 'RESOLVED', 'FINALIZING', 'FINALIZED', 'CANCELLED')
            ),
            CONSTRAINT ck_markets_winning_outcome CHECK (
                winning_outcome IS NULL OR winning_outcome IN ('YES', 'NO')
            )
        );
    """)
    op.execute("CREATE INDEX idx_markets_status_created ON markets (status, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_markets_finalizable ON markets (dispute_deadline)
            WHERE status = 'RESOLVED';
    """)
    op.execute("""
        CREATE TRIGGER trg_markets_updated_at
            BEFORE UPDATE ON markets
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE markets IS 'Binary markets with their CPMM pool state';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS markets CASCADE;")
