"""004: create positions table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE positions (
            id                  UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id             VARCHAR(64)     NOT NULL,
            market_id           VARCHAR(64)     NOT NULL REFERENCES markets (id),
            outcome             VARCHAR(3)      NOT NULL,
            size                NUMERIC(24, 6)  NOT NULL DEFAULT 0,
            average_price       NUMERIC         NOT NULL DEFAULT 0,
            realized_pnl_ngwee  BIGINT          NOT NULL DEFAULT 0,
            is_closed           BOOLEAN         NOT NULL DEFAULT FALSE,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_positions_user_market_outcome UNIQUE (user_id, market_id, outcome),
            CONSTRAINT ck_positions_size_gte_0          CHECK (size >= 0),
            CONSTRAINT ck_positions_outcome             CHECK (outcome IN ('YES', 'NO'))
        );
    """)
    op.execute("CREATE INDEX idx_positions_user ON positions (user_id);")
    op.execute("""
        CREATE INDEX idx_positions_market_open ON positions (market_id)
            WHERE is_closed = FALSE;
    """)
    op.execute("""
        CREATE TRIGGER trg_positions_updated_at
            BEFORE UPDATE ON positions
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS positions CASCADE;")
