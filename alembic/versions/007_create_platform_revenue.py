"""007: create platform_revenue table

Revision ID: 007
Revises: 006
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE platform_revenue (
            id              BIGSERIAL       PRIMARY KEY,
            fee_type        VARCHAR(32)     NOT NULL,
            amount          BIGINT          NOT NULL,
            source_type     VARCHAR(32)     NOT NULL,
            source_id       VARCHAR(64)     NOT NULL,
            user_id         VARCHAR(64),
            description     TEXT            NOT NULL DEFAULT '',
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_platform_revenue_source ON platform_revenue (source_type, source_id);")
    op.execute(
        "COMMENT ON TABLE platform_revenue IS "
        "'Append-only fee ledger; reversals are negative rows';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS platform_revenue CASCADE;")
