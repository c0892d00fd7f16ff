"""006: create transactions table

Revision ID: 006
Revises: 005
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE transactions (
            id              BIGSERIAL       PRIMARY KEY,
            user_id         VARCHAR(64)     NOT NULL,
            type            VARCHAR(32)     NOT NULL,
            amount          BIGINT          NOT NULL,
            fee_amount      BIGINT          NOT NULL DEFAULT 0,
            balance_after   BIGINT          NOT NULL,
            status          VARCHAR(16)     NOT NULL DEFAULT 'COMPLETED',
            description     TEXT            NOT NULL DEFAULT '',
            payment_id      VARCHAR(64)     REFERENCES mobile_payments (id),
            market_id       VARCHAR(64)     REFERENCES markets (id),
            metadata        JSONB,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_transactions_status CHECK (
                status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')
            )
        );
    """)
    op.execute("CREATE INDEX idx_transactions_user_id ON transactions (user_id, id DESC);")
    op.execute("CREATE INDEX idx_transactions_payment ON transactions (payment_id);")
    op.execute("COMMENT ON TABLE transactions IS 'Append-only user ledger, amounts in ngwee';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS transactions CASCADE;")
