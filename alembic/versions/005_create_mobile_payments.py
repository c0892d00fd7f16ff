"""005: create mobile_payments table

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE mobile_payments (
            id                  VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::text,
            user_id             VARCHAR(64)     NOT NULL,
            type                VARCHAR(16)     NOT NULL,
            amount              BIGINT          NOT NULL,
            fee_amount          BIGINT          NOT NULL DEFAULT 0,
            net_amount          BIGINT          NOT NULL,
            provider            VARCHAR(32)     NOT NULL,
            phone_number        VARCHAR(20)     NOT NULL,
            external_ref        VARCHAR(128)    NOT NULL,
            external_id         TEXT,
            status              VARCHAR(16)     NOT NULL DEFAULT 'PENDING',
            status_message      TEXT,
            expires_at          TIMESTAMPTZ     NOT NULL,
            callback_received   BOOLEAN         NOT NULL DEFAULT FALSE,
            callback_data       JSONB,
            completed_at        TIMESTAMPTZ,
            settled_at          TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_mobile_payments_external_ref UNIQUE (external_ref),
            CONSTRAINT ck_mobile_payments_amounts CHECK (
                amount > 0 AND fee_amount >= 0 AND net_amount = amount - fee_amount
            ),
            CONSTRAINT ck_mobile_payments_type CHECK (type IN ('DEPOSIT', 'WITHDRAWAL')),
            CONSTRAINT ck_mobile_payments_status CHECK (
                status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'CANCELLED')
            )
        );
    """)
    op.execute("CREATE INDEX idx_mobile_payments_user ON mobile_payments (user_id, created_at DESC);")
    op.execute("CREATE INDEX idx_mobile_payments_external_id ON mobile_payments (external_id);")
    op.execute("""
        CREATE INDEX idx_mobile_payments_unsettled ON mobile_payments (status, expires_at)
            WHERE settled_at IS NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_mobile_payments_updated_at
            BEFORE UPDATE ON mobile_payments
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON COLUMN mobile_payments.settled_at IS "
        "'Set once by the settlement claim; NULL means money has not moved yet';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS mobile_payments CASCADE;")
