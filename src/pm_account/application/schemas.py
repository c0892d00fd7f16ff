"""Pydantic schemas and cursor utilities for pm_account API."""

import base64
import binascii
import json
from typing import Any

from pydantic import BaseModel

from src.pm_common.ngwee import ngwee_to_display

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_id: int) -> str:
    """Encode a BIGINT primary key into an opaque Base64 cursor string."""
    payload = json.dumps({"id": last_id})
    return base64.b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> int | None:
    """Decode a cursor string back to the last seen id. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.b64decode(cursor.encode()).decode())
        return int(payload["id"])
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    user_id: str
    balance_ngwee: int
    balance_display: str

    @classmethod
    def from_ngwee(cls, user_id: str, balance: int) -> "BalanceResponse":
        return cls(
            user_id=user_id,
            balance_ngwee=balance,
            balance_display=ngwee_to_display(balance),
        )


class TransactionItem(BaseModel):
    id: int
    type: str
    status: str
    amount_ngwee: int
    amount_display: str
    fee_ngwee: int
    balance_after_ngwee: int
    balance_after_display: str
    description: str | None
    payment_id: str | None
    market_id: str | None
    metadata: dict[str, Any]
    created_at: str  # ISO8601 string


class TransactionListResponse(BaseModel):
    items: list[TransactionItem]
    next_cursor: str | None
    has_more: bool
