"""Pydantic schemas for the trade API."""

from decimal import Decimal

from pydantic import BaseModel, Field

from src.pm_common.enums import Outcome, TradeSide


class TradeRequest(BaseModel):
    market_id: str = Field(..., min_length=1)
    outcome: Outcome
    side: TradeSide
    # BUY: ngwee to spend (fee included). SELL: number of shares.
    amount: Decimal = Field(..., gt=0)


class TradeResult(BaseModel):
    market_id: str
    outcome: Outcome
    side: TradeSide
    new_yes_price: float
    new_no_price: float
    filled_shares: float
    avg_price: float
    amount_ngwee: int
    fee_ngwee: int
    balance_ngwee: int
    balance_display: str
    transaction_id: int
