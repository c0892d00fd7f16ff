"""Settlement outcome value object."""

from dataclasses import dataclass


@dataclass(frozen=True)
class SettlementResult:
    settled: bool = False
    already_settled: bool = False
    error: str | None = None
