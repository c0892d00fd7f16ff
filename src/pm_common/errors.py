"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Validation
  2xxx: Account / Position
  3xxx: Market
  4xxx: Payment
  5xxx: Payment provider
  9xxx: System
"""


class AppError(Exception):
    """Base application error.

    side_effects_committed marks errors raised after the request already
    changed durable state; an idempotent retry must replay them, not re-run.
    """

    side_effects_committed = False

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Validation ---

class ValidationError(AppError):
    """Rejected before any mutation (bad amount, phone, outcome...)."""

    def __init__(self, detail: str, code: int = 1001) -> None:
        super().__init__(code, detail, 422)


class InvalidPhoneError(ValidationError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, code=1002)


# --- 2xxx: Account / Position ---

class InsufficientFundsError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2001,
            f"Insufficient balance: required {required} ngwee, available {available} ngwee",
            422,
        )


class InsufficientPositionError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(2002, f"Insufficient position: {detail}", 422)


# --- 3xxx: Market ---

class MarketNotFoundError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3001, f"Market not found: {market_id}", 404)


class MarketNotActiveError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3002, f"Market is not active: {market_id}", 422)


class MarketNotResolvableError(AppError):
    def __init__(self, market_id: str, detail: str) -> None:
        super().__init__(3003, f"Market {market_id} cannot be resolved: {detail}", 422)


class MarketNotDisputableError(AppError):
    def __init__(self, market_id: str, detail: str) -> None:
        super().__init__(3004, f"Market {market_id} cannot be disputed: {detail}", 422)


class DisputeNotFoundError(AppError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(3005, f"Dispute not found: {dispute_id}", 404)


class DisputeConflictError(AppError):
    """Duplicate open dispute, or a dispute that was already decided."""

    def __init__(self, detail: str) -> None:
        super().__init__(3006, detail, 409)


# --- 4xxx: Payment ---

class PaymentNotFoundError(AppError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(4001, f"Payment not found: {payment_id}", 404)


# --- 5xxx: Payment provider ---

class ProviderError(AppError):
    """Typed failure from a mobile-money rail."""

    def __init__(
        self,
        provider: str,
        message: str,
        provider_code: str,
        code: int = 5000,
        http_status: int = 502,
    ) -> None:
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(code, message, http_status)


class ProviderConfigError(ProviderError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(provider, message, "CONFIG_ERROR", code=5001, http_status=503)


class ProviderAuthError(ProviderError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(provider, message, "AUTH_ERROR", code=5002)


class ProviderTransactionError(ProviderError):
    def __init__(self, provider: str, message: str, provider_code: str) -> None:
        super().__init__(provider, message, provider_code, code=5003)


class PaymentFailedError(ProviderTransactionError):
    """The rail refused a payment that was already recorded and settled as FAILED."""

    side_effects_committed = True

    def __init__(
        self, provider: str, message: str, provider_code: str, payment_id: str
    ) -> None:
        self.payment_id = payment_id
        super().__init__(provider, message, provider_code)


# --- 9xxx: System ---

class RateLimitExceeded(AppError):
    def __init__(self, retry_after: int = 60) -> None:
        self.retry_after = retry_after
        super().__init__(9001, "Rate limit exceeded", 429)


class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class DuplicateRequestError(AppError):
    def __init__(self) -> None:
        super().__init__(9003, "Request with this idempotency key is already being processed", 409)


class PaymentTimeoutError(AppError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(9004, f"Payment {payment_id} expired before confirmation", 408)


class UnauthorizedError(AppError):
    def __init__(self, detail: str = "Unauthorized") -> None:
        super().__init__(9005, detail, 401)


class ForbiddenError(AppError):
    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(9006, detail, 403)
