"""Tests for pm_common.errors and pm_common.response."""

from src.pm_common.errors import (
    AppError,
    InsufficientFundsError,
    InvalidPhoneError,
    MarketNotActiveError,
    MarketNotFoundError,
    PaymentNotFoundError,
    ProviderConfigError,
    ProviderError,
    ProviderTransactionError,
    RateLimitExceeded,
    ValidationError,
)
from src.pm_common.response import error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500

    def test_custom_http_status(self) -> None:
        err = AppError(code=1001, message="Bad amount", http_status=422)
        assert err.http_status == 422

    def test_is_exception(self) -> None:
        err = AppError(code=1001, message="test")
        assert isinstance(err, Exception)


class TestSpecificErrors:
    def test_insufficient_funds(self) -> None:
        err = InsufficientFundsError(required=6500, available=3000)
        assert err.code == 2001
        assert err.http_status == 422
        assert "6500" in err.message
        assert "3000" in err.message

    def test_market_not_found(self) -> None:
        err = MarketNotFoundError("MKT-123")
        assert err.code == 3001
        assert err.http_status == 404

    def test_market_not_active(self) -> None:
        err = MarketNotActiveError("MKT-123")
        assert err.code == 3002
        assert err.http_status == 422

    def test_payment_not_found(self) -> None:
        err = PaymentNotFoundError("pay-1")
        assert err.code == 4001
        assert err.http_status == 404

    def test_invalid_phone_is_validation(self) -> None:
        err = InvalidPhoneError("bad number")
        assert isinstance(err, ValidationError)
        assert err.code == 1002
        assert err.http_status == 422

    def test_rate_limit_carries_retry_after(self) -> None:
        err = RateLimitExceeded(retry_after=17)
        assert err.http_status == 429
        assert err.retry_after == 17


class TestProviderErrors:
    def test_transaction_error(self) -> None:
        err = ProviderTransactionError("AIRTEL_MONEY", "Invalid PIN", "E1")
        assert isinstance(err, ProviderError)
        assert err.provider == "AIRTEL_MONEY"
        assert err.provider_code == "E1"
        assert err.http_status == 502

    def test_config_error(self) -> None:
        err = ProviderConfigError("MTN_MOMO", "not configured")
        assert err.provider_code == "CONFIG_ERROR"
        assert err.http_status == 503


class TestApiResponse:
    def test_success(self) -> None:
        resp = success_response({"id": "abc"})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"id": "abc"}

    def test_error(self) -> None:
        resp = error_response(2001, "Insufficient balance")
        assert resp.code == 2001
        assert resp.message == "Insufficient balance"
        assert resp.data is None

    def test_serialization(self) -> None:
        resp = success_response({"balance_ngwee": 100})
        d = resp.model_dump()
        assert "code" in d
        assert "message" in d
        assert "data" in d
        assert "timestamp" in d
        assert "request_id" in d
