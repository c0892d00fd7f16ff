"""Unit tests for the Airtel Money and MTN MoMo adapters (httpx.MockTransport)."""

import json

import httpx
import pytest

from config.settings import Settings
from src.pm_common.enums import PaymentStatus
from src.pm_common.errors import (
    InvalidPhoneError,
    ProviderAuthError,
    ProviderConfigError,
    ProviderTransactionError,
)
from src.pm_payment.providers.airtel import AirtelMoneyProvider
from src.pm_payment.providers.base import PaymentProvider, TokenCache
from src.pm_payment.providers.mtn import MtnMomoProvider
from src.pm_payment.providers.phone import national_number

CONFIG = Settings(
    _env_file=None,
    AIRTEL_MONEY_CLIENT_ID="client-id",
    AIRTEL_MONEY_CLIENT_SECRET="client-secret",
    MTN_MOMO_COLLECTION_KEY="sub-key",
    MTN_MOMO_COLLECTION_USER="api-user",
    MTN_MOMO_COLLECTION_API_KEY="api-key",
    MTN_MOMO_DISBURSEMENT_KEY="d-sub-key",
    MTN_MOMO_DISBURSEMENT_USER="d-api-user",
    MTN_MOMO_DISBURSEMENT_API_KEY="d-api-key",
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class Rail:
    def __init__(self, token_status: int = 200, body: dict | None = None, status: int = 200) -> None:
        self.token_calls = 0
        self.token_status = token_status
        self.body = body if body is not None else {}
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "token" in request.url.path:
            self.token_calls += 1
            if self.token_status >= 400:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": f"tok-{self.token_calls}", "expires_in": 3600})
        return httpx.Response(self.status, json=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class TestContract:
    def test_base_provider_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            PaymentProvider()  # type: ignore[abstract]

    def test_incomplete_adapter_cannot_be_built(self) -> None:
        class HalfDone(PaymentProvider):
            def is_configured(self) -> bool:
                return True

        with pytest.raises(TypeError):
            HalfDone()  # type: ignore[abstract]

    def test_only_airtel_signs_callbacks(self) -> None:
        assert AirtelMoneyProvider.signs_callbacks
        assert not MtnMomoProvider.signs_callbacks

    def test_airtel_reference_format(self) -> None:
        reference = AirtelMoneyProvider(config=CONFIG).new_reference("WDR")
        assert reference.startswith("BP-WDR-")
        assert len(reference.split("-")) == 4


class TestPhone:
    @pytest.mark.parametrize(
        "raw", ["0971234567", "+260971234567", "260 97 123 4567", "971234567"]
    )
    def test_national_forms(self, raw: str) -> None:
        assert national_number(raw) == "971234567"

    @pytest.mark.parametrize("raw", ["", "12345", "0571234567", "09712345678"])
    def test_rejects(self, raw: str) -> None:
        assert national_number(raw) is None

    def test_airtel_prefixes(self) -> None:
        provider = AirtelMoneyProvider(config=CONFIG)
        assert provider.normalize_phone("0771234567") == "771234567"
        with pytest.raises(InvalidPhoneError):
            provider.normalize_phone("0961234567")

    def test_mtn_prefixes(self) -> None:
        provider = MtnMomoProvider(config=CONFIG)
        assert provider.normalize_phone("0761234567") == "260761234567"
        with pytest.raises(InvalidPhoneError):
            provider.normalize_phone("0971234567")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "code, expected",
        [
            ("TS", PaymentStatus.COMPLETED),
            ("TF", PaymentStatus.FAILED),
            ("TA", PaymentStatus.PROCESSING),
            ("TIP", PaymentStatus.PROCESSING),
            ("??", PaymentStatus.PENDING),
        ],
    )
    def test_airtel(self, code: str, expected: PaymentStatus) -> None:
        assert AirtelMoneyProvider(config=CONFIG).map_status(code) is expected

    @pytest.mark.parametrize(
        "code, expected",
        [
            ("SUCCESSFUL", PaymentStatus.COMPLETED),
            ("FAILED", PaymentStatus.FAILED),
            ("REJECTED", PaymentStatus.FAILED),
            ("TIMEOUT", PaymentStatus.FAILED),
            ("PENDING", PaymentStatus.PROCESSING),
        ],
    )
    def test_mtn(self, code: str, expected: PaymentStatus) -> None:
        assert MtnMomoProvider(config=CONFIG).map_status(code) is expected


class TestTokenCache:
    def test_served_until_refresh_margin(self) -> None:
        clock = FakeClock()
        cache = TokenCache(clock)
        cache.store("abc", 3600)
        clock.now += 3600 - TokenCache.REFRESH_MARGIN_SECONDS - 1
        assert cache.get() == "abc"
        clock.now += 2
        assert cache.get() is None

    async def test_token_reused_then_refreshed(self) -> None:
        rail = Rail(body={"data": {"transaction": {"status": "TS"}}})
        clock = FakeClock()
        provider = AirtelMoneyProvider(client=rail.client(), clock=clock, config=CONFIG)

        await provider.check_collection_status("BP-DEP-1")
        await provider.check_collection_status("BP-DEP-1")
        assert rail.token_calls == 1

        clock.now += 3600
        await provider.check_collection_status("BP-DEP-1")
        assert rail.token_calls == 2
        assert rail.requests[-1].headers["Authorization"] == "Bearer tok-2"

    async def test_mtn_products_have_separate_tokens(self) -> None:
        rail = Rail(body={"status": "PENDING"})
        provider = MtnMomoProvider(client=rail.client(), clock=FakeClock(), config=CONFIG)

        await provider.check_collection_status("ref-1")
        await provider.check_disbursement_status("ref-2")

        assert rail.token_calls == 2
        token_paths = [r.url.path for r in rail.requests if "token" in r.url.path]
        assert token_paths == ["/collection/token/", "/disbursement/token/"]

    async def test_auth_failure(self) -> None:
        rail = Rail(token_status=401)
        provider = AirtelMoneyProvider(client=rail.client(), config=CONFIG)
        with pytest.raises(ProviderAuthError):
            await provider.check_collection_status("BP-DEP-1")


class TestAirtel:
    async def test_unconfigured(self) -> None:
        provider = AirtelMoneyProvider(config=Settings(_env_file=None))
        assert not provider.is_configured()
        with pytest.raises(ProviderConfigError):
            await provider.initiate_collection("0971234567", 1000, "BP-DEP-1")

    async def test_collection_payload(self) -> None:
        rail = Rail(body={"status": {"success": True}, "data": {"transaction": {"id": "AM-1"}}})
        provider = AirtelMoneyProvider(client=rail.client(), config=CONFIG)

        result = await provider.initiate_collection("0971234567", 12_345, "BP-DEP-1")

        assert result.status is PaymentStatus.PROCESSING
        assert result.external_id == "AM-1"
        request = rail.requests[-1]
        assert request.url.path == "/merchant/v1/payments/"
        assert request.headers["X-Country"] == "ZM"
        assert request.headers["X-Currency"] == "ZMW"
        body = json.loads(request.content)
        assert body["transaction"]["amount"] == 123.45
        assert body["subscriber"]["msisdn"] == "971234567"

    async def test_rejected_disbursement(self) -> None:
        rail = Rail(body={"status": {"success": False, "message": "Invalid PIN", "response_code": "E1"}})
        provider = AirtelMoneyProvider(client=rail.client(), config=CONFIG)

        with pytest.raises(ProviderTransactionError) as exc_info:
            await provider.initiate_disbursement("0971234567", 1000, "BP-WDR-1")

        assert exc_info.value.message == "Invalid PIN"
        assert exc_info.value.provider_code == "E1"

    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = AirtelMoneyProvider(client=client, config=CONFIG)

        with pytest.raises(ProviderTransactionError) as exc_info:
            await provider.check_disbursement_status("BP-WDR-1")
        assert exc_info.value.provider_code == "NETWORK_ERROR"

    def test_parse_callback(self) -> None:
        provider = AirtelMoneyProvider(config=CONFIG)
        event = provider.parse_callback(
            {"transaction": {"id": "BP-WDR-1", "status_code": "TF", "airtel_money_id": "AM-5", "message": "Failed"}},
            {},
        )
        assert event is not None
        assert event.references == ["BP-WDR-1", "AM-5"]
        assert event.status.status is PaymentStatus.FAILED
        assert event.status.message == "Failed"
        assert event.external_id == "AM-5"

    def test_parse_callback_without_reference(self) -> None:
        assert AirtelMoneyProvider(config=CONFIG).parse_callback({"foo": "bar"}, {}) is None


class TestMtn:
    async def test_request_to_pay_headers(self) -> None:
        rail = Rail()
        provider = MtnMomoProvider(client=rail.client(), config=CONFIG)
        reference = provider.new_reference("DEP")

        result = await provider.initiate_collection("0961234567", 5_000, reference)

        assert result.status is PaymentStatus.PROCESSING
        assert result.external_id == reference
        request = rail.requests[-1]
        assert request.url.path == "/collection/v1_0/requesttopay"
        assert request.headers["X-Reference-Id"] == reference
        assert request.headers["X-Target-Environment"] == "sandbox"
        assert request.headers["X-Callback-Url"].endswith("/api/v1/payments/callback")

    async def test_failed_transfer(self) -> None:
        rail = Rail(status=500)
        provider = MtnMomoProvider(client=rail.client(), config=CONFIG)
        with pytest.raises(ProviderTransactionError):
            await provider.initiate_disbursement("0961234567", 5_000, "ref-1")

    def test_parse_callback(self) -> None:
        provider = MtnMomoProvider(config=CONFIG)
        event = provider.parse_callback(
            {"externalId": "ref-1", "status": "FAILED", "reason": {"message": "Payer limit reached"}},
            {"x-reference-id": "ref-1"},
        )
        assert event is not None
        assert event.references == ["ref-1"]
        assert event.status.status is PaymentStatus.FAILED
        assert event.status.message == "Payer limit reached"
