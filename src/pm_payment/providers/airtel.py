"""Airtel Money (Zambia) adapter.

Collection pushes a USSD prompt to the subscriber; disbursement pays out to
their wallet. Status codes:
  TS  = transaction success
  TF  = transaction failed
  TA  = ambiguous, check again later
  TIP = in progress

Staging:    https://openapiuat.airtel.africa
Production: https://openapi.airtel.africa
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from config.settings import Settings, settings
from src.pm_common.enums import PaymentProviderName, PaymentStatus
from src.pm_common.errors import InvalidPhoneError, ProviderConfigError, ProviderTransactionError
from src.pm_common.id_generator import generate_payment_reference
from src.pm_common.ngwee import ngwee_to_kwacha
from src.pm_payment.providers.base import (
    CallbackEvent,
    PaymentProvider,
    ProviderStatus,
    TokenCache,
    response_json,
)
from src.pm_payment.providers.phone import national_number

logger = logging.getLogger(__name__)

COUNTRY = "ZM"
CURRENCY = "ZMW"
AIRTEL_PREFIXES = ("97", "77")

_STATUS_MAP = {
    "TS": PaymentStatus.COMPLETED,
    "TF": PaymentStatus.FAILED,
    "TA": PaymentStatus.PROCESSING,
    "TIP": PaymentStatus.PROCESSING,
}


class AirtelMoneyProvider(PaymentProvider):
    name = PaymentProviderName.AIRTEL_MONEY
    signs_callbacks = True

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        config: Settings | None = None,
    ) -> None:
        super().__init__(client, clock)
        self._cfg = config or settings
        self._tokens = TokenCache(clock)

    @property
    def base_url(self) -> str:
        if self._cfg.AIRTEL_MONEY_ENV == "production":
            return "https://openapi.airtel.africa"
        return "https://openapiuat.airtel.africa"

    def is_configured(self) -> bool:
        return bool(self._cfg.AIRTEL_MONEY_CLIENT_ID and self._cfg.AIRTEL_MONEY_CLIENT_SECRET)

    def normalize_phone(self, phone: str) -> str:
        """Return the 9-digit MSISDN Airtel expects (no country code)."""
        digits = national_number(phone)
        if digits is None or not digits.startswith(AIRTEL_PREFIXES):
            raise InvalidPhoneError(
                "Invalid phone number. Must be an Airtel Zambia number (e.g., 097XXXXXXX)."
            )
        return digits

    def map_status(self, code: str) -> PaymentStatus:
        return _STATUS_MAP.get((code or "").upper(), PaymentStatus.PENDING)

    def new_reference(self, kind: str) -> str:
        return generate_payment_reference(kind)

    async def _token(self) -> str:
        if not self.is_configured():
            raise ProviderConfigError(
                self.name.value,
                "Airtel Money credentials not configured. "
                "Set AIRTEL_MONEY_CLIENT_ID and AIRTEL_MONEY_CLIENT_SECRET.",
            )
        return await self._fetch_token(
            self._tokens,
            "POST",
            f"{self.base_url}/auth/oauth2/token",
            json={
                "client_id": self._cfg.AIRTEL_MONEY_CLIENT_ID,
                "client_secret": self._cfg.AIRTEL_MONEY_CLIENT_SECRET,
                "grant_type": "client_credentials",
            },
            headers={"Content-Type": "application/json", "Accept": "*/*"},
        )

    async def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "*/*",
            "X-Country": COUNTRY,
            "X-Currency": CURRENCY,
            "Authorization": f"Bearer {await self._token()}",
        }

    async def initiate_collection(
        self, phone: str, amount_ngwee: int, reference: str
    ) -> ProviderStatus:
        msisdn = self.normalize_phone(phone)
        payload = {
            "reference": reference,
            "subscriber": {"country": COUNTRY, "currency": CURRENCY, "msisdn": msisdn},
            "transaction": {
                "amount": float(ngwee_to_kwacha(amount_ngwee)),
                "country": COUNTRY,
                "currency": CURRENCY,
                "id": reference,
            },
        }
        logger.info("[Airtel] collection %d ngwee from %s ref=%s", amount_ngwee, msisdn, reference)
        response = await self._send(
            "POST", f"{self.base_url}/merchant/v1/payments/",
            json=payload, headers=await self._headers(),
        )
        return self._initiation_result(response, "COLLECTION_FAILED", "Collection payment failed")

    async def initiate_disbursement(
        self, phone: str, amount_ngwee: int, reference: str
    ) -> ProviderStatus:
        msisdn = self.normalize_phone(phone)
        payload = {
            "payee": {"msisdn": msisdn, "name": "BetiPredict User"},
            "reference": reference,
            "pin": self._cfg.AIRTEL_MONEY_PIN,
            "transaction": {"amount": float(ngwee_to_kwacha(amount_ngwee)), "id": reference},
        }
        logger.info("[Airtel] disbursement %d ngwee to %s ref=%s", amount_ngwee, msisdn, reference)
        response = await self._send(
            "POST", f"{self.base_url}/standard/v1/disbursements/",
            json=payload, headers=await self._headers(),
        )
        return self._initiation_result(
            response, "DISBURSEMENT_FAILED", "Disbursement payment failed"
        )

    async def check_collection_status(self, reference: str) -> ProviderStatus:
        return await self._check_status(f"{self.base_url}/standard/v1/payments/{reference}")

    async def check_disbursement_status(self, reference: str) -> ProviderStatus:
        return await self._check_status(f"{self.base_url}/standard/v1/disbursements/{reference}")

    def parse_callback(
        self, body: dict[str, Any], headers: dict[str, str]
    ) -> CallbackEvent | None:
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        tx = body.get("transaction") or data.get("transaction") or {}
        status_block = body.get("status") if isinstance(body.get("status"), dict) else {}
        status_block = status_block or data.get("status") or {}

        airtel_id = tx.get("airtel_money_id") or tx.get("id") or ""
        reference = tx.get("reference") or tx.get("id") or ""
        raw_status = tx.get("status_code") or tx.get("status") or status_block.get("result_code") or ""
        message = tx.get("message") or status_block.get("message") or ""

        if not reference and not airtel_id:
            return None
        references = [r for r in (reference, airtel_id) if r]
        return CallbackEvent(
            references=references,
            status=ProviderStatus(
                status=self.map_status(raw_status),
                raw_status=raw_status,
                message=message or None,
                external_id=airtel_id or None,
            ),
            external_id=airtel_id or None,
            raw=body,
        )

    # --- helpers -------------------------------------------------------------

    def _initiation_result(
        self, response: httpx.Response, fallback_code: str, fallback_message: str
    ) -> ProviderStatus:
        data = response_json(response)
        status_block = data.get("status") or {}
        if response.status_code >= 400 or not status_block.get("success"):
            logger.error("[Airtel] request failed: %d %s", response.status_code, data)
            raise ProviderTransactionError(
                self.name.value,
                status_block.get("message") or fallback_message,
                status_block.get("response_code") or fallback_code,
            )
        tx = (data.get("data") or {}).get("transaction") or {}
        raw_status = tx.get("status") or ""
        return ProviderStatus(
            status=self.map_status(raw_status) if raw_status else PaymentStatus.PROCESSING,
            raw_status=raw_status,
            message=tx.get("message"),
            external_id=tx.get("airtel_money_id") or tx.get("id"),
        )

    async def _check_status(self, url: str) -> ProviderStatus:
        response = await self._send("GET", url, headers=await self._headers())
        data = response_json(response)
        if response.status_code >= 400:
            raise ProviderTransactionError(
                self.name.value, "Failed to check Airtel Money status", "STATUS_CHECK_FAILED"
            )
        tx = (data.get("data") or {}).get("transaction") or {}
        raw_status = tx.get("status") or ""
        return ProviderStatus(
            status=self.map_status(raw_status),
            raw_status=raw_status,
            message=tx.get("message"),
            external_id=tx.get("airtel_money_id"),
        )
