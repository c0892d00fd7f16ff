"""MTN MoMo (Zambia) adapter.

Collection is a request-to-pay; disbursement is a transfer. MTN identifies
a transaction by the X-Reference-Id we choose, which must be a UUID v4, and
echoes it back on callbacks.

Sandbox:    https://sandbox.momodeveloper.mtn.com
Production: https://proxy.momoapi.mtn.com
"""

import base64
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from config.settings import Settings, settings
from src.pm_common.enums import PaymentProviderName, PaymentStatus
from src.pm_common.errors import InvalidPhoneError, ProviderConfigError, ProviderTransactionError
from src.pm_common.id_generator import generate_uuid
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

CURRENCY = "ZMW"
MTN_PREFIXES = ("96", "76")

COLLECTION = "collection"
DISBURSEMENT = "disbursement"

_STATUS_MAP = {
    "SUCCESSFUL": PaymentStatus.COMPLETED,
    "FAILED": PaymentStatus.FAILED,
    "REJECTED": PaymentStatus.FAILED,
    "TIMEOUT": PaymentStatus.FAILED,
    "PENDING": PaymentStatus.PROCESSING,
}


class MtnMomoProvider(PaymentProvider):
    name = PaymentProviderName.MTN_MOMO

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        config: Settings | None = None,
    ) -> None:
        super().__init__(client, clock)
        self._cfg = config or settings
        # Collection and disbursement are separate MTN products with separate tokens
        self._tokens = {COLLECTION: TokenCache(clock), DISBURSEMENT: TokenCache(clock)}

    @property
    def base_url(self) -> str:
        if self._cfg.MTN_MOMO_ENV == "production":
            return "https://proxy.momoapi.mtn.com"
        return "https://sandbox.momodeveloper.mtn.com"

    @property
    def target_environment(self) -> str:
        return "mtnzambia" if self._cfg.MTN_MOMO_ENV == "production" else "sandbox"

    @property
    def callback_url(self) -> str:
        return f"{self._cfg.PUBLIC_BASE_URL.rstrip('/')}/api/v1/payments/callback"

    def is_configured(self) -> bool:
        return bool(
            self._cfg.MTN_MOMO_COLLECTION_KEY
            and self._cfg.MTN_MOMO_COLLECTION_USER
            and self._cfg.MTN_MOMO_COLLECTION_API_KEY
        )

    def normalize_phone(self, phone: str) -> str:
        """Return the international MSISDN MTN expects: 260 + 9 digits."""
        digits = national_number(phone)
        if digits is None or not digits.startswith(MTN_PREFIXES):
            raise InvalidPhoneError(
                "Invalid phone number. Must be an MTN Zambia number (e.g., 096XXXXXXX)."
            )
        return f"260{digits}"

    def map_status(self, code: str) -> PaymentStatus:
        return _STATUS_MAP.get((code or "").upper(), PaymentStatus.PENDING)

    def new_reference(self, kind: str) -> str:
        return generate_uuid()

    def _credentials(self, product: str) -> tuple[str, str, str]:
        if product == COLLECTION:
            return (
                self._cfg.MTN_MOMO_COLLECTION_USER,
                self._cfg.MTN_MOMO_COLLECTION_API_KEY,
                self._cfg.MTN_MOMO_COLLECTION_KEY,
            )
        return (
            self._cfg.MTN_MOMO_DISBURSEMENT_USER,
            self._cfg.MTN_MOMO_DISBURSEMENT_API_KEY,
            self._cfg.MTN_MOMO_DISBURSEMENT_KEY,
        )

    async def _token(self, product: str) -> str:
        api_user, api_key, subscription_key = self._credentials(product)
        if not api_user or not api_key:
            raise ProviderConfigError(
                self.name.value, f"MTN MoMo {product} credentials not configured."
            )
        basic = base64.b64encode(f"{api_user}:{api_key}".encode()).decode()
        return await self._fetch_token(
            self._tokens[product],
            "POST",
            f"{self.base_url}/{product}/token/",
            headers={
                "Authorization": f"Basic {basic}",
                "Ocp-Apim-Subscription-Key": subscription_key,
            },
        )

    async def _headers(self, product: str, reference: str | None = None) -> dict[str, str]:
        _, _, subscription_key = self._credentials(product)
        headers = {
            "Authorization": f"Bearer {await self._token(product)}",
            "X-Target-Environment": self.target_environment,
            "Ocp-Apim-Subscription-Key": subscription_key,
        }
        if reference is not None:
            headers["Content-Type"] = "application/json"
            headers["X-Reference-Id"] = reference
            headers["X-Callback-Url"] = self.callback_url
        return headers

    async def initiate_collection(
        self, phone: str, amount_ngwee: int, reference: str
    ) -> ProviderStatus:
        msisdn = self.normalize_phone(phone)
        payload = {
            "amount": str(ngwee_to_kwacha(amount_ngwee)),
            "currency": CURRENCY,
            "externalId": reference,
            "payer": {"partyIdType": "MSISDN", "partyId": msisdn},
            "payerMessage": "BetiPredict Deposit",
            "payeeNote": f"Deposit ref: {reference}",
        }
        logger.info("[MTN] collection %d ngwee from %s ref=%s", amount_ngwee, msisdn, reference)
        response = await self._send(
            "POST", f"{self.base_url}/collection/v1_0/requesttopay",
            json=payload, headers=await self._headers(COLLECTION, reference),
        )
        if response.status_code >= 400:
            logger.error("[MTN] collection failed: %d %s", response.status_code, response.text)
            raise ProviderTransactionError(
                self.name.value,
                "Failed to initiate MTN MoMo payment. Please try again.",
                "COLLECTION_FAILED",
            )
        return ProviderStatus(PaymentStatus.PROCESSING, "PENDING", external_id=reference)

    async def initiate_disbursement(
        self, phone: str, amount_ngwee: int, reference: str
    ) -> ProviderStatus:
        msisdn = self.normalize_phone(phone)
        payload = {
            "amount": str(ngwee_to_kwacha(amount_ngwee)),
            "currency": CURRENCY,
            "externalId": reference,
            "payee": {"partyIdType": "MSISDN", "partyId": msisdn},
            "payerMessage": "BetiPredict Withdrawal",
            "payeeNote": f"Withdrawal ref: {reference}",
        }
        logger.info("[MTN] disbursement %d ngwee to %s ref=%s", amount_ngwee, msisdn, reference)
        response = await self._send(
            "POST", f"{self.base_url}/disbursement/v1_0/transfer",
            json=payload, headers=await self._headers(DISBURSEMENT, reference),
        )
        if response.status_code >= 400:
            logger.error("[MTN] disbursement failed: %d %s", response.status_code, response.text)
            raise ProviderTransactionError(
                self.name.value,
                "Failed to initiate MTN MoMo withdrawal. Please try again.",
                "DISBURSEMENT_FAILED",
            )
        return ProviderStatus(PaymentStatus.PROCESSING, "PENDING", external_id=reference)

    async def check_collection_status(self, reference: str) -> ProviderStatus:
        return await self._check_status(
            COLLECTION, f"{self.base_url}/collection/v1_0/requesttopay/{reference}"
        )

    async def check_disbursement_status(self, reference: str) -> ProviderStatus:
        return await self._check_status(
            DISBURSEMENT, f"{self.base_url}/disbursement/v1_0/transfer/{reference}"
        )

    def parse_callback(
        self, body: dict[str, Any], headers: dict[str, str]
    ) -> CallbackEvent | None:
        reference_id = headers.get("x-reference-id") or ""
        external_ref = body.get("externalId") or reference_id
        if not reference_id and not external_ref:
            return None
        raw_status = str(body.get("status") or "")
        reason = body.get("reason") if isinstance(body.get("reason"), dict) else {}
        financial_id = body.get("financialTransactionId") or None
        references = [r for r in dict.fromkeys((reference_id, external_ref)) if r]
        return CallbackEvent(
            references=references,
            status=ProviderStatus(
                status=self.map_status(raw_status),
                raw_status=raw_status,
                message=reason.get("message") or f"MTN status: {raw_status}",
                external_id=financial_id,
            ),
            external_id=financial_id,
            raw=body,
        )

    async def _check_status(self, product: str, url: str) -> ProviderStatus:
        response = await self._send("GET", url, headers=await self._headers(product))
        if response.status_code >= 400:
            raise ProviderTransactionError(
                self.name.value, "Failed to check MTN MoMo status", "STATUS_CHECK_FAILED"
            )
        data = response_json(response)
        raw_status = str(data.get("status") or "")
        reason = data.get("reason") if isinstance(data.get("reason"), dict) else {}
        return ProviderStatus(
            status=self.map_status(raw_status),
            raw_status=raw_status,
            message=reason.get("message"),
            external_id=data.get("financialTransactionId"),
        )
