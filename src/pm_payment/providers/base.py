"""PaymentProvider — uniform contract over the mobile-money rails.

Each rail (Airtel Money, MTN MoMo) subclasses PaymentProvider. Outbound HTTP
goes through one httpx.AsyncClient per adapter; tests inject a client built
on httpx.MockTransport and a fake clock for the token cache.

Amounts cross this boundary as int ngwee and are converted to Kwacha only
when the request payload is built.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.pm_common.enums import PaymentProviderName, PaymentStatus
from src.pm_common.errors import ProviderAuthError, ProviderTransactionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class ProviderStatus:
    status: PaymentStatus
    raw_status: str
    message: str | None = None
    external_id: str | None = None


@dataclass(frozen=True)
class CallbackEvent:
    """A provider webhook reduced to what settlement needs."""

    references: list[str]            # candidate external_ref values, most specific first
    status: ProviderStatus
    external_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class TokenCache:
    """Bearer token cache owned by one adapter instance.

    A token is served until REFRESH_MARGIN_SECONDS before it expires.
    """

    REFRESH_MARGIN_SECONDS = 60

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0

    def get(self) -> str | None:
        if self._token and self._clock() < self._expires_at - self.REFRESH_MARGIN_SECONDS:
            return self._token
        return None

    def store(self, token: str, expires_in: float) -> None:
        self._token = token
        self._expires_at = self._clock() + float(expires_in)

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0


class PaymentProvider(ABC):
    name: PaymentProviderName
    # Whether callbacks are authenticated (HMAC) and their status can be trusted
    signs_callbacks: bool = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def label(self) -> str:
        return self.name.label

    # --- contract ---------------------------------------------------------

    @abstractmethod
    def is_configured(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def normalize_phone(self, phone: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def map_status(self, code: str) -> PaymentStatus:
        raise NotImplementedError

    @abstractmethod
    def new_reference(self, kind: str) -> str:
        """Reference handed to the provider; kind is "DEP" or "WDR"."""
        raise NotImplementedError

    @abstractmethod
    async def initiate_collection(
        self, phone: str, amount_ngwee: int, reference: str
    ) -> ProviderStatus:
        raise NotImplementedError

    @abstractmethod
    async def initiate_disbursement(
        self, phone: str, amount_ngwee: int, reference: str
    ) -> ProviderStatus:
        raise NotImplementedError

    @abstractmethod
    async def check_collection_status(self, reference: str) -> ProviderStatus:
        raise NotImplementedError

    @abstractmethod
    async def check_disbursement_status(self, reference: str) -> ProviderStatus:
        raise NotImplementedError

    @abstractmethod
    def parse_callback(
        self, body: dict[str, Any], headers: dict[str, str]
    ) -> CallbackEvent | None:
        raise NotImplementedError

    # --- shared HTTP plumbing ----------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("[%s] %s %s failed: %s", self.name.value, method, url, exc)
            raise ProviderTransactionError(
                self.name.value,
                f"{self.label} is unreachable. Please try again.",
                "NETWORK_ERROR",
            ) from exc

    async def _fetch_token(
        self, cache: TokenCache, method: str, url: str, **kwargs: Any
    ) -> str:
        cached = cache.get()
        if cached:
            return cached

        response = await self._send(method, url, **kwargs)
        if response.status_code >= 400:
            logger.error(
                "[%s] auth failed: %d %s", self.name.value, response.status_code, response.text
            )
            raise ProviderAuthError(self.name.value, f"Failed to authenticate with {self.label}")

        data = response_json(response)
        token = data.get("access_token")
        if not token:
            raise ProviderAuthError(self.name.value, f"{self.label} returned no access token")
        cache.store(token, float(data.get("expires_in") or 0))
        return str(token)


def response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
