"""Provider lookup. Adapters are process-wide so each keeps its own token cache."""

from src.pm_common.enums import PaymentProviderName
from src.pm_payment.providers.airtel import AirtelMoneyProvider
from src.pm_payment.providers.base import PaymentProvider
from src.pm_payment.providers.mtn import MtnMomoProvider

_providers: dict[PaymentProviderName, PaymentProvider] = {}


def get_provider(name: PaymentProviderName) -> PaymentProvider:
    provider = _providers.get(name)
    if provider is None:
        if name is PaymentProviderName.MTN_MOMO:
            provider = MtnMomoProvider()
        else:
            provider = AirtelMoneyProvider()
        _providers[name] = provider
    return provider


def get_providers() -> dict[PaymentProviderName, PaymentProvider]:
    return {name: get_provider(name) for name in PaymentProviderName}


async def close_providers() -> None:
    for provider in _providers.values():
        await provider.aclose()
    _providers.clear()
