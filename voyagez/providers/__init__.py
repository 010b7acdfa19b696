"""
Payment providers.

Usage:
    >>> from voyagez.providers import create_provider
    >>> provider = create_provider(config)
"""

from voyagez.core.config import BookingConfig
from voyagez.providers.base import (
    CheckoutRequest,
    CheckoutSession,
    MerchantUrls,
    PaymentProvider,
    hmac_signature,
    outcome_for_status,
)
from voyagez.providers.memory import InMemoryPaymentProvider
from voyagez.providers.tamara import TamaraProvider


def create_provider(config: BookingConfig) -> PaymentProvider:
    """
    Build the provider named by ``config.provider_name``.

    Raises:
        ValueError: If the provider name is unknown
    """
    if config.provider_name == "tamara":
        return TamaraProvider(
            api_token=config.provider_api_token,
            notification_token=config.provider_notification_token,
            base_url=config.provider_base_url,
            timeout=config.provider_timeout_seconds,
        )
    if config.provider_name == "memory":
        return InMemoryPaymentProvider(notification_token=config.provider_notification_token)

    msg = f"Unknown payment provider: {config.provider_name}"
    raise ValueError(msg)


__all__ = [
    "CheckoutRequest",
    "CheckoutSession",
    "InMemoryPaymentProvider",
    "MerchantUrls",
    "PaymentProvider",
    "TamaraProvider",
    "create_provider",
    "hmac_signature",
    "outcome_for_status",
]
