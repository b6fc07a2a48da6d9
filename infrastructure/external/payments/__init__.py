"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import DomainValidationException

SUPPORTED_PROVIDERS = ("stripe", "paypal", "nets")


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = (provider or payment_settings.default_provider).lower()
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient()
    if name == "paypal":
        from .paypal_client import PayPalClient
        return PayPalClient()
    if name in {"nets", "netsqr", "nets_qr"}:
        from .nets_client import NetsClient
        return NetsClient()
    raise DomainValidationException(f"Unsupported payment provider: {name}", field="provider")
