"""Payment providers that fund wallets."""

from errandwork.payments.paystack import (
    PAYSTACK_BASE_URL,
    PaystackProvider,
    kobo_to_naira,
    naira_to_kobo,
    verify_webhook_signature,
)
from errandwork.payments.provider import ChargeInitialization, PaymentProvider, PaymentVerification

__all__ = [
    "PaymentProvider",
    "PaymentVerification",
    "ChargeInitialization",
    "PaystackProvider",
    "PAYSTACK_BASE_URL",
    "naira_to_kobo",
    "kobo_to_naira",
    "verify_webhook_signature",
]
