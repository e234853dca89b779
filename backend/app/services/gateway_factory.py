"""
Payment gateway factory.
Configures which payment gateway implementation serves a provider name.
"""

from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import InvalidRequestError
from app.services.interfaces.http_gateway import HttpPaymentGateway
from app.services.interfaces.payment_gateway import PaymentGateway
from app.services.interfaces.sandbox_gateway import SandboxGateway

SUPPORTED_GATEWAYS = ("STRIPE", "PAYPAL", "RAZORPAY")


def get_payment_gateway(name: Optional[str] = None) -> PaymentGateway:
    """
    Get the gateway for a provider name.

    Selection based on configuration:
    - PAYMENT_SERVICE_URL set: HttpPaymentGateway (real payment service)
    - Otherwise: SandboxGateway (local checkout sessions)
    """
    gateway = (name or "STRIPE").upper()
    if gateway not in SUPPORTED_GATEWAYS:
        raise InvalidRequestError(
            f"Unsupported payment gateway: {name}",
            supported=list(SUPPORTED_GATEWAYS),
        )

    settings = get_settings()
    if settings.PAYMENT_SERVICE_URL:
        return HttpPaymentGateway(
            gateway,
            settings.PAYMENT_SERVICE_URL,
            timeout=settings.PAYMENT_SERVICE_TIMEOUT,
        )
    return SandboxGateway(gateway)
