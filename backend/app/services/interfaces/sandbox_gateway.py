"""
Sandbox gateway - checkout sessions without a real provider.
"""

import uuid
from urllib.parse import urlencode

from app.core.config import get_settings
from app.models.booking import Booking
from app.services.interfaces.payment_gateway import PaymentGateway, PaymentSession


class SandboxGateway(PaymentGateway):
    """
    Builds a session id and a redirect into the sandbox checkout page.
    The sandbox reports the outcome through the regular payment callback.

    Use when:
    - Local development and tests
    - No PAYMENT_SERVICE_URL is configured
    """

    async def create_session(self, booking: Booking, return_url: str) -> PaymentSession:
        session_id = f"{self.name.lower()}_{uuid.uuid4().hex}"
        query = urlencode({
            "booking_id": str(booking.id),
            "amount": str(booking.total_amount),
            "currency": booking.currency,
            "return_url": return_url,
        })
        base_url = get_settings().PAYMENT_SANDBOX_BASE_URL.rstrip("/")
        return PaymentSession(
            session_id=session_id,
            redirect_url=f"{base_url}/{session_id}?{query}",
            gateway=self.name,
        )
