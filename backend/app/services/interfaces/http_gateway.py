"""
HTTP gateway - delegates checkout sessions to the external payment service.
"""

import httpx

from app.core.exceptions import PaymentGatewayError
from app.core.logging import get_logger
from app.models.booking import Booking
from app.services.interfaces.payment_gateway import PaymentGateway, PaymentSession

logger = get_logger(__name__)


class HttpPaymentGateway(PaymentGateway):
    def __init__(self, name: str, base_url: str, timeout: float = 5.0, transport=None):
        super().__init__(name)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def create_session(self, booking: Booking, return_url: str) -> PaymentSession:
        payload = {
            "booking_id": str(booking.id),
            "amount": str(booking.total_amount),
            "currency": booking.currency,
            "gateway": self.name,
            "return_url": return_url,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self.transport,
            ) as client:
                response = await client.post("/sessions", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("payment_gateway_failed", gateway=self.name, booking_id=str(booking.id), error=str(e))
            raise PaymentGatewayError() from e

        try:
            return PaymentSession(
                session_id=data["session_id"],
                redirect_url=data["redirect_url"],
                gateway=self.name,
            )
        except (KeyError, TypeError) as e:
            logger.error("payment_gateway_bad_response", gateway=self.name, booking_id=str(booking.id))
            raise PaymentGatewayError("Payment provider returned an unexpected response") from e
