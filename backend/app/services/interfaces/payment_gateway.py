"""
Payment gateway interface.
Lets the booking flow start checkout sessions without knowing the provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.models.booking import Booking


@dataclass(frozen=True)
class PaymentSession:
    session_id: str
    redirect_url: str
    gateway: str


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations:
    - SandboxGateway: issues local checkout sessions, no network calls
    - HttpPaymentGateway: delegates to the payment service over HTTP
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def create_session(self, booking: Booking, return_url: str) -> PaymentSession:
        """
        Start a checkout session for a PENDING booking.

        Args:
            booking: Booking to be paid
            return_url: Where the provider sends the user afterwards

        Returns:
            Session id and the URL the client should be redirected to
        """
        pass
