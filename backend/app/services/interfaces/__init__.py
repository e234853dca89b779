"""
Service interfaces for dependency inversion.
Allows swapping payment providers without changing booking logic.
"""

from .payment_gateway import PaymentGateway, PaymentSession
from .sandbox_gateway import SandboxGateway
from .http_gateway import HttpPaymentGateway

__all__ = ['PaymentGateway', 'PaymentSession', 'SandboxGateway', 'HttpPaymentGateway']
