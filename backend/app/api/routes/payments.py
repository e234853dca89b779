"""
Payment initiation and provider callback endpoints.
"""

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.exceptions import InvalidRequestError
from app.db.session import get_db
from app.schemas.booking import BookingResponse
from app.schemas.payment import PaymentCallback, PaymentInitiateRequest, PaymentSessionResponse
from app.services.payment_service import handle_payment_callback, initiate_payment, verify_signature
from app.core.security import get_current_user_id
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initiate", response_model=PaymentSessionResponse)
async def initiate(
    request: PaymentInitiateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Start checkout for a PENDING booking; returns where to redirect the user."""
    session = await initiate_payment(db, request.booking_id, user_id, request.gateway, request.return_url)
    return PaymentSessionResponse(
        session_id=session.session_id,
        redirect_url=session.redirect_url,
        gateway=session.gateway,
    )


@router.post("/callback", response_model=BookingResponse)
async def callback(
    request: Request,
    x_payment_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Payment provider webhook.
    The raw body is verified against X-Payment-Signature before parsing.
    """
    body = await request.body()
    verify_signature(body, x_payment_signature)
    try:
        payload = PaymentCallback.model_validate_json(body)
    except ValidationError as e:
        raise InvalidRequestError("Malformed payment callback") from e

    return await handle_payment_callback(
        db, payload.booking_id, payload.payment_ref, payload.succeeded, payload.reason,
    )
