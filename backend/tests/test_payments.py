"""
Tests for payment initiation, provider callbacks and gateways.
"""

import json
import uuid
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient

from app.core.config import get_settings
from app.core.exceptions import InvalidRequestError, PaymentGatewayError
from app.db.base import utcnow
from app.models.booking import Booking
from app.services.expiry_sweeper import ExpirySweeper
from app.services.gateway_factory import get_payment_gateway
from app.services.interfaces import HttpPaymentGateway, SandboxGateway
from app.services.payment_service import SIGNATURE_HEADER, sign_payload


@pytest_asyncio.fixture
async def pending_booking(client: AsyncClient, auth_headers, test_event, seat_ids) -> dict:
    lock = await client.post(
        "/api/v1/seats/lock",
        json={"event_id": test_event.id, "seat_ids": seat_ids[:2]},
        headers=auth_headers,
    )
    response = await client.post(
        "/api/v1/bookings/",
        json={
            "event_id": test_event.id,
            "seat_ids": seat_ids[:2],
            "idempotency_key": f"pay-{uuid.uuid4().hex}",
            "lock_id": lock.json()["lock_id"],
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()


async def send_callback(client: AsyncClient, booking_id: str, payment_ref: str, succeeded: bool, reason=None):
    return await client.post(
        "/api/v1/payments/callback",
        json={"booking_id": booking_id, "payment_ref": payment_ref, "succeeded": succeeded, "reason": reason},
    )


@pytest.mark.asyncio
async def test_initiate_payment_reuses_session(client: AsyncClient, auth_headers, pending_booking):
    body = {"booking_id": pending_booking["id"], "gateway": "stripe", "return_url": "https://shop.test/done"}

    first = await client.post("/api/v1/payments/initiate", json=body, headers=auth_headers)
    assert first.status_code == 200
    session = first.json()
    assert session["gateway"] == "STRIPE"
    assert session["session_id"].startswith("stripe_")
    assert session["redirect_url"].startswith(get_settings().PAYMENT_SANDBOX_BASE_URL)
    assert pending_booking["id"] in session["redirect_url"]

    second = await client.post("/api/v1/payments/initiate", json=body, headers=auth_headers)
    assert second.json()["session_id"] == session["session_id"]

    booking = await client.get(f"/api/v1/bookings/{pending_booking['id']}", headers=auth_headers)
    assert booking.json()["payment_gateway"] == "STRIPE"


@pytest.mark.asyncio
async def test_initiate_payment_rejections(client: AsyncClient, auth_headers, other_headers, pending_booking):
    unsupported = await client.post(
        "/api/v1/payments/initiate",
        json={"booking_id": pending_booking["id"], "gateway": "BARTER"},
        headers=auth_headers,
    )
    assert unsupported.status_code == 400

    foreign = await client.post(
        "/api/v1/payments/initiate",
        json={"booking_id": pending_booking["id"]},
        headers=other_headers,
    )
    assert foreign.status_code == 403

    await client.post(f"/api/v1/bookings/{pending_booking['id']}/cancel", headers=auth_headers)
    cancelled = await client.post(
        "/api/v1/payments/initiate",
        json={"booking_id": pending_booking["id"]},
        headers=auth_headers,
    )
    assert cancelled.status_code == 409


@pytest.mark.asyncio
async def test_successful_callback_confirms_once(client: AsyncClient, auth_headers, pending_booking):
    response = await send_callback(client, pending_booking["id"], "ch_001", True)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CONFIRMED"
    assert data["payment_ref"] == "ch_001"
    assert data["confirmed_at"] is not None

    redelivered = await send_callback(client, pending_booking["id"], "ch_001", True)
    assert redelivered.status_code == 200
    assert redelivered.json()["status"] == "CONFIRMED"

    different = await send_callback(client, pending_booking["id"], "ch_002", True)
    assert different.status_code == 409

    late_failure = await send_callback(client, pending_booking["id"], "ch_003", False)
    assert late_failure.status_code == 409

    seats = await client.get(f"/api/v1/seats/event/{pending_booking['event_id']}")
    booked = [s for s in seats.json() if s["status"] == "BOOKED"]
    assert len(booked) == 2


@pytest.mark.asyncio
async def test_failed_callback_cancels_booking(client: AsyncClient, pending_booking):
    response = await send_callback(client, pending_booking["id"], "ch_fail", False, reason="card_declined")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CANCELLED"
    assert data["failure_reason"] == "card_declined"

    seats = await client.get(f"/api/v1/seats/event/{pending_booking['event_id']}")
    assert all(s["status"] == "AVAILABLE" for s in seats.json())

    redelivered = await send_callback(client, pending_booking["id"], "ch_fail", False)
    assert redelivered.status_code == 200
    assert redelivered.json()["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_failure_after_confirmation_is_rejected(client: AsyncClient, auth_headers, pending_booking):
    confirmed = await send_callback(client, pending_booking["id"], "ch_ok", True)
    assert confirmed.status_code == 200

    response = await send_callback(client, pending_booking["id"], "ch_late", False, reason="card_declined")

    assert response.status_code == 409
    assert response.json()["code"] == "BOOKING_STATE_INVALID"
    assert response.json()["status"] == "CONFIRMED"
    booking = await client.get(f"/api/v1/bookings/{pending_booking['id']}", headers=auth_headers)
    assert booking.json()["status"] == "CONFIRMED"
    assert booking.json()["failure_reason"] is None


@pytest.mark.asyncio
async def test_failure_for_cancelled_booking_is_a_noop(client: AsyncClient, auth_headers, pending_booking):
    cancel = await client.post(
        f"/api/v1/bookings/{pending_booking['id']}/cancel",
        json={"reason": "changed plans"},
        headers=auth_headers,
    )
    assert cancel.status_code == 200

    response = await send_callback(client, pending_booking["id"], "ch_fail", False, reason="card_declined")

    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    assert response.json()["failure_reason"] == "changed plans"


@pytest.mark.asyncio
async def test_failure_for_expired_booking_is_a_noop(client: AsyncClient, pending_booking):
    counts = await ExpirySweeper().sweep_once(now=utcnow() + timedelta(seconds=get_settings().BOOKING_PAYMENT_WINDOW_SECONDS + 1))
    assert counts["bookings"] == 1

    response = await send_callback(client, pending_booking["id"], "ch_fail", False)

    assert response.status_code == 200
    assert response.json()["status"] == "EXPIRED"


@pytest.mark.asyncio
async def test_callback_for_unknown_booking(client: AsyncClient, engine):
    response = await send_callback(client, str(uuid.uuid4()), "ch_404", True)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_malformed_callback(client: AsyncClient, engine):
    response = await client.post("/api/v1/payments/callback", content=b"{not json")
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_callback_signature_enforced(client: AsyncClient, pending_booking, monkeypatch):
    monkeypatch.setattr(get_settings(), "PAYMENT_WEBHOOK_SECRET", "whsec_test")
    body = json.dumps({
        "booking_id": pending_booking["id"],
        "payment_ref": "ch_signed",
        "succeeded": True,
    }).encode()

    unsigned = await client.post("/api/v1/payments/callback", content=body)
    assert unsigned.status_code == 403

    forged = await client.post(
        "/api/v1/payments/callback",
        content=body,
        headers={SIGNATURE_HEADER: sign_payload(body, "wrong-secret")},
    )
    assert forged.status_code == 403

    signed = await client.post(
        "/api/v1/payments/callback",
        content=body,
        headers={SIGNATURE_HEADER: sign_payload(body, "whsec_test"), "Content-Type": "application/json"},
    )
    assert signed.status_code == 200
    assert signed.json()["status"] == "CONFIRMED"


def test_gateway_factory(monkeypatch):
    assert isinstance(get_payment_gateway("paypal"), SandboxGateway)
    assert get_payment_gateway().name == "STRIPE"

    with pytest.raises(InvalidRequestError):
        get_payment_gateway("cash")

    monkeypatch.setattr(get_settings(), "PAYMENT_SERVICE_URL", "http://payments.internal")
    gateway = get_payment_gateway("RAZORPAY")
    assert isinstance(gateway, HttpPaymentGateway)
    assert gateway.base_url == "http://payments.internal"


def _booking() -> Booking:
    return Booking(id=uuid.uuid4(), total_amount=Decimal("130.00"), currency="USD")


@pytest.mark.asyncio
async def test_http_gateway_creates_session():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"session_id": "cs_123", "redirect_url": "https://pay.test/cs_123"})

    gateway = HttpPaymentGateway("STRIPE", "http://payments.internal/", transport=httpx.MockTransport(handler))
    booking = _booking()

    session = await gateway.create_session(booking, "https://shop.test/done")

    assert session.session_id == "cs_123"
    assert session.redirect_url == "https://pay.test/cs_123"
    assert session.gateway == "STRIPE"
    assert seen["path"] == "/sessions"
    assert seen["payload"]["booking_id"] == str(booking.id)
    assert seen["payload"]["amount"] == "130.00"


@pytest.mark.asyncio
async def test_http_gateway_errors():
    failing = HttpPaymentGateway(
        "STRIPE", "http://payments.internal",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    with pytest.raises(PaymentGatewayError):
        await failing.create_session(_booking(), "")

    malformed = HttpPaymentGateway(
        "STRIPE", "http://payments.internal",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True})),
    )
    with pytest.raises(PaymentGatewayError):
        await malformed.create_session(_booking(), "")
