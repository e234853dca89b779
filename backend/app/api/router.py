"""
Route wiring. REST endpoints live under /api/v1; the seat update stream is
mounted at the root so clients connect to /ws/seats/{event_id}.
"""

from fastapi import APIRouter

from app.api import websocket
from app.api.routes import bookings, events, payments, seats, waitlist

REST_MODULES = (events, seats, bookings, payments, waitlist)

api_router = APIRouter(prefix="/api/v1")
for module in REST_MODULES:
    api_router.include_router(module.router)

root_router = APIRouter()
root_router.include_router(api_router)
root_router.include_router(websocket.router)
