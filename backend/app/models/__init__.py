from app.models.event import Event
from app.models.seat import Seat, SeatStatus
from app.models.lock import SeatLock, SeatLockItem, LockHolder, LockStatus
from app.models.booking import Booking, BookedSeat, BookingStatus
from app.models.waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    "Event",
    "Seat", "SeatStatus",
    "SeatLock", "SeatLockItem", "LockHolder", "LockStatus",
    "Booking", "BookedSeat", "BookingStatus",
    "WaitlistEntry", "WaitlistStatus",
]
