import json
import uuid

from .models import Booking, utcnow

BOOKING_PAID = "booking.paid"


def booking_paid_event(booking: Booking) -> dict:
    """Envelope published on the domain_events exchange once a slot is committed."""
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": BOOKING_PAID,
        "occurred_at": utcnow().isoformat(),
        "data": {
            "booking_id": booking.booking_id,
            "resource_type": booking.resource_type,
            "head_count": booking.head_count,
            "start_at": booking.start_at.isoformat(),
            "end_at": booking.end_at.isoformat(),
            "paid_at": booking.paid_at.isoformat() if booking.paid_at else None,
        },
    }


def encode(event: dict) -> bytes:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
