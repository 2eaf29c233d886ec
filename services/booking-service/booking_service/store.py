import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from shared.database import is_serialization_failure

from .errors import BookingNotFound, StorageError
from .models import Booking, PaymentStatus

logger = logging.getLogger(__name__)

# Receives the re-read target booking and the latest paid end_at of its
# resource type, both read inside the committing transaction.
Mutation = Callable[[Booking, datetime | None], dict]


class UpdateStatus(str, Enum):
    COMMITTED = "committed"
    ALREADY_SATISFIED = "already_satisfied"
    CONFLICT = "conflict"


@dataclass
class UpdateOutcome:
    status: UpdateStatus
    booking: Booking | None = None


class BookingStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, booking_id: str) -> Booking:
        try:
            async with self._session_factory() as db:
                res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
                booking = res.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"get {booking_id}: {e}") from e

        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    async def create(self, owner_id: str, resource_type: str, head_count: int) -> Booking:
        booking = Booking(
            booking_id=str(uuid.uuid4()),
            owner_id=owner_id,
            resource_type=resource_type,
            head_count=head_count,
            payment_status=PaymentStatus.UNPAID,
        )
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    db.add(booking)
        except SQLAlchemyError as e:
            raise StorageError(f"create booking: {e}") from e
        return booking

    async def bind_payment_reference(self, booking_id: str, reference: str) -> Booking:
        """Record the gateway reference; paid bookings keep the one they were paid with."""
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    res = await db.execute(
                        select(Booking).where(Booking.booking_id == booking_id).with_for_update()
                    )
                    booking = res.scalar_one_or_none()
                    if booking and not booking.is_paid:
                        booking.payment_reference = reference
        except SQLAlchemyError as e:
            raise StorageError(f"bind reference {booking_id}: {e}") from e

        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    async def upcoming(self, resource_type: str, now: datetime) -> list[Booking]:
        try:
            async with self._session_factory() as db:
                res = await db.execute(
                    select(Booking)
                    .where(
                        Booking.resource_type == resource_type,
                        Booking.payment_status == PaymentStatus.PAID,
                        Booking.end_at > now,
                    )
                    .order_by(Booking.start_at)
                )
                return list(res.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"upcoming {resource_type}: {e}") from e

    async def conditional_update(
        self,
        booking_id: str,
        expected_status: str,
        mutation: Mutation,
    ) -> UpdateOutcome:
        """
        Apply `mutation` only if the booking still has `expected_status`.

        The target row and the latest paid end_at of its resource type are
        read in the same transaction as the write, so two commits for the same
        resource type cannot both build on the same end_at: the database
        aborts one of them, which is reported as CONFLICT.
        """
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    res = await db.execute(
                        select(Booking).where(Booking.booking_id == booking_id).with_for_update()
                    )
                    booking = res.scalar_one_or_none()
                    if not booking:
                        raise BookingNotFound(booking_id)

                    if booking.payment_status != expected_status:
                        if booking.is_paid:
                            return UpdateOutcome(UpdateStatus.ALREADY_SATISFIED, booking)
                        return UpdateOutcome(UpdateStatus.CONFLICT, booking)

                    latest_end = await db.scalar(
                        select(func.max(Booking.end_at)).where(
                            Booking.resource_type == booking.resource_type,
                            Booking.payment_status == PaymentStatus.PAID,
                        )
                    )

                    for field, value in mutation(booking, latest_end).items():
                        setattr(booking, field, value)
        except DBAPIError as e:
            if is_serialization_failure(e):
                logger.info("booking_update_conflict: booking_id=%s error=%s", booking_id, e.orig)
                return UpdateOutcome(UpdateStatus.CONFLICT)
            raise StorageError(f"conditional update {booking_id}: {e}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"conditional update {booking_id}: {e}") from e

        return UpdateOutcome(UpdateStatus.COMMITTED, booking)
