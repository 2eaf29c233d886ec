"""
Payment confirmation and sequential slot allocation.

A confirmation attempt runs Validating -> Verifying -> Allocating ->
Committing. Allocation and commit happen inside one store transaction so
that concurrent confirmations for the same resource type are serialized by
the database: each paid booking starts at or after the previous paid end_at.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from .allocator import SLOT_DURATION, next_slot
from .errors import (
    ConcurrentUpdateExhausted,
    Forbidden,
    InvalidInput,
    PaymentIncomplete,
    PaymentMismatch,
)
from .events import BOOKING_PAID, booking_paid_event, encode
from .gateways import PaymentVerification, PaymentVerifier
from .models import Booking, PaymentStatus, utcnow
from .store import BookingStore, UpdateStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_PRICE_PER_HEAD = 700


@dataclass
class ConfirmationResult:
    booking: Booking
    # False when the booking was already paid (by an earlier call or a racing one)
    fresh: bool


class ConfirmationService:
    def __init__(
        self,
        store: BookingStore,
        verifier: PaymentVerifier,
        *,
        publisher=None,
        clock: Callable[[], datetime] = utcnow,
        slot_duration: timedelta = SLOT_DURATION,
        price_per_head: int = DEFAULT_PRICE_PER_HEAD,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.store = store
        self.verifier = verifier
        self.publisher = publisher
        self.clock = clock
        self.slot_duration = slot_duration
        self.price_per_head = price_per_head
        self.max_attempts = max_attempts

    def expected_amount(self, booking: Booking) -> int:
        return booking.head_count * self.price_per_head

    async def confirm(self, principal_id: str, booking_id: str, payment_reference: str) -> ConfirmationResult:
        if not booking_id or not payment_reference:
            raise InvalidInput("booking_id and payment_reference are required")

        booking = await self._validate(principal_id, booking_id, payment_reference)
        if booking.is_paid:
            logger.info("confirm_already_paid: booking_id=%s", booking_id)
            return ConfirmationResult(booking=booking, fresh=False)

        verification = await self.verifier.verify(payment_reference)
        self._check_verification(booking, verification)

        return await self._allocate_and_commit(booking, payment_reference)

    async def _validate(self, principal_id: str, booking_id: str, payment_reference: str) -> Booking:
        booking = await self.store.get(booking_id)

        if booking.owner_id != principal_id:
            logger.warning("confirm_forbidden: booking_id=%s principal=%s", booking_id, principal_id)
            raise Forbidden(f"{principal_id} does not own {booking_id}")

        if booking.payment_reference and booking.payment_reference != payment_reference:
            # several checkouts may be opened for one booking; the gateway's
            # binding decides whether this reference pays for it
            logger.info(
                "confirm_other_reference: booking_id=%s last_issued=%s requested=%s",
                booking_id,
                booking.payment_reference,
                payment_reference,
            )

        return booking

    def _check_verification(self, booking: Booking, verification: PaymentVerification):
        # binding is checked before status: a foreign reference is rejected
        # whatever state its payment is in
        if verification.bound_booking_id != booking.booking_id:
            logger.warning(
                "confirm_payment_mismatch: booking_id=%s bound_booking_id=%s reference=%s",
                booking.booking_id,
                verification.bound_booking_id,
                verification.reference,
            )
            raise PaymentMismatch(f"payment bound to {verification.bound_booking_id}")

        if not verification.succeeded:
            logger.info(
                "confirm_payment_incomplete: booking_id=%s gateway_status=%s",
                booking.booking_id,
                verification.gateway_status,
            )
            raise PaymentIncomplete(f"gateway status {verification.gateway_status}")

        expected = self.expected_amount(booking)
        if verification.amount is not None and verification.amount != expected:
            logger.warning(
                "confirm_amount_mismatch: booking_id=%s expected=%s paid=%s",
                booking.booking_id,
                expected,
                verification.amount,
            )
            raise PaymentMismatch(f"paid {verification.amount}, expected {expected}")

    async def _allocate_and_commit(self, booking: Booking, payment_reference: str) -> ConfirmationResult:
        def mutation(current: Booking, latest_end: datetime | None) -> dict:
            # read once the transaction holds the lock, not before waiting for it
            now = self.clock()
            slot = next_slot(latest_end, now, self.slot_duration)
            return {
                "payment_status": PaymentStatus.PAID,
                "payment_reference": payment_reference,
                "paid_at": now,
                "start_at": slot.start_at,
                "end_at": slot.end_at,
            }

        for attempt in range(1, self.max_attempts + 1):
            outcome = await self.store.conditional_update(booking.booking_id, PaymentStatus.UNPAID, mutation)

            if outcome.status is UpdateStatus.COMMITTED:
                paid = outcome.booking
                logger.info(
                    "payment_confirmed: booking_id=%s start_at=%s end_at=%s attempt=%s",
                    paid.booking_id,
                    paid.start_at.isoformat(),
                    paid.end_at.isoformat(),
                    attempt,
                )
                await self._publish_paid(paid)
                return ConfirmationResult(booking=paid, fresh=True)

            if outcome.status is UpdateStatus.ALREADY_SATISFIED:
                # a concurrent confirmation won; report its slot, not ours
                logger.info("confirm_lost_race: booking_id=%s", booking.booking_id)
                return ConfirmationResult(booking=outcome.booking, fresh=False)

            logger.info("confirm_conflict_retry: booking_id=%s attempt=%s", booking.booking_id, attempt)

        logger.error("confirm_exhausted: booking_id=%s attempts=%s", booking.booking_id, self.max_attempts)
        raise ConcurrentUpdateExhausted(f"{booking.booking_id} after {self.max_attempts} attempts")

    async def _publish_paid(self, booking: Booking):
        if not self.publisher:
            return
        try:
            await self.publisher.publish(BOOKING_PAID, encode(booking_paid_event(booking)))
        except Exception as e:
            logger.warning("booking_paid_publish_failed: booking_id=%s error=%s", booking.booking_id, e)
