import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from . import config
from .confirmation import ConfirmationService
from .errors import Forbidden, InvalidInput
from .gateways import GatewayRouter
from .models import Booking, utcnow
from .schemas import (
    BookingResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreateBookingRequest,
    PayPayPaymentResponse,
    QueueSlot,
    StripePaymentResponse,
)
from .security import get_current_principal
from .store import BookingStore
from .webhook import LineWebhookHandler, validate_signature

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store(request: Request) -> BookingStore:
    return request.app.state.store


def get_confirmation_service(request: Request) -> ConfirmationService:
    return request.app.state.confirmation


def get_gateways(request: Request) -> GatewayRouter:
    return request.app.state.gateways


def get_line_handler(request: Request) -> LineWebhookHandler:
    return request.app.state.line_handler


def to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.booking_id,
        resource_type=booking.resource_type,
        head_count=booking.head_count,
        payment_status=booking.payment_status,
        payment_reference=booking.payment_reference,
        start_at=booking.start_at,
        end_at=booking.end_at,
        paid_at=booking.paid_at,
    )


async def _owned_booking(store: BookingStore, booking_id: str, principal_id: str) -> Booking:
    booking = await store.get(booking_id)
    if booking.owner_id != principal_id:
        raise Forbidden(f"{principal_id} does not own {booking_id}")
    return booking


async def _unpaid_booking(store: BookingStore, booking_id: str, principal_id: str) -> Booking:
    booking = await _owned_booking(store, booking_id, principal_id)
    if booking.is_paid:
        raise InvalidInput(f"{booking_id} is already paid")
    return booking


# ================= BOOKINGS =================

@router.post("/bookings", response_model=BookingResponse)
async def create_booking(
    data: CreateBookingRequest,
    principal_id: str = Depends(get_current_principal),
    store: BookingStore = Depends(get_store),
):
    booking = await store.create(principal_id, config.RESOURCE_TYPE, data.head_count)
    logger.info("booking_created: booking_id=%s head_count=%s", booking.booking_id, booking.head_count)
    return to_response(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    principal_id: str = Depends(get_current_principal),
    store: BookingStore = Depends(get_store),
):
    return to_response(await _owned_booking(store, booking_id, principal_id))


@router.get("/queue", response_model=list[QueueSlot])
async def get_queue(store: BookingStore = Depends(get_store)):
    bookings = await store.upcoming(config.RESOURCE_TYPE, utcnow())
    return [QueueSlot(start_at=b.start_at, end_at=b.end_at) for b in bookings]


# ================= PAYMENTS =================

@router.post("/bookings/{booking_id}/payments/paypay", response_model=PayPayPaymentResponse)
async def create_paypay_payment(
    booking_id: str,
    principal_id: str = Depends(get_current_principal),
    store: BookingStore = Depends(get_store),
    gateways: GatewayRouter = Depends(get_gateways),
    confirmation: ConfirmationService = Depends(get_confirmation_service),
):
    booking = await _unpaid_booking(store, booking_id, principal_id)
    qr = await gateways.paypay.create_qr_code(booking.booking_id, confirmation.expected_amount(booking))
    # PayPay payments are looked up by merchantPaymentId, which is the booking id
    await store.bind_payment_reference(booking.booking_id, booking.booking_id)
    return PayPayPaymentResponse(url=qr.url)


@router.post("/bookings/{booking_id}/payments/stripe", response_model=StripePaymentResponse)
async def create_stripe_payment(
    booking_id: str,
    principal_id: str = Depends(get_current_principal),
    store: BookingStore = Depends(get_store),
    gateways: GatewayRouter = Depends(get_gateways),
    confirmation: ConfirmationService = Depends(get_confirmation_service),
):
    booking = await _unpaid_booking(store, booking_id, principal_id)
    intent = await gateways.stripe.create_payment_intent(
        booking.booking_id,
        principal_id,
        confirmation.expected_amount(booking),
        booking.resource_type,
    )
    await store.bind_payment_reference(booking.booking_id, intent.intent_id)
    return StripePaymentResponse(client_secret=intent.client_secret)


@router.post("/bookings/{booking_id}/confirm", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    booking_id: str,
    data: ConfirmPaymentRequest,
    principal_id: str = Depends(get_current_principal),
    confirmation: ConfirmationService = Depends(get_confirmation_service),
):
    await confirmation.confirm(principal_id, booking_id, data.payment_reference)
    return ConfirmPaymentResponse(success=True)


# ================= WEBHOOKS =================

@router.post("/webhooks/line")
async def line_webhook(request: Request, handler: LineWebhookHandler = Depends(get_line_handler)):
    try:
        signature = request.headers.get("x-line-signature")
        if not signature:
            return PlainTextResponse("Missing signature", status_code=400)

        if not config.LINE_SECRET:
            logger.error("line_webhook_not_configured")
            return PlainTextResponse("Error", status_code=500)

        raw_body = await request.body()
        if not validate_signature(config.LINE_SECRET, raw_body, signature):
            return PlainTextResponse("Invalid signature", status_code=401)

        body = json.loads(raw_body or b"{}")
        await handler.handle(body.get("events") or [])
        return PlainTextResponse("OK")
    except Exception:
        logger.exception("line_webhook_error")
        return PlainTextResponse("Error", status_code=500)
