import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.rabbitmq import RabbitPublisher

from . import config
from .breaker import CircuitBreaker
from .confirmation import ConfirmationService
from .db import SessionLocal, engine
from .errors import BookingError, ConfirmationFailed, InvalidInput
from .gateways import GatewayRouter, PayPayClient, StripeClient
from .middleware import RequestLoggingMiddleware
from .routes import router
from .store import BookingStore
from .webhook import LineReplyClient, LineWebhookHandler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_client = redis.from_url(config.REDIS_URL, decode_responses=True) if config.REDIS_URL else None

    def breaker(name: str):
        if not redis_client:
            return None
        return CircuitBreaker(redis_client, name, failure_threshold=5, reset_timeout_seconds=10)

    publisher = RabbitPublisher(config.RABBIT_URL)
    try:
        await publisher.connect()
    except Exception as e:
        logger.warning("rabbitmq_unavailable_at_startup: %s", e)

    paypay = PayPayClient(
        config.PAYPAY_API_KEY,
        config.PAYPAY_API_SECRET,
        config.PAYPAY_MERCHANT_ID,
        base_url=config.PAYPAY_BASE_URL,
        redirect_url=config.PAYPAY_REDIRECT_URL,
        timeout=config.PAYMENT_TIMEOUT_SECONDS,
        breaker=breaker("paypay"),
    )
    stripe_client = StripeClient(config.STRIPE_SECRET_KEY, breaker=breaker("stripe"))
    gateways = GatewayRouter(paypay, stripe_client)
    logger.info(
        "payment_gateways: paypay_configured=%s stripe_configured=%s",
        paypay.configured,
        stripe_client.configured,
    )

    store = BookingStore(SessionLocal)
    line_client = LineReplyClient(config.LINE_TOKEN, base_url=config.LINE_API_URL)

    app.state.store = store
    app.state.gateways = gateways
    app.state.confirmation = ConfirmationService(
        store,
        gateways,
        publisher=publisher,
        slot_duration=timedelta(minutes=config.SLOT_MINUTES),
        price_per_head=config.PRICE_PER_HEAD,
        max_attempts=config.CONFIRM_MAX_ATTEMPTS,
    )
    app.state.line_handler = LineWebhookHandler(SessionLocal, line_client, redis_client)

    yield

    await paypay.aclose()
    await line_client.aclose()
    await publisher.close()
    if redis_client:
        await redis_client.aclose()
    await engine.dispose()
    logger.info("booking-service shut down")


app = FastAPI(title="Booking Service", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, ConfirmationFailed):
        logger.error("request_failed: path=%s error=%s detail=%s", request.url.path, exc.code, exc.detail)
    else:
        logger.info("request_rejected: path=%s error=%s detail=%s", request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = InvalidInput(str(exc.errors()))
    logger.info("request_rejected: path=%s error=%s detail=%s", request.url.path, error.code, error.detail)
    return JSONResponse(status_code=error.status_code, content=error.to_response())


@app.get("/health")
async def health():
    return {"status": "ok", "service": "booking-service"}
