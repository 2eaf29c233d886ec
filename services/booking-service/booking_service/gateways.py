"""Payment gateway clients: verification for confirmations, creation for checkout."""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import httpx
import stripe

from .breaker import CircuitBreaker, CircuitBreakerOpen
from .errors import GatewayNotConfigured, GatewayUnavailable, PaymentNotFound

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
STRIPE_REFERENCE_PREFIX = "pi_"


class PaymentState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: PaymentState
    amount: int | None
    bound_booking_id: str | None
    gateway_status: str | None = None  # raw state as the gateway reported it

    @property
    def succeeded(self) -> bool:
        return self.status is PaymentState.SUCCEEDED


class PaymentVerifier(Protocol):
    async def verify(self, reference: str) -> PaymentVerification:
        ...


async def _allow(breaker: CircuitBreaker | None):
    if not breaker:
        return
    try:
        await breaker.allow_request()
    except CircuitBreakerOpen as e:
        raise GatewayUnavailable(str(e)) from e


# -------- PAYPAY --------

PAYPAY_SUCCEEDED = {"COMPLETED"}
PAYPAY_FAILED = {"FAILED", "CANCELED", "EXPIRED"}


@dataclass(frozen=True)
class PayPayQRCode:
    url: str
    code_id: str | None


class PayPayClient:
    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        merchant_id: str | None,
        base_url: str,
        redirect_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        breaker: CircuitBreaker | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.merchant_id = merchant_id
        self.redirect_url = redirect_url
        self.breaker = breaker
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret and self.merchant_id)

    def sign(self, timestamp: str, nonce: str, body: str) -> str:
        message = f"{timestamp}\n{nonce}\n{body}\n"
        digest = hmac.new(self.api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def _headers(self, body: str) -> dict:
        nonce = str(uuid.uuid4())
        timestamp = str(int(time.time() * 1000))
        headers = {
            "X-ASSUME-MERCHANT": self.merchant_id,
            "X-PAYPAY-API-KEY": self.api_key,
            "X-PAYPAY-NONCE": nonce,
            "X-PAYPAY-TIMESTAMP": timestamp,
            "X-PAYPAY-SIGNATURE": self.sign(timestamp, nonce, body),
        }
        if body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(self, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        if not self.configured:
            raise GatewayNotConfigured("paypay credentials missing")

        await _allow(self.breaker)

        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False) if payload is not None else ""
        try:
            resp = await self.http.request(method, path, content=body or None, headers=self._headers(body))
        except httpx.TimeoutException as e:
            await self._record_failure()
            raise GatewayUnavailable(f"paypay timeout: {method} {path}") from e
        except httpx.HTTPError as e:
            await self._record_failure()
            raise GatewayUnavailable(f"paypay connection failed: {e}") from e

        if resp.status_code >= 500:
            await self._record_failure()
        elif self.breaker:
            await self.breaker.record_success()
        return resp

    async def _record_failure(self):
        if self.breaker:
            await self.breaker.record_failure()

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            return resp.json()
        except ValueError:
            return {}

    async def verify(self, reference: str) -> PaymentVerification:
        resp = await self._request("GET", f"/v2/codes/payments/{reference}")
        payload = self._json(resp)

        if resp.status_code == 404:
            raise PaymentNotFound(f"paypay payment {reference} not found")
        if resp.is_error:
            logger.error("paypay_confirm_error: status=%s body=%s", resp.status_code, payload or resp.text)
            raise GatewayUnavailable(f"paypay returned {resp.status_code}")

        data = payload.get("data") or {}
        raw_status = data.get("status")
        if raw_status in PAYPAY_SUCCEEDED:
            state = PaymentState.SUCCEEDED
        elif raw_status in PAYPAY_FAILED:
            state = PaymentState.FAILED
        else:
            state = PaymentState.PENDING

        metadata = data.get("metadata") or {}
        amount = (data.get("amount") or {}).get("amount")

        return PaymentVerification(
            reference=reference,
            status=state,
            amount=int(amount) if amount is not None else None,
            bound_booking_id=metadata.get("bookingId") or data.get("merchantPaymentId"),
            gateway_status=raw_status,
        )

    async def create_qr_code(self, booking_id: str, amount: int) -> PayPayQRCode:
        payload = {
            "merchantPaymentId": booking_id,
            "amount": {"amount": amount, "currency": "JPY"},
            "codeType": "ORDER_QR",
            "redirectUrl": self.redirect_url,
            "redirectType": "WEB_LINK",
            "metadata": {"bookingId": booking_id},
        }
        resp = await self._request("POST", "/v2/codes", payload)
        data = self._json(resp)

        if resp.is_error:
            logger.error("paypay_api_error: status=%s body=%s", resp.status_code, data or resp.text)
            raise GatewayUnavailable(f"paypay returned {resp.status_code}")

        url = (data.get("data") or {}).get("url")
        if not url:
            logger.error("paypay_response_missing_url: body=%s", data)
            raise GatewayUnavailable("paypay response missing url")

        code_id = data["data"].get("codeId")
        logger.info("paypay_qr_created: booking_id=%s code_id=%s", booking_id, code_id)
        return PayPayQRCode(url=url, code_id=code_id)

    async def aclose(self):
        await self.http.aclose()


# -------- STRIPE --------

STRIPE_FAILED = {"canceled"}


@dataclass(frozen=True)
class StripeIntent:
    intent_id: str
    client_secret: str


class StripeClient:
    """stripe-python is synchronous; every call runs in a worker thread."""

    def __init__(self, secret_key: str | None, breaker: CircuitBreaker | None = None):
        self.secret_key = secret_key
        self.breaker = breaker

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def _call(self, fn, *args, **kwargs):
        if not self.configured:
            raise GatewayNotConfigured("stripe secret key missing")

        await _allow(self.breaker)
        try:
            result = await asyncio.to_thread(fn, *args, api_key=self.secret_key, **kwargs)
        except stripe.InvalidRequestError:
            # the gateway answered; the request was wrong
            if self.breaker:
                await self.breaker.record_success()
            raise
        except stripe.StripeError as e:
            if self.breaker:
                await self.breaker.record_failure()
            logger.error("stripe_error: %s", e)
            raise GatewayUnavailable(f"stripe error: {e}") from e

        if self.breaker:
            await self.breaker.record_success()
        return result

    async def verify(self, reference: str) -> PaymentVerification:
        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, reference)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing" or e.http_status == 404:
                raise PaymentNotFound(f"stripe intent {reference} not found") from e
            logger.error("stripe_verify_rejected: reference=%s error=%s", reference, e)
            raise GatewayUnavailable(f"stripe rejected retrieve: {e}") from e

        raw_status = intent.get("status")
        if raw_status == "succeeded":
            state = PaymentState.SUCCEEDED
        elif raw_status in STRIPE_FAILED:
            state = PaymentState.FAILED
        else:
            state = PaymentState.PENDING

        metadata = intent.get("metadata") or {}
        return PaymentVerification(
            reference=reference,
            status=state,
            amount=intent.get("amount"),
            bound_booking_id=metadata.get("bookingId"),
            gateway_status=raw_status,
        )

    async def create_payment_intent(self, booking_id: str, owner_id: str, amount: int, resource_type: str) -> StripeIntent:
        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency="jpy",
                automatic_payment_methods={"enabled": True},
                metadata={"uid": owner_id, "type": resource_type, "bookingId": booking_id},
            )
        except stripe.InvalidRequestError as e:
            logger.error("stripe_create_rejected: booking_id=%s error=%s", booking_id, e)
            raise GatewayUnavailable(f"stripe rejected create: {e}") from e

        logger.info(
            "stripe_intent_created: booking_id=%s intent_id=%s has_client_secret=%s",
            booking_id,
            intent.get("id"),
            bool(intent.get("client_secret")),
        )
        return StripeIntent(intent_id=intent["id"], client_secret=intent["client_secret"])


# -------- ROUTING --------

class GatewayRouter:
    """Single verifier over both gateways; Stripe references are PaymentIntent ids."""

    def __init__(self, paypay: PayPayClient, stripe_client: StripeClient):
        self.paypay = paypay
        self.stripe = stripe_client

    def for_reference(self, reference: str) -> PaymentVerifier:
        if reference.startswith(STRIPE_REFERENCE_PREFIX):
            return self.stripe
        return self.paypay

    async def verify(self, reference: str) -> PaymentVerification:
        return await self.for_reference(reference).verify(reference)
