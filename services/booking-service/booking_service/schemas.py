from datetime import datetime

from pydantic import BaseModel, Field


class CreateBookingRequest(BaseModel):
    head_count: int = Field(gt=0)


class BookingResponse(BaseModel):
    booking_id: str
    resource_type: str
    head_count: int
    payment_status: str
    payment_reference: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    paid_at: datetime | None = None


class ConfirmPaymentRequest(BaseModel):
    payment_reference: str = Field(min_length=1)


class ConfirmPaymentResponse(BaseModel):
    success: bool = True


class PayPayPaymentResponse(BaseModel):
    url: str


class StripePaymentResponse(BaseModel):
    client_secret: str


class QueueSlot(BaseModel):
    start_at: datetime
    end_at: datetime
