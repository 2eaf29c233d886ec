from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, TypeDecorator

from .db import Base


class PaymentStatus:
    UNPAID = "unpaid"
    PAID = "paid"


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.
    Backends without timezone support hand back naive values; those are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError("naive datetime not allowed")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    owner_id = Column(String, nullable=False, index=True)
    resource_type = Column(String, nullable=False)
    head_count = Column(Integer, nullable=False)

    payment_status = Column(String, nullable=False, default=PaymentStatus.UNPAID)  # unpaid/paid
    payment_reference = Column(String, nullable=True)

    # set together, once, when the booking becomes paid
    start_at = Column(UTCDateTime(), nullable=True)
    end_at = Column(UTCDateTime(), nullable=True)
    paid_at = Column(UTCDateTime(), nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_bookings_resource_status_end", "resource_type", "payment_status", "end_at"),
    )

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID


class ManualItem(Base):
    __tablename__ = "manual_items"

    id = Column(Integer, primary_key=True)
    category = Column(String, nullable=True)
    answer = Column(Text, nullable=False)
    is_public = Column(Boolean, nullable=False, default=True)


class ManualItemTag(Base):
    __tablename__ = "manual_item_tags"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("manual_items.id", ondelete="CASCADE"), nullable=False)
    tag = Column(String, nullable=False, index=True)

    __table_args__ = (
        Index("ux_manual_item_tags_item_tag", "item_id", "tag", unique=True),
    )
