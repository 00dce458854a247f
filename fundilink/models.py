import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProviderAccount(Base):
    """A service provider (fundi) and the financial state derived from their bookings"""

    __tablename__ = "provider_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, index=True, nullable=False)  # identity-service subject
    business_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)  # E.164, used for notifications
    is_available = Column(Boolean, default=True, nullable=False)
    # Earnings buckets - total == pending + withdrawn
    earnings_total = Column(Numeric(12, 2), default=0, nullable=False)
    earnings_pending = Column(Numeric(12, 2), default=0, nullable=False)
    earnings_withdrawn = Column(Numeric(12, 2), default=0, nullable=False)
    # Rating is recomputed from the full review set, never drifted incrementally
    rating_average = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    completed_jobs = Column(Integer, default=0, nullable=False)
    # Weekly subscription billed through the same gateway as bookings
    subscription_active = Column(Boolean, default=False, nullable=False)
    subscription_plan = Column(String(20), default="basic", nullable=False)  # basic, premium
    subscription_amount = Column(Numeric(12, 2), default=100, nullable=False)
    subscription_last_payment = Column(DateTime, nullable=True)
    subscription_next_payment = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    reviews = relationship(
        "Review", back_populates="provider", order_by="Review.id", lazy="selectin"
    )


class Booking(Base):
    """One service engagement between a client and a provider"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    client_id = Column(String(255), index=True, nullable=False)
    provider_id = Column(Integer, ForeignKey("provider_accounts.id"), index=True, nullable=False)

    # Service
    service_category = Column(String(50), nullable=False)  # plumbing, electrical, cleaning, ...
    service_description = Column(Text, nullable=False)
    estimated_hours = Column(Float, nullable=False)

    # Scheduling
    preferred_date = Column(DateTime, nullable=False)
    preferred_time = Column(String(20), nullable=False)
    is_flexible = Column(Boolean, default=False, nullable=False)
    actual_start_time = Column(DateTime, nullable=True)
    actual_end_time = Column(DateTime, nullable=True)

    # Location
    address = Column(String(500), nullable=False)
    location_info = Column(Text, nullable=True)

    # Communication
    client_phone = Column(String(50), nullable=True)
    provider_phone = Column(String(50), nullable=True)
    preferred_channel = Column(String(20), default="whatsapp", nullable=False)  # whatsapp, call, sms
    client_notes = Column(Text, nullable=True)
    provider_notes = Column(Text, nullable=True)
    is_urgent = Column(Boolean, default=False, nullable=False)

    status = Column(String(20), default="pending", index=True, nullable=False)

    # Pricing - total == base + sum(charges), commission + earnings == total
    base_amount = Column(Numeric(12, 2), nullable=False)
    additional_charges = Column(JSON, default=list, nullable=False)  # [{"description", "amount"}]
    total_amount = Column(Numeric(12, 2), nullable=False)
    platform_commission = Column(Numeric(12, 2), nullable=False)
    provider_earnings = Column(Numeric(12, 2), nullable=False)

    # Payment
    payment_method = Column(String(20), default="mpesa", nullable=False)  # mpesa, cash
    payment_status = Column(String(20), default="pending", nullable=False)  # pending, paid, failed, refunded
    transaction_id = Column(String(255), index=True, nullable=True)  # gateway correlation id
    receipt_number = Column(String(100), nullable=True)
    paid_at = Column(DateTime, nullable=True)

    # Completion
    client_confirmation = Column(Boolean, default=False, nullable=False)
    provider_confirmation = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    completion_feedback = Column(Text, nullable=True)
    completion_photos = Column(JSON, default=list, nullable=False)

    # Credit guards, flipped inside the same version-checked write as the credit itself
    earnings_credited = Column(Boolean, default=False, nullable=False)
    completion_recorded = Column(Boolean, default=False, nullable=False)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    provider = relationship("ProviderAccount", lazy="joined")
    timeline = relationship(
        "BookingTimelineEntry",
        back_populates="booking",
        order_by="BookingTimelineEntry.id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class BookingTimelineEntry(Base):
    """Append-only audit trail of booking transitions"""

    __tablename__ = "booking_timeline_entries"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)
    status = Column(String(20), nullable=False)
    note = Column(Text, nullable=True)
    actor_id = Column(String(255), nullable=True)  # None for gateway-driven entries
    actor_role = Column(String(20), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    booking = relationship("Booking", back_populates="timeline")


class Review(Base):
    """Client review of a completed booking - one per booking"""

    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("provider_accounts.id"), index=True, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    client_id = Column(String(255), nullable=False)
    rating = Column(Integer, nullable=False)  # 1-5
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    provider = relationship("ProviderAccount", back_populates="reviews")


class PaymentAttempt(Base):
    """One gateway transaction, joined to its callback by correlation id"""

    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(String(255), unique=True, index=True, nullable=False)  # CheckoutRequestID
    merchant_request_id = Column(String(255), nullable=True)
    kind = Column(String(20), nullable=False)  # booking, subscription
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=True)
    provider_id = Column(Integer, ForeignKey("provider_accounts.id"), index=True, nullable=True)
    plan = Column(String(20), nullable=True)  # subscription attempts only
    amount = Column(Numeric(12, 2), nullable=False)
    payer_phone = Column(String(50), nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, paid, failed
    result_code = Column(Integer, nullable=True)
    result_desc = Column(String(500), nullable=True)
    receipt_number = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
