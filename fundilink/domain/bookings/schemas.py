"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

SERVICE_CATEGORIES = {
    "plumbing",
    "electrical",
    "cleaning",
    "tutoring",
    "mechanic",
    "carpenter",
    "painting",
    "gardening",
    "other",
}


class AdditionalCharge(BaseModel):
    """Extra line item on top of the base amount"""

    description: str
    amount: Decimal

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("description is required")
        return v.strip()

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("amount must be positive")
        return v


class BookingCreate(BaseModel):
    """Schema for a client's booking request"""

    provider_id: int
    service_category: str
    service_description: str
    estimated_hours: float
    preferred_date: datetime
    preferred_time: str
    is_flexible: bool = False
    address: str
    location_info: Optional[str] = None
    client_phone: Optional[str] = None
    preferred_channel: str = "whatsapp"
    notes: Optional[str] = None
    is_urgent: bool = False
    base_amount: Decimal
    additional_charges: list[AdditionalCharge] = []
    payment_method: str = "mpesa"

    @field_validator("service_category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if v not in SERVICE_CATEGORIES:
            raise ValueError(f"service_category must be one of {sorted(SERVICE_CATEGORIES)}")
        return v

    @field_validator("estimated_hours")
    @classmethod
    def validate_hours(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("estimated_hours must be positive")
        return v

    @field_validator("base_amount")
    @classmethod
    def validate_base_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("base_amount must be positive")
        return v

    @field_validator("preferred_channel")
    @classmethod
    def validate_channel(cls, v: str) -> str:
        if v not in {"whatsapp", "call", "sms"}:
            raise ValueError("preferred_channel must be 'whatsapp', 'call' or 'sms'")
        return v

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        if v not in {"mpesa", "cash"}:
            raise ValueError("payment_method must be 'mpesa' or 'cash'")
        return v


class StatusUpdateRequest(BaseModel):
    """Schema for requesting a status transition"""

    status: str
    note: Optional[str] = None


class CompletionRequest(BaseModel):
    """Completion details a provider submits when finishing a job"""

    photos: list[str] = []
    feedback: Optional[str] = None
    actual_end_time: Optional[datetime] = None


class ReviewRequest(BaseModel):
    rating: int
    comment: Optional[str] = None

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, v: int) -> int:
        if v < 1 or v > 5:
            raise ValueError("rating must be between 1 and 5")
        return v


class TimelineEntryResponse(BaseModel):
    status: str
    note: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingResponse(BaseModel):
    id: int
    public_id: str
    client_id: str
    provider_id: int
    service_category: str
    service_description: str
    estimated_hours: float
    preferred_date: datetime
    preferred_time: str
    address: str
    status: str
    base_amount: Decimal
    additional_charges: list[AdditionalCharge]
    total_amount: Decimal
    platform_commission: Decimal
    provider_earnings: Decimal
    payment_method: str
    payment_status: str
    transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    client_confirmation: bool
    provider_confirmation: bool
    completed_at: Optional[datetime] = None
    completion_feedback: Optional[str] = None
    completion_photos: list[str]
    timeline: list[TimelineEntryResponse]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewResponse(BaseModel):
    id: int
    provider_id: int
    booking_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
