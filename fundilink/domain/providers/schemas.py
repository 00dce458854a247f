"""Provider domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ProviderAccountCreate(BaseModel):
    """Schema for a provider registering their account"""

    business_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.startswith("+"):
            raise ValueError("phone must be in E.164 format (e.g., +254712345678)")
        return v


class AvailabilityUpdate(BaseModel):
    is_available: bool


class EarningsSummary(BaseModel):
    total: Decimal
    pending: Decimal
    withdrawn: Decimal


class RatingSummary(BaseModel):
    average: float
    count: int


class SubscriptionSummary(BaseModel):
    is_active: bool
    plan: str
    amount: Decimal
    last_payment: Optional[datetime] = None
    next_payment: Optional[datetime] = None


class ProviderAccountResponse(BaseModel):
    id: int
    user_id: str
    business_name: Optional[str] = None
    phone: Optional[str] = None
    is_available: bool
    completed_jobs: int
    earnings: EarningsSummary
    rating: RatingSummary
    subscription: SubscriptionSummary

    model_config = ConfigDict(from_attributes=True)
