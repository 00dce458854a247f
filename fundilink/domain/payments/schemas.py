"""Payment domain schemas - request models and the typed gateway callback"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...config import SUBSCRIPTION_PLANS

# Daraja ResultCode for a completed STK push
RESULT_SUCCESS = 0


def normalize_msisdn(v: str) -> str:
    """Normalize a Kenyan phone number to the 2547XXXXXXXX form the gateway expects"""
    digits = v.strip().replace(" ", "").lstrip("+")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    if not digits.isdigit() or not digits.startswith("254") or len(digits) != 12:
        raise ValueError("phone_number must be a Kenyan mobile number, e.g. 254712345678")
    return digits


class StkPushRequest(BaseModel):
    """Schema for initiating payment of a booking"""

    booking_id: int
    phone_number: str

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return normalize_msisdn(v)


class SubscriptionPaymentRequest(BaseModel):
    """Schema for paying a provider subscription"""

    phone_number: str
    plan: str = "basic"

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return normalize_msisdn(v)

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, v: str) -> str:
        if v not in SUBSCRIPTION_PLANS:
            raise ValueError(f"plan must be one of {sorted(SUBSCRIPTION_PLANS)}")
        return v


class InitiatePaymentResponse(BaseModel):
    message: str
    checkout_request_id: str
    merchant_request_id: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    payment_status: str
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    amount: Decimal
    receipt_number: Optional[str] = None


class CallbackAck(BaseModel):
    """Acknowledgement the gateway expects for every callback"""

    ResultCode: int = 0
    ResultDesc: str = "Accepted"


# Daraja STK callback envelope: {"Body": {"stkCallback": {...}}}


class CallbackItem(BaseModel):
    Name: str
    Value: Any = None


class StkCallbackMetadata(BaseModel):
    Item: list[CallbackItem] = []


class StkCallback(BaseModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: Optional[str] = None
    CallbackMetadata: Optional[StkCallbackMetadata] = None

    def metadata_value(self, name: str) -> Any:
        if not self.CallbackMetadata:
            return None
        for item in self.CallbackMetadata.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallbackBody(BaseModel):
    stkCallback: StkCallback


class StkCallbackPayload(BaseModel):
    Body: StkCallbackBody


class PaymentOutcome(BaseModel):
    """Validated result of one gateway transaction, keyed by correlation id"""

    correlation_id: str
    result_code: int
    result_desc: Optional[str] = None
    receipt_number: Optional[str] = None
    amount: Optional[Decimal] = None
    phone_number: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def succeeded(self) -> bool:
        return self.result_code == RESULT_SUCCESS

    @classmethod
    def from_callback(cls, payload: StkCallbackPayload) -> "PaymentOutcome":
        callback = payload.Body.stkCallback
        amount = callback.metadata_value("Amount")
        receipt = callback.metadata_value("MpesaReceiptNumber")
        phone = callback.metadata_value("PhoneNumber")
        return cls(
            correlation_id=callback.CheckoutRequestID,
            result_code=callback.ResultCode,
            result_desc=callback.ResultDesc,
            receipt_number=str(receipt) if receipt is not None else None,
            amount=Decimal(str(amount)) if amount is not None else None,
            phone_number=str(phone) if phone is not None else None,
        )
