"""Payment router - M-Pesa STK push initiation and gateway callbacks"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_actor
from ...database import get_db
from ...services.notification_service import build_status_notice, send_status_notice
from .mpesa_service import MpesaService, mpesa_service
from .reconciler import PaymentReconciler, ReconcileResult
from .schemas import (
    CallbackAck,
    InitiatePaymentResponse,
    PaymentOutcome,
    PaymentStatusResponse,
    StkCallbackPayload,
    StkPushRequest,
    SubscriptionPaymentRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_gateway() -> MpesaService:
    return mpesa_service


def get_payment_reconciler(
    db: Session = Depends(get_db),
    gateway: MpesaService = Depends(get_payment_gateway),
) -> PaymentReconciler:
    """Dependency injection for PaymentReconciler"""
    return PaymentReconciler(db, gateway)


async def parse_callback(request: Request) -> PaymentOutcome:
    """Validate a raw gateway callback; anything that is not one is rejected with 400"""
    try:
        payload = StkCallbackPayload.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"🚫 Rejected malformed payment callback: {e}")
        raise HTTPException(status_code=400, detail="Invalid callback payload") from None
    return PaymentOutcome.from_callback(payload)


# ============================================================================
# BOOKING PAYMENTS
# ============================================================================


@router.post("/stk-push", response_model=InitiatePaymentResponse)
async def initiate_stk_push(
    data: StkPushRequest,
    actor: Actor = Depends(get_current_actor),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
):
    """Prompt the client's phone to pay for a booking"""
    attempt = await reconciler.initiate(data.booking_id, data.phone_number, actor)
    return InitiatePaymentResponse(
        message="Payment request sent. Check your phone to complete payment.",
        checkout_request_id=attempt.correlation_id,
        merchant_request_id=attempt.merchant_request_id,
    )


@router.get("/status/{booking_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
):
    """Get the payment status of a booking"""
    return reconciler.get_payment_status(booking_id, actor)


@router.post("/callback", response_model=CallbackAck)
async def payment_callback(
    background_tasks: BackgroundTasks,
    outcome: PaymentOutcome = Depends(parse_callback),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
):
    """M-Pesa callback for booking payments (unauthenticated, delivered at least once)"""
    logger.info(f"📥 Payment callback for {outcome.correlation_id}: result {outcome.result_code}")
    result = reconciler.handle_callback(outcome)
    _notify_if_transitioned(reconciler, result, background_tasks)
    return CallbackAck()


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


@router.post("/subscription", response_model=InitiatePaymentResponse)
async def initiate_subscription_payment(
    data: SubscriptionPaymentRequest,
    actor: Actor = Depends(get_current_actor),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
):
    """Prompt a provider's phone to pay their subscription"""
    attempt = await reconciler.initiate_subscription(data.phone_number, data.plan, actor)
    return InitiatePaymentResponse(
        message="Subscription payment request sent. Check your phone to complete payment.",
        checkout_request_id=attempt.correlation_id,
        merchant_request_id=attempt.merchant_request_id,
    )


@router.post("/subscription-callback", response_model=CallbackAck)
async def subscription_callback(
    outcome: PaymentOutcome = Depends(parse_callback),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
):
    """M-Pesa callback for subscription payments"""
    logger.info(f"📥 Subscription callback for {outcome.correlation_id}: result {outcome.result_code}")
    reconciler.handle_callback(outcome)
    return CallbackAck()


def _notify_if_transitioned(
    reconciler: PaymentReconciler, result: ReconcileResult, background_tasks: BackgroundTasks
) -> None:
    if not result.transitioned:
        return
    booking = reconciler.get_booking(result.booking_id)
    background_tasks.add_task(send_status_notice, build_status_notice(booking))
