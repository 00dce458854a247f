"""
Payment reconciler

Two-phase settlement against the M-Pesa gateway:

1. initiate - synchronous STK push; on acceptance the gateway's
   CheckoutRequestID is recorded as a PaymentAttempt (the correlation id).
2. reconcile - the gateway's asynchronous callback, delivered at least once
   and in any order relative to step 1, is joined back to its attempt by
   correlation id. Each attempt resolves exactly once; repeated callbacks
   are acknowledged without effect.

Booking payments confirm the booking through the state machine's
PaymentSettled event and credit the provider once. Subscription payments
follow the same protocol keyed by provider instead of booking.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import ADMIN, CLIENT, PROVIDER, Actor
from ...config import MPESA_CALLBACK_BASE_URL, RECONCILE_MAX_RETRIES, SUBSCRIPTION_PLANS
from ...exceptions import AlreadyPaid, Conflict, Forbidden, InvalidState, NotFound, UnknownCorrelation
from ...models import Booking, PaymentAttempt, utcnow
from ..bookings.repository import BookingRepository
from ..bookings.state_machine import CANCELLED, DISPUTED, BookingStateMachine, PaymentSettled, is_party
from ..providers.service import ProviderAccountService
from ..transactions import unit_of_work
from .mpesa_service import MpesaService, StkPushAccepted, mpesa_service
from .repository import PaymentRepository
from .schemas import PaymentOutcome

logger = logging.getLogger(__name__)

BOOKING_PAYMENT = "booking"
SUBSCRIPTION_PAYMENT = "subscription"

BOOKING_CALLBACK_PATH = "/payments/callback"
SUBSCRIPTION_CALLBACK_PATH = "/payments/subscription-callback"

APPLIED = "applied"
DUPLICATE = "duplicate"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class ReconcileResult:
    status: str  # applied, duplicate, unknown
    correlation_id: str
    kind: Optional[str] = None
    booking_id: Optional[int] = None
    provider_id: Optional[int] = None
    payment_status: Optional[str] = None
    transitioned: bool = False


class PaymentReconciler:
    def __init__(
        self,
        db: Session,
        gateway: Optional[MpesaService] = None,
        max_retries: int = RECONCILE_MAX_RETRIES,
    ):
        self.db = db
        self.gateway = gateway or mpesa_service
        self.max_retries = max(1, max_retries)
        self.repo = PaymentRepository()
        self.bookings = BookingRepository()
        self.accounts = ProviderAccountService(db)
        self.state_machine = BookingStateMachine(db, self.accounts)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate(self, booking_id: int, payer_phone: str, actor: Actor) -> PaymentAttempt:
        """Start payment of a booking; records the correlation id once the gateway accepts"""
        booking = self.get_booking(booking_id)
        if actor.role not in (CLIENT, ADMIN) or not is_party(booking, actor):
            raise Forbidden("Access denied")
        if booking.payment_status == "paid":
            raise AlreadyPaid(f"Booking {booking_id} already paid")
        if booking.status in (CANCELLED, DISPUTED):
            raise InvalidState(f"Cannot pay for a {booking.status} booking")
        if booking.payment_method != "mpesa":
            raise InvalidState("Booking is not payable via M-Pesa")

        amount = Decimal(booking.total_amount)
        if amount != amount.to_integral_value():
            raise InvalidState(f"M-Pesa payments need a whole-shilling total, booking is {amount}")
        description = f"Payment for {booking.service_category} service"

        # No transaction stays open while waiting on the gateway
        self.db.rollback()
        accepted = await self.gateway.stk_push(
            amount=amount,
            phone_number=payer_phone,
            account_reference=f"FundiLink-{booking_id}",
            description=description,
            callback_url=f"{MPESA_CALLBACK_BASE_URL}{BOOKING_CALLBACK_PATH}",
        )
        return self._with_retries(
            f"recording payment attempt {accepted.checkout_request_id}",
            lambda: self._record_booking_attempt(booking_id, accepted, amount, payer_phone),
        )

    async def initiate_subscription(self, payer_phone: str, plan: str, actor: Actor) -> PaymentAttempt:
        """Start payment of the calling provider's subscription"""
        if actor.role != PROVIDER:
            raise Forbidden("Only providers can pay subscriptions")
        account_id = self.accounts.get_account_for_user(actor.user_id).id
        amount = SUBSCRIPTION_PLANS[plan]

        self.db.rollback()
        accepted = await self.gateway.stk_push(
            amount=amount,
            phone_number=payer_phone,
            account_reference=f"Sub-{account_id}",
            description=f"FundiLink {plan} subscription",
            callback_url=f"{MPESA_CALLBACK_BASE_URL}{SUBSCRIPTION_CALLBACK_PATH}",
        )
        with unit_of_work(self.db, f"recording subscription attempt {accepted.checkout_request_id}"):
            attempt = self.repo.add_attempt(
                self.db,
                correlation_id=accepted.checkout_request_id,
                merchant_request_id=accepted.merchant_request_id,
                kind=SUBSCRIPTION_PAYMENT,
                provider_id=account_id,
                plan=plan,
                amount=amount,
                payer_phone=payer_phone,
            )
        logger.info(f"📲 Subscription payment initiated for provider {account_id}: {attempt.correlation_id}")
        return attempt

    def _record_booking_attempt(
        self, booking_id: int, accepted: StkPushAccepted, amount: Decimal, payer_phone: str
    ) -> PaymentAttempt:
        booking = self.get_booking(booking_id)
        attempt = self.repo.add_attempt(
            self.db,
            correlation_id=accepted.checkout_request_id,
            merchant_request_id=accepted.merchant_request_id,
            kind=BOOKING_PAYMENT,
            booking_id=booking.id,
            amount=amount,
            payer_phone=payer_phone,
        )
        if booking.payment_status != "paid":
            booking.transaction_id = accepted.checkout_request_id
            booking.payment_status = "pending"
        logger.info(f"📲 Payment initiated for booking {booking.id}: {accepted.checkout_request_id}")
        return attempt

    # ------------------------------------------------------------------
    # Callback reconciliation
    # ------------------------------------------------------------------

    def handle_callback(self, outcome: PaymentOutcome) -> ReconcileResult:
        """Reconcile a callback; unknown correlation ids are logged and acknowledged"""
        try:
            return self.reconcile(outcome)
        except UnknownCorrelation:
            logger.warning(
                f"⚠️ Callback for unknown correlation id {outcome.correlation_id} "
                f"(result {outcome.result_code}); acknowledged without changes"
            )
            return ReconcileResult(status=UNKNOWN, correlation_id=outcome.correlation_id)

    def reconcile(self, outcome: PaymentOutcome) -> ReconcileResult:
        """Resolve a gateway outcome against its payment attempt, at most once"""
        return self._with_retries(
            f"reconciliation of {outcome.correlation_id}",
            lambda: self._apply_outcome(outcome),
        )

    def _apply_outcome(self, outcome: PaymentOutcome) -> ReconcileResult:
        attempt = self.repo.get_attempt_by_correlation_id(self.db, outcome.correlation_id)
        if attempt is None:
            raise UnknownCorrelation(f"No payment attempt for {outcome.correlation_id}")

        if attempt.status != "pending":
            logger.info(
                f"ℹ️ Duplicate callback for {outcome.correlation_id} (already {attempt.status}), ignoring"
            )
            return ReconcileResult(
                status=DUPLICATE,
                correlation_id=outcome.correlation_id,
                kind=attempt.kind,
                booking_id=attempt.booking_id,
                provider_id=attempt.provider_id,
                payment_status=attempt.status,
            )

        attempt.status = "paid" if outcome.succeeded else "failed"
        attempt.result_code = outcome.result_code
        attempt.result_desc = outcome.result_desc
        attempt.receipt_number = outcome.receipt_number
        attempt.resolved_at = utcnow()

        if attempt.kind == SUBSCRIPTION_PAYMENT:
            return self._settle_subscription(attempt, outcome)
        return self._settle_booking(attempt, outcome)

    def _settle_booking(self, attempt: PaymentAttempt, outcome: PaymentOutcome) -> ReconcileResult:
        booking = self.get_booking(attempt.booking_id)
        result = dict(
            status=APPLIED,
            correlation_id=attempt.correlation_id,
            kind=BOOKING_PAYMENT,
            booking_id=booking.id,
            provider_id=booking.provider_id,
        )

        if not outcome.succeeded:
            if booking.payment_status != "paid" and booking.transaction_id == attempt.correlation_id:
                booking.payment_status = "failed"
            logger.warning(
                f"❌ Payment failed for booking {booking.id} ({attempt.correlation_id}): "
                f"{outcome.result_code} {outcome.result_desc}"
            )
            return ReconcileResult(payment_status=booking.payment_status, **result)

        if booking.payment_status == "paid":
            logger.warning(
                f"⚠️ Booking {booking.id} already settled by {booking.transaction_id}; "
                f"{attempt.correlation_id} ({outcome.receipt_number}) needs a manual refund"
            )
            return ReconcileResult(payment_status="paid", **result)

        if Decimal(attempt.amount) != Decimal(booking.total_amount):
            logger.warning(
                f"⚠️ Booking {booking.id} total is {booking.total_amount} but {attempt.correlation_id} "
                f"collected {attempt.amount} ({outcome.receipt_number}); left unpaid for manual handling"
            )
            return ReconcileResult(payment_status=booking.payment_status, **result)

        booking.payment_status = "paid"
        booking.transaction_id = attempt.correlation_id
        booking.receipt_number = outcome.receipt_number
        booking.paid_at = attempt.resolved_at
        logger.info(f"✅ Booking {booking.id} paid: receipt {outcome.receipt_number}")

        transitioned = self.state_machine.apply_payment_settled(
            booking,
            PaymentSettled(
                booking_id=booking.id,
                correlation_id=attempt.correlation_id,
                receipt_number=outcome.receipt_number,
            ),
        )

        if booking.status == CANCELLED:
            logger.warning(f"⚠️ Booking {booking.id} was cancelled before payment settled; provider not credited")
        else:
            self.accounts.credit_booking_earnings(booking)

        return ReconcileResult(payment_status="paid", transitioned=transitioned, **result)

    def _settle_subscription(self, attempt: PaymentAttempt, outcome: PaymentOutcome) -> ReconcileResult:
        if outcome.succeeded:
            self.accounts.activate_subscription(
                attempt.provider_id, attempt.plan, Decimal(attempt.amount), attempt.resolved_at
            )
        else:
            logger.warning(
                f"❌ Subscription payment failed for provider {attempt.provider_id}: "
                f"{outcome.result_code} {outcome.result_desc}"
            )
        return ReconcileResult(
            status=APPLIED,
            correlation_id=attempt.correlation_id,
            kind=SUBSCRIPTION_PAYMENT,
            provider_id=attempt.provider_id,
            payment_status=attempt.status,
        )

    # ------------------------------------------------------------------
    # Queries and helpers
    # ------------------------------------------------------------------

    def get_payment_status(self, booking_id: int, actor: Actor) -> dict:
        booking = self.get_booking(booking_id)
        if not is_party(booking, actor):
            raise Forbidden("Access denied")
        return {
            "payment_status": booking.payment_status,
            "transaction_id": booking.transaction_id,
            "paid_at": booking.paid_at,
            "amount": booking.total_amount,
            "receipt_number": booking.receipt_number,
        }

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.bookings.get_booking(self.db, booking_id)
        if not booking:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    def _with_retries(self, description: str, work):
        """Run work in a unit of work, retrying with fresh state on version conflicts"""
        for attempt_no in range(1, self.max_retries + 1):
            try:
                with unit_of_work(self.db, description):
                    result = work()
                return result
            except Conflict:
                if attempt_no >= self.max_retries:
                    logger.error(f"❌ Giving up on {description} after {attempt_no} conflicts")
                    raise
                logger.warning(f"🔁 Retrying {description} ({attempt_no}/{self.max_retries})")
