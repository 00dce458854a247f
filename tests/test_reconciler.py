import asyncio
from decimal import Decimal

import pytest
from conftest import (
    ADMIN_ACTOR,
    CLIENT_ACTOR,
    OTHER_CLIENT_ACTOR,
    PROVIDER_ACTOR,
    FakeGateway,
    failure_outcome,
    success_outcome,
)

from fundilink.domain.bookings.schemas import AdditionalCharge
from fundilink.domain.bookings.service import BookingService
from fundilink.domain.payments.reconciler import PaymentReconciler
from fundilink.exceptions import (
    AlreadyPaid,
    Conflict,
    Forbidden,
    GatewayTimeout,
    GatewayUnavailable,
    InvalidState,
    NotFound,
    UnknownCorrelation,
)
from fundilink.models import Booking, PaymentAttempt, ProviderAccount

PHONE = "254712345678"


def initiate(reconciler, booking_id, actor=CLIENT_ACTOR):
    return asyncio.run(reconciler.initiate(booking_id, PHONE, actor))


def test_end_to_end_payment_accepts_booking_and_credits_provider(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)

    attempt = initiate(reconciler, booking.id)
    assert gateway.calls[0]["amount"] == Decimal("1000.00")
    assert gateway.calls[0]["account_reference"] == f"FundiLink-{booking.id}"
    assert gateway.calls[0]["callback_url"].endswith("/payments/callback")

    booking = db.get(Booking, booking.id)
    assert booking.transaction_id == attempt.correlation_id
    assert booking.payment_status == "pending"

    result = reconciler.reconcile(success_outcome(attempt.correlation_id))

    assert result.status == "applied"
    assert result.transitioned is True
    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.payment_status == "paid"
    assert booking.receipt_number == "QKL7X2ABCD"
    assert booking.paid_at is not None
    assert booking.status == "accepted"
    assert booking.platform_commission == Decimal("50.00")
    assert booking.provider_earnings == Decimal("950.00")

    account = db.get(ProviderAccount, provider.id)
    assert account.earnings_pending == Decimal("950.00")
    assert account.earnings_total == Decimal("950.00")
    assert account.earnings_total == account.earnings_pending + account.earnings_withdrawn


def test_duplicate_callbacks_are_no_ops(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    attempt = initiate(reconciler, booking.id)
    outcome = success_outcome(attempt.correlation_id)

    first = reconciler.reconcile(outcome)
    second = reconciler.handle_callback(outcome)
    third = reconciler.handle_callback(outcome)

    assert first.status == "applied"
    assert second.status == "duplicate"
    assert third.status == "duplicate"
    db.expire_all()
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("950.00")
    assert [e.status for e in db.get(Booking, booking.id).timeline] == ["pending", "accepted"]


def test_unknown_correlation_is_acknowledged_without_changes(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)

    with pytest.raises(UnknownCorrelation):
        reconciler.reconcile(success_outcome("ws_CO_never_issued"))

    result = reconciler.handle_callback(success_outcome("ws_CO_never_issued"))
    assert result.status == "unknown"

    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.payment_status == "pending"
    assert booking.status == "pending"
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("0")
    assert db.query(PaymentAttempt).count() == 0


def test_failed_payment_marks_booking_failed_but_keeps_status(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    attempt = initiate(reconciler, booking.id)

    result = reconciler.reconcile(failure_outcome(attempt.correlation_id))

    assert result.payment_status == "failed"
    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.payment_status == "failed"
    assert booking.status == "pending"
    assert db.get(PaymentAttempt, attempt.id).result_code == 1032
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("0")


def test_retry_after_failure_can_succeed(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    first = initiate(reconciler, booking.id)
    reconciler.reconcile(failure_outcome(first.correlation_id))

    second = initiate(reconciler, booking.id)
    assert second.correlation_id != first.correlation_id
    assert db.get(Booking, booking.id).payment_status == "pending"

    reconciler.reconcile(success_outcome(second.correlation_id))
    db.expire_all()
    assert db.get(Booking, booking.id).payment_status == "paid"
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("950.00")


def test_second_successful_attempt_is_not_credited_again(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    first = initiate(reconciler, booking.id)
    second = initiate(reconciler, booking.id)

    reconciler.reconcile(success_outcome(second.correlation_id, receipt="RCPT2"))
    late = reconciler.reconcile(success_outcome(first.correlation_id, receipt="RCPT1"))

    assert late.status == "applied"
    assert late.transitioned is False
    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.receipt_number == "RCPT2"
    assert booking.transaction_id == second.correlation_id
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("950.00")


def test_initiating_payment_for_paid_booking_fails(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    attempt = initiate(reconciler, booking.id)
    reconciler.reconcile(success_outcome(attempt.correlation_id))

    with pytest.raises(AlreadyPaid):
        initiate(reconciler, booking.id)
    assert len(gateway.calls) == 1


def test_cannot_pay_for_cancelled_booking(db, provider, make_booking, gateway):
    booking = make_booking()
    BookingService(db).transition(booking.id, "cancelled", None, CLIENT_ACTOR)

    with pytest.raises(InvalidState):
        initiate(PaymentReconciler(db, gateway), booking.id)
    assert gateway.calls == []


def test_cash_bookings_are_not_sent_to_the_gateway(db, provider, make_booking, gateway):
    booking = make_booking(payment_method="cash")
    with pytest.raises(InvalidState):
        initiate(PaymentReconciler(db, gateway), booking.id)


def test_only_the_booking_client_or_admin_can_pay(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)

    with pytest.raises(Forbidden):
        initiate(reconciler, booking.id, OTHER_CLIENT_ACTOR)
    with pytest.raises(Forbidden):
        initiate(reconciler, booking.id, PROVIDER_ACTOR)
    with pytest.raises(NotFound):
        initiate(reconciler, 9999)

    attempt = initiate(reconciler, booking.id, ADMIN_ACTOR)
    assert attempt.booking_id == booking.id


@pytest.mark.parametrize("error", [GatewayUnavailable("down"), GatewayTimeout("slow")])
def test_gateway_failure_records_nothing(db, provider, make_booking, gateway, error):
    booking = make_booking()
    gateway.error = error

    with pytest.raises(GatewayUnavailable) as exc_info:
        initiate(PaymentReconciler(db, gateway), booking.id)

    assert exc_info.value.retryable is True
    db.expire_all()
    assert db.get(Booking, booking.id).transaction_id is None
    assert db.query(PaymentAttempt).count() == 0


def test_payment_after_completion_does_not_double_credit(db, provider, make_booking, complete_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    attempt = initiate(reconciler, booking.id)
    complete_booking(booking.id)

    result = reconciler.reconcile(success_outcome(attempt.correlation_id))

    assert result.transitioned is False
    db.expire_all()
    account = db.get(ProviderAccount, provider.id)
    assert account.completed_jobs == 1
    assert account.earnings_pending == Decimal("950.00")
    assert db.get(Booking, booking.id).status == "completed"


def test_completion_after_payment_counts_job_without_second_credit(
    db, provider, make_booking, complete_booking, gateway
):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    reconciler.reconcile(success_outcome(initiate(reconciler, booking.id).correlation_id))

    complete_booking(booking.id)

    db.expire_all()
    account = db.get(ProviderAccount, provider.id)
    assert account.completed_jobs == 1
    assert account.earnings_pending == Decimal("950.00")
    assert account.earnings_total == Decimal("950.00")


def test_payment_landing_on_cancelled_booking_is_recorded_but_not_credited(
    db, provider, make_booking, gateway
):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    attempt = initiate(reconciler, booking.id)
    BookingService(db).transition(booking.id, "cancelled", None, CLIENT_ACTOR)

    result = reconciler.reconcile(success_outcome(attempt.correlation_id))

    assert result.transitioned is False
    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.status == "cancelled"
    assert booking.payment_status == "paid"
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("0")


def test_subscription_payment_activates_plan_for_a_week(db, provider, gateway):
    reconciler = PaymentReconciler(db, gateway)
    attempt = asyncio.run(reconciler.initiate_subscription(PHONE, "premium", PROVIDER_ACTOR))

    assert gateway.calls[0]["amount"] == Decimal("200")
    assert gateway.calls[0]["account_reference"] == f"Sub-{provider.id}"
    assert gateway.calls[0]["callback_url"].endswith("/payments/subscription-callback")

    result = reconciler.handle_callback(success_outcome(attempt.correlation_id, amount="200"))

    assert result.kind == "subscription"
    db.expire_all()
    account = db.get(ProviderAccount, provider.id)
    assert account.subscription_active is True
    assert account.subscription_plan == "premium"
    assert account.subscription_amount == Decimal("200.00")
    assert (account.subscription_next_payment - account.subscription_last_payment).days == 7


def test_failed_subscription_payment_leaves_subscription_inactive(db, provider, gateway):
    reconciler = PaymentReconciler(db, gateway)
    attempt = asyncio.run(reconciler.initiate_subscription(PHONE, "basic", PROVIDER_ACTOR))

    reconciler.handle_callback(failure_outcome(attempt.correlation_id))

    db.expire_all()
    assert db.get(ProviderAccount, provider.id).subscription_active is False


def test_clients_cannot_pay_subscriptions(db, provider, gateway):
    with pytest.raises(Forbidden):
        asyncio.run(PaymentReconciler(db, gateway).initiate_subscription(PHONE, "basic", CLIENT_ACTOR))


def test_fractional_total_is_not_sent_to_the_gateway(db, provider, make_booking, gateway):
    booking = make_booking(base_amount="1000.40")

    with pytest.raises(InvalidState, match="whole-shilling"):
        initiate(PaymentReconciler(db, gateway), booking.id)
    assert gateway.calls == []


def test_no_transaction_is_open_during_the_gateway_call(db, provider, make_booking):
    class RecordingGateway(FakeGateway):
        def __init__(self):
            super().__init__()
            self.in_transaction = []

        async def stk_push(self, **kwargs):
            self.in_transaction.append(db.in_transaction())
            return await super().stk_push(**kwargs)

    booking = make_booking()
    gateway = RecordingGateway()

    attempt = initiate(PaymentReconciler(db, gateway), booking.id)

    assert gateway.in_transaction == [False]
    assert db.get(Booking, booking.id).transaction_id == attempt.correlation_id


def test_charge_added_after_push_is_not_settled_by_the_old_amount(db, provider, make_booking, gateway):
    booking = make_booking()
    reconciler = PaymentReconciler(db, gateway)
    attempt = initiate(reconciler, booking.id)
    BookingService(db).add_charge(
        booking.id, AdditionalCharge(description="Extra pipe", amount="500"), PROVIDER_ACTOR
    )

    result = reconciler.reconcile(success_outcome(attempt.correlation_id))

    assert result.status == "applied"
    assert result.payment_status == "pending"
    assert result.transitioned is False
    db.expire_all()
    booking = db.get(Booking, booking.id)
    assert booking.total_amount == Decimal("1500.00")
    assert booking.payment_status == "pending"
    assert booking.status == "pending"
    assert db.get(PaymentAttempt, attempt.id).status == "paid"
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("0")

    # A fresh push for the new total still settles normally
    second = initiate(reconciler, booking.id)
    reconciler.reconcile(success_outcome(second.correlation_id, amount="1500"))
    db.expire_all()
    assert db.get(Booking, booking.id).payment_status == "paid"
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("1425.00")


def test_payment_racing_completion_credits_once(
    db, session_factory, provider, make_booking, complete_booking, gateway, caplog
):
    booking_id = make_booking().id
    attempt = initiate(PaymentReconciler(db, gateway), booking_id)

    callback_session = session_factory()
    try:
        # The callback handler read the booking before the provider completed it
        stale = callback_session.get(Booking, booking_id)
        assert stale.status == "pending"
        assert stale.earnings_credited is False

        complete_booking(booking_id)

        result = PaymentReconciler(callback_session, gateway).reconcile(success_outcome(attempt.correlation_id))
    finally:
        callback_session.close()

    assert result.status == "applied"
    assert result.transitioned is False
    assert "Retrying" in caplog.text

    db.expire_all()
    booking = db.get(Booking, booking_id)
    assert booking.status == "completed"
    assert booking.payment_status == "paid"
    assert [e.status for e in booking.timeline] == ["pending", "accepted", "in_progress", "completed"]
    account = db.get(ProviderAccount, provider.id)
    assert account.earnings_pending == Decimal("950.00")
    assert account.earnings_total == Decimal("950.00")
    assert account.completed_jobs == 1


def test_conflicts_beyond_the_retry_budget_surface(
    db, session_factory, provider, make_booking, complete_booking, gateway
):
    booking_id = make_booking().id
    attempt = initiate(PaymentReconciler(db, gateway), booking_id)

    callback_session = session_factory()
    try:
        stale = callback_session.get(Booking, booking_id)
        assert stale.status == "pending"
        complete_booking(booking_id)

        with pytest.raises(Conflict) as exc_info:
            PaymentReconciler(callback_session, gateway, max_retries=1).reconcile(
                success_outcome(attempt.correlation_id)
            )
        assert exc_info.value.retryable is True
    finally:
        callback_session.close()

    db.expire_all()
    assert db.get(PaymentAttempt, attempt.id).status == "pending"
    assert db.get(Booking, booking_id).payment_status == "pending"
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("950.00")


def test_same_callback_in_two_sessions_applies_once(db, session_factory, provider, make_booking, gateway):
    booking_id = make_booking().id
    attempt = initiate(PaymentReconciler(db, gateway), booking_id)
    outcome = success_outcome(attempt.correlation_id)

    first_session = session_factory()
    second_session = session_factory()
    try:
        # Both workers hold the pending attempt before either resolves it
        first_view = first_session.get(PaymentAttempt, attempt.id)
        second_view = second_session.get(PaymentAttempt, attempt.id)
        assert first_view.status == second_view.status == "pending"

        first = PaymentReconciler(first_session, gateway).handle_callback(outcome)
        second = PaymentReconciler(second_session, gateway).handle_callback(outcome)
    finally:
        first_session.close()
        second_session.close()

    assert first.status == "applied"
    assert second.status == "duplicate"
    db.expire_all()
    assert db.get(ProviderAccount, provider.id).earnings_pending == Decimal("950.00")
    assert [e.status for e in db.get(Booking, booking_id).timeline] == ["pending", "accepted"]
