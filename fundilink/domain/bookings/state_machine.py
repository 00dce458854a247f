"""
Booking state machine

Booking statuses: pending → accepted → in_progress → completed
- pending/accepted → cancelled (client)
- in_progress/completed → disputed
- completed, cancelled and disputed accept no further transitions except
  completed → disputed

Who may take an edge is decided by one capability table consulted by
transition(); admins may take any legal edge. Payment settlement reaches the
machine as a PaymentSettled event rather than as a side effect of the
payment code.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import ADMIN, CLIENT, PROVIDER, SYSTEM, SYSTEM_ACTOR, Actor
from ...exceptions import Forbidden, InvalidState, InvalidTransition
from ...models import Booking, utcnow
from ..providers.service import ProviderAccountService
from .repository import BookingRepository

logger = logging.getLogger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
DISPUTED = "disputed"

BOOKING_STATUSES = (PENDING, ACCEPTED, IN_PROGRESS, COMPLETED, CANCELLED, DISPUTED)
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED, DISPUTED})

# (current, target) -> roles allowed to take the edge, admin aside
TRANSITION_ROLES = {
    (PENDING, ACCEPTED): frozenset({PROVIDER, SYSTEM}),
    (ACCEPTED, IN_PROGRESS): frozenset({PROVIDER}),
    (IN_PROGRESS, COMPLETED): frozenset({PROVIDER}),
    (PENDING, CANCELLED): frozenset({CLIENT}),
    (ACCEPTED, CANCELLED): frozenset({CLIENT}),
    (IN_PROGRESS, DISPUTED): frozenset({CLIENT, PROVIDER}),
    (COMPLETED, DISPUTED): frozenset({CLIENT, PROVIDER}),
}


@dataclass(frozen=True)
class PaymentSettled:
    """The gateway confirmed payment for a booking"""

    booking_id: int
    correlation_id: str
    receipt_number: Optional[str] = None


def allowed_roles(current_status: str, target_status: str) -> frozenset:
    """Roles allowed to move a booking along an edge; InvalidTransition if no such edge"""
    roles = TRANSITION_ROLES.get((current_status, target_status))
    if roles is None:
        raise InvalidTransition(
            f"Cannot move booking from '{current_status}' to '{target_status}'",
            current_status=current_status,
            target_status=target_status,
        )
    return roles | {ADMIN}


def is_party(booking: Booking, actor: Actor) -> bool:
    """Whether the actor is this booking's client or assigned provider"""
    if actor.role == CLIENT:
        return booking.client_id == actor.user_id
    if actor.role == PROVIDER:
        return booking.provider is not None and booking.provider.user_id == actor.user_id
    return actor.role in (ADMIN, SYSTEM)


class BookingStateMachine:
    def __init__(self, db: Session, accounts: Optional[ProviderAccountService] = None):
        self.db = db
        self.repo = BookingRepository()
        self.accounts = accounts or ProviderAccountService(db)

    def check_transition(self, booking: Booking, target_status: str, actor: Actor) -> None:
        if target_status not in BOOKING_STATUSES:
            raise InvalidTransition(f"Unknown booking status '{target_status}'")

        roles = allowed_roles(booking.status, target_status)
        if actor.role not in roles:
            raise Forbidden(
                f"Role '{actor.role}' may not move a booking from '{booking.status}' to '{target_status}'"
            )
        if not is_party(booking, actor):
            raise Forbidden("Not authorized to update this booking")

    def transition(
        self, booking: Booking, target_status: str, note: Optional[str], actor: Actor
    ) -> Booking:
        """
        Move a booking to target_status and append one timeline entry.

        Changes are staged in the session; the caller commits. Entering
        completed records the job and credits earnings on the provider
        account, at most once per booking.
        """
        self.check_transition(booking, target_status, actor)

        previous_status = booking.status
        booking.status = target_status
        self.repo.append_timeline_entry(
            self.db,
            booking,
            status=target_status,
            note=note,
            actor_id=actor.user_id,
            actor_role=actor.role,
        )
        self._apply_edge_effects(booking, previous_status, actor)

        logger.info(
            f"✅ Booking {booking.id} transitioned: {previous_status} → {target_status} "
            f"(by {actor.role})"
        )
        return booking

    def apply_payment_settled(self, booking: Booking, event: PaymentSettled) -> bool:
        """
        Confirm a pending booking once its payment settles.

        Returns True when the booking moved to accepted; bookings already past
        pending keep their status.
        """
        if event.booking_id != booking.id:
            raise InvalidState(
                f"Payment {event.correlation_id} belongs to booking {event.booking_id}, not {booking.id}"
            )

        if booking.status != PENDING:
            logger.info(
                f"ℹ️ Payment {event.correlation_id} settled for booking {booking.id} in status '{booking.status}', no transition"
            )
            return False

        note = f"Payment received (ref {event.correlation_id})"
        if event.receipt_number:
            note = f"Payment received (receipt {event.receipt_number}, ref {event.correlation_id})"
        self.transition(booking, ACCEPTED, note, SYSTEM_ACTOR)
        return True

    def _apply_edge_effects(self, booking: Booking, previous_status: str, actor: Actor) -> None:
        now = utcnow()

        if booking.status == ACCEPTED and actor.role == PROVIDER:
            booking.provider_phone = booking.provider.phone

        elif booking.status == IN_PROGRESS and booking.actual_start_time is None:
            booking.actual_start_time = now

        elif booking.status == COMPLETED and previous_status != COMPLETED:
            booking.completed_at = now
            booking.provider_confirmation = True
            if actor.role != PROVIDER:
                booking.client_confirmation = True
            self.accounts.record_completion(booking)
