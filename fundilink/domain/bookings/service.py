"""Booking service - Business logic for the booking lifecycle"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import ADMIN, CLIENT, PROVIDER, Actor
from ...exceptions import Forbidden, InvalidState, NotFound
from ...models import Booking
from ..ledger import compute_split, compute_total, to_money
from ..providers.ratings import RatingAggregator
from ..providers.service import ProviderAccountService
from ..transactions import unit_of_work
from .repository import BookingRepository
from .schemas import AdditionalCharge, BookingCreate, CompletionRequest
from .state_machine import COMPLETED, PENDING, TERMINAL_STATUSES, BookingStateMachine, is_party

logger = logging.getLogger(__name__)


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session, commission_rate: Optional[Decimal] = None):
        self.db = db
        self.repo = BookingRepository()
        self.commission_rate = commission_rate
        self.accounts = ProviderAccountService(db)
        self.state_machine = BookingStateMachine(db, self.accounts)

    def get_booking(self, booking_id: int, actor: Actor) -> Booking:
        """Get a booking the caller is a party to"""
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise NotFound(f"Booking {booking_id} not found")
        if not is_party(booking, actor):
            raise Forbidden("Access denied")
        return booking

    def create_booking(self, data: BookingCreate, actor: Actor) -> Booking:
        """Create a pending booking with its pricing split"""
        if actor.role != CLIENT:
            raise Forbidden("Only clients can create bookings")

        logger.info(f"📥 Creating booking for client {actor.user_id} with provider {data.provider_id}")

        provider = self.accounts.get_account(data.provider_id)
        if not provider.is_available:
            raise InvalidState("Provider is not available")

        charges = [self._charge_record(c) for c in data.additional_charges]
        total = compute_total(data.base_amount, charges)
        commission, earnings = compute_split(total, self.commission_rate)

        with unit_of_work(self.db, "booking creation"):
            booking = self.repo.add_booking(
                self.db,
                client_id=actor.user_id,
                provider_id=provider.id,
                service_category=data.service_category,
                service_description=data.service_description,
                estimated_hours=data.estimated_hours,
                preferred_date=data.preferred_date,
                preferred_time=data.preferred_time,
                is_flexible=data.is_flexible,
                address=data.address,
                location_info=data.location_info,
                client_phone=data.client_phone,
                preferred_channel=data.preferred_channel,
                client_notes=data.notes,
                is_urgent=data.is_urgent,
                status=PENDING,
                base_amount=to_money(data.base_amount),
                additional_charges=charges,
                total_amount=total,
                platform_commission=commission,
                provider_earnings=earnings,
                payment_method=data.payment_method,
                payment_status="pending",
            )
            self.repo.append_timeline_entry(
                self.db,
                booking,
                status=PENDING,
                note="Booking created",
                actor_id=actor.user_id,
                actor_role=actor.role,
            )

        logger.info(
            f"✅ Booking {booking.id} created: total={total}, commission={commission}, earnings={earnings}"
        )
        return booking

    def transition(self, booking_id: int, target_status: str, note: Optional[str], actor: Actor) -> Booking:
        """Request a status transition; the booking is unchanged if it fails"""
        booking = self.get_booking(booking_id, actor)
        with unit_of_work(self.db, f"transition of booking {booking_id}"):
            self.state_machine.transition(booking, target_status, note, actor)
        return booking

    def complete_booking(self, booking_id: int, data: CompletionRequest, actor: Actor) -> Booking:
        """Provider marks a job completed with photos and feedback"""
        if actor.role not in (PROVIDER, ADMIN):
            raise Forbidden("Only the provider can complete a booking")

        booking = self.get_booking(booking_id, actor)
        with unit_of_work(self.db, f"completion of booking {booking_id}"):
            booking.completion_photos = list(data.photos)
            booking.completion_feedback = data.feedback or ""
            if data.actual_end_time:
                booking.actual_end_time = data.actual_end_time
            self.state_machine.transition(booking, COMPLETED, "Job marked as completed", actor)
        return booking

    def confirm_completion(self, booking_id: int, actor: Actor) -> Booking:
        """Client confirms the job was done"""
        booking = self.get_booking(booking_id, actor)
        if actor.role != CLIENT:
            raise Forbidden("Only the client can confirm completion")
        if booking.status != COMPLETED:
            raise InvalidState("Only completed bookings can be confirmed")
        if booking.client_confirmation:
            return booking

        with unit_of_work(self.db, f"confirmation of booking {booking_id}"):
            booking.client_confirmation = True
        logger.info(f"✅ Client confirmed completion of booking {booking_id}")
        return booking

    def add_charge(self, booking_id: int, charge: AdditionalCharge, actor: Actor) -> Booking:
        """Add a charge and recompute pricing; figures freeze once payment settles"""
        booking = self.get_booking(booking_id, actor)
        if actor.role not in (PROVIDER, ADMIN):
            raise Forbidden("Only the provider can add charges")
        if booking.payment_status == "paid":
            raise InvalidState("Pricing is frozen once the booking is paid")
        if booking.status in TERMINAL_STATUSES:
            raise InvalidState(f"Cannot add charges to a {booking.status} booking")

        with unit_of_work(self.db, f"charge on booking {booking_id}"):
            charges = list(booking.additional_charges or []) + [self._charge_record(charge)]
            self._reprice(booking, charges)

        logger.info(f"💵 Charge '{charge.description}' added to booking {booking_id}: total={booking.total_amount}")
        return booking

    def add_review(self, booking_id: int, rating: int, comment: Optional[str], actor: Actor):
        """Client reviews a completed booking"""
        booking = self.get_booking(booking_id, actor)
        account = self.accounts.get_account(booking.provider_id)
        return RatingAggregator(self.db).add_review(account, booking, rating, comment, actor)

    def _reprice(self, booking: Booking, charges: list[dict]) -> None:
        total = compute_total(booking.base_amount, charges)
        commission, earnings = compute_split(total, self.commission_rate)
        booking.additional_charges = charges
        booking.total_amount = total
        booking.platform_commission = commission
        booking.provider_earnings = earnings

    @staticmethod
    def _charge_record(charge: AdditionalCharge) -> dict:
        return {"description": charge.description, "amount": str(to_money(charge.amount))}

