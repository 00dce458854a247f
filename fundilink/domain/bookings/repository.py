"""Booking repository - Database operations for bookings"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Booking, BookingTimelineEntry


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
        """Get booking by ID"""
        return db.get(Booking, booking_id)

    @staticmethod
    def add_booking(db: Session, **booking_data) -> Booking:
        """Stage a new booking in the session (caller commits)"""
        booking = Booking(**booking_data)
        db.add(booking)
        return booking

    @staticmethod
    def append_timeline_entry(
        db: Session,
        booking: Booking,
        status: str,
        note: Optional[str],
        actor_id: Optional[str],
        actor_role: str,
    ) -> BookingTimelineEntry:
        """Append an audit entry; entries are never updated or removed"""
        entry = BookingTimelineEntry(
            status=status,
            note=note,
            actor_id=actor_id,
            actor_role=actor_role,
        )
        booking.timeline.append(entry)
        db.add(entry)
        return entry
