"""
Rating aggregation

A provider's average is recomputed as the arithmetic mean over every review
each time one is appended, so years of reviews never accumulate
floating-point drift. The provider row is locked before the new review is
inserted; concurrent reviews for the same provider serialize and each
recomputation sees all of its predecessors.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import ADMIN, Actor
from ...exceptions import DuplicateReview, Forbidden, InvalidState
from ...models import Booking, ProviderAccount, Review
from ..bookings.state_machine import COMPLETED
from ..transactions import unit_of_work
from .repository import ProviderRepository

logger = logging.getLogger(__name__)


def mean_rating(ratings: list[int]) -> float:
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


class RatingAggregator:
    def __init__(self, db: Session):
        self.db = db
        self.repo = ProviderRepository()

    def add_review(
        self,
        account: ProviderAccount,
        booking: Booking,
        rating: int,
        comment: Optional[str],
        actor: Actor,
    ) -> Review:
        """Append a review for a completed booking and recompute the provider's rating"""
        if actor.role != ADMIN and booking.client_id != actor.user_id:
            raise Forbidden("Only the booking's client can review it")
        if booking.provider_id != account.id:
            raise InvalidState("Booking was not performed by this provider")
        if booking.status != COMPLETED:
            raise InvalidState("Can only review completed bookings")
        if self.repo.get_review_for_booking(self.db, booking.id):
            raise DuplicateReview(f"Booking {booking.id} has already been reviewed")

        try:
            with unit_of_work(self.db, f"review of booking {booking.id}"):
                locked = self.repo.lock_account(self.db, account.id)
                review = Review(
                    provider_id=locked.id,
                    booking_id=booking.id,
                    client_id=booking.client_id,
                    rating=rating,
                    comment=comment,
                )
                self.db.add(review)
                self.db.flush()
                self.recompute(locked)
        except IntegrityError as e:
            # Lost a race with another review of the same booking
            raise DuplicateReview(f"Booking {booking.id} has already been reviewed") from e

        logger.info(
            f"⭐ Review added for provider {account.id} (booking {booking.id}): "
            f"average={locked.rating_average:.2f} over {locked.rating_count} reviews"
        )
        return review

    def recompute(self, account: ProviderAccount) -> ProviderAccount:
        """Recompute average and count from the full review set"""
        ratings = self.repo.get_ratings(self.db, account.id)
        account.rating_average = mean_rating(ratings)
        account.rating_count = len(ratings)
        return account
