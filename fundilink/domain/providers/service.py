"""Provider account service - the single mutation path for provider bookkeeping"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from ...auth import ADMIN, PROVIDER, Actor
from ...config import SUBSCRIPTION_PERIOD_DAYS
from ...exceptions import Forbidden, InvalidState, NotFound
from ...models import Booking, ProviderAccount
from ..transactions import unit_of_work
from .repository import ProviderRepository
from .schemas import ProviderAccountCreate

logger = logging.getLogger(__name__)


class ProviderAccountService:
    """
    Owns every write to a provider's derived financial state.

    Counters and earnings are updated with SQL-side increments on a row
    locked for the rest of the transaction; the per-booking guards live on
    the booking row and are written in the same version-checked flush.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProviderRepository()

    def register(self, data: ProviderAccountCreate, actor: Actor) -> ProviderAccount:
        """Create the caller's provider account"""
        if actor.role != PROVIDER:
            raise Forbidden("Only providers can register a provider account")
        if self.repo.get_account_by_user_id(self.db, actor.user_id):
            raise InvalidState("Provider account already exists")

        account = self.repo.create_account(
            self.db,
            user_id=actor.user_id,
            business_name=data.business_name,
            phone=data.phone,
        )
        logger.info(f"✅ Registered provider account {account.id} for user {actor.user_id}")
        return account

    def get_account(self, provider_id: int) -> ProviderAccount:
        account = self.repo.get_account(self.db, provider_id)
        if not account:
            raise NotFound(f"Provider {provider_id} not found")
        return account

    def get_account_for_user(self, user_id: str) -> ProviderAccount:
        account = self.repo.get_account_by_user_id(self.db, user_id)
        if not account:
            raise NotFound("Provider profile not found")
        return account

    def set_availability(self, actor: Actor, is_available: bool) -> ProviderAccount:
        """Toggle whether the calling provider accepts new bookings"""
        if actor.role != PROVIDER:
            raise Forbidden("Only providers can change their availability")
        account = self.get_account_for_user(actor.user_id)
        with unit_of_work(self.db, f"availability update for provider {account.id}"):
            account.is_available = is_available
        logger.info(f"🔄 Provider {account.id} is now {'available' if is_available else 'unavailable'}")
        return account

    def get_account_summary(self, provider_id: int, actor: Actor) -> dict:
        """Earnings, rating and subscription for the account owner or an admin"""
        account = self.get_account(provider_id)
        if actor.role != ADMIN and account.user_id != actor.user_id:
            raise Forbidden("Access denied")

        return {
            "id": account.id,
            "user_id": account.user_id,
            "business_name": account.business_name,
            "phone": account.phone,
            "is_available": account.is_available,
            "completed_jobs": account.completed_jobs,
            "earnings": {
                "total": account.earnings_total,
                "pending": account.earnings_pending,
                "withdrawn": account.earnings_withdrawn,
            },
            "rating": {"average": account.rating_average, "count": account.rating_count},
            "subscription": {
                "is_active": account.subscription_active,
                "plan": account.subscription_plan,
                "amount": account.subscription_amount,
                "last_payment": account.subscription_last_payment,
                "next_payment": account.subscription_next_payment,
            },
        }

    def lock_account(self, provider_id: int) -> ProviderAccount:
        account = self.repo.lock_account(self.db, provider_id)
        if not account:
            raise NotFound(f"Provider {provider_id} not found")
        return account

    def credit_booking_earnings(self, booking: Booking) -> bool:
        """
        Move a booking's provider earnings into the pending bucket.

        Returns False when the booking was already credited. The caller
        commits; a concurrent credit of the same booking fails the booking's
        version check and rolls this one back.
        """
        if booking.earnings_credited:
            logger.info(f"ℹ️ Booking {booking.id} earnings already credited, skipping")
            return False

        self._credit(self.lock_account(booking.provider_id), booking)
        return True

    def record_completion(self, booking: Booking) -> bool:
        """Count a completed job once per booking and make sure its earnings are credited"""
        if booking.completion_recorded:
            logger.info(f"ℹ️ Booking {booking.id} completion already recorded, skipping")
            return False

        account = self.lock_account(booking.provider_id)
        booking.completion_recorded = True
        account.completed_jobs = ProviderAccount.completed_jobs + 1
        logger.info(f"✅ Provider {account.id} completed job for booking {booking.id}")

        if not booking.earnings_credited:
            self._credit(account, booking)
        return True

    def _credit(self, account: ProviderAccount, booking: Booking) -> None:
        amount = Decimal(booking.provider_earnings)
        booking.earnings_credited = True
        account.earnings_pending = ProviderAccount.earnings_pending + amount
        account.earnings_total = ProviderAccount.earnings_total + amount
        logger.info(f"💰 Credited {amount} to provider {account.id} pending earnings (booking {booking.id})")

    def activate_subscription(
        self, provider_id: int, plan: str, amount: Decimal, paid_at: datetime
    ) -> ProviderAccount:
        """Mark a subscription period as paid; the next one falls due a period later"""
        account = self.lock_account(provider_id)
        account.subscription_active = True
        account.subscription_plan = plan
        account.subscription_amount = amount
        account.subscription_last_payment = paid_at
        account.subscription_next_payment = paid_at + timedelta(days=SUBSCRIPTION_PERIOD_DAYS)

        logger.info(
            f"✅ Provider {provider_id} subscription active: plan={plan}, "
            f"next payment {account.subscription_next_payment:%Y-%m-%d}"
        )
        return account
