"""Provider repository - Database operations for provider accounts and reviews"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import ProviderAccount, Review


class ProviderRepository:
    """Repository for provider account database operations"""

    @staticmethod
    def get_account(db: Session, provider_id: int) -> Optional[ProviderAccount]:
        """Get provider account by ID"""
        return db.get(ProviderAccount, provider_id)

    @staticmethod
    def get_account_by_user_id(db: Session, user_id: str) -> Optional[ProviderAccount]:
        """Get provider account by identity-service user id"""
        return db.query(ProviderAccount).filter(ProviderAccount.user_id == user_id).first()

    @staticmethod
    def lock_account(db: Session, provider_id: int) -> Optional[ProviderAccount]:
        """Load a provider account with a row lock held until the transaction ends"""
        return (
            db.query(ProviderAccount)
            .filter(ProviderAccount.id == provider_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def create_account(db: Session, **account_data) -> ProviderAccount:
        """Create a new provider account"""
        account = ProviderAccount(**account_data)
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    @staticmethod
    def get_review_for_booking(db: Session, booking_id: int) -> Optional[Review]:
        return db.query(Review).filter(Review.booking_id == booking_id).first()

    @staticmethod
    def get_ratings(db: Session, provider_id: int) -> list[int]:
        """All ratings a provider has received"""
        return [rating for (rating,) in db.query(Review.rating).filter(Review.provider_id == provider_id)]
