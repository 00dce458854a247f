"""Payment repository - Database operations for payment attempts"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import PaymentAttempt


class PaymentRepository:
    """Repository for payment attempt database operations"""

    @staticmethod
    def get_attempt_by_correlation_id(db: Session, correlation_id: str) -> Optional[PaymentAttempt]:
        """Get the attempt a gateway callback refers to"""
        return (
            db.query(PaymentAttempt)
            .filter(PaymentAttempt.correlation_id == correlation_id)
            .populate_existing()
            .first()
        )

    @staticmethod
    def add_attempt(db: Session, **attempt_data) -> PaymentAttempt:
        """Stage a new attempt in the session (caller commits)"""
        attempt = PaymentAttempt(**attempt_data)
        db.add(attempt)
        return attempt
