"""Unit-of-work helpers shared by the booking, payment and provider services"""

import logging
from contextlib import contextmanager

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import Conflict

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(db: Session, description: str):
    """
    Commit the session when the block finishes, roll it back on any error.

    A version-check failure on flush means another request changed the same
    booking or payment attempt first; it surfaces as Conflict so the caller
    can retry with fresh state.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"⚠️ Concurrent modification during {description}: {e}")
        raise Conflict(f"Concurrent modification during {description}; retry with fresh state") from e
    except Exception:
        db.rollback()
        raise
