"""Provider router - provider account registration and bookkeeping summary"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_actor
from ...database import get_db
from .schemas import AvailabilityUpdate, ProviderAccountCreate, ProviderAccountResponse
from .service import ProviderAccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Providers"])


def get_provider_service(db: Session = Depends(get_db)) -> ProviderAccountService:
    """Dependency injection for ProviderAccountService"""
    return ProviderAccountService(db)


@router.post("", response_model=ProviderAccountResponse, status_code=201)
async def register_provider(
    data: ProviderAccountCreate,
    actor: Actor = Depends(get_current_actor),
    service: ProviderAccountService = Depends(get_provider_service),
):
    """Create the calling provider's account"""
    account = service.register(data, actor)
    return service.get_account_summary(account.id, actor)


@router.put("/availability", response_model=ProviderAccountResponse)
async def update_availability(
    data: AvailabilityUpdate,
    actor: Actor = Depends(get_current_actor),
    service: ProviderAccountService = Depends(get_provider_service),
):
    """Open or close the calling provider for new bookings"""
    account = service.set_availability(actor, data.is_available)
    return service.get_account_summary(account.id, actor)


@router.get("/{provider_id}/account", response_model=ProviderAccountResponse)
async def get_provider_account(
    provider_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProviderAccountService = Depends(get_provider_service),
):
    """Earnings, rating and subscription summary for the account owner or an admin"""
    return service.get_account_summary(provider_id, actor)
