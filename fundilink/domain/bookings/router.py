"""Booking router - FastAPI endpoints for the booking lifecycle"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ...auth import Actor, get_current_actor
from ...database import get_db
from ...services.notification_service import build_status_notice, send_status_notice
from .schemas import (
    AdditionalCharge,
    BookingCreate,
    BookingResponse,
    CompletionRequest,
    ReviewRequest,
    ReviewResponse,
    StatusUpdateRequest,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


# ============================================================================
# CREATION AND LOOKUP
# ============================================================================


@router.post("", response_model=BookingResponse, status_code=201)
async def create_booking(
    data: BookingCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking request with a provider"""
    booking = service.create_booking(data, actor)
    background_tasks.add_task(send_status_notice, build_status_notice(booking))
    return booking


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Get a booking with its timeline"""
    return service.get_booking(booking_id, actor)


# ============================================================================
# STATUS TRANSITIONS
# ============================================================================


@router.put("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: int,
    data: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Move a booking to a new status"""
    booking = service.transition(booking_id, data.status, data.note, actor)
    background_tasks.add_task(send_status_notice, build_status_notice(booking))
    return booking


@router.put("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: int,
    data: CompletionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Provider marks the job completed with photos and feedback"""
    booking = service.complete_booking(booking_id, data, actor)
    background_tasks.add_task(send_status_notice, build_status_notice(booking))
    return booking


@router.put("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_completion(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Client confirms a completed job"""
    return service.confirm_completion(booking_id, actor)


# ============================================================================
# PRICING AND REVIEWS
# ============================================================================


@router.post("/{booking_id}/charges", response_model=BookingResponse)
async def add_charge(
    booking_id: int,
    data: AdditionalCharge,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Add an extra charge before the booking is paid"""
    return service.add_charge(booking_id, data, actor)


@router.post("/{booking_id}/review", response_model=ReviewResponse, status_code=201)
async def add_review(
    booking_id: int,
    data: ReviewRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Review the provider of a completed booking"""
    return service.add_review(booking_id, data.rating, data.comment, actor)
