"""
Booking Notification Service
Sends WhatsApp/SMS messages through Twilio when a booking changes status.
Delivery is best-effort: failures are logged and never touch booking state.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..config import (
    CURRENCY,
    NOTIFICATIONS_ENABLED,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_SMS_FROM,
    TWILIO_WHATSAPP_FROM,
)
from ..models import Booking

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"

STATUS_TEMPLATES = {
    "pending": "🆕 New FundiLink booking request for {category} on {date}. Booking ref: {ref}",
    "accepted": "✅ Your FundiLink booking {ref} for {category} has been confirmed.",
    "in_progress": "🛠️ Work on your FundiLink booking {ref} has started.",
    "completed": "🎉 Booking {ref} is complete. Total paid: {currency} {total}. Please leave a review!",
    "cancelled": "❌ FundiLink booking {ref} for {category} has been cancelled.",
    "disputed": "⚠️ FundiLink booking {ref} has been marked as disputed. Our team will contact you.",
}


@dataclass(frozen=True)
class StatusNotice:
    """Plain snapshot of what to send, detached from the database session"""

    booking_id: int
    status: str
    channel: str
    message: str
    recipients: tuple = field(default_factory=tuple)


def build_status_notice(booking: Booking) -> Optional[StatusNotice]:
    """Render the message for the booking's current status and pick recipients"""
    template = STATUS_TEMPLATES.get(booking.status)
    if not template:
        return None

    message = template.format(
        category=booking.service_category,
        date=f"{booking.preferred_date:%d %b %Y}",
        ref=booking.public_id[:8].upper(),
        total=booking.total_amount,
        currency=CURRENCY,
    )

    provider_phone = booking.provider_phone or (booking.provider.phone if booking.provider else None)
    if booking.status in ("pending", "cancelled"):
        recipients = (provider_phone,)
    elif booking.status == "disputed":
        recipients = (booking.client_phone, provider_phone)
    else:
        recipients = (booking.client_phone,)

    # Calls are arranged by phone; status updates for them go out as SMS
    channel = "whatsapp" if booking.preferred_channel == "whatsapp" else "sms"
    return StatusNotice(
        booking_id=booking.id,
        status=booking.status,
        channel=channel,
        message=message,
        recipients=tuple(p for p in recipients if p),
    )


async def notify(
    recipient_phone: str,
    message: str,
    channel: str = "whatsapp",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[bool, Optional[str]]:
    """
    Send one message via Twilio

    Args:
        recipient_phone: Recipient phone number in E.164 format
        message: Message body
        channel: "whatsapp" or "sms"
        transport: Optional httpx transport (tests)

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    if not NOTIFICATIONS_ENABLED:
        logger.debug("Notifications disabled, skipping")
        return False, "Notifications disabled"

    if not TWILIO_ACCOUNT_SID or not TWILIO_AUTH_TOKEN:
        logger.debug("Twilio credentials not configured, skipping notification")
        return False, "Twilio not configured"

    if not recipient_phone or not recipient_phone.startswith("+"):
        logger.warning(f"Phone number not in E.164 format: {recipient_phone}")
        return False, "Phone number must be in E.164 format (e.g., +254712345678)"

    if channel == "whatsapp":
        if not TWILIO_WHATSAPP_FROM:
            return False, "No WhatsApp sender configured"
        data = {"To": f"whatsapp:{recipient_phone}", "From": TWILIO_WHATSAPP_FROM, "Body": message}
    else:
        if not TWILIO_SMS_FROM:
            return False, "No SMS sender configured"
        data = {"To": recipient_phone, "From": TWILIO_SMS_FROM, "Body": message}

    try:
        logger.info(f"📱 Sending {channel} notification to {recipient_phone}")
        async with httpx.AsyncClient(transport=transport, timeout=10.0) as client:
            response = await client.post(
                f"{TWILIO_API_URL}/Accounts/{TWILIO_ACCOUNT_SID}/Messages.json",
                auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN),
                data=data,
            )

        if response.status_code in [200, 201]:
            logger.info(f"✅ Notification sent to {recipient_phone}")
            return True, None

        try:
            error_message = response.json().get("message", "Unknown error")
        except ValueError:
            error_message = response.text or "Unknown error"
        logger.error(f"❌ Twilio API error {response.status_code}: {error_message}")
        return False, error_message

    except httpx.HTTPError as e:
        logger.error(f"❌ Failed to send notification to {recipient_phone}: {e}")
        return False, str(e)


async def send_status_notice(notice: Optional[StatusNotice]) -> None:
    """Background task: deliver a status notice to every recipient, logging failures"""
    if notice is None:
        return

    for phone in notice.recipients:
        sent, error = await notify(phone, notice.message, notice.channel)
        if not sent:
            logger.warning(
                f"⚠️ Booking {notice.booking_id} '{notice.status}' notification to {phone} not sent: {error}"
            )
