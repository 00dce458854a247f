"""M-Pesa service - Integration with the Safaricom Daraja STK push API"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import httpx

from ...config import (
    MPESA_CONSUMER_KEY,
    MPESA_CONSUMER_SECRET,
    MPESA_ENVIRONMENT,
    MPESA_PASS_KEY,
    MPESA_SHORT_CODE,
    MPESA_TIMEOUT_SECONDS,
)
from ...exceptions import GatewayTimeout, GatewayUnavailable

logger = logging.getLogger(__name__)


def mpesa_base_url(environment: Optional[str]) -> str:
    """Daraja base URL for the configured environment"""
    if (environment or "").strip().lower() == "production":
        return "https://api.safaricom.co.ke"
    return "https://sandbox.safaricom.co.ke"


@dataclass(frozen=True)
class StkPushAccepted:
    """Gateway acknowledgement of an STK push request"""

    checkout_request_id: str
    merchant_request_id: Optional[str]
    description: Optional[str]


class MpesaService:
    """Service for Daraja API operations"""

    def __init__(
        self,
        consumer_key: Optional[str] = MPESA_CONSUMER_KEY,
        consumer_secret: Optional[str] = MPESA_CONSUMER_SECRET,
        short_code: Optional[str] = MPESA_SHORT_CODE,
        pass_key: Optional[str] = MPESA_PASS_KEY,
        environment: Optional[str] = MPESA_ENVIRONMENT,
        timeout: float = MPESA_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.short_code = short_code
        self.pass_key = pass_key
        self.base_url = mpesa_base_url(environment)
        self.timeout = timeout
        self.transport = transport

        if not self.is_available():
            logger.warning("M-Pesa credentials not set; payment initiation will fail until configured")

    def is_available(self) -> bool:
        """Check if the gateway credentials are configured"""
        return bool(self.consumer_key and self.consumer_secret and self.short_code and self.pass_key)

    def _password(self, timestamp: str) -> str:
        raw = f"{self.short_code}{self.pass_key}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("utf-8")

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        credentials = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode("utf-8")).decode("utf-8")
        response = await client.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {credentials}"},
        )
        if response.status_code != 200:
            logger.error(f"❌ M-Pesa token request failed: HTTP {response.status_code}")
            raise GatewayUnavailable(f"Failed to obtain gateway access token (HTTP {response.status_code})")

        try:
            token = response.json().get("access_token")
        except ValueError as e:
            logger.error(f"❌ M-Pesa token response was not JSON: {response.text[:200]}")
            raise GatewayUnavailable("Gateway token response was not valid JSON") from e
        if not token:
            raise GatewayUnavailable("Gateway token response carried no access token")
        return token

    async def stk_push(
        self,
        amount: Decimal,
        phone_number: str,
        account_reference: str,
        description: str,
        callback_url: str,
    ) -> StkPushAccepted:
        """
        Ask the gateway to prompt the payer's phone for payment.

        Raises GatewayTimeout when the gateway does not answer within the
        configured timeout and GatewayUnavailable for any other failure; the
        caller has recorded nothing at that point and may simply retry.
        """
        if not self.is_available():
            raise GatewayUnavailable("M-Pesa gateway not configured")
        amount = Decimal(amount)
        if amount != amount.to_integral_value():
            raise ValueError(f"M-Pesa amounts must be whole shillings, got {amount}")

        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.short_code,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": self.short_code,
            "PhoneNumber": phone_number,
            "CallBackURL": callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                token = await self._get_access_token(client)
                logger.info(f"🚀 Sending STK push for {account_reference} ({payload['Amount']})")
                response = await client.post(
                    f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException as e:
            logger.error(f"⏱️ M-Pesa request timed out after {self.timeout}s for {account_reference}")
            raise GatewayTimeout(f"Payment gateway did not respond within {self.timeout:.0f}s") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ M-Pesa request failed for {account_reference}: {e}")
            raise GatewayUnavailable(f"Payment gateway request failed: {e}") from e

        if response.status_code not in (200, 201):
            logger.error(f"❌ STK push rejected: HTTP {response.status_code} {response.text[:200]}")
            raise GatewayUnavailable(f"Payment gateway rejected the request (HTTP {response.status_code})")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"❌ STK push response was not JSON: {response.text[:200]}")
            raise GatewayUnavailable("Payment gateway returned an unreadable response") from e

        checkout_request_id = data.get("CheckoutRequestID")
        if str(data.get("ResponseCode")) != "0" or not checkout_request_id:
            logger.error(f"❌ STK push not accepted: {data}")
            raise GatewayUnavailable(data.get("ResponseDescription") or "Payment gateway did not accept the request")

        logger.info(f"📡 STK push accepted: {checkout_request_id}")
        return StkPushAccepted(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            description=data.get("CustomerMessage") or data.get("ResponseDescription"),
        )


# Singleton instance
mpesa_service = MpesaService()
