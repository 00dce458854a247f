import json
import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fundilink.db")

# Platform commission taken from every booking total (0.05 == 5%)
PLATFORM_COMMISSION = Decimal(os.getenv("PLATFORM_COMMISSION", "0.05"))
# Smallest currency unit (KES cents)
CURRENCY_MINOR_UNIT = Decimal(os.getenv("CURRENCY_MINOR_UNIT", "0.01"))
CURRENCY = os.getenv("CURRENCY", "KES")

# M-Pesa (Daraja) Configuration
MPESA_ENVIRONMENT = os.getenv("MPESA_ENVIRONMENT", "sandbox")  # sandbox or production
MPESA_CONSUMER_KEY = os.getenv("MPESA_CONSUMER_KEY")
MPESA_CONSUMER_SECRET = os.getenv("MPESA_CONSUMER_SECRET")
MPESA_SHORT_CODE = os.getenv("MPESA_SHORT_CODE", "174379")
MPESA_PASS_KEY = os.getenv("MPESA_PASS_KEY")
# Public base URL the gateway posts callbacks to, e.g. https://api.fundilink.co.ke
MPESA_CALLBACK_BASE_URL = os.getenv("MPESA_CALLBACK_BASE_URL", "http://localhost:8000")
MPESA_TIMEOUT_SECONDS = float(os.getenv("MPESA_TIMEOUT_SECONDS", "30"))

# Fixed weekly subscription price per plan
SUBSCRIPTION_PLANS = {
    plan: Decimal(str(amount))
    for plan, amount in json.loads(
        os.getenv("SUBSCRIPTION_PLANS", '{"basic": 100, "premium": 200}')
    ).items()
}
SUBSCRIPTION_PERIOD_DAYS = int(os.getenv("SUBSCRIPTION_PERIOD_DAYS", "7"))

# Callback reconciliation retries on concurrent booking writes
RECONCILE_MAX_RETRIES = int(os.getenv("RECONCILE_MAX_RETRIES", "3"))

# Security - tokens are issued by the identity service and verified here
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Twilio WhatsApp / SMS notifications
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_WHATSAPP_FROM = os.getenv("TWILIO_WHATSAPP_FROM")  # e.g. whatsapp:+14155238886
TWILIO_SMS_FROM = os.getenv("TWILIO_SMS_FROM")
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
