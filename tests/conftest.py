import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import datetime  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from fundilink import models  # noqa: E402,F401
from fundilink.auth import ADMIN, CLIENT, PROVIDER, Actor  # noqa: E402
from fundilink.database import Base, build_engine  # noqa: E402
from fundilink.domain.bookings.schemas import BookingCreate, CompletionRequest  # noqa: E402
from fundilink.domain.bookings.service import BookingService  # noqa: E402
from fundilink.domain.payments.mpesa_service import StkPushAccepted  # noqa: E402
from fundilink.domain.payments.schemas import PaymentOutcome  # noqa: E402
from fundilink.domain.providers.schemas import ProviderAccountCreate  # noqa: E402
from fundilink.domain.providers.service import ProviderAccountService  # noqa: E402

CLIENT_ACTOR = Actor(user_id="client-1", role=CLIENT)
OTHER_CLIENT_ACTOR = Actor(user_id="client-2", role=CLIENT)
PROVIDER_ACTOR = Actor(user_id="provider-1", role=PROVIDER)
OTHER_PROVIDER_ACTOR = Actor(user_id="provider-2", role=PROVIDER)
ADMIN_ACTOR = Actor(user_id="admin-1", role=ADMIN)


class FakeGateway:
    """Stands in for MpesaService; accepts every push unless told to fail"""

    def __init__(self):
        self.calls = []
        self.error = None

    async def stk_push(self, amount, phone_number, account_reference, description, callback_url):
        if self.error is not None:
            raise self.error
        self.calls.append(
            {
                "amount": amount,
                "phone_number": phone_number,
                "account_reference": account_reference,
                "callback_url": callback_url,
            }
        )
        n = len(self.calls)
        return StkPushAccepted(
            checkout_request_id=f"ws_CO_{n:04d}",
            merchant_request_id=f"29115-{n}",
            description="Success. Request accepted for processing",
        )


def success_outcome(correlation_id: str, receipt: str = "QKL7X2ABCD", amount="1000") -> PaymentOutcome:
    return PaymentOutcome(
        correlation_id=correlation_id,
        result_code=0,
        result_desc="The service request is processed successfully.",
        receipt_number=receipt,
        amount=Decimal(amount),
        phone_number="254712345678",
    )


def failure_outcome(correlation_id: str) -> PaymentOutcome:
    return PaymentOutcome(
        correlation_id=correlation_id,
        result_code=1032,
        result_desc="Request cancelled by user",
    )


def booking_request(provider_id: int, **overrides) -> BookingCreate:
    data = {
        "provider_id": provider_id,
        "service_category": "plumbing",
        "service_description": "Fix leaking kitchen sink",
        "estimated_hours": 2,
        "preferred_date": datetime(2026, 11, 2, 9, 0),
        "preferred_time": "09:00",
        "address": "Ngong Road, Nairobi",
        "client_phone": "+254712345678",
        "base_amount": "1000",
    }
    data.update(overrides)
    return BookingCreate(**data)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'fundilink-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def provider(db):
    return ProviderAccountService(db).register(
        ProviderAccountCreate(business_name="Juma Plumbing Works", phone="+254711000111"),
        PROVIDER_ACTOR,
    )


@pytest.fixture
def other_provider(db):
    return ProviderAccountService(db).register(
        ProviderAccountCreate(business_name="Wanjiku Electricals", phone="+254722000222"),
        OTHER_PROVIDER_ACTOR,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_booking(db, provider):
    def _make(actor=CLIENT_ACTOR, **overrides):
        return BookingService(db).create_booking(booking_request(provider.id, **overrides), actor)

    return _make


@pytest.fixture
def complete_booking(db):
    """Drive a booking through accepted and in_progress to completed as its provider"""

    def _complete(booking_id, actor=PROVIDER_ACTOR):
        service = BookingService(db)
        if service.get_booking(booking_id, actor).status == "pending":
            service.transition(booking_id, "accepted", None, actor)
        service.transition(booking_id, "in_progress", None, actor)
        return service.complete_booking(booking_id, CompletionRequest(feedback="All done"), actor)

    return _complete
