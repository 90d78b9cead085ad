import datetime
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from unittest.mock import AsyncMock, MagicMock

from party_rentals.main import app
from party_rentals.database import Base, get_db, get_redis_client
from party_rentals.dependencies import get_notifier, get_now, get_refund_gateway
from party_rentals.config import settings
from party_rentals.exceptions import NotificationError
from party_rentals.payments import CheckoutSession, RefundResult
from party_rentals import models

# --- Test Database Setup ---
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_party_rentals.db"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Monday 2030-06-03, 9 AM in the business timezone: before the noon cutoff
FIXED_NOW = datetime.datetime(2030, 6, 3, 9, 0)
TODAY = FIXED_NOW.date()


# --- Database Management Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def setup_db():
    """Creates and drops the test database tables."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Provides a clean database session for each test; everything is rolled back afterwards."""
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    yield session
    session.close()
    transaction.rollback()
    connection.close()


# --- Fake collaborators ---
class FakeGateway:
    """Records refund and checkout calls instead of talking to Stripe."""

    def __init__(self):
        self.refund_calls = []
        self.refund_result = RefundResult(success=True, refund_id="re_test_123")
        self.checkout_calls = []
        self.checkout_error = None
        self.webhook_event = None

    def process_refund(self, payment_reference, amount, description=None):
        self.refund_calls.append((payment_reference, amount, description))
        return self.refund_result

    def create_checkout_session(self, booking, customer_email, success_url, cancel_url):
        self.checkout_calls.append((booking.booking_number, customer_email))
        if self.checkout_error is not None:
            raise self.checkout_error
        return CheckoutSession(id=f"cs_test_{booking.booking_number}", url="https://checkout.test/session")

    def parse_webhook(self, payload, signature):
        return self.webhook_event


class FakeNotifier:
    """Collects (template, recipient, data) for every email that would have been sent."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send_email(self, template, recipient, data):
        if self.fail:
            raise NotificationError("email service down")
        self.sent.append((template, recipient, data))

    def templates(self):
        return [t for t, _, _ in self.sent]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks (poller and scheduler) that run on app lifespan.
    """
    mocker.patch("party_rentals.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("party_rentals.main.run_booking_scheduler", new_callable=AsyncMock)


@pytest.fixture(scope="function")
def fake_redis(mocker):
    """Async redis stand-in for the rate limiter; every request is allowed."""
    redis_client = AsyncMock()
    redis_client.script_load.return_value = "limiter-sha"
    redis_client.evalsha.return_value = 0
    mocker.patch("party_rentals.main.redis.from_url", return_value=redis_client)
    return redis_client


@pytest.fixture(scope="function")
def cache():
    """Sync redis stand-in for the product cache; always a miss."""
    redis_client = MagicMock()
    redis_client.get.return_value = None
    return redis_client


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session, fake_redis, cache, gateway, notifier):
    """Provides a TestClient wired to the test session and fake collaborators."""
    def override_get_db():
        yield db_session

    def override_get_redis_client():
        yield cache

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = override_get_redis_client
    app.dependency_overrides[get_refund_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_now] = lambda: FIXED_NOW

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# --- Auth helpers ---
def create_test_token(role: str = "admin", subject: str = "admin@example.com") -> str:
    payload = {"sub": subject, "role": role}
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def admin_headers():
    return {"Authorization": create_test_token()}


# --- Data factories ---
@pytest.fixture
def product(db_session):
    """A bounce house with two units, priced for every booking type."""
    db_product = models.Product(
        slug="castle-bounce",
        name="Castle Bounce House",
        daily_price=150.0,
        weekend_price=225.0,
        sunday_price=175.0,
    )
    db_session.add(db_product)
    db_session.flush()
    db_session.add_all([
        models.Unit(product_id=db_product.id, label="Castle #1"),
        models.Unit(product_id=db_product.id, label="Castle #2"),
    ])
    db_session.commit()
    db_session.refresh(db_product)
    return db_product


@pytest.fixture
def make_booking(db_session, product):
    """Creates a booking directly in the database, bypassing checkout."""
    counter = {"n": 0}

    def _make(
            event_date=TODAY + datetime.timedelta(days=10),
            status=models.BookingStatus.CONFIRMED,
            amount_paid=50.0,
            email="pat@example.com",
            payment_intent="pi_test_1",
            unit=0,
    ):
        counter["n"] += 1
        customer = db_session.query(models.Customer).filter(models.Customer.email == email).first()
        if customer is None:
            customer = models.Customer(email=email, first_name="Pat", last_name="Rivera")
            db_session.add(customer)
            db_session.flush()
        booking = models.Booking(
            booking_number=f"PR-TEST{counter['n']:02d}",
            product_id=product.id,
            unit_id=product.units[unit].id,
            customer_id=customer.id,
            product_name=product.name,
            event_date=event_date,
            booking_type=models.BookingType.DAILY,
            delivery_date=event_date,
            pickup_date=event_date,
            delivery_window="morning",
            pickup_window="next-morning",
            address="12 Elm Street",
            city="Springfield",
            subtotal=150.0,
            deposit_amount=50.0,
            amount_paid=amount_paid,
            status=status,
            stripe_payment_intent_id=payment_intent,
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return _make
