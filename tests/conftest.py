# Imports for testing tools
import datetime
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from unittest.mock import AsyncMock
from jose import jwt

# Import your application code
from shortlet_service.main import app
from shortlet_service.database import Base, get_db
from shortlet_service.config import settings
from shortlet_service.dependencies import create_booking_rate_limit, read_rate_limit
from shortlet_service import models

# --- Test Database Setup ---
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_shortlet.db"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# --- Database Management Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def setup_db():
    """Creates and drops the test database tables."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Provides a clean database session for each test; everything is rolled back."""
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    yield session
    session.close()
    transaction.rollback()
    connection.close()


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks (poller and scheduler) and Redis that run on app lifespan.
    """
    mocker.patch("shortlet_service.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("shortlet_service.main.run_booking_scheduler", new_callable=AsyncMock)
    mocker.patch("shortlet_service.main.FastAPILimiter.init", new_callable=AsyncMock)


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session):
    """Provides a TestClient with the test session and no rate limiting."""
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[create_booking_rate_limit] = lambda: None
    app.dependency_overrides[read_rate_limit] = lambda: None

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# --- Auth helpers ---
def create_test_token(user_id: int = 1) -> str:
    """Creates a simple JWT for testing."""
    payload = {"sub": str(user_id)}
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def auth_headers():
    """Authorization headers for the default guest (user_id=1)."""
    return {"Authorization": create_test_token(1)}


@pytest.fixture
def host_headers():
    """Authorization headers for the default host (user_id=50)."""
    return {"Authorization": create_test_token(50)}


@pytest.fixture
def headers_for():
    """Authorization headers for any user id."""
    return lambda user_id: {"Authorization": create_test_token(user_id)}


# --- Row factories ---
@pytest.fixture
def make_listing(db_session):
    """Adds shortlet settings for a property. Host defaults to user 50."""
    def _make(property_id: int, **overrides):
        values = {
            "host_user_id": 50,
            "booking_mode": "request",
            "nightly_price_minor": 25000,
            "cleaning_fee_minor": 3000,
            "deposit_minor": 0,
            "currency": "NGN",
            "min_nights": 1,
            "max_nights": None,
            "advance_notice_hours": 0,
            "prep_days": 0,
            "cancellation_policy": "flexible_48h",
        }
        values.update(overrides)
        row = models.ShortletSettings(property_id=property_id, **values)
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row
    return _make


@pytest.fixture
def make_booking(db_session):
    """Adds a booking row directly, bypassing the API."""
    def _make(property_id: int, check_in: datetime.date, check_out: datetime.date, status: str = "confirmed", **overrides):
        nights = (check_out - check_in).days
        values = {
            "guest_user_id": 99,
            "host_user_id": 50,
            "nights": nights,
            "nightly_price_minor": 25000,
            "cleaning_fee_minor": 0,
            "deposit_minor": 0,
            "total_amount_minor": 25000 * nights,
            "currency": "NGN",
        }
        values.update(overrides)
        booking = models.Booking(
            property_id=property_id, check_in=check_in, check_out=check_out, status=status, **values
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking
    return _make
