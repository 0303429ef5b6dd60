"""
MSEC Academics - Test Configuration and Fixtures
"""
import os
from datetime import date, datetime, timedelta, timezone
from itertools import count

import pytest

# Set testing environment before the app reads its settings
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['SCHEDULER_ENABLED'] = 'false'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['PUBLIC_BASE_URL'] = 'https://academics.test'
os.environ['ALLOWED_EMAIL_DOMAIN'] = 'msec.edu.in'
os.environ['BULK_DISPATCH_DELAY_SECONDS'] = '0'
os.environ['TWILIO_ACCOUNT_SID'] = ''
os.environ['TWILIO_AUTH_TOKEN'] = ''
os.environ['TWILIO_WHATSAPP_NUMBER'] = ''
os.environ['VAPID_PUBLIC_KEY'] = ''
os.environ['VAPID_PRIVATE_KEY'] = ''

from fastapi.testclient import TestClient

import app.models  # noqa: F401
from app.core.database import Base, SessionLocal, engine, get_db
from app.core.security import create_access_token, hash_password
from app.main import app as fastapi_app
from app.models.marksheet import HodResponse
from app.models.user import User, UserRole
from app.schemas.dispatch import TransportHealth, TransportResult
from app.schemas.marksheet import HodResponseRequest, MarksheetCreate
from app.services.dispatch import DispatchService
from app.services.documents import get_document_cache
from app.services.marksheet import MarksheetService
from app.services.notification import NotificationService, PushOutcome, get_push_sender
from app.services.scheduled_dispatch import ScheduledDispatchService
from app.services.transport import get_transport

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

# 1x1 transparent PNG
SIGNATURE_PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

_reg_numbers = count(1)


class FixedClock:
    """Controllable replacement for datetime.now(timezone.utc)."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTransport:
    """Records sends; numbers in ``failing`` are rejected, in ``raising`` blow up."""

    def __init__(self):
        self.sent: list[dict] = []
        self.failing: set[str] = set()
        self.raising: set[str] = set()

    @property
    def configured(self) -> bool:
        return True

    def health(self) -> TransportHealth:
        return TransportHealth(configured=True, error=None, account_sid="ACtest12...", whatsapp_number="whatsapp:+10000000000")

    def send_document(self, phone_number, document_url, message, media_urls=None) -> TransportResult:
        self.sent.append({"phone_number": phone_number, "document_url": document_url, "message": message})
        if phone_number in self.raising:
            raise RuntimeError("connection reset by peer")
        if phone_number in self.failing:
            return TransportResult(
                success=False,
                error_code="21211",
                error_message="Invalid phone number format",
            )
        return TransportResult(success=True, provider_message_id=f"SM{len(self.sent):032d}")


class FakePushSender:
    """Records pushes and answers with a fixed outcome."""

    def __init__(self, outcome: PushOutcome = PushOutcome.SENT, configured: bool = True):
        self.outcome = outcome
        self.configured = configured
        self.sent: list[tuple[str, dict]] = []
        self.error: Exception | None = None

    def send(self, subscription, payload) -> PushOutcome:
        if self.error:
            raise self.error
        self.sent.append((subscription.endpoint, payload))
        return self.outcome


@pytest.fixture(autouse=True)
def setup_database():
    """Create a fresh schema for each test"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def push_sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def notifications(db_session, push_sender) -> NotificationService:
    return NotificationService(db_session, push_sender=push_sender)


@pytest.fixture
def marksheet_service(db_session, notifications, clock) -> MarksheetService:
    return MarksheetService(db_session, notifications=notifications, clock=clock)


@pytest.fixture
def dispatch_service(db_session, transport, notifications, clock, sleeps) -> DispatchService:
    return DispatchService(
        db_session,
        transport=transport,
        notifications=notifications,
        clock=clock,
        sleep=sleeps.append,
        bulk_delay_seconds=1.5,
    )


@pytest.fixture
def scheduled_service(db_session, dispatch_service, notifications, clock) -> ScheduledDispatchService:
    return ScheduledDispatchService(
        db_session,
        dispatcher=dispatch_service,
        notifications=notifications,
        clock=clock,
        window_minutes=60,
    )


def make_user(db_session, role: UserRole, email: str, department: str = "CSE", **kwargs) -> User:
    user = User(
        email=email,
        name=kwargs.pop("name", email.split("@")[0].title()),
        password_hash=hash_password("password123"),
        role=role,
        department=department,
        year=kwargs.pop("year", "III" if role == UserRole.STAFF else None),
        section=kwargs.pop("section", "A" if role == UserRole.STAFF else None),
        is_active=True,
        **kwargs,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def staff_user(db_session) -> User:
    return make_user(db_session, UserRole.STAFF, "priya@msec.edu.in", e_signature=SIGNATURE_PNG)


@pytest.fixture
def other_staff(db_session) -> User:
    return make_user(db_session, UserRole.STAFF, "arun@msec.edu.in")


@pytest.fixture
def hod_user(db_session) -> User:
    return make_user(db_session, UserRole.HOD, "hod.cse@msec.edu.in")


def marksheet_payload(
    phone: str | None = "9876543210",
    subjects: list[dict] | None = None,
    year: str = "III",
    reg_number: str | None = None,
) -> MarksheetCreate:
    return MarksheetCreate(
        student_details={
            "name": "Kavya R",
            "reg_number": reg_number or f"21CS{next(_reg_numbers):03d}",
            "department": "CSE",
            "year": year,
            "section": "A",
            "parent_phone_number": phone,
        },
        examination_name="Internal Assessment 1",
        examination_date=date(2026, 9, 15),
        semester="5",
        subjects=subjects or [
            {"subject_name": "Compiler Design", "marks": 78},
            {"subject_name": "Computer Networks", "marks": 64},
        ],
    )


@pytest.fixture
def make_marksheet(marksheet_service, staff_user, hod_user):
    """Create a marksheet and walk it to the requested lifecycle point."""

    def _make(
        stage: str = "draft",
        scheduled_at: datetime | None = None,
        staff: User | None = None,
        **payload_kwargs,
    ):
        owner = staff or staff_user
        marksheet = marksheet_service.create_marksheet(owner, marksheet_payload(**payload_kwargs))
        if stage == "draft":
            marksheet_service.db.commit()
            return marksheet
        marksheet = marksheet_service.verify_marksheet(marksheet.id, owner)
        if stage == "verified":
            marksheet_service.db.commit()
            return marksheet
        marksheet = marksheet_service.request_dispatch(marksheet.id, owner)
        if stage == "requested":
            marksheet_service.db.commit()
            return marksheet
        if stage == "approved":
            request = HodResponseRequest(response=HodResponse.APPROVED)
        elif stage == "rejected":
            request = HodResponseRequest(response=HodResponse.REJECTED, comments="Recheck marks")
        else:
            request = HodResponseRequest(response=HodResponse.RESCHEDULED, scheduled_dispatch_date=scheduled_at)
        marksheet = marksheet_service.respond_to_dispatch(marksheet.id, hod_user, request)
        marksheet_service.db.commit()
        return marksheet

    return _make


def auth_headers_for(user: User) -> dict:
    token = create_access_token(user.id, user.email, user.role.value)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def client(db_session, transport, push_sender):
    """Create test client with database and provider overrides"""

    def override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_transport] = lambda: transport
    fastapi_app.dependency_overrides[get_push_sender] = lambda: push_sender
    get_document_cache().clear()

    yield TestClient(fastapi_app)

    fastapi_app.dependency_overrides.clear()
