"""
Shared pytest fixtures: in-memory SQLite, FastAPI TestClient, and fake
OCR / LLM / mail collaborators wired into a PipelineContext.
"""
import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("JWT_ISSUER", "aiborn-test")
os.environ.setdefault("ADMIN_EMAIL", "admin@ai-born.org")

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import aiborn.models  # noqa: E402,F401  (register tables)
from aiborn.core.config import settings  # noqa: E402
from aiborn.core.deps import get_current_user  # noqa: E402
from aiborn.core.mailer import LogMailer, Mailer, SendResult  # noqa: E402
from aiborn.core.ratelimit import InMemoryRateLimiter  # noqa: E402
from aiborn.core.storage import LocalStorage  # noqa: E402
from aiborn.core.timeutil import from_ms, now_ms  # noqa: E402
from aiborn.db.base import Base  # noqa: E402
from aiborn.db.session import get_db  # noqa: E402
from aiborn.main import app  # noqa: E402
from aiborn.models.user import User  # noqa: E402
from aiborn.pipeline.assets import BONUS_ASSETS  # noqa: E402
from aiborn.pipeline.context import PipelineContext, get_pipeline_context  # noqa: E402
from aiborn.pipeline.intake import accept_receipt  # noqa: E402
from aiborn.pipeline.scoring import FraudPolicy  # noqa: E402
from aiborn.pipeline.types import ExtractionResult, ParsedReceipt  # noqa: E402

TOKEN_SECRET = "test-bonus-secret"

_ENGINE = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_Session = sessionmaker(autocommit=False, autoflush=False, bind=_ENGINE)


class FakeClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, start: int | None = None):
        self.ms = now_ms() if start is None else start

    def __call__(self) -> int:
        return self.ms

    def advance(self, ms: int) -> None:
        self.ms += ms


class FakeExtractor:
    """Returns the queued results in order; the last one repeats."""

    def __init__(self, *results: ExtractionResult):
        self.results = list(results) or [
            ExtractionResult(
                success=True,
                redacted_text="AMAZON.COM Order Summary\nAI-Born (Hardcover) $28.99",
                confidence=0.95,
            )
        ]
        self.calls = 0

    def extract(self, data: bytes, mime_type: str) -> ExtractionResult:
        self.calls += 1
        return self.results[min(self.calls, len(self.results)) - 1]


class FakeParser:
    def __init__(self, parsed: ParsedReceipt | None = None, error: Exception | None = None):
        self.parsed = parsed or ParsedReceipt()
        self.error = error
        self.calls = 0

    def parse(self, redacted_text: str) -> ParsedReceipt:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.parsed


class FailingMailer(Mailer):
    def __init__(self):
        self.attempts = 0

    def send(self, to: str, subject: str, html: str) -> SendResult:
        self.attempts += 1
        return SendResult(success=False, error="SMTP unavailable")


class RaisingMailer(Mailer):
    def send(self, to: str, subject: str, html: str) -> SendResult:
        raise RuntimeError("mail relay dropped the connection")


def good_receipt(clock: FakeClock, **overrides) -> ParsedReceipt:
    fields = dict(
        retailer="Amazon",
        amount=28.99,
        currency="USD",
        book_title="AI-Born",
        purchase_date=from_ms(clock()) - timedelta(days=1),
        order_number="112-7654321-0000000",
        format="hardcover",
        confidence=0.92,
        requires_manual_review=False,
    )
    fields.update(overrides)
    return ParsedReceipt(**fields)


def png_bytes(tag: str) -> bytes:
    return b"\x89PNG\r\n\x1a\n" + f"receipt-{tag}".encode() * 8


@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.create_all(bind=_ENGINE)
    yield
    Base.metadata.drop_all(bind=_ENGINE)


@pytest.fixture()
def db():
    session = _Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def extractor():
    return FakeExtractor()


@pytest.fixture()
def parser(clock):
    return FakeParser(good_receipt(clock))


@pytest.fixture()
def mailer():
    return LogMailer()


@pytest.fixture()
def limiter(clock):
    return InMemoryRateLimiter(clock=clock)


@pytest.fixture()
def test_settings(tmp_path):
    assets = tmp_path / "assets"
    assets.mkdir()
    for asset in BONUS_ASSETS.values():
        (assets / asset.filename).write_bytes(f"contents of {asset.key}".encode())
    return settings.model_copy(
        update={
            "BONUS_TOKEN_SECRET": TOKEN_SECRET,
            "SITE_URL": "https://ai-born.test",
            "UPLOAD_DIR": str(tmp_path / "uploads"),
            "ASSETS_DIR": str(assets),
            "OCR_MAX_ATTEMPTS": 1,
        }
    )


@pytest.fixture()
def ctx(test_settings, limiter, mailer, extractor, parser, clock):
    return PipelineContext(
        settings=test_settings,
        limiter=limiter,
        mailer=mailer,
        storage=LocalStorage(test_settings.UPLOAD_DIR),
        extractor=extractor,
        parser=parser,
        session_factory=_Session,
        policy=FraudPolicy.from_settings(test_settings),
        clock=clock,
    )


@pytest.fixture()
def make_user(db):
    def _make(email: str = "reader@example.com") -> User:
        user = User(email=email, name="Reader")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def user(make_user):
    return make_user()


@pytest.fixture()
def admin_user(make_user):
    return make_user(settings.ADMIN_EMAIL)


@pytest.fixture()
def submit(db, ctx, user):
    """Store a receipt + claim the way the upload endpoint does; returns the IntakeResult."""

    def _submit(tag: str = "a", delivery_email: str | None = None, owner: User | None = None):
        owner = owner or user
        return accept_receipt(
            db,
            ctx,
            owner,
            png_bytes(tag),
            delivery_email=delivery_email or owner.email,
            retailer="Amazon",
            order_number="112-7654321-0000000",
            book_format="hardcover",
        )

    return _submit


@pytest.fixture()
def client(db, ctx):
    def _override_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_pipeline_context] = lambda: ctx
    # no lifespan: the test context replaces the real collaborators
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def login_as():
    def _login(u: User) -> None:
        app.dependency_overrides[get_current_user] = lambda: u

    return _login
