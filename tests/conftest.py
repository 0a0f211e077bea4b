"""Pytest configuration and common fixtures."""

import os
import tempfile
from datetime import timedelta
from pathlib import Path

# Environment must be in place before any ledgerbook import reads it.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="ledgerbook-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'test.db'}"
os.environ["JWT_SECRET"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["UPLOAD_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["REQUIRE_VERIFIED_OTP"] = "true"
os.environ["OTP_UNIFY_FAILURES"] = "false"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["FAST2SMS_API_KEY"] = "test-fast2sms-key"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

import pytest
from fastapi.testclient import TestClient

from ledgerbook.database import Base, engine, seed_roles, utcnow
from ledgerbook.main import app
from ledgerbook.models import otp as _otp_models  # noqa: F401
from ledgerbook.models import payout as _payout_models  # noqa: F401
from ledgerbook.models import user as _user_models  # noqa: F401
from ledgerbook.routers import deps
from ledgerbook.services.channels import ChannelError, SendResult
from ledgerbook.services.otp import OtpService, OtpStore, OtpVerifier
from ledgerbook.services.payouts import PayoutStore
from ledgerbook.services.storage import LocalStorage
from ledgerbook.services.tokens import TokenIssuer
from ledgerbook.services.users import UserStore


class FakeClock:
    """Settable clock shared by the stores under test."""

    def __init__(self, start=None):
        self.now = start or utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeSender:
    """Channel sender that records deliveries instead of sending them."""

    def __init__(self):
        self.sent = []
        self.error = None
        self.confirmed = True

    def send(self, code, destination, ttl_minutes):
        if self.error is not None:
            raise self.error
        self.sent.append((code, destination, ttl_minutes))
        return SendResult(success=self.confirmed, provider_message_id=f"fake-{len(self.sent)}")

    def fail_with(self, reason):
        self.error = ChannelError(reason, provider_response={"return": False})

    @property
    def last_code(self):
        return self.sent[-1][0]


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    seed_roles()
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sms():
    return FakeSender()


@pytest.fixture
def mailer():
    return FakeSender()


@pytest.fixture
def otp_store(clock):
    return OtpStore(clock=clock)


@pytest.fixture
def otp_service(otp_store, clock, sms, mailer):
    return OtpService(
        otp_store,
        OtpVerifier(otp_store, clock=clock),
        sms=sms,
        email=mailer,
        ttl_minutes=5,
        country_code="91",
        clock=clock,
    )


@pytest.fixture
def user_store(clock):
    return UserStore(default_role="managers", placeholder_domain="ledgerbook", clock=clock)


@pytest.fixture
def token_issuer():
    return TokenIssuer(secret=os.environ["JWT_SECRET"], default_role="managers")


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"))


@pytest.fixture
def client(otp_service, user_store, token_issuer, storage, clock):
    app.dependency_overrides[deps.get_otp_service] = lambda: otp_service
    app.dependency_overrides[deps.get_user_store] = lambda: user_store
    app.dependency_overrides[deps.get_token_issuer] = lambda: token_issuer
    app.dependency_overrides[deps.get_storage] = lambda: storage
    app.dependency_overrides[deps.get_payout_store] = lambda: PayoutStore(clock=clock)
    yield TestClient(app)
    app.dependency_overrides.clear()