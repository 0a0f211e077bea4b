from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import false, select, update

from ledgerbook.config import settings
from ledgerbook.database import as_utc, session_scope, utcnow
from ledgerbook.models.otp import OtpEntry
from ledgerbook.services.channels import ChannelError, ChannelSender
from ledgerbook.services.email import email_sender
from ledgerbook.services.phone import normalize_phone
from ledgerbook.services.sms import sms_sender

LOGGER = logging.getLogger(__name__)

PHONE = "phone"
EMAIL = "email"

Clock = Callable[[], datetime]


class OtpError(ValueError):
    message = "Failed to verify OTP"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)


class OtpNotFound(OtpError):
    message = "OTP not found"


class OtpAlreadyUsed(OtpError):
    message = "OTP already used"


class OtpExpired(OtpError):
    message = "OTP expired"


class OtpMismatch(OtpError):
    message = "Invalid OTP"


@dataclass(frozen=True)
class OtpIdentity:
    channel: str
    value: str

    @classmethod
    def for_phone(cls, raw: str, country_code: str = "91") -> "OtpIdentity":
        return cls(PHONE, normalize_phone(raw, country_code))

    @classmethod
    def for_email(cls, raw: str) -> "OtpIdentity":
        return cls(EMAIL, raw.strip().lower())


@dataclass(frozen=True)
class OtpRecord:
    id: int
    identity: OtpIdentity
    code: str
    created_at: datetime
    expires_at: datetime
    used: bool
    used_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _identity_column(identity: OtpIdentity):
    if identity.channel == PHONE:
        return OtpEntry.phone
    if identity.channel == EMAIL:
        return OtpEntry.email
    raise ValueError(f"Unknown OTP channel: {identity.channel}")


def _to_record(entry: OtpEntry) -> OtpRecord:
    if entry.phone is not None:
        identity = OtpIdentity(PHONE, entry.phone)
    else:
        identity = OtpIdentity(EMAIL, entry.email)
    return OtpRecord(
        id=entry.id,
        identity=identity,
        code=entry.code,
        created_at=as_utc(entry.created_at),
        expires_at=as_utc(entry.expires_at),
        used=bool(entry.used),
        used_at=as_utc(entry.used_at),
    )


class OtpStore:
    """Persists issued codes; the newest record per identity is the live one."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock

    def issue(self, identity: OtpIdentity, code: str, ttl: timedelta) -> OtpRecord:
        now = self._clock()
        column = _identity_column(identity)
        entry = OtpEntry(
            code=code,
            created_at=now,
            expires_at=now + ttl,
            used=False,
        )
        setattr(entry, column.key, identity.value)
        with session_scope() as session:
            session.add(entry)
            session.flush()
            return _to_record(entry)

    def latest(self, identity: OtpIdentity) -> Optional[OtpRecord]:
        column = _identity_column(identity)
        with session_scope() as session:
            entry = session.execute(
                select(OtpEntry)
                .where(column == identity.value)
                .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_record(entry) if entry is not None else None

    def get(self, record_id: int) -> Optional[OtpRecord]:
        with session_scope() as session:
            entry = session.get(OtpEntry, record_id)
            return _to_record(entry) if entry is not None else None

    def mark_used(self, record_id: int, *, unexpired_at: Optional[datetime] = None) -> bool:
        """Flip ``used`` if it is still false; True only for the flipping call."""
        now = self._clock()
        conditions = [OtpEntry.id == record_id, OtpEntry.used == false()]
        if unexpired_at is not None:
            conditions.append(OtpEntry.expires_at >= unexpired_at)
        with session_scope() as session:
            result = session.execute(
                update(OtpEntry).where(*conditions).values(used=True, used_at=now)
            )
            return result.rowcount > 0

    def last_verified(self, identity: OtpIdentity) -> Optional[OtpRecord]:
        record = self.latest(identity)
        if record is None or not record.used:
            return None
        return record


class OtpVerifier:
    def __init__(self, store: OtpStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    def verify(self, identity: OtpIdentity, presented_code: str) -> OtpRecord:
        record = self._store.latest(identity)
        if record is None:
            raise OtpNotFound()
        if record.used:
            raise OtpAlreadyUsed()
        now = self._clock()
        if record.is_expired(now):
            raise OtpExpired()
        if presented_code != record.code:
            raise OtpMismatch()

        if not self._store.mark_used(record.id, unexpired_at=now):
            current = self._store.get(record.id)
            if current is not None and not current.used and current.is_expired(self._clock()):
                raise OtpExpired()
            LOGGER.warning(
                "Concurrent verification lost the claim on otp_id=%s", record.id
            )
            raise OtpAlreadyUsed()
        return record


class OtpService:
    def __init__(
        self,
        store: OtpStore,
        verifier: OtpVerifier,
        sms: ChannelSender,
        email: ChannelSender,
        ttl_minutes: int = 5,
        country_code: str = "91",
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._verifier = verifier
        self._sms = sms
        self._email = email
        self._ttl_minutes = ttl_minutes
        self._country_code = country_code
        self._clock = clock

    @property
    def ttl_minutes(self) -> int:
        return self._ttl_minutes

    def phone_identity(self, raw_phone: str) -> OtpIdentity:
        return OtpIdentity.for_phone(raw_phone, self._country_code)

    def request_phone_otp(self, raw_phone: str) -> OtpRecord:
        identity = self.phone_identity(raw_phone)
        return self._issue(identity, self._sms)

    def request_email_otp(self, email: str) -> OtpRecord:
        return self._issue(OtpIdentity.for_email(email), self._email)

    def verify_phone(self, raw_phone: str, code: str) -> OtpRecord:
        return self._verifier.verify(self.phone_identity(raw_phone), code)

    def verify_email(self, email: str, code: str) -> OtpRecord:
        return self._verifier.verify(OtpIdentity.for_email(email), code)

    def was_recently_verified(self, identity: OtpIdentity, within: timedelta) -> bool:
        record = self._store.last_verified(identity)
        if record is None or record.used_at is None:
            return False
        return self._clock() - record.used_at <= within

    def _issue(self, identity: OtpIdentity, sender: ChannelSender) -> OtpRecord:
        code = generate_code()
        # ChannelError propagates before anything is stored.
        result = sender.send(code, identity.value, self._ttl_minutes)
        if not result.success:
            raise ChannelError("OTP delivery was not confirmed by the provider")
        try:
            record = self._store.issue(
                identity, code, timedelta(minutes=self._ttl_minutes)
            )
        except Exception:
            LOGGER.exception(
                "OTP delivered but not stored channel=%s destination=%s",
                identity.channel,
                identity.value,
            )
            raise
        LOGGER.info(
            "OTP issued channel=%s destination=%s otp_id=%s",
            identity.channel,
            identity.value,
            record.id,
        )
        return record


otp_store = OtpStore()
otp_verifier = OtpVerifier(otp_store)
otp_service = OtpService(
    otp_store,
    otp_verifier,
    sms=sms_sender,
    email=email_sender,
    ttl_minutes=settings.otp_ttl_minutes,
    country_code=settings.default_country_code,
)
