from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ledgerbook.config import settings
from ledgerbook.database import as_utc, dialect_insert, session_scope, utcnow
from ledgerbook.models.user import (
    RoleEntry,
    UserDetailsEntry,
    UserEntry,
    UserRoleEntry,
)
from ledgerbook.schemas.users import AccountMetadata
from ledgerbook.services.passwords import (
    hash_password,
    unusable_password_hash,
    verify_password,
)

LOGGER = logging.getLogger(__name__)

EMAIL = "email"
PHONE = "phone"

_DETAIL_FIELDS = ("first_name", "last_name", "phone", "upi_id", "upi_qr_code", "address")


class IdentityConflict(ValueError):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class ProfileHints:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.first_name or self.last_name or self.phone)


@dataclass(frozen=True)
class UserIdentity:
    id: str
    email: str
    status: str
    created_at: datetime
    last_login_at: Optional[datetime] = None
    roles: tuple[str, ...] = ()
    phone: Optional[str] = None

    @property
    def primary_role(self) -> Optional[str]:
        return self.roles[0] if self.roles else None


@dataclass(frozen=True)
class Resolution:
    """Outcome of find-or-create.

    A hard failure raises and creates nothing. A soft failure still returns
    the identity, with the enrichment steps that failed in
    ``enrichment_errors`` so a caller may retry them.
    """

    identity: UserIdentity
    created: bool
    enrichment_errors: tuple[IdentityConflict, ...] = ()

    @property
    def enriched(self) -> bool:
        return not self.enrichment_errors


@dataclass(frozen=True)
class AccountDetails:
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    upi_id: Optional[str] = None
    upi_qr_code: Optional[str] = None
    address: Any = None
    metadata: AccountMetadata = field(default_factory=AccountMetadata)

    @property
    def full_name(self) -> Optional[str]:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts).strip() or None


class UserStore:
    def __init__(
        self,
        default_role: str = "managers",
        placeholder_domain: str = "ledgerbook",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._default_role = default_role
        self._placeholder_domain = placeholder_domain
        self._clock = clock

    @property
    def default_role(self) -> str:
        return self._default_role

    def placeholder_email(self, phone: str) -> str:
        return f"phone_{phone}@{self._placeholder_domain}.temp"

    def find_by_email(self, email: str) -> Optional[UserIdentity]:
        with session_scope() as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == normalize_email(email))
            ).scalar_one_or_none()
            if entry is None:
                return None
            return self._identity(session, entry)

    def find_by_phone(self, phone: str) -> Optional[UserIdentity]:
        with session_scope() as session:
            entry = session.execute(
                select(UserEntry)
                .join(UserDetailsEntry, UserDetailsEntry.user_id == UserEntry.id)
                .where(UserDetailsEntry.phone == phone)
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                return None
            return self._identity(session, entry)

    def get_identity(self, user_id: str) -> Optional[UserIdentity]:
        with session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return None
            return self._identity(session, entry)

    def email_exists(self, email: str) -> bool:
        with session_scope() as session:
            found = session.execute(
                select(UserEntry.id).where(UserEntry.email == normalize_email(email))
            ).scalar_one_or_none()
            return found is not None

    def get_roles(self, user_id: str) -> list[str]:
        with session_scope() as session:
            return self._roles(session, user_id)

    def assign_role(self, user_id: str, role_name: str) -> None:
        with session_scope() as session:
            role_id = session.execute(
                select(RoleEntry.id).where(RoleEntry.name == role_name)
            ).scalar_one_or_none()
            if role_id is None:
                raise IdentityConflict(f"Role '{role_name}' not found")
            insert = dialect_insert(session, UserRoleEntry)
            session.execute(
                insert.values(
                    user_id=user_id, role_id=role_id, assigned_at=self._clock()
                ).on_conflict_do_nothing(index_elements=["user_id", "role_id"])
            )

    def touch_login(self, user_id: str) -> None:
        now = self._clock()
        with session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is not None:
                entry.last_login_at = now
                entry.updated_at = now

    def resolve_or_create(
        self,
        channel: str,
        value: str,
        hints: Optional[ProfileHints] = None,
        role: Optional[str] = None,
    ) -> Resolution:
        """Find the identity behind a verified phone or email, creating it once.

        ``value`` must already be normalized (phone digits or any-case email).
        Concurrent calls for the same unseen identity converge on one row via
        an upsert on ``users.email``; the caller that loses the insert gets the
        winner's row back.
        """
        hints = hints or ProfileHints()
        if channel == EMAIL:
            email = normalize_email(value)
            phone = hints.phone
            existing = self.find_by_email(email)
        elif channel == PHONE:
            phone = value
            email = self.placeholder_email(phone)
            existing = self.find_by_phone(phone)
        else:
            raise ValueError(f"Unknown identity channel: {channel}")

        if existing is not None:
            self.touch_login(existing.id)
            return Resolution(identity=self.get_identity(existing.id), created=False)

        now = self._clock()
        user_id, created = self._upsert_user(email, now)
        if channel == PHONE and not created:
            linked = self._linked_phone(user_id)
            if linked is not None and linked != phone:
                LOGGER.warning(
                    "Placeholder account user_id=%s now holds a different phone", user_id
                )
                raise IdentityConflict(
                    f"Phone number {phone} is no longer linked to this account"
                )
        errors = self._enrich(
            user_id,
            ProfileHints(hints.first_name, hints.last_name, phone),
            role or self._default_role,
            assign_role=created,
        )
        LOGGER.info(
            "Resolved identity channel=%s user_id=%s created=%s", channel, user_id, created
        )
        return Resolution(
            identity=self.get_identity(user_id),
            created=created,
            enrichment_errors=errors,
        )

    def register(
        self,
        email: str,
        password: str,
        hints: Optional[ProfileHints] = None,
        role: Optional[str] = None,
    ) -> Resolution:
        now = self._clock()
        user_id = str(uuid.uuid4())
        try:
            with session_scope() as session:
                session.add(
                    UserEntry(
                        id=user_id,
                        email=normalize_email(email),
                        password_hash=hash_password(password),
                        status="active",
                        created_at=now,
                        updated_at=now,
                    )
                )
                session.flush()
        except IntegrityError as exc:
            raise IdentityConflict("Email already registered") from exc

        errors = self._enrich(
            user_id, hints or ProfileHints(), role or self._default_role, assign_role=True
        )
        return Resolution(
            identity=self.get_identity(user_id), created=True, enrichment_errors=errors
        )

    def authenticate(self, email: str, password: str) -> Optional[UserIdentity]:
        with session_scope() as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == normalize_email(email))
            ).scalar_one_or_none()
            if entry is None or not verify_password(password, entry.password_hash):
                return None
            now = self._clock()
            entry.last_login_at = now
            entry.updated_at = now
            session.flush()
            return self._identity(session, entry)

    def change_password(self, user_id: str, current: str, new: str) -> bool:
        with session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                raise ValueError("User not found")
            if not verify_password(current, entry.password_hash):
                return False
            entry.password_hash = hash_password(new)
            entry.updated_at = self._clock()
            return True

    def get_account_details(self, user_id: str) -> Optional[AccountDetails]:
        with session_scope() as session:
            user = session.get(UserEntry, user_id)
            if user is None:
                return None
            details = session.get(UserDetailsEntry, user_id)
            return _to_account_details(user, details)

    def update_account_details(
        self, user_id: str, changes: dict[str, Any]
    ) -> AccountDetails:
        """Apply a partial update.

        Keys absent from ``changes`` keep their stored value; a key mapped to
        ``None`` or ``""`` clears the field; anything else replaces it.
        ``gstin`` lives in the typed metadata blob and merges the same way.
        """
        now = self._clock()
        try:
            with session_scope() as session:
                user = session.get(UserEntry, user_id)
                if user is None:
                    raise ValueError("User not found")
                details = session.get(UserDetailsEntry, user_id)
                if details is None:
                    details = UserDetailsEntry(
                        user_id=user_id, created_at=now, updated_at=now
                    )
                    session.add(details)

                for name in _DETAIL_FIELDS:
                    if name in changes:
                        setattr(details, name, changes[name] or None)
                if "gstin" in changes:
                    metadata = AccountMetadata.from_raw(details.extra)
                    details.extra = metadata.merged(gstin=changes["gstin"]).model_dump()
                details.updated_at = now
                user.updated_at = now
                session.flush()
                return _to_account_details(user, details)
        except IntegrityError as exc:
            raise IdentityConflict("Phone number already in use") from exc

    def _identity(self, session, entry: UserEntry) -> UserIdentity:
        phone = session.execute(
            select(UserDetailsEntry.phone).where(UserDetailsEntry.user_id == entry.id)
        ).scalar_one_or_none()
        return UserIdentity(
            id=entry.id,
            email=entry.email,
            status=entry.status,
            created_at=as_utc(entry.created_at),
            last_login_at=as_utc(entry.last_login_at),
            roles=tuple(self._roles(session, entry.id)),
            phone=phone,
        )

    def _roles(self, session, user_id: str) -> list[str]:
        result = session.execute(
            select(RoleEntry.name)
            .join(UserRoleEntry, UserRoleEntry.role_id == RoleEntry.id)
            .where(UserRoleEntry.user_id == user_id)
            .order_by(UserRoleEntry.assigned_at, UserRoleEntry.id)
        )
        return list(result.scalars().all())

    def _upsert_user(self, email: str, now: datetime) -> tuple[str, bool]:
        new_id = str(uuid.uuid4())
        with session_scope() as session:
            insert = dialect_insert(session, UserEntry)
            stmt = (
                insert.values(
                    id=new_id,
                    email=email,
                    password_hash=unusable_password_hash(),
                    status="active",
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_update(
                    index_elements=["email"],
                    set_={"last_login_at": now, "updated_at": now},
                )
                .returning(UserEntry.id)
            )
            user_id = session.execute(stmt).scalar_one()
        return user_id, user_id == new_id

    def _linked_phone(self, user_id: str) -> Optional[str]:
        with session_scope() as session:
            return session.execute(
                select(UserDetailsEntry.phone).where(UserDetailsEntry.user_id == user_id)
            ).scalar_one_or_none()

    def _enrich(
        self, user_id: str, hints: ProfileHints, role: str, assign_role: bool
    ) -> tuple[IdentityConflict, ...]:
        errors: list[IdentityConflict] = []
        if not hints.is_empty():
            try:
                self._upsert_profile(user_id, hints)
            except IdentityConflict as exc:
                LOGGER.warning("Profile enrichment failed user_id=%s: %s", user_id, exc)
                errors.append(exc)
        if assign_role:
            try:
                self.assign_role(user_id, role)
            except IdentityConflict as exc:
                LOGGER.warning(
                    "Failed to assign role '%s' to user %s: %s", role, user_id, exc
                )
                errors.append(exc)
        return tuple(errors)

    def _upsert_profile(self, user_id: str, hints: ProfileHints) -> None:
        now = self._clock()
        try:
            with session_scope() as session:
                insert = dialect_insert(session, UserDetailsEntry)
                stmt = insert.values(
                    user_id=user_id,
                    first_name=hints.first_name,
                    last_name=hints.last_name,
                    phone=hints.phone,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id"],
                    set_={
                        "first_name": func.coalesce(
                            stmt.excluded.first_name, UserDetailsEntry.first_name
                        ),
                        "last_name": func.coalesce(
                            stmt.excluded.last_name, UserDetailsEntry.last_name
                        ),
                        "phone": func.coalesce(
                            UserDetailsEntry.phone, stmt.excluded.phone
                        ),
                        "updated_at": now,
                    },
                )
                session.execute(stmt)
        except IntegrityError as exc:
            raise IdentityConflict(
                f"Phone number {hints.phone} is linked to another account"
            ) from exc


def _to_account_details(
    user: UserEntry, details: Optional[UserDetailsEntry]
) -> AccountDetails:
    if details is None:
        return AccountDetails(email=user.email)
    return AccountDetails(
        email=user.email,
        first_name=details.first_name,
        last_name=details.last_name,
        phone=details.phone,
        upi_id=details.upi_id,
        upi_qr_code=details.upi_qr_code,
        address=details.address,
        metadata=AccountMetadata.from_raw(details.extra),
    )


user_store = UserStore(
    default_role=settings.default_role,
    placeholder_domain=settings.placeholder_email_domain,
)
