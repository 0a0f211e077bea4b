from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from sqlalchemy import select

from ledgerbook.database import as_utc, session_scope, utcnow
from ledgerbook.models.payout import PayoutRequestEntry
from ledgerbook.models.user import RoleEntry, UserDetailsEntry, UserEntry, UserRoleEntry

LOGGER = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

STATUS_LABELS = {
    PENDING: "Pending Approval",
    APPROVED: "Approved",
    REJECTED: "Rejected",
}

# Roles that review payouts and therefore see every request.
REVIEWER_ROLES = frozenset({"admin", "managers", "auditor"})


def format_inr(amount: Decimal | float | int) -> str:
    """Render a rupee amount with Indian digit grouping, e.g. ``₹12,34,567``."""
    value = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    digits = str(abs(int(value)))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])
    return f"{sign}₹{digits}"


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "--"
    return f"{value.day} {value.strftime('%b')} {value.year}"


def payout_reference(payout_id: str, created_at: datetime) -> str:
    return f"PYT-{created_at.year}-{payout_id[:8].upper()}"


def wallet_label(
    role: Optional[str],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    email: Optional[str] = None,
) -> str:
    if role:
        name = role[:1].upper() + role[1:].replace("_", " ")
        return f"{name} Wallet"
    if first_name:
        name = f"{first_name} {last_name}" if last_name else first_name
    elif email:
        name = email.split("@")[0]
    else:
        name = "User"
    return f"{name} Wallet"


@dataclass(frozen=True)
class PayoutRecord:
    id: str
    user_id: Optional[str]
    amount: Decimal
    utr: str
    remarks: str
    status: str
    created_at: datetime
    processed_at: Optional[datetime] = None
    proof_filename: Optional[str] = None
    proof_url: Optional[str] = None
    user_email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_role: Optional[str] = None

    @property
    def reference(self) -> str:
        return payout_reference(self.id, self.created_at)

    @property
    def wallet(self) -> str:
        return wallet_label(self.user_role, self.first_name, self.last_name, self.user_email)

    @property
    def status_label(self) -> str:
        return STATUS_LABELS.get(self.status, STATUS_LABELS[PENDING])


@dataclass(frozen=True)
class PayoutSummary:
    total: Decimal
    approved: Decimal
    rejected: Decimal
    pending: Decimal


def summarize(records: list[PayoutRecord]) -> PayoutSummary:
    def _sum(status: Optional[str] = None) -> Decimal:
        return sum(
            (record.amount for record in records if status is None or record.status == status),
            Decimal("0"),
        )

    return PayoutSummary(
        total=_sum(),
        approved=_sum(APPROVED),
        rejected=_sum(REJECTED),
        pending=_sum(PENDING),
    )


class PayoutStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def create(
        self,
        user_id: str,
        amount: Decimal,
        utr: str,
        remarks: str,
        proof_filename: Optional[str] = None,
        proof_url: Optional[str] = None,
    ) -> PayoutRecord:
        with session_scope() as session:
            entry = PayoutRequestEntry(
                user_id=user_id,
                amount=amount,
                utr=utr,
                remarks=remarks,
                proof_filename=proof_filename,
                proof_url=proof_url,
                status=PENDING,
                created_at=self._clock(),
            )
            session.add(entry)
            session.flush()
            LOGGER.info("Created payout request id=%s user_id=%s", entry.id, user_id)
            return _to_record(entry)

    def list_for(
        self, user_id: str, primary_role: Optional[str]
    ) -> list[PayoutRecord]:
        """Every request when the primary role reviews, otherwise the caller's own."""
        with session_scope() as session:
            query = (
                select(PayoutRequestEntry, UserEntry.email, UserDetailsEntry)
                .outerjoin(UserEntry, PayoutRequestEntry.user_id == UserEntry.id)
                .outerjoin(UserDetailsEntry, UserDetailsEntry.user_id == UserEntry.id)
                .order_by(PayoutRequestEntry.created_at.desc(), PayoutRequestEntry.id)
            )
            if primary_role not in REVIEWER_ROLES:
                query = query.where(PayoutRequestEntry.user_id == user_id)
            rows = session.execute(query).all()
            owner_roles = self._first_roles(
                session, {entry.user_id for entry, _, _ in rows if entry.user_id}
            )
            return [
                _to_record(
                    entry,
                    email=email,
                    details=details,
                    role=owner_roles.get(entry.user_id),
                )
                for entry, email, details in rows
            ]

    def _first_roles(self, session, user_ids: set[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        result = session.execute(
            select(UserRoleEntry.user_id, RoleEntry.name)
            .join(RoleEntry, RoleEntry.id == UserRoleEntry.role_id)
            .where(UserRoleEntry.user_id.in_(user_ids))
            .order_by(UserRoleEntry.assigned_at, UserRoleEntry.id)
        )
        roles: dict[str, str] = {}
        for user_id, name in result:
            roles.setdefault(user_id, name)
        return roles


def _to_record(
    entry: PayoutRequestEntry,
    email: Optional[str] = None,
    details: Optional[UserDetailsEntry] = None,
    role: Optional[str] = None,
) -> PayoutRecord:
    return PayoutRecord(
        id=entry.id,
        user_id=entry.user_id,
        amount=Decimal(str(entry.amount)),
        utr=entry.utr,
        remarks=entry.remarks,
        status=entry.status,
        created_at=as_utc(entry.created_at),
        processed_at=as_utc(entry.processed_at),
        proof_filename=entry.proof_filename,
        proof_url=entry.proof_url,
        user_email=email,
        first_name=details.first_name if details is not None else None,
        last_name=details.last_name if details is not None else None,
        user_role=role,
    )


payout_store = PayoutStore()
