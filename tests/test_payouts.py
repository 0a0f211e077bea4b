"""Tests for payout request storage and formatting."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledgerbook.services.payouts import (
    PayoutStore,
    format_date,
    format_inr,
    payout_reference,
    summarize,
    wallet_label,
)
from ledgerbook.services.users import EMAIL, ProfileHints, UserStore


class TestFormatting:
    @pytest.mark.parametrize(
        "amount, expected",
        [
            (0, "₹0"),
            (999, "₹999"),
            (1000, "₹1,000"),
            (123456, "₹1,23,456"),
            (12345678, "₹1,23,45,678"),
            (Decimal("1500.50"), "₹1,501"),
            (Decimal("1500.49"), "₹1,500"),
        ],
    )
    def test_format_inr(self, amount, expected):
        assert format_inr(amount) == expected

    def test_format_date(self):
        value = datetime(2025, 3, 7, 10, 30, tzinfo=timezone.utc)
        assert format_date(value) == "7 Mar 2025"
        assert format_date(None) == "--"

    def test_reference(self):
        created = datetime(2025, 1, 2, tzinfo=timezone.utc)
        assert payout_reference("3f2a9c1d-0000-4000-8000-000000000000", created) == (
            "PYT-2025-3F2A9C1D"
        )

    def test_wallet_label(self):
        assert wallet_label("managers") == "Managers Wallet"
        assert wallet_label("super_admin") == "Super admin Wallet"
        assert wallet_label(None, "Asha", "Rao") == "Asha Rao Wallet"
        assert wallet_label(None, email="ravi@example.com") == "ravi Wallet"
        assert wallet_label(None) == "User Wallet"


class TestPayoutStore:
    @pytest.fixture
    def payouts(self, clock):
        return PayoutStore(clock=clock)

    def test_create_and_list_own(self, payouts, user_store, clock):
        user = user_store.resolve_or_create(EMAIL, "staff@example.com", role="staff").identity

        created = payouts.create(user.id, Decimal("2500.00"), "UTR12345", "March payout")

        assert created.status == "pending"
        assert created.status_label == "Pending Approval"
        assert created.created_at == clock.now
        records = payouts.list_for(user.id, user.primary_role)
        assert [record.id for record in records] == [created.id]
        assert records[0].wallet == "Staff Wallet"
        assert records[0].amount == Decimal("2500.00")

    def test_staff_see_only_their_own(self, payouts, user_store):
        staff = user_store.resolve_or_create(EMAIL, "staff@example.com", role="staff").identity
        other = user_store.resolve_or_create(EMAIL, "other@example.com", role="staff").identity
        payouts.create(staff.id, Decimal("100"), "UTR00001", "mine")
        payouts.create(other.id, Decimal("200"), "UTR00002", "theirs")

        records = payouts.list_for(staff.id, staff.primary_role)

        assert [record.remarks for record in records] == ["mine"]

    def test_visibility_follows_primary_role(self, payouts, user_store, clock):
        staff = user_store.resolve_or_create(EMAIL, "staff@example.com", role="staff").identity
        other = user_store.resolve_or_create(EMAIL, "other@example.com", role="staff").identity
        clock.advance(minutes=1)
        user_store.assign_role(staff.id, "managers")
        staff = user_store.get_identity(staff.id)
        payouts.create(staff.id, Decimal("100"), "UTR00001", "mine")
        payouts.create(other.id, Decimal("200"), "UTR00002", "theirs")

        assert staff.roles == ("staff", "managers")
        records = payouts.list_for(staff.id, staff.primary_role)

        assert [record.remarks for record in records] == ["mine"]

    def test_reviewers_see_everything_newest_first(self, payouts, user_store, clock):
        staff = user_store.resolve_or_create(EMAIL, "staff@example.com", role="staff").identity
        manager = user_store.resolve_or_create(EMAIL, "boss@example.com").identity
        payouts.create(staff.id, Decimal("100"), "UTR00001", "first")
        clock.advance(minutes=1)
        payouts.create(manager.id, Decimal("200"), "UTR00002", "second")

        records = payouts.list_for(manager.id, manager.primary_role)

        assert [record.remarks for record in records] == ["second", "first"]

    def test_summaries(self, payouts, user_store):
        user = user_store.resolve_or_create(EMAIL, "a@example.com").identity
        payouts.create(user.id, Decimal("100"), "UTR00001", "one")
        payouts.create(user.id, Decimal("250.50"), "UTR00002", "two")

        summary = summarize(payouts.list_for(user.id, user.primary_role))

        assert summary.total == Decimal("350.50")
        assert summary.pending == Decimal("350.50")
        assert summary.approved == Decimal("0")
        assert summary.rejected == Decimal("0")

    def test_wallet_falls_back_to_profile_name(self, payouts, clock):
        roleless = UserStore(default_role="missing-role", clock=clock)
        user = roleless.resolve_or_create(
            EMAIL, "asha@example.com", ProfileHints(first_name="Asha")
        ).identity
        payouts.create(user.id, Decimal("10"), "UTR00003", "x")

        record = payouts.list_for(user.id, user.primary_role)[0]

        assert record.wallet == "Asha Wallet"
