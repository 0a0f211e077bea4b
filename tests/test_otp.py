"""Tests for OTP issuance, storage and verification."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from ledgerbook.services.channels import ChannelError
from ledgerbook.services.otp import (
    EMAIL,
    PHONE,
    OtpAlreadyUsed,
    OtpError,
    OtpExpired,
    OtpIdentity,
    OtpMismatch,
    OtpNotFound,
    OtpStore,
    OtpVerifier,
    generate_code,
)
from ledgerbook.services.phone import InvalidPhone


class TestGenerateCode:
    def test_six_digits_in_range(self):
        for _ in range(500):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999

    def test_codes_vary(self):
        assert len({generate_code() for _ in range(50)}) > 1


class TestOtpIdentity:
    def test_phone_identity_is_normalized(self):
        identity = OtpIdentity.for_phone("98765 43210")
        assert identity == OtpIdentity(PHONE, "919876543210")

    def test_email_identity_is_case_folded(self):
        identity = OtpIdentity.for_email("  User@Example.COM ")
        assert identity == OtpIdentity(EMAIL, "user@example.com")


class TestOtpStore:
    def test_issue_and_latest(self, otp_store, clock):
        identity = OtpIdentity.for_email("a@example.com")
        record = otp_store.issue(identity, "123456", timedelta(minutes=5))

        latest = otp_store.latest(identity)
        assert latest == record
        assert latest.used is False
        assert latest.expires_at == clock.now + timedelta(minutes=5)

    def test_latest_prefers_newest(self, otp_store, clock):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "111111", timedelta(minutes=5))
        clock.advance(seconds=10)
        otp_store.issue(identity, "222222", timedelta(minutes=5))

        assert otp_store.latest(identity).code == "222222"

    def test_latest_breaks_timestamp_ties_by_id(self, otp_store):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "111111", timedelta(minutes=5))
        otp_store.issue(identity, "222222", timedelta(minutes=5))

        assert otp_store.latest(identity).code == "222222"

    def test_latest_is_identity_scoped(self, otp_store):
        otp_store.issue(OtpIdentity.for_email("a@example.com"), "111111", timedelta(minutes=5))

        assert otp_store.latest(OtpIdentity.for_email("b@example.com")) is None
        assert otp_store.latest(OtpIdentity(PHONE, "a@example.com")) is None

    def test_mark_used_only_flips_once(self, otp_store, clock):
        identity = OtpIdentity.for_phone("9876543210")
        record = otp_store.issue(identity, "123456", timedelta(minutes=5))

        assert otp_store.mark_used(record.id) is True
        assert otp_store.mark_used(record.id) is False

        stored = otp_store.get(record.id)
        assert stored.used is True
        assert stored.used_at == clock.now

    def test_mark_used_refuses_expired_record(self, otp_store, clock):
        identity = OtpIdentity.for_phone("9876543210")
        record = otp_store.issue(identity, "123456", timedelta(minutes=5))
        clock.advance(minutes=6)

        assert otp_store.mark_used(record.id, unexpired_at=clock.now) is False
        assert otp_store.get(record.id).used is False

    def test_last_verified_requires_latest_to_be_used(self, otp_store):
        identity = OtpIdentity.for_email("a@example.com")
        first = otp_store.issue(identity, "111111", timedelta(minutes=5))
        otp_store.mark_used(first.id)
        assert otp_store.last_verified(identity).id == first.id

        otp_store.issue(identity, "222222", timedelta(minutes=5))
        assert otp_store.last_verified(identity) is None


class TestOtpVerifier:
    @pytest.fixture
    def verifier(self, otp_store, clock):
        return OtpVerifier(otp_store, clock=clock)

    def test_correct_code_verifies_exactly_once(self, otp_store, verifier):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))

        verifier.verify(identity, "123456")
        with pytest.raises(OtpAlreadyUsed):
            verifier.verify(identity, "123456")

    def test_not_found(self, verifier):
        with pytest.raises(OtpNotFound) as excinfo:
            verifier.verify(OtpIdentity.for_email("nobody@example.com"), "123456")
        assert str(excinfo.value) == "OTP not found"

    def test_expired_even_with_correct_code(self, otp_store, verifier, clock):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))
        clock.advance(minutes=5, seconds=1)

        with pytest.raises(OtpExpired) as excinfo:
            verifier.verify(identity, "123456")
        assert str(excinfo.value) == "OTP expired"

    def test_code_is_valid_at_the_expiry_instant(self, otp_store, verifier, clock):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))
        clock.advance(minutes=5)

        verifier.verify(identity, "123456")

    def test_mismatch(self, otp_store, verifier):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))

        with pytest.raises(OtpMismatch) as excinfo:
            verifier.verify(identity, "654321")
        assert str(excinfo.value) == "Invalid OTP"
        # A wrong guess does not burn the code.
        verifier.verify(identity, "123456")

    def test_used_is_reported_before_expiry_and_mismatch(self, otp_store, verifier, clock):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))
        verifier.verify(identity, "123456")
        clock.advance(minutes=10)

        with pytest.raises(OtpAlreadyUsed):
            verifier.verify(identity, "000000")

    def test_expiry_is_reported_before_mismatch(self, otp_store, verifier, clock):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))
        clock.advance(minutes=6)

        with pytest.raises(OtpExpired):
            verifier.verify(identity, "000000")

    def test_superseded_code_is_rejected(self, otp_store, verifier, clock):
        identity = OtpIdentity.for_email("a@example.com")
        otp_store.issue(identity, "111111", timedelta(minutes=5))
        clock.advance(seconds=30)
        otp_store.issue(identity, "222222", timedelta(minutes=5))

        with pytest.raises(OtpMismatch):
            verifier.verify(identity, "111111")
        verifier.verify(identity, "222222")

    def test_phone_code_does_not_verify_email_identity(self, otp_store, verifier):
        otp_store.issue(OtpIdentity(PHONE, "919876543210"), "123456", timedelta(minutes=5))

        with pytest.raises(OtpNotFound):
            verifier.verify(OtpIdentity(EMAIL, "919876543210"), "123456")

    def test_lost_claim_reports_already_used(self, clock):
        class RacingStore(OtpStore):
            """Another verifier claims the record between check and claim."""

            def mark_used(self, record_id, *, unexpired_at=None):
                super().mark_used(record_id)
                return super().mark_used(record_id, unexpired_at=unexpired_at)

        store = RacingStore(clock=clock)
        identity = OtpIdentity.for_email("a@example.com")
        store.issue(identity, "123456", timedelta(minutes=5))

        with pytest.raises(OtpAlreadyUsed):
            OtpVerifier(store, clock=clock).verify(identity, "123456")

    def test_concurrent_verifications_succeed_once(self, otp_store, verifier):
        identity = OtpIdentity.for_email("race@example.com")
        otp_store.issue(identity, "123456", timedelta(minutes=5))

        def attempt(_):
            try:
                verifier.verify(identity, "123456")
            except OtpError as exc:
                return type(exc)
            return "ok"

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(attempt, range(8)))

        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {OtpAlreadyUsed}


class TestOtpService:
    def test_phone_request_normalizes_and_stores(self, otp_service, otp_store, sms):
        record = otp_service.request_phone_otp("9876543210")

        assert record.identity == OtpIdentity(PHONE, "919876543210")
        code, destination, ttl = sms.sent[-1]
        assert destination == "919876543210"
        assert ttl == 5
        assert record.code == code
        assert otp_store.latest(record.identity).id == record.id

    def test_phone_scenario(self, otp_service, sms):
        otp_service.request_phone_otp("9876543210")
        code = sms.last_code

        otp_service.verify_phone("9876543210", code)
        with pytest.raises(OtpAlreadyUsed):
            otp_service.verify_phone("+91 98765 43210", code)

    def test_email_scenario_expires(self, otp_service, mailer, clock):
        otp_service.request_email_otp("user@example.com")
        clock.advance(minutes=6)

        with pytest.raises(OtpExpired):
            otp_service.verify_email("user@example.com", mailer.last_code)

    def test_email_is_case_insensitive(self, otp_service, mailer):
        otp_service.request_email_otp("User@Example.com")
        assert mailer.sent[-1][1] == "user@example.com"

        otp_service.verify_email("USER@example.com", mailer.last_code)

    def test_invalid_phone_is_rejected_before_sending(self, otp_service, sms):
        with pytest.raises(InvalidPhone):
            otp_service.request_phone_otp("12345")
        assert sms.sent == []

    def test_failed_send_stores_nothing(self, otp_service, sms):
        sms.fail_with("Fast2SMS error: Invalid Authentication")

        with pytest.raises(ChannelError):
            otp_service.request_phone_otp("9876543210")
        with pytest.raises(OtpNotFound):
            otp_service.verify_phone("9876543210", "123456")

    def test_unconfirmed_send_stores_nothing(self, otp_service, otp_store, sms):
        sms.confirmed = False

        with pytest.raises(ChannelError):
            otp_service.request_phone_otp("9876543210")
        assert otp_store.latest(OtpIdentity(PHONE, "919876543210")) is None

    def test_failed_resend_keeps_previous_code_live(self, otp_service, mailer):
        otp_service.request_email_otp("user@example.com")
        first_code = mailer.last_code
        mailer.fail_with("Failed to send email: timed out")

        with pytest.raises(ChannelError):
            otp_service.request_email_otp("user@example.com")
        otp_service.verify_email("user@example.com", first_code)

    def test_was_recently_verified(self, otp_service, mailer, clock):
        identity = OtpIdentity.for_email("user@example.com")
        window = timedelta(minutes=10)
        assert otp_service.was_recently_verified(identity, window) is False

        otp_service.request_email_otp("user@example.com")
        assert otp_service.was_recently_verified(identity, window) is False

        otp_service.verify_email("user@example.com", mailer.last_code)
        assert otp_service.was_recently_verified(identity, window) is True

        clock.advance(minutes=11)
        assert otp_service.was_recently_verified(identity, window) is False
