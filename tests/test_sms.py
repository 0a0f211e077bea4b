"""Tests for the Fast2SMS channel sender."""

import io
import json
from urllib.error import HTTPError, URLError

import pytest

from ledgerbook.services import sms as sms_module
from ledgerbook.services.channels import ChannelError
from ledgerbook.services.phone import InvalidPhone
from ledgerbook.services.sms import Fast2SmsSender


class FakeResponse:
    def __init__(self, body, status=200):
        self.status = status
        self._body = body.encode("utf-8") if isinstance(body, str) else body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


@pytest.fixture
def captured(monkeypatch):
    calls = {"responses": []}

    def fake_urlopen(request, timeout=None):
        calls["request"] = request
        calls["timeout"] = timeout
        response = calls["responses"].pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(sms_module, "urlopen", fake_urlopen)
    return calls


@pytest.fixture
def sender():
    return Fast2SmsSender(api_key="secret-key", url="https://sms.test/bulk", timeout=3)


class TestFast2SmsSender:
    def test_successful_send(self, sender, captured):
        captured["responses"].append(
            FakeResponse(json.dumps({"return": True, "request_id": "req-42"}))
        )

        result = sender.send("123456", "9876543210", 5)

        assert result.success is True
        assert result.provider_message_id == "req-42"
        request = captured["request"]
        assert request.full_url == "https://sms.test/bulk"
        assert request.get_method() == "POST"
        assert request.get_header("Authorization") == "secret-key"
        assert json.loads(request.data) == {
            "route": "otp",
            "variables_values": "123456",
            "numbers": "919876543210",
        }
        assert captured["timeout"] == 3

    def test_schedule_time_is_forwarded(self, captured):
        sender = Fast2SmsSender(api_key="k", url="https://sms.test", schedule_time="2026-01-01-10-00")
        captured["responses"].append(FakeResponse(json.dumps({"return": True})))

        sender.send("123456", "919876543210", 5)

        assert json.loads(captured["request"].data)["schedule_time"] == "2026-01-01-10-00"

    def test_missing_api_key(self, captured):
        with pytest.raises(ChannelError) as excinfo:
            Fast2SmsSender(api_key="").send("123456", "9876543210", 5)
        assert "API key" in str(excinfo.value)
        assert "request" not in captured

    def test_invalid_destination_is_not_sent(self, sender, captured):
        with pytest.raises(InvalidPhone):
            sender.send("123456", "123", 5)
        assert "request" not in captured

    def test_provider_rejection(self, sender, captured):
        body = {"return": False, "message": ["Invalid Numbers"]}
        captured["responses"].append(FakeResponse(json.dumps(body)))

        with pytest.raises(ChannelError) as excinfo:
            sender.send("123456", "9876543210", 5)
        assert str(excinfo.value) == "Fast2SMS error: Invalid Numbers"
        assert excinfo.value.provider_response == body

    def test_http_error_status(self, sender, captured):
        body = json.dumps({"return": False, "status_code": 412, "message": "Invalid Authentication"})
        captured["responses"].append(
            HTTPError("https://sms.test/bulk", 401, "Unauthorized", {}, io.BytesIO(body.encode()))
        )

        with pytest.raises(ChannelError) as excinfo:
            sender.send("123456", "9876543210", 5)
        assert str(excinfo.value) == (
            "Fast2SMS request failed with status 401: Invalid Authentication"
        )

    def test_non_json_body(self, sender, captured):
        captured["responses"].append(FakeResponse("<html>Bad gateway</html>", status=502))

        with pytest.raises(ChannelError) as excinfo:
            sender.send("123456", "9876543210", 5)
        assert str(excinfo.value) == "Fast2SMS request failed with status 502"
        assert excinfo.value.provider_response == "<html>Bad gateway</html>"

    def test_unreachable_host(self, sender, captured):
        captured["responses"].append(URLError("Name or service not known"))

        with pytest.raises(ChannelError) as excinfo:
            sender.send("123456", "9876543210", 5)
        assert str(excinfo.value) == "Failed to reach Fast2SMS API"

    def test_timeout(self, sender, captured):
        captured["responses"].append(TimeoutError("timed out"))

        with pytest.raises(ChannelError):
            sender.send("123456", "9876543210", 5)
