from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ledgerbook.config import settings
from ledgerbook.services.channels import ChannelError, SendResult
from ledgerbook.services.phone import normalize_phone

LOGGER = logging.getLogger(__name__)

FAST2SMS_URL = "https://www.fast2sms.com/dev/bulkV2"


class Fast2SmsSender:
    def __init__(
        self,
        api_key: str,
        url: str = FAST2SMS_URL,
        schedule_time: Optional[str] = None,
        country_code: str = "91",
        timeout: float = 10,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._schedule_time = schedule_time or None
        self._country_code = country_code
        self._timeout = timeout

    def send(self, code: str, destination: str, ttl_minutes: int) -> SendResult:
        if not self._api_key:
            raise ChannelError("Fast2SMS API key missing")

        numbers = normalize_phone(destination, self._country_code)
        payload = {"route": "otp", "variables_values": code, "numbers": numbers}
        if self._schedule_time:
            payload["schedule_time"] = self._schedule_time

        request = Request(
            self._url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "authorization": self._api_key,
                "content-type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:
                status_code = response.status
                body = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            status_code = exc.code
            body = exc.read().decode("utf-8", errors="replace")
        except (URLError, TimeoutError) as exc:
            LOGGER.error("Fast2SMS unreachable numbers=%s error=%s", numbers, exc)
            raise ChannelError("Failed to reach Fast2SMS API") from exc

        try:
            data = json.loads(body)
        except ValueError as exc:
            LOGGER.error(
                "Fast2SMS returned a non-JSON body status=%s numbers=%s body=%s",
                status_code,
                numbers,
                body[:500],
            )
            raise ChannelError(
                f"Fast2SMS request failed with status {status_code}",
                provider_response=body,
            ) from exc

        if status_code >= 400:
            LOGGER.error(
                "Fast2SMS API error status=%s numbers=%s response=%s",
                status_code,
                numbers,
                data,
            )
            raise ChannelError(
                f"Fast2SMS request failed with status {status_code}: "
                f"{_provider_message(data, body)}",
                provider_response=data,
            )

        if not isinstance(data, dict) or not data.get("return"):
            LOGGER.error("Fast2SMS rejected numbers=%s response=%s", numbers, data)
            raise ChannelError(
                f"Fast2SMS error: {_provider_message(data, body)}",
                provider_response=data,
            )

        LOGGER.info("OTP SMS accepted numbers=%s request_id=%s", numbers, data.get("request_id"))
        return SendResult(success=True, provider_message_id=data.get("request_id"))


def _provider_message(data: Any, body: str) -> str:
    if not isinstance(data, dict):
        return body or "Unknown error"
    message = data.get("message")
    if isinstance(message, list):
        return ", ".join(str(item) for item in message)
    if message:
        return str(message)
    if data.get("status_code"):
        return f"Error code: {data['status_code']}"
    if data.get("request_id"):
        return f"Request ID: {data['request_id']}"
    return body or "Unknown error"


sms_sender = Fast2SmsSender(
    api_key=settings.fast2sms_api_key,
    url=settings.fast2sms_url,
    schedule_time=settings.fast2sms_schedule_time,
    country_code=settings.default_country_code,
    timeout=settings.channel_timeout_seconds,
)
