from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


class ChannelError(RuntimeError):
    """A delivery provider rejected or never received the message."""

    def __init__(self, reason: str, provider_response: Any = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.provider_response = provider_response


@dataclass(frozen=True)
class SendResult:
    success: bool
    provider_message_id: Optional[str] = None


class ChannelSender(Protocol):
    def send(self, code: str, destination: str, ttl_minutes: int) -> SendResult:
        ...
