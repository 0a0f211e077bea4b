import json
import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def clean_email(value: str) -> str:
    cleaned = value.strip()
    if not EMAIL_PATTERN.match(cleaned):
        raise ValueError("Invalid email address")
    return cleaned.lower()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountMetadata(BaseModel):
    """Typed view of ``user_details.metadata``; unknown keys survive merges."""

    model_config = ConfigDict(extra="allow")

    gstin: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "AccountMetadata":
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = None
        if not isinstance(raw, dict):
            return cls()
        return cls.model_validate(raw)

    def merged(self, **changes: Any) -> "AccountMetadata":
        data = self.model_dump()
        for key, value in changes.items():
            data[key] = value or None
        return AccountMetadata.model_validate(data)


class RegisterRequest(CamelModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)

    @field_validator("first_name", "last_name", "phone")
    @classmethod
    def normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class LoginRequest(CamelModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)


class CreateUserRequest(CamelModel):
    email: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)


class CreatePhoneUserRequest(CamelModel):
    phone: str = Field(min_length=8, max_length=32)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class UserPayload(CamelModel):
    id: str
    email: str
    status: str
    roles: list[str]
    role: str
    phone: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    token: str
    user: UserPayload


class ProfilePayload(UserPayload):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    upi_id: Optional[str] = None
    gstin: Optional[str] = None
    address: Any = None


class MeResponse(CamelModel):
    user: ProfilePayload


class CheckEmailResponse(CamelModel):
    exists: bool


class AccountDetailsUpdate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=200)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    gstin: Optional[str] = Field(default=None, max_length=15)
    phone: Optional[str] = Field(default=None, max_length=32)
    upi_id: Optional[str] = Field(default=None, max_length=100)
    upi_qr_code: Optional[str] = None

    @field_validator("name", "first_name", "last_name", "gstin", "phone", "upi_id")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip()

    def changes(self) -> dict[str, Any]:
        """Fields the client actually sent, with ``name`` split when needed."""
        sent = self.model_dump(exclude_unset=True)
        name = sent.pop("name", None)
        if name and "first_name" not in sent and "last_name" not in sent:
            parts = name.split()
            sent["first_name"] = parts[0] if parts else None
            sent["last_name"] = " ".join(parts[1:]) or None
        return sent


class AccountDetailsResponse(CamelModel):
    email: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gstin: Optional[str] = None
    phone: Optional[str] = None
    upi_id: Optional[str] = None
    upi_qr_code: Optional[str] = None
    role: str
    roles: list[str]


class AccountDetailsUpdateResponse(CamelModel):
    success: bool = True
    account_details: AccountDetailsResponse


class MessageResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
