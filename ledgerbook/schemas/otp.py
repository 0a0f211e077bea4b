from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from ledgerbook.schemas.users import CamelModel, clean_email


class PhoneOtpRequest(CamelModel):
    phone: str = Field(min_length=8, max_length=32)


class EmailOtpRequest(CamelModel):
    email: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)


class OtpRequestResponse(CamelModel):
    success: bool = True
    expires_at: datetime


class OtpVerifyRequest(CamelModel):
    phone: Optional[str] = Field(default=None, min_length=8, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    code: str = Field(min_length=4, max_length=10)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return clean_email(value)


class EmailOtpVerifyRequest(CamelModel):
    email: str = Field(max_length=255)
    code: str = Field(min_length=4, max_length=10)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)


class OtpVerifyResponse(CamelModel):
    success: bool = True
