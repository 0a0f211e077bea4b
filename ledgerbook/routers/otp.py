import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ledgerbook.config import settings
from ledgerbook.routers.deps import get_otp_service
from ledgerbook.schemas.otp import (
    EmailOtpRequest,
    EmailOtpVerifyRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PhoneOtpRequest,
)
from ledgerbook.services.channels import ChannelError
from ledgerbook.services.otp import OtpError, OtpMismatch, OtpNotFound, OtpService
from ledgerbook.services.phone import InvalidPhone

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])


def _verification_failed(exc: OtpError) -> HTTPException:
    detail = str(exc)
    if settings.otp_unify_failures and isinstance(exc, (OtpNotFound, OtpMismatch)):
        detail = OtpMismatch.message
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _delivery_failed(exc: ChannelError, destination: str) -> HTTPException:
    LOGGER.error(
        "Failed to send OTP destination=%s reason=%s provider_response=%s",
        destination,
        exc.reason,
        exc.provider_response,
    )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.reason)


@router.post("/request", response_model=OtpRequestResponse)
def request_phone_otp(
    payload: PhoneOtpRequest, otp: OtpService = Depends(get_otp_service)
) -> OtpRequestResponse:
    try:
        record = otp.request_phone_otp(payload.phone)
    except InvalidPhone as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ChannelError as exc:
        raise _delivery_failed(exc, payload.phone) from exc
    return OtpRequestResponse(expires_at=record.expires_at)


@router.post("/verify", response_model=OtpVerifyResponse)
def verify_otp(
    payload: OtpVerifyRequest, otp: OtpService = Depends(get_otp_service)
) -> OtpVerifyResponse:
    if not payload.phone and not payload.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either phone or email is required",
        )
    try:
        if payload.phone:
            otp.verify_phone(payload.phone, payload.code)
        else:
            otp.verify_email(payload.email, payload.code)
    except InvalidPhone as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except OtpError as exc:
        raise _verification_failed(exc) from exc
    return OtpVerifyResponse()


@router.post("/email/request", response_model=OtpRequestResponse)
def request_email_otp(
    payload: EmailOtpRequest, otp: OtpService = Depends(get_otp_service)
) -> OtpRequestResponse:
    try:
        record = otp.request_email_otp(payload.email)
    except ChannelError as exc:
        raise _delivery_failed(exc, payload.email) from exc
    return OtpRequestResponse(expires_at=record.expires_at)


@router.post("/email/verify", response_model=OtpVerifyResponse)
def verify_email_otp(
    payload: EmailOtpVerifyRequest, otp: OtpService = Depends(get_otp_service)
) -> OtpVerifyResponse:
    try:
        otp.verify_email(payload.email, payload.code)
    except OtpError as exc:
        raise _verification_failed(exc) from exc
    return OtpVerifyResponse()
