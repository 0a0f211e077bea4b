from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from ledgerbook.services.otp import OtpService, otp_service
from ledgerbook.services.payouts import PayoutStore, payout_store
from ledgerbook.services.storage import StorageError, build_storage
from ledgerbook.services.tokens import SessionClaims, TokenError, TokenIssuer, token_issuer
from ledgerbook.services.users import UserStore, user_store


def get_otp_service() -> OtpService:
    return otp_service


def get_user_store() -> UserStore:
    return user_store


def get_token_issuer() -> TokenIssuer:
    return token_issuer


def get_payout_store() -> PayoutStore:
    return payout_store


@lru_cache(maxsize=1)
def _configured_storage():
    return build_storage()


def get_storage():
    try:
        return _configured_storage()
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


def get_current_claims(
    authorization: str | None = Header(default=None),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> SessionClaims:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    try:
        return issuer.decode(token)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        ) from exc
