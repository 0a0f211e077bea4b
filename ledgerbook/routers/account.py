import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ledgerbook.config import settings
from ledgerbook.routers.deps import get_current_claims, get_storage, get_user_store
from ledgerbook.schemas.users import (
    AccountDetailsResponse,
    AccountDetailsUpdate,
    AccountDetailsUpdateResponse,
    MeResponse,
    ProfilePayload,
)
from ledgerbook.services.phone import InvalidPhone, normalize_phone
from ledgerbook.services.storage import IMAGE_TYPES, StorageError, decode_data_url
from ledgerbook.services.tokens import SessionClaims
from ledgerbook.services.users import (
    AccountDetails,
    IdentityConflict,
    UserIdentity,
    UserStore,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["account"])


def _current_identity(claims: SessionClaims, users: UserStore) -> UserIdentity:
    identity = users.get_identity(claims.subject)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return identity


def _account_response(
    identity: UserIdentity, details: AccountDetails, default_role: str
) -> AccountDetailsResponse:
    return AccountDetailsResponse(
        email=details.email,
        name=details.full_name,
        first_name=details.first_name,
        last_name=details.last_name,
        gstin=details.metadata.gstin,
        phone=details.phone,
        upi_id=details.upi_id,
        upi_qr_code=details.upi_qr_code,
        role=identity.primary_role or default_role,
        roles=list(identity.roles),
    )


@router.get("/me", response_model=MeResponse)
def get_me(
    claims: SessionClaims = Depends(get_current_claims),
    users: UserStore = Depends(get_user_store),
) -> MeResponse:
    identity = _current_identity(claims, users)
    details = users.get_account_details(identity.id) or AccountDetails(email=identity.email)
    return MeResponse(
        user=ProfilePayload(
            id=identity.id,
            email=identity.email,
            status=identity.status,
            roles=list(identity.roles),
            role=identity.primary_role or users.default_role,
            phone=details.phone,
            created_at=identity.created_at,
            last_login_at=identity.last_login_at,
            first_name=details.first_name,
            last_name=details.last_name,
            full_name=details.full_name,
            upi_id=details.upi_id,
            gstin=details.metadata.gstin,
            address=details.address,
        )
    )


@router.get("/account-details", response_model=AccountDetailsResponse)
def get_account_details(
    claims: SessionClaims = Depends(get_current_claims),
    users: UserStore = Depends(get_user_store),
) -> AccountDetailsResponse:
    identity = _current_identity(claims, users)
    details = users.get_account_details(identity.id) or AccountDetails(email=identity.email)
    return _account_response(identity, details, users.default_role)


@router.put("/account-details", response_model=AccountDetailsUpdateResponse)
def update_account_details(
    payload: AccountDetailsUpdate,
    claims: SessionClaims = Depends(get_current_claims),
    users: UserStore = Depends(get_user_store),
    storage=Depends(get_storage),
) -> AccountDetailsUpdateResponse:
    identity = _current_identity(claims, users)
    current = users.get_account_details(identity.id) or AccountDetails(email=identity.email)
    changes: dict[str, Any] = payload.changes()

    if changes.get("phone"):
        try:
            changes["phone"] = normalize_phone(
                changes["phone"], settings.default_country_code
            )
        except InvalidPhone as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            ) from exc

    stored_handle: Optional[str] = None
    replaced_handle: Optional[str] = None
    if "upi_qr_code" in changes:
        value = changes["upi_qr_code"]
        if value and value != current.upi_qr_code:
            try:
                data, content_type = decode_data_url(value, IMAGE_TYPES)
                stored = storage.store(
                    data, content_type, prefix="qr-code", folder="upi-qr-codes/"
                )
            except StorageError as exc:
                LOGGER.error("Failed to save QR code image user_id=%s: %s", identity.id, exc)
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Failed to save QR code: {exc}",
                ) from exc
            stored_handle = stored.handle
            changes["upi_qr_code"] = stored.handle
            replaced_handle = current.upi_qr_code
        elif not value:
            replaced_handle = current.upi_qr_code

    try:
        details = users.update_account_details(identity.id, changes)
    except IdentityConflict as exc:
        if stored_handle:
            storage.delete(stored_handle)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    if replaced_handle:
        try:
            storage.delete(replaced_handle)
        except StorageError as exc:
            LOGGER.warning("Failed to delete old QR code %s: %s", replaced_handle, exc)

    return AccountDetailsUpdateResponse(
        account_details=_account_response(identity, details, users.default_role)
    )
