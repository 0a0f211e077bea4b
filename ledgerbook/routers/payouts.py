import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ledgerbook.routers.deps import (
    get_current_claims,
    get_payout_store,
    get_storage,
    get_user_store,
)
from ledgerbook.schemas.payouts import (
    PayoutCreateRequest,
    PayoutCreateResponse,
    PayoutCreated,
    PayoutItem,
    PayoutListResponse,
    PayoutSummaries,
)
from ledgerbook.services.payouts import PayoutStore, format_date, format_inr, summarize
from ledgerbook.services.storage import DOCUMENT_TYPES, StorageError, decode_data_url
from ledgerbook.services.tokens import SessionClaims
from ledgerbook.services.users import UserStore

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/payout-requests", tags=["payouts"])


@router.post("", response_model=PayoutCreateResponse, status_code=status.HTTP_201_CREATED)
def create_payout_request(
    payload: PayoutCreateRequest,
    claims: SessionClaims = Depends(get_current_claims),
    users: UserStore = Depends(get_user_store),
    payouts: PayoutStore = Depends(get_payout_store),
    storage=Depends(get_storage),
) -> PayoutCreateResponse:
    identity = users.get_identity(claims.subject)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    try:
        data, content_type = decode_data_url(payload.proof, DOCUMENT_TYPES)
        proof = storage.store(data, content_type, prefix="payout", folder="screenshots/")
    except StorageError as exc:
        LOGGER.error("Failed to store payout proof user_id=%s: %s", identity.id, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid proof: {exc}",
        ) from exc

    record = payouts.create(
        identity.id,
        payload.amount,
        payload.utr.strip(),
        payload.remarks.strip(),
        proof_filename=proof.handle,
        proof_url=proof.url,
    )
    return PayoutCreateResponse(
        request=PayoutCreated(
            id=record.id,
            status=record.status,
            amount=float(record.amount),
            created_at=record.created_at,
            proof_filename=record.proof_filename,
            proof_url=record.proof_url,
        )
    )


@router.get("", response_model=PayoutListResponse)
def list_payout_requests(
    claims: SessionClaims = Depends(get_current_claims),
    users: UserStore = Depends(get_user_store),
    payouts: PayoutStore = Depends(get_payout_store),
) -> PayoutListResponse:
    identity = users.get_identity(claims.subject)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    records = payouts.list_for(identity.id, identity.primary_role)
    summary = summarize(records)
    return PayoutListResponse(
        summaries=PayoutSummaries(
            total_amount=format_inr(summary.total),
            total_amount_value=float(summary.total),
            approved_amount=format_inr(summary.approved),
            approved_amount_value=float(summary.approved),
            rejected_amount=format_inr(summary.rejected),
            rejected_amount_value=float(summary.rejected),
            pending_amount=format_inr(summary.pending),
            pending_amount_value=float(summary.pending),
        ),
        payout_requests=[
            PayoutItem(
                id=record.id,
                reference=record.reference,
                wallet=record.wallet,
                amount=format_inr(record.amount),
                amount_value=float(record.amount),
                status=record.status_label,
                status_value=record.status,
                cleared_on=format_date(record.processed_at),
                cleared_on_value=record.processed_at,
                created_at=record.created_at,
                utr=record.utr,
                remarks=record.remarks,
            )
            for record in records
        ],
    )
