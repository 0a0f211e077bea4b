from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ledgerbook.schemas.users import CamelModel


class PayoutCreateRequest(CamelModel):
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    utr: str = Field(min_length=4, max_length=64)
    remarks: str = Field(min_length=1, max_length=2000)
    proof: str = Field(min_length=1)


class PayoutCreated(CamelModel):
    id: str
    status: str
    amount: float
    created_at: datetime
    proof_filename: Optional[str] = None
    proof_url: Optional[str] = None


class PayoutCreateResponse(CamelModel):
    request: PayoutCreated


class PayoutItem(CamelModel):
    id: str
    reference: str
    wallet: str
    amount: str
    amount_value: float
    status: str
    status_value: str
    cleared_on: str
    cleared_on_value: Optional[datetime] = None
    created_at: datetime
    utr: str
    remarks: str


class PayoutSummaries(CamelModel):
    total_amount: str
    total_amount_value: float
    approved_amount: str
    approved_amount_value: float
    rejected_amount: str
    rejected_amount_value: float
    pending_amount: str
    pending_amount_value: float


class PayoutListResponse(CamelModel):
    summaries: PayoutSummaries
    payout_requests: list[PayoutItem]
