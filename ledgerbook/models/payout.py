import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text

from ledgerbook.database import Base


class PayoutRequestEntry(Base):
    __tablename__ = "payout_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    utr = Column(String(64), nullable=False)
    remarks = Column(Text, nullable=False)
    proof_filename = Column(String(512), nullable=True)
    proof_url = Column(String(1024), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
