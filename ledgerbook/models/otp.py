from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    false,
)

from ledgerbook.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    code = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False, server_default=false())
    used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(phone IS NULL) <> (email IS NULL)", name="ck_otp_single_identity"
        ),
        Index("ix_otp_phone_created_at", "phone", "created_at"),
        Index("ix_otp_email_created_at", "email", "created_at"),
    )
