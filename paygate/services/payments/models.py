"""Payments database models.

One row per logical payment attempt that reached a terminal outcome. Rows are
written once and never updated.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from paygate.common.db import Base


class PaymentStatus(str, Enum):
    """Terminal payment outcomes."""

    AUTHORIZED = "Authorized"
    DECLINED = "Declined"
    REJECTED = "Rejected"


class Payment(Base):
    """Immutable record of a payment outcome."""

    __tablename__ = "payments"
    # NULL keys never collide under a unique index, so only non-null keys are deduplicated.
    __table_args__ = (Index("ix_payments_idempotency_key", "idempotency_key", unique=True),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    status: Mapped[str] = mapped_column(String(50))
    card_number_last_four: Mapped[str] = mapped_column(String(4))
    expiry_month: Mapped[int] = mapped_column(Integer)
    expiry_year: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    amount: Mapped[int] = mapped_column(Integer)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), nullable=True)
    authorization_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
