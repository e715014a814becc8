"""API request/response schemas for payment endpoints."""

from datetime import datetime, timezone
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator

T = TypeVar("T")


class PaymentRequest(BaseModel):
    """Payment submission payload.

    Fields are optional here so that missing values surface as field-level
    validation errors (and a rejected payment) rather than a parse failure.
    """

    card_number: str | None = None
    expiry_month: int | None = None
    expiry_year: int | None = None
    currency: str | None = None
    amount: int | None = None
    cvv: str | None = None

    def __repr__(self) -> str:
        # Never leak PAN or CVV through logs or tracebacks.
        return (
            f"PaymentRequest(expiry_month={self.expiry_month!r}, expiry_year={self.expiry_year!r}, "
            f"currency={self.currency!r}, amount={self.amount!r})"
        )

    __str__ = __repr__


class PaymentResponse(BaseModel):
    """Stored payment as returned to merchants."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    card_number_last_four: str
    expiry_month: int
    expiry_year: int
    currency: str
    amount: int
    idempotency_key: str | None = None
    authorization_code: str | None = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; everything is written in UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every `/api` response."""

    success: bool
    data: T | None = None
    errors: list[str] = []

    @classmethod
    def ok(cls, data: T) -> "ApiResponse[T]":
        return cls(success=True, data=data, errors=[])

    @classmethod
    def fail(cls, errors: list[str], data: T | None = None) -> "ApiResponse[T]":
        return cls(success=False, data=data, errors=errors)
