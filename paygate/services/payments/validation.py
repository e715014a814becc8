"""Structural validation of payment submissions.

Every rule runs on every request; failures accumulate so a merchant sees all
problems with a submission at once.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date

from paygate.services.payments.schemas import PaymentRequest

SUPPORTED_CURRENCIES = frozenset({"USD", "GBP", "EUR"})
MIN_AMOUNT = 1
MAX_AMOUNT = 2_147_483_647

# `[0-9]` rather than `\d`: `\d` also matches non-ASCII digits.
_CARD_NUMBER_RE = re.compile(r"[0-9]{14,19}")
_CVV_RE = re.compile(r"[0-9]{3,4}")


@dataclass(frozen=True)
class FieldError:
    """One failed rule, scoped to the request field it concerns."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _check_card_number(card_number: str | None) -> list[FieldError]:
    if _blank(card_number):
        return [FieldError("card_number", "is required")]
    if not _CARD_NUMBER_RE.fullmatch(card_number):
        return [FieldError("card_number", "must be 14-19 digits with no separators")]
    return []


def _check_expiry(month: int | None, year: int | None, today: date) -> list[FieldError]:
    errors = []
    month_ok = year_ok = False
    if month is None:
        errors.append(FieldError("expiry_month", "is required"))
    elif not 1 <= month <= 12:
        errors.append(FieldError("expiry_month", "must be between 1 and 12"))
    else:
        month_ok = True

    if year is None:
        errors.append(FieldError("expiry_year", "is required"))
    elif not 1000 <= year <= 9999:
        errors.append(FieldError("expiry_year", "must be a 4-digit year"))
    else:
        year_ok = True

    if month_ok and year_ok:
        last_day = date(year, month, calendar.monthrange(year, month)[1])
        if last_day < today:
            errors.append(FieldError("expiry_year", "card expiry date must be in the future"))
    return errors


def _check_currency(currency: str | None) -> list[FieldError]:
    if _blank(currency):
        return [FieldError("currency", "is required")]
    if len(currency) != 3:
        return [FieldError("currency", "must be exactly 3 characters")]
    if currency not in SUPPORTED_CURRENCIES:
        supported = ", ".join(sorted(SUPPORTED_CURRENCIES))
        return [FieldError("currency", f"must be one of {supported}")]
    return []


def _check_amount(amount: int | None) -> list[FieldError]:
    if amount is None:
        return [FieldError("amount", "is required")]
    if not MIN_AMOUNT <= amount <= MAX_AMOUNT:
        return [FieldError("amount", f"must be between {MIN_AMOUNT} and {MAX_AMOUNT}")]
    return []


def _check_cvv(cvv: str | None) -> list[FieldError]:
    if _blank(cvv):
        return [FieldError("cvv", "is required")]
    if not _CVV_RE.fullmatch(cvv):
        return [FieldError("cvv", "must be 3 or 4 digits")]
    return []


def validate_payment_request(request: PaymentRequest, today: date | None = None) -> list[FieldError]:
    """Return every rule `request` breaks; an empty list means it is valid.

    `today` defaults to the local calendar date. A card expiring this month is
    still valid; the comparison uses the last day of the expiry month.
    """

    today = today or date.today()
    return [
        *_check_card_number(request.card_number),
        *_check_expiry(request.expiry_month, request.expiry_year, today),
        *_check_currency(request.currency),
        *_check_amount(request.amount),
        *_check_cvv(request.cvv),
    ]
