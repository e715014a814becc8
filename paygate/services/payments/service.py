"""Payment processing core.

Decides, for each submission, whether to replay an earlier outcome, reject the
request locally, or ask the bank and record its decision. Each accepted
idempotency key ends up with exactly one stored payment.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from uuid import uuid4

from paygate.common.logging import logger, payment_id_ctx
from paygate.common.masking import extract_last_four
from paygate.common.metrics import (
    idempotency_races_total,
    idempotent_replays_total,
    payment_outcomes_total,
)
from paygate.services.payments.models import Payment, PaymentStatus
from paygate.services.payments.schemas import PaymentRequest
from paygate.services.payments.store import DuplicateIdempotencyKeyError, PaymentStore
from paygate.services.payments.validation import FieldError, validate_payment_request


_INT32_MIN, _INT32_MAX = -(2**31), 2**31 - 1


def _column_int(value: int | None) -> int:
    # Missing or out-of-range numbers on rejected payments are stored as 0.
    if value is None or not _INT32_MIN <= value <= _INT32_MAX:
        return 0
    return value


class SubmitResult(str, Enum):
    CREATED = "CREATED"
    REJECTED = "REJECTED"
    REPLAYED = "REPLAYED"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class SubmitOutcome:
    """What happened to one submission.

    `payment` is set for every kind except `UNAVAILABLE`; `errors` only for
    `REJECTED`.
    """

    kind: SubmitResult
    payment: Payment | None = None
    errors: list[FieldError] = field(default_factory=list)


class PaymentProcessor:
    """Idempotency check, validation, bank authorization and persistence."""

    def __init__(self, store: PaymentStore, bank_client, today=date.today, service_name: str = "payments-api") -> None:
        self.store = store
        self.bank_client = bank_client
        self.today = today
        self.service_name = service_name

    def submit(self, req: PaymentRequest, idempotency_key: str | None = None) -> SubmitOutcome:
        """Process one payment submission."""

        key = idempotency_key if idempotency_key and idempotency_key.strip() else None

        if key is not None:
            existing = self.store.get_by_idempotency_key(key)
            if existing is not None:
                return self._replay(existing)

        errors = validate_payment_request(req, today=self.today())
        if errors:
            payment = self._new_payment(req, PaymentStatus.REJECTED, key)
            logger.info(
                "payment rejected payment_id=%s fields=%s",
                payment.id,
                sorted({e.field for e in errors}),
            )
            return self._persist(payment, SubmitResult.REJECTED, errors)

        result = self.bank_client.authorize(
            card_number=req.card_number,
            expiry_month=req.expiry_month,
            expiry_year=req.expiry_year,
            currency=req.currency,
            amount=req.amount,
            cvv=req.cvv,
        )
        if result is None:
            # Nothing stored: a retry under the same key may reach the bank again.
            logger.error("bank unavailable, payment not recorded card_last_four=%s", extract_last_four(req.card_number))
            return SubmitOutcome(kind=SubmitResult.UNAVAILABLE)

        status = PaymentStatus.AUTHORIZED if result.authorized else PaymentStatus.DECLINED
        payment = self._new_payment(req, status, key, authorization_code=result.authorization_code)
        return self._persist(payment, SubmitResult.CREATED)

    def get(self, payment_id: str) -> Payment | None:
        """Stored payment by identifier; None when unknown."""

        payment = self.store.get_by_id(payment_id)
        if payment is None:
            logger.info("payment not found payment_id=%s", payment_id)
        return payment

    def _new_payment(
        self,
        req: PaymentRequest,
        status: PaymentStatus,
        key: str | None,
        authorization_code: str | None = None,
    ) -> Payment:
        return Payment(
            id=str(uuid4()),
            status=status.value,
            card_number_last_four=extract_last_four(req.card_number),
            expiry_month=_column_int(req.expiry_month),
            expiry_year=_column_int(req.expiry_year),
            currency=(req.currency or "")[:3],
            amount=_column_int(req.amount),
            idempotency_key=key,
            authorization_code=authorization_code,
            created_at=datetime.now(timezone.utc),
        )

    def _persist(
        self,
        payment: Payment,
        kind: SubmitResult,
        errors: list[FieldError] | None = None,
    ) -> SubmitOutcome:
        try:
            self.store.insert(payment)
        except DuplicateIdempotencyKeyError:
            # Lost the check-then-insert race; the winner's record is the answer.
            idempotency_races_total.labels(service=self.service_name).inc()
            existing = self.store.get_by_idempotency_key(payment.idempotency_key)
            if existing is None:
                raise
            logger.warning("concurrent submission resolved to existing payment_id=%s", existing.id)
            return self._replay(existing)

        payment_id_ctx.set(payment.id)
        payment_outcomes_total.labels(service=self.service_name, status=payment.status).inc()
        logger.info("payment recorded payment_id=%s status=%s", payment.id, payment.status)
        return SubmitOutcome(kind=kind, payment=payment, errors=errors or [])

    def _replay(self, existing: Payment) -> SubmitOutcome:
        payment_id_ctx.set(existing.id)
        idempotent_replays_total.labels(service=self.service_name).inc()
        logger.info("idempotent replay payment_id=%s status=%s", existing.id, existing.status)
        return SubmitOutcome(kind=SubmitResult.REPLAYED, payment=existing)
