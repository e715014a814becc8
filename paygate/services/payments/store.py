"""Payment persistence.

Records are insert-only. Both stores enforce one record per non-null
idempotency key and raise `DuplicateIdempotencyKeyError` when an insert loses
that race.
"""

import threading
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from paygate.services.payments.models import Payment


class DuplicateIdempotencyKeyError(Exception):
    """Another record already owns this idempotency key."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(f"idempotency key already used: {idempotency_key}")
        self.idempotency_key = idempotency_key


class PaymentStore(ABC):
    @abstractmethod
    def insert(self, payment: Payment) -> None:
        """Persist a new payment."""
        pass

    @abstractmethod
    def get_by_id(self, payment_id: str) -> Payment | None:
        """Payment with this identifier, or None."""
        pass

    @abstractmethod
    def get_by_idempotency_key(self, idempotency_key: str) -> Payment | None:
        """Payment created under this idempotency key, or None."""
        pass


class InMemoryPaymentStore(PaymentStore):
    """Dict-backed store for tests and local runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, Payment] = {}
        self._by_key: dict[str, Payment] = {}

    def insert(self, payment: Payment) -> None:
        with self._lock:
            key = payment.idempotency_key
            if key is not None and key in self._by_key:
                raise DuplicateIdempotencyKeyError(key)
            if payment.id in self._by_id:
                raise ValueError(f"payment id already stored: {payment.id}")
            self._by_id[payment.id] = payment
            if key is not None:
                self._by_key[key] = payment

    def get_by_id(self, payment_id: str) -> Payment | None:
        with self._lock:
            return self._by_id.get(payment_id)

    def get_by_idempotency_key(self, idempotency_key: str) -> Payment | None:
        with self._lock:
            return self._by_key.get(idempotency_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)


class SqlPaymentStore(PaymentStore):
    """Relational store; uniqueness comes from the `payments` idempotency index."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def insert(self, payment: Payment) -> None:
        with self.session_factory() as db:
            db.add(payment)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if payment.idempotency_key is not None and self._key_taken(db, payment.idempotency_key):
                    raise DuplicateIdempotencyKeyError(payment.idempotency_key) from exc
                raise

    def _key_taken(self, db, idempotency_key: str) -> bool:
        return self._select_by_key(db, idempotency_key) is not None

    def _select_by_key(self, db, idempotency_key: str) -> Payment | None:
        return db.execute(select(Payment).where(Payment.idempotency_key == idempotency_key)).scalar_one_or_none()

    def get_by_id(self, payment_id: str) -> Payment | None:
        with self.session_factory() as db:
            return db.get(Payment, payment_id)

    def get_by_idempotency_key(self, idempotency_key: str) -> Payment | None:
        with self.session_factory() as db:
            return self._select_by_key(db, idempotency_key)
