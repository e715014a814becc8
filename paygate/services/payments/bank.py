"""Acquiring bank authorization client.

The bank either gives a definite answer (authorized or declined) or it is
unavailable. Unavailability is returned as `None` and never raised, so callers
can tell "the bank said no" apart from "we could not ask".
"""

import threading
import time
from dataclasses import dataclass

import httpx

from paygate.common.config import settings
from paygate.common.logging import logger
from paygate.common.metrics import (
    bank_request_duration_seconds,
    bank_unavailable_total,
    circuit_breaker_open,
    retries_total,
)


@dataclass(frozen=True)
class AuthorizationResult:
    """Definite bank decision for one authorization request."""

    authorized: bool
    authorization_code: str | None = None


class BankClient:
    """Single-attempt HTTP client for the bank's `/payments` endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        service_name: str = "payments-api",
    ) -> None:
        self.http = httpx.Client(base_url=base_url, timeout=timeout_seconds, transport=transport)
        self.service_name = service_name

    def authorize(
        self,
        card_number: str,
        expiry_month: int,
        expiry_year: int,
        currency: str,
        amount: int,
        cvv: str,
    ) -> AuthorizationResult | None:
        """Ask the bank to authorize a payment; `None` means the bank is unavailable."""

        body = {
            "card_number": card_number,
            "expiry_date": f"{expiry_month:02d}/{expiry_year}",
            "currency": currency,
            "amount": amount,
            "cvv": cvv,
        }
        try:
            with bank_request_duration_seconds.labels(service=self.service_name).time():
                resp = self.http.post("/payments", json=body)
        except httpx.HTTPError as exc:
            logger.error("bank request failed error=%s", type(exc).__name__)
            return self._unavailable()

        if not resp.is_success:
            logger.warning("bank returned non-success status_code=%s", resp.status_code)
            return self._unavailable()

        try:
            payload = resp.json()
        except ValueError:
            logger.warning("bank returned a non-JSON body")
            return self._unavailable()

        authorized = payload.get("authorized") if isinstance(payload, dict) else None
        code = payload.get("authorization_code") if isinstance(payload, dict) else None
        if not isinstance(authorized, bool) or not (code is None or isinstance(code, str)):
            logger.warning("bank returned a malformed body")
            return self._unavailable()
        return AuthorizationResult(authorized=authorized, authorization_code=code or None)

    def _unavailable(self) -> None:
        bank_unavailable_total.labels(service=self.service_name).inc()
        return None

    def close(self) -> None:
        self.http.close()


class ResilientBankClient:
    """Retry with exponential backoff plus a consecutive-failure circuit breaker.

    Wraps any object exposing `authorize(...)` and keeps its contract: a
    definite `AuthorizationResult` or `None`. Declines are definite answers and
    are never retried.
    """

    def __init__(
        self,
        inner,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 30.0,
        sleep=time.sleep,
        clock=time.monotonic,
        service_name: str = "payments-api",
    ) -> None:
        self.inner = inner
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.sleep = sleep
        self.clock = clock
        self.service_name = service_name
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> str:
        if self._opened_at is None:
            return "closed"
        if self.clock() - self._opened_at >= self.reset_timeout_seconds:
            return "half_open"
        return "open"

    def _allow_call(self) -> bool:
        with self._lock:
            state = self._state_locked()
            if state == "closed":
                return True
            if state == "half_open" and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def _record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info("bank circuit breaker closed")
            self._consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False
        circuit_breaker_open.labels(service=self.service_name, dependency="bank").set(0)

    def _record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            reopen = self._trial_in_flight
            self._trial_in_flight = False
            tripped = self.failure_threshold > 0 and self._consecutive_failures >= self.failure_threshold
            if not (reopen or tripped):
                return
            self._opened_at = self.clock()
        logger.error(
            "bank circuit breaker opened failures=%s reset_s=%s",
            self._consecutive_failures,
            self.reset_timeout_seconds,
        )
        circuit_breaker_open.labels(service=self.service_name, dependency="bank").set(1)

    def authorize(self, *args, **kwargs) -> AuthorizationResult | None:
        for attempt in range(1, self.max_attempts + 1):
            if not self._allow_call():
                logger.warning("bank circuit breaker open, skipping call")
                return None
            result = self.inner.authorize(*args, **kwargs)
            if result is not None:
                self._record_success()
                return result
            self._record_failure()
            if attempt == self.max_attempts:
                break
            retries_total.labels(service=self.service_name, dependency="bank").inc()
            backoff = self.backoff_seconds * 2 ** (attempt - 1)
            logger.warning("bank unavailable attempt=%s backoff_s=%s", attempt, backoff)
            self.sleep(backoff)
        return None

    def close(self) -> None:
        self.inner.close()


def build_bank_client(transport: httpx.BaseTransport | None = None):
    """Bank client configured from settings, wrapped when hardening is enabled."""

    client = BankClient(
        settings.bank_url,
        timeout_seconds=settings.bank_timeout_seconds,
        transport=transport,
        service_name=settings.service_name,
    )
    if settings.bank_max_attempts > 1 or settings.bank_circuit_failure_threshold > 0:
        return ResilientBankClient(
            client,
            max_attempts=settings.bank_max_attempts,
            backoff_seconds=settings.bank_backoff_seconds,
            failure_threshold=settings.bank_circuit_failure_threshold,
            reset_timeout_seconds=settings.bank_circuit_reset_seconds,
            service_name=settings.service_name,
        )
    return client
