"""Shared fixtures: settings for an isolated process, a bank double and stores."""

import json
import os
import threading
from datetime import date
from uuid import uuid4

# Settings are read at import time, so these must be in place first.
os.environ.setdefault("API_KEYS", '["test-key"]')
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "0")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "false")
os.environ.setdefault("BANK_MAX_ATTEMPTS", "1")
os.environ.setdefault("BANK_CIRCUIT_FAILURE_THRESHOLD", "0")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from paygate.common.db import Base
from paygate.services.payments.bank import AuthorizationResult
from paygate.services.payments.schemas import PaymentRequest
from paygate.services.payments.store import InMemoryPaymentStore, SqlPaymentStore

TODAY = date(2026, 10, 17)


def simulator_decision(request: httpx.Request) -> httpx.Response:
    """Bank simulator contract: odd last digit authorizes, even declines, 0 is an outage."""

    body = json.loads(request.content)
    last_digit = int(body["card_number"][-1])
    if last_digit == 0:
        return httpx.Response(503)
    if last_digit % 2 == 1:
        return httpx.Response(200, json={"authorized": True, "authorization_code": str(uuid4())})
    return httpx.Response(200, json={"authorized": False, "authorization_code": None})


class FakeBank:
    """In-process bank double that follows the simulator rule and records calls."""

    def __init__(self, unavailable: bool = False, barrier: threading.Barrier | None = None) -> None:
        self.unavailable = unavailable
        self.barrier = barrier
        self.calls = []
        self._lock = threading.Lock()

    def authorize(self, card_number, expiry_month, expiry_year, currency, amount, cvv):
        with self._lock:
            self.calls.append(
                {
                    "card_number": card_number,
                    "expiry_month": expiry_month,
                    "expiry_year": expiry_year,
                    "currency": currency,
                    "amount": amount,
                    "cvv": cvv,
                }
            )
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        if self.unavailable:
            return None
        if int(card_number[-1]) % 2 == 1:
            return AuthorizationResult(authorized=True, authorization_code="auth-123")
        return AuthorizationResult(authorized=False)

    def close(self) -> None:
        pass


def make_request(**overrides) -> PaymentRequest:
    fields = {
        "card_number": "2222405343248877",
        "expiry_month": 12,
        "expiry_year": 2026,
        "currency": "GBP",
        "amount": 1000,
        "cvv": "123",
    }
    fields.update(overrides)
    return PaymentRequest(**fields)


@pytest.fixture
def fake_bank() -> FakeBank:
    return FakeBank()


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so separate threads get separate connections."""

    engine = create_engine(
        f"sqlite:///{tmp_path / 'payments.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def memory_store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return InMemoryPaymentStore()
    return SqlPaymentStore(session_factory)
