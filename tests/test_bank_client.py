"""Tests for the bank authorization client and its resilience wrapper."""

import json

import httpx

from conftest import simulator_decision
from paygate.services.payments.bank import AuthorizationResult, BankClient, ResilientBankClient

CARD = {
    "card_number": "2222405343248877",
    "expiry_month": 4,
    "expiry_year": 2027,
    "currency": "GBP",
    "amount": 100,
    "cvv": "123",
}


def client_for(handler) -> BankClient:
    return BankClient("http://bank.test", transport=httpx.MockTransport(handler))


def test_sends_minimal_payload_with_mm_yyyy_expiry():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"authorized": True, "authorization_code": "auth-123"})

    client_for(handler).authorize(**CARD)

    assert seen["path"] == "/payments"
    assert seen["body"] == {
        "card_number": "2222405343248877",
        "expiry_date": "04/2027",
        "currency": "GBP",
        "amount": 100,
        "cvv": "123",
    }


def test_authorized_response():
    result = client_for(lambda r: httpx.Response(200, json={"authorized": True, "authorization_code": "auth-123"}))
    assert result.authorize(**CARD) == AuthorizationResult(authorized=True, authorization_code="auth-123")


def test_declined_response_is_definite():
    result = client_for(lambda r: httpx.Response(200, json={"authorized": False, "authorization_code": ""}))
    assert result.authorize(**CARD) == AuthorizationResult(authorized=False, authorization_code=None)


def test_simulator_rule_odd_authorizes_even_declines():
    client = client_for(simulator_decision)
    assert client.authorize(**CARD).authorized is True
    assert client.authorize(**{**CARD, "card_number": "2222405343248878"}).authorized is False


def test_non_success_status_is_unavailable():
    assert client_for(lambda r: httpx.Response(503)).authorize(**CARD) is None
    assert client_for(lambda r: httpx.Response(400, json={"authorized": False})).authorize(**CARD) is None


def test_transport_errors_are_unavailable():
    def timeout(request):
        raise httpx.ReadTimeout("slow bank", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    assert client_for(timeout).authorize(**CARD) is None
    assert client_for(refused).authorize(**CARD) is None


def test_malformed_bodies_are_unavailable():
    assert client_for(lambda r: httpx.Response(200, text="<html>oops</html>")).authorize(**CARD) is None
    assert client_for(lambda r: httpx.Response(200, json=["authorized"])).authorize(**CARD) is None
    assert client_for(lambda r: httpx.Response(200, json={"authorized": "yes"})).authorize(**CARD) is None
    assert client_for(lambda r: httpx.Response(200, json={"authorized": True, "authorization_code": 7})).authorize(
        **CARD
    ) is None


class ScriptedBank:
    """Returns queued results, then repeats the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def authorize(self, **kwargs):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    def close(self):
        pass


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_retries_unavailable_with_exponential_backoff():
    approved = AuthorizationResult(authorized=True, authorization_code="auth-1")
    inner = ScriptedBank(None, None, approved)
    sleeps = []
    client = ResilientBankClient(inner, max_attempts=3, backoff_seconds=0.5, failure_threshold=0, sleep=sleeps.append)

    assert client.authorize(**CARD) == approved
    assert inner.calls == 3
    assert sleeps == [0.5, 1.0]


def test_decline_is_not_retried():
    inner = ScriptedBank(AuthorizationResult(authorized=False))
    client = ResilientBankClient(inner, max_attempts=3, failure_threshold=0, sleep=lambda s: None)

    assert client.authorize(**CARD).authorized is False
    assert inner.calls == 1


def test_gives_up_after_max_attempts():
    inner = ScriptedBank(None)
    client = ResilientBankClient(inner, max_attempts=3, failure_threshold=0, sleep=lambda s: None)

    assert client.authorize(**CARD) is None
    assert inner.calls == 3


def test_circuit_opens_and_short_circuits_calls():
    inner = ScriptedBank(None)
    clock = FakeClock()
    client = ResilientBankClient(
        inner, max_attempts=1, failure_threshold=2, reset_timeout_seconds=30, sleep=lambda s: None, clock=clock
    )

    client.authorize(**CARD)
    client.authorize(**CARD)
    assert client.state == "open"

    assert client.authorize(**CARD) is None
    assert inner.calls == 2


def test_half_open_trial_success_closes_circuit():
    approved = AuthorizationResult(authorized=True)
    inner = ScriptedBank(None, None, approved)
    clock = FakeClock()
    client = ResilientBankClient(
        inner, max_attempts=1, failure_threshold=2, reset_timeout_seconds=30, sleep=lambda s: None, clock=clock
    )
    client.authorize(**CARD)
    client.authorize(**CARD)

    clock.now = 31
    assert client.state == "half_open"
    assert client.authorize(**CARD) == approved
    assert client.state == "closed"


def test_half_open_trial_failure_reopens_circuit():
    inner = ScriptedBank(None)
    clock = FakeClock()
    client = ResilientBankClient(
        inner, max_attempts=1, failure_threshold=2, reset_timeout_seconds=30, sleep=lambda s: None, clock=clock
    )
    client.authorize(**CARD)
    client.authorize(**CARD)

    clock.now = 31
    assert client.authorize(**CARD) is None
    assert inner.calls == 3
    assert client.state == "open"
