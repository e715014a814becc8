"""Merchant-facing payments API.

Enforces API key auth and per-key rate limiting, then hands submissions to the
payment processor. Route handlers are synchronous, so each request runs on its
own worker thread.
"""

from contextlib import asynccontextmanager
from time import perf_counter, time
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from paygate.common.config import settings
from paygate.common.db import Base, SessionLocal, engine
from paygate.common.logging import configure_logging, logger, trace_id_ctx
from paygate.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    payment_requests_total,
)
from paygate.common.startup import log_startup_config
from paygate.common.tracing import instrument_app, setup_tracing
from paygate.services.payments.bank import build_bank_client
from paygate.services.payments.schemas import ApiResponse, PaymentRequest, PaymentResponse
from paygate.services.payments.service import PaymentProcessor, SubmitResult
from paygate.services.payments.store import SqlPaymentStore

MAX_IDEMPOTENCY_KEY_LENGTH = 256

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "BANK_URL",
        "BANK_TIMEOUT_SECONDS",
        "BANK_MAX_ATTEMPTS",
        "REDIS_URL",
        "RATE_LIMIT_PER_MINUTE",
    ],
)
bank_client = build_bank_client()
payment_processor = PaymentProcessor(SqlPaymentStore(SessionLocal), bank_client, service_name=settings.service_name)
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Create the schema for local runs and release the bank client on exit."""

    if settings.auto_create_schema:
        Base.metadata.create_all(engine)
    yield
    bank_client.close()


app = FastAPI(title="PayGate Payments API", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Bind a correlation id and record request count and latency."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_id = request.headers.get("x-correlation-id") or str(uuid4())
    trace_id_ctx.set(trace_id)
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["x-correlation-id"] = trace_id
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def _envelope(status_code: int, body: ApiResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException):
    return _envelope(exc.status_code, ApiResponse.fail([str(exc.detail)]))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError):
    """Unparseable bodies never reach the processor, so no payment is recorded."""

    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"] if part != "body")
        errors.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return _envelope(400, ApiResponse.fail(errors))


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    """Log the failure; callers only ever see a generic message."""

    logger.exception("unhandled error: %s", type(exc).__name__)
    return _envelope(500, ApiResponse.fail(["An unexpected error occurred"]))


def require_api_key(x_api_key: str | None = Header(default=None)) -> str:
    """Reject requests that do not provide one of the configured API keys."""

    if x_api_key is None:
        raise HTTPException(status_code=401, detail="missing API key")
    if x_api_key not in settings.api_keys:
        raise HTTPException(status_code=401, detail="invalid API key")
    return x_api_key


def enforce_token_bucket(api_key: str) -> None:
    # Redis token bucket (capacity = refill rate = limit per minute).
    if settings.rate_limit_per_minute <= 0:
        return
    key = f"tokenbucket:{api_key}"
    now = time()
    capacity = float(settings.rate_limit_per_minute)
    refill_per_sec = capacity / 60.0

    try:
        values = rdb.hmget(key, "tokens", "updated_at")
    except redis.RedisError as exc:
        logger.warning("rate_limit_read_failed: %s", exc)
        return
    tokens = float(values[0]) if values[0] is not None else capacity
    updated_at = float(values[1]) if values[1] is not None else now
    elapsed = max(0.0, now - updated_at)
    tokens = min(capacity, tokens + elapsed * refill_per_sec)

    limited = tokens < 1.0
    if not limited:
        tokens -= 1.0
    try:
        rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
        rdb.expire(key, 120)
    except redis.RedisError as exc:
        logger.warning("rate_limit_write_failed: %s", exc)
    if limited:
        raise HTTPException(status_code=429, detail="rate limit exceeded")


def get_processor() -> PaymentProcessor:
    return payment_processor


@app.post("/api/payments")
def create_payment(
    req: PaymentRequest,
    idempotency_key: str | None = Header(default=None),
    api_key: str = Depends(require_api_key),
    processor: PaymentProcessor = Depends(get_processor),
):
    """Submit a card payment.

    A repeated `Idempotency-Key` returns the payment first recorded under it,
    whatever its status. Rejected submissions are recorded and answered with
    400; a bank outage records nothing and answers 503.
    """

    enforce_token_bucket(api_key)
    if idempotency_key is not None and len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        return _envelope(
            400,
            ApiResponse.fail([f"Idempotency-Key: must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters"]),
        )

    payment_requests_total.labels(service=settings.service_name).inc()
    outcome = processor.submit(req, idempotency_key)

    if outcome.kind == SubmitResult.UNAVAILABLE:
        return _envelope(503, ApiResponse.fail(["Unable to process payment at this time"]))

    payment = PaymentResponse.model_validate(outcome.payment)
    if outcome.kind == SubmitResult.REJECTED:
        return _envelope(400, ApiResponse[PaymentResponse].fail([str(e) for e in outcome.errors], payment))
    return _envelope(200, ApiResponse[PaymentResponse].ok(payment))


@app.get("/api/payments/{payment_id}")
def get_payment(
    payment_id: str,
    _: str = Depends(require_api_key),
    processor: PaymentProcessor = Depends(get_processor),
):
    """Fetch one stored payment."""

    payment = processor.get(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="payment not found")
    return _envelope(200, ApiResponse[PaymentResponse].ok(PaymentResponse.model_validate(payment)))


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
