"""Mobile-money sandbox speaking the TMoney collection protocol.

Local development and end-to-end tests point ``TMONEY_API_URL`` at this
service instead of the real provider. It accepts signed collection
requests, reports their status, and lets a developer settle a transaction
by hand, which delivers a signed webhook to the callback URL the merchant
registered, exactly like the real provider would.

Credentials come from ``SANDBOX_API_KEY``, ``SANDBOX_SECRET_KEY`` (request
signatures) and ``SANDBOX_WEBHOOK_SECRET`` (callback signatures).
"""

import contextvars
import hashlib
import hmac
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Literal, Optional

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from repo import AlreadySettled, RequestConflict, SandboxRepo, canonical_hash, engine

API_KEY = os.getenv("SANDBOX_API_KEY", "sandbox-api-key")
SECRET_KEY = os.getenv("SANDBOX_SECRET_KEY", "sandbox-secret-key")
WEBHOOK_SECRET = os.getenv("SANDBOX_WEBHOOK_SECRET", "sandbox-webhook-secret")
PAYMENT_PAGE_URL = os.getenv("SANDBOX_PAYMENT_PAGE_URL", "http://localhost:9100/pay")
WEBHOOK_TIMEOUT_SECS = float(os.getenv("SANDBOX_WEBHOOK_TIMEOUT_SECS", "5"))
SIGNATURE_HEADER = "X-TMoney-Signature"

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True


logger = logging.getLogger("sandbox")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    h.addFilter(_RequestIdFilter())
    logger.addHandler(h)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Wait briefly until the database accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)
    yield


app = FastAPI(title="Mobile Money Sandbox", lifespan=lifespan)


class CollectionRequest(BaseModel):
    """Body of ``POST /payment/request`` (TMoney wire format)."""

    merchant_id: str = Field(min_length=1, max_length=64)
    amount: int = Field(gt=0)
    currency: str = Field(default="XOF", pattern=r"^[A-Z]{3}$")
    phone_number: str = Field(pattern=r"^\+?[0-9]{8,15}$")
    description: str = Field(default="", max_length=255)
    transaction_id: str = Field(min_length=1, max_length=64)
    callback_url: str = Field(default="", max_length=500)
    return_url: str = Field(default="", max_length=500)
    cancel_url: str = Field(default="", max_length=500)
    timestamp: str
    signature: str

    def canonical(self) -> str:
        return f"{self.merchant_id}{self.amount}{self.phone_number}{self.transaction_id}{self.timestamp}"

    def fingerprint(self) -> str:
        # Retries carry a fresh timestamp and signature; they identify the same request.
        return canonical_hash(self.model_dump(exclude={"timestamp", "signature"}))


class CollectionResponse(BaseModel):
    transaction_id: str
    status: str
    payment_url: str
    message: str


class StatusResponse(BaseModel):
    transaction_id: str
    merchant_transaction_id: str
    status: str
    amount: int
    currency: str


class SettleRequest(BaseModel):
    outcome: Literal["SUCCESS", "FAILED"] = "SUCCESS"


def _require_bearer(authorization: Optional[str]) -> None:
    expected = f"Bearer {API_KEY}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")


def _sign(key: str, message: bytes) -> str:
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/payment/request", response_model=CollectionResponse)
def request_payment(
    req: CollectionRequest,
    authorization: Annotated[Optional[str], Header()] = None,
):
    """Accept a collection request.

    The request is idempotent on ``transaction_id``: a retry with the same
    content returns the transaction created the first time; the same id with
    different content is a 409.
    """
    _require_bearer(authorization)
    expected = _sign(SECRET_KEY, req.canonical().encode("utf-8"))
    if not hmac.compare_digest(expected, req.signature.lower()):
        logger.warning("collection request signature rejected", extra={"merchant_tx": req.transaction_id})
        raise HTTPException(status_code=400, detail="INVALID_SIGNATURE")

    try:
        tx, created = SandboxRepo().create_or_get(
            merchant_id=req.merchant_id,
            merchant_transaction_id=req.transaction_id,
            request_hash=req.fingerprint(),
            amount=req.amount,
            currency=req.currency,
            phone_number=req.phone_number,
            callback_url=req.callback_url,
        )
    except RequestConflict:
        raise HTTPException(status_code=409, detail="TRANSACTION_ID_REUSED") from None

    logger.info(
        "collection request accepted",
        extra={"transaction_id": tx.id, "merchant_tx": req.transaction_id, "new_transaction": created},
    )
    return CollectionResponse(
        transaction_id=tx.id,
        status=tx.status,
        payment_url=f"{PAYMENT_PAGE_URL.rstrip('/')}/{tx.id}",
        message=f"Confirm the payment of {tx.amount} {tx.currency} on {tx.phone_number}",
    )


@app.get("/payment/status/{tx_id}", response_model=StatusResponse)
def payment_status(tx_id: str, authorization: Annotated[Optional[str], Header()] = None):
    _require_bearer(authorization)
    tx = SandboxRepo().get(tx_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="TRANSACTION_NOT_FOUND")
    return StatusResponse(
        transaction_id=tx.id,
        merchant_transaction_id=tx.merchant_transaction_id,
        status=tx.status,
        amount=tx.amount,
        currency=tx.currency,
    )


@app.post("/sandbox/transactions/{tx_id}/settle")
def settle(tx_id: str, req: SettleRequest):
    """Settle a pending transaction and deliver the signed webhook.

    Delivery failures are reported in the response instead of failing the
    settlement: the transaction stays settled and the merchant can reconcile.
    """
    try:
        tx = SandboxRepo().settle(tx_id, req.outcome)
    except AlreadySettled:
        raise HTTPException(status_code=409, detail="ALREADY_SETTLED") from None
    if tx is None:
        raise HTTPException(status_code=404, detail="TRANSACTION_NOT_FOUND")

    delivery = {"delivered": False, "status_code": None}
    if tx.callback_url:
        body = json.dumps(
            {
                "transaction_id": tx.id,
                "merchant_transaction_id": tx.merchant_transaction_id,
                "status": tx.status,
                "amount": tx.amount,
                "currency": tx.currency,
            },
            separators=(",", ":"),
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: _sign(WEBHOOK_SECRET, body),
            "X-Request-ID": REQUEST_ID_CTX.get(),
        }
        try:
            resp = httpx.post(tx.callback_url, content=body, headers=headers, timeout=WEBHOOK_TIMEOUT_SECS)
            delivery = {"delivered": resp.status_code < 300, "status_code": resp.status_code}
        except httpx.HTTPError as exc:
            logger.warning("webhook delivery failed", extra={"transaction_id": tx.id, "error": str(exc)})

    logger.info("transaction settled", extra={"transaction_id": tx.id, "status": tx.status, **delivery})
    return {"transaction_id": tx.id, "status": tx.status, "webhook": delivery}


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"path": request.url.path, "method": request.method})
        REQUEST_ID_CTX.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "9100")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
