"""Sandbox payment provider built with FastAPI.

Stands in for the real provider in development and in the integration
environment. The storefront opens payments with ``POST /v1/payments`` and
polls ``GET /v1/payments/{id}``; the dev-only status endpoint lets a tester
approve or cancel a payment by hand.
"""

import logging
import time
import uuid
from typing import Annotated, Literal, Optional

from fastapi import FastAPI, Header, HTTPException, Request, Response
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import PAYMENT_STATUSES, IdempotencyConflict, PaymentsRepo, engine

app = FastAPI(title="Sandbox Payment Provider")

logger = logging.getLogger("payments")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # Wait up to 30s for the database to accept connections.
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)


class PaymentCreate(BaseModel):
    """Request body for opening a payment.

    Attributes:
        amount_cents: Positive amount in minor units (cents).
        reference: Storefront order id.
        method: Payment method picked at checkout.
    """

    amount_cents: int = Field(gt=0)
    reference: str = Field(min_length=1, max_length=64)
    method: str = Field(default="pix", min_length=1, max_length=16)


class PaymentOut(BaseModel):
    id: str
    status: str
    reference: str
    amount_cents: int


class StatusUpdate(BaseModel):
    status: Literal[PAYMENT_STATUSES]


def _out(payment) -> PaymentOut:
    return PaymentOut(
        id=payment.id, status=payment.status, reference=payment.reference, amount_cents=payment.amount_cents
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/v1/payments", response_model=PaymentOut, status_code=201)
def create_payment(
    req: PaymentCreate,
    response: Response,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Open a pending payment.

    A retry with the same ``Idempotency-Key`` and body returns the payment
    created first (200 instead of 201). Reusing the key with another body
    answers 409.
    """
    try:
        payment, created = PaymentsRepo().create(
            amount_cents=req.amount_cents,
            reference=req.reference,
            method=req.method,
            idempotency_key=idempotency_key,
        )
    except IdempotencyConflict:
        raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
    if not created:
        response.status_code = 200
    logger.info("payment opened", extra={"payment_id": payment.id, "replay": not created})
    return _out(payment)


@app.get("/v1/payments/{payment_id}", response_model=PaymentOut)
def get_payment(payment_id: str):
    payment = PaymentsRepo().get(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")
    return _out(payment)


@app.post("/v1/payments/{payment_id}/status", response_model=PaymentOut)
def set_payment_status(payment_id: str, req: StatusUpdate):
    """Dev endpoint: move a payment to another provider status."""
    payment = PaymentsRepo().set_status(payment_id, req.status)
    if payment is None:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")
    logger.info("payment status set", extra={"payment_id": payment_id, "status": req.status})
    return _out(payment)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
