# routers/payments.py

import json
import logging
from typing import Any, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from database import get_db
from gateway import RazorpayClient
from schemas import PaymentCallback, PaymentInitiationIn, TransactionOut
from settlement import (
    InvalidRequest, SettlementError, initiate_payment, parse_callback, settle_callback,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
}


def get_gateway() -> RazorpayClient:
    return RazorpayClient.from_env()

def _failure(exc: Exception, details: str) -> JSONResponse:
    if isinstance(exc, SettlementError):
        body = {
            "success": False,
            "error": str(exc),
            "details": details,
            "code": exc.code,
            "retryable": exc.retryable,
        }
    else:
        body = {
            "success": False,
            "error": "Internal server error",
            "details": details,
            "code": "internal_error",
            "retryable": True,
        }
    return JSONResponse(body, status_code=500, headers=CORS_HEADERS)

async def _read_json(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        raise InvalidRequest("Request body is empty")
    try:
        return json.loads(raw)
    except ValueError:
        raise InvalidRequest("Request body is not valid JSON")


@router.options("/verify-payment")
@router.options("/process-payment")
def preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


# -----------------------------------------------------------------------------
# Gateway callback
# -----------------------------------------------------------------------------
def _settle(db: Session, callback: PaymentCallback, gateway: RazorpayClient) -> Tuple[dict, int]:
    outcome = settle_callback(db, callback, gateway)
    txn = outcome.transaction
    body = {
        "success": True,
        "payment_status": outcome.payment.status,
        "transaction_id": txn.transaction_id,
        "transaction_status": txn.status.value,
        "amount": txn.amount,
        "payment_method": outcome.payment.method,
        "settlement": outcome.settlement,
    }
    # 207: payment captured and recorded, wallet credit queued for operators
    return body, (207 if outcome.partial else 200)

@router.post("/verify-payment")
async def verify_payment(
    request: Request,
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
):
    try:
        callback = parse_callback(await _read_json(request))
        body, status_code = await run_in_threadpool(_settle, db, callback, gateway)
    except SettlementError as e:
        logger.warning("verify_payment_failed", extra={"code": e.code, "error": str(e)})
        return _failure(e, "Payment verification failed")
    except Exception as e:
        logger.exception("verify_payment_unexpected_error")
        return _failure(e, "Payment verification failed")

    logger.info(
        "verify_payment_done",
        extra={"transaction_id": body["transaction_id"], "transaction_status": body["transaction_status"]},
    )
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


# -----------------------------------------------------------------------------
# Payment initiation
# -----------------------------------------------------------------------------
def _initiate(db: Session, gateway: RazorpayClient, body: PaymentInitiationIn) -> dict:
    txn, order = initiate_payment(db, gateway, body)
    return {
        "success": True,
        "transaction": TransactionOut.model_validate(txn).model_dump(mode="json"),
        "order": {
            "id": order.id,
            "amount": order.amount,
            "currency": order.currency,
            "key_id": gateway.key_id,
        },
    }

@router.post("/process-payment")
async def process_payment(
    request: Request,
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
):
    try:
        data = await _read_json(request)
        if not isinstance(data, dict):
            raise InvalidRequest("Request body must be a JSON object")
        try:
            payload = PaymentInitiationIn(**data)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise InvalidRequest(f"Missing required payment fields: {', '.join(fields)}")
        body = await run_in_threadpool(_initiate, db, gateway, payload)
    except SettlementError as e:
        logger.warning("process_payment_failed", extra={"code": e.code, "error": str(e)})
        return _failure(e, "Payment initiation failed")
    except Exception as e:
        logger.exception("process_payment_unexpected_error")
        return _failure(e, "Payment initiation failed")
    return JSONResponse(body, headers=CORS_HEADERS)
