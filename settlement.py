"""
Payment settlement.

A verified gateway callback moves a pending transaction to a terminal status
and, for wallet top-ups, credits the owner's wallet exactly once.

Correctness rests on two storage-level guarantees:

- the pending -> terminal write is a conditional UPDATE, so of several
  concurrent or redelivered callbacks only one can win the transition;
- wallet credits are ``balance = balance + :amount`` evaluated by the
  database, never a read-modify-write in Python.

In the default ``atomic`` mode both writes share one database transaction.
The ``two_step`` mode commits the status first and queues a
ReconciliationIssue for operators if the credit then fails.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import config
from gateway import GatewayError, GatewayOrder, GatewayPayment, RazorpayClient
from models import (
    IssueStatus, ReconciliationIssue, Transaction, TransactionKind, TransactionStatus, Wallet,
)
from schemas import PaymentCallback, PaymentInitiationIn
from signature import verify_payment_signature

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("payments.security")
reconciliation_logger = logging.getLogger("payments.reconciliation")

ATOMIC = "atomic"
TWO_STEP = "two_step"

# settlement outcomes
APPLIED = "applied"
NOT_APPLICABLE = "not_applicable"
ALREADY_PROCESSED = "already_processed"
RECONCILIATION_REQUIRED = "reconciliation_required"


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
class SettlementError(Exception):
    code = "internal_error"
    retryable = False

class InvalidRequest(SettlementError):
    code = "invalid_request"

class InvalidCallback(InvalidRequest):
    pass

class SignatureMismatch(SettlementError):
    code = "invalid_signature"

class ConfigurationError(SettlementError):
    code = "configuration_error"

class GatewayUnavailable(SettlementError):
    code = "gateway_error"
    retryable = True

class TransactionNotFound(SettlementError):
    code = "transaction_not_found"

class PaymentMismatch(SettlementError):
    """Verified payment does not belong to the transaction it claims to settle."""
    code = "payment_mismatch"

class IssueNotSettleable(SettlementError):
    code = "issue_not_settleable"

class WalletSettlementError(SettlementError):
    code = "wallet_settlement_failed"
    retryable = True

class IssueNotFound(SettlementError):
    code = "issue_not_found"

class IssueAlreadyResolved(SettlementError):
    code = "issue_already_resolved"


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------
@dataclass
class ReconcileResult:
    transaction: Transaction
    transitioned: bool

@dataclass
class SettlementOutcome:
    transaction: Transaction
    payment: GatewayPayment
    settlement: str
    transitioned: bool

    @property
    def partial(self) -> bool:
        return self.settlement == RECONCILIATION_REQUIRED


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
_ID_ALPHABET = string.ascii_lowercase + string.digits

def generate_transaction_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"TXN_{int(time.time() * 1000)}_{suffix}"

def parse_callback(data: Any) -> PaymentCallback:
    if not isinstance(data, dict):
        raise InvalidCallback("Request body must be a JSON object")
    try:
        return PaymentCallback(**data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise InvalidCallback(f"Missing or invalid fields: {', '.join(fields)}") from e

def map_gateway_status(gateway_status: str) -> TransactionStatus:
    if gateway_status == "captured":
        return TransactionStatus.completed
    return TransactionStatus.failed

def _needs_wallet_credit(txn: Transaction) -> bool:
    return txn.status == TransactionStatus.completed and txn.kind == TransactionKind.wallet_topup

def payment_mismatches(txn: Transaction, payment: GatewayPayment) -> List[str]:
    """Fields on which the gateway payment disagrees with the stored transaction."""
    mismatched = []
    if not txn.gateway_order_id or payment.order_id != txn.gateway_order_id:
        mismatched.append("order_id")
    if payment.amount != txn.amount:
        mismatched.append("amount")
    if payment.currency != txn.currency:
        mismatched.append("currency")
    return mismatched

def _reject_mismatch(transaction_id: str, payment: GatewayPayment, fields: List[str]) -> None:
    security_logger.warning(
        "payment_transaction_mismatch",
        extra={
            "transaction_id": transaction_id,
            "payment_id": payment.id,
            "payment_order_id": payment.order_id,
            "fields": fields,
        },
    )
    raise PaymentMismatch(f"Payment does not match transaction {transaction_id}: {', '.join(fields)}")


# -----------------------------------------------------------------------------
# Storage steps
# -----------------------------------------------------------------------------
def reconcile_transaction(db: Session, transaction_id: str, payment: GatewayPayment) -> ReconcileResult:
    """
    Apply the gateway's verdict to a pending transaction.

    Only a row still in ``pending`` whose order id, amount and currency agree
    with the gateway is updated. A disagreeing payment raises PaymentMismatch
    and leaves the row untouched. A terminal row is returned as stored with
    ``transitioned=False``. An unknown id raises TransactionNotFound; no
    placeholder row is ever created. Does not commit.
    """
    if not payment.order_id:
        # an empty order id would match rows that never had a gateway order
        _reject_mismatch(transaction_id, payment, ["order_id"])
    now = datetime.utcnow()
    new_status = map_gateway_status(payment.status)
    values = {
        "status": new_status,
        "gateway_payment_id": payment.id,
        "gateway_status": payment.status,
        "gateway_amount": payment.amount,
        "gateway_response": {**payment.raw, "verified_at": now.isoformat()},
        "updated_at": now,
        "completed_at": now if new_status == TransactionStatus.completed else None,
    }
    if payment.method:
        values["payment_method"] = payment.method

    result = db.execute(
        update(Transaction)
        .where(
            Transaction.transaction_id == transaction_id,
            Transaction.status == TransactionStatus.pending,
            Transaction.gateway_order_id == payment.order_id,
            Transaction.amount == payment.amount,
            Transaction.currency == payment.currency,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    txn = (
        db.query(Transaction)
        .filter(Transaction.transaction_id == transaction_id)
        .populate_existing()
        .first()
    )
    if result.rowcount == 1:
        logger.info(
            "transaction_transitioned",
            extra={"transaction_id": transaction_id, "status": new_status.value},
        )
        return ReconcileResult(txn, True)
    if txn is None:
        raise TransactionNotFound(f"Transaction not found: {transaction_id}")
    mismatched = payment_mismatches(txn, payment)
    if mismatched:
        _reject_mismatch(transaction_id, payment, mismatched)
    logger.info(
        "transaction_already_terminal",
        extra={"transaction_id": transaction_id, "status": txn.status.value},
    )
    return ReconcileResult(txn, False)

def _increment_balance(db: Session, owner_id: str, amount: int, now: datetime) -> int:
    result = db.execute(
        update(Wallet)
        .where(Wallet.owner_id == owner_id)
        .values(balance=Wallet.balance + amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount

def credit_wallet(db: Session, owner_id: str, amount: int, currency: Optional[str] = None) -> None:
    """Atomically add ``amount`` to the owner's wallet, creating it if needed. Does not commit."""
    now = datetime.utcnow()
    if _increment_balance(db, owner_id, amount, now):
        return
    try:
        with db.begin_nested():
            db.add(Wallet(
                owner_id=owner_id,
                balance=amount,
                currency=currency or config.DEFAULT_CURRENCY,
                created_at=now,
                updated_at=now,
            ))
    except IntegrityError:
        # another request created the wallet first
        if not _increment_balance(db, owner_id, amount, now):
            raise

def get_or_create_wallet(db: Session, owner_id: str, currency: Optional[str] = None) -> Wallet:
    """Return the owner's wallet, creating an empty one on first reference. Does not commit."""
    wallet = db.query(Wallet).filter(Wallet.owner_id == owner_id).first()
    if wallet:
        return wallet
    wallet = Wallet(owner_id=owner_id, balance=0, currency=currency or config.DEFAULT_CURRENCY)
    try:
        with db.begin_nested():
            db.add(wallet)
    except IntegrityError:
        wallet = db.query(Wallet).filter(Wallet.owner_id == owner_id).one()
    return wallet


# -----------------------------------------------------------------------------
# Callback settlement
# -----------------------------------------------------------------------------
def settle_callback(
    db: Session,
    callback: PaymentCallback,
    gateway: RazorpayClient,
    mode: Optional[str] = None,
) -> SettlementOutcome:
    mode = mode or config.SETTLEMENT_MODE
    if mode not in (ATOMIC, TWO_STEP):
        raise ConfigurationError(f"Unknown settlement mode: {mode}")
    if not gateway.key_secret:
        raise ConfigurationError("Razorpay secret key not configured")

    logger.info(
        "verifying_payment",
        extra={"payment_id": callback.razorpay_payment_id, "transaction_id": callback.transaction_id},
    )
    if not verify_payment_signature(
        callback.razorpay_order_id,
        callback.razorpay_payment_id,
        gateway.key_secret,
        callback.razorpay_signature,
    ):
        security_logger.warning(
            "payment_signature_mismatch",
            extra={
                "order_id": callback.razorpay_order_id,
                "payment_id": callback.razorpay_payment_id,
                "transaction_id": callback.transaction_id,
            },
        )
        raise SignatureMismatch("Payment verification failed - invalid signature")

    try:
        payment = gateway.fetch_payment(callback.razorpay_payment_id)
    except GatewayError as e:
        raise GatewayUnavailable(f"Failed to fetch payment details: {e}") from e
    logger.info("gateway_payment_status", extra={"payment_id": payment.id, "gateway_status": payment.status})
    if payment.order_id != callback.razorpay_order_id:
        _reject_mismatch(callback.transaction_id, payment, ["order_id"])

    if mode == TWO_STEP:
        return _settle_two_step(db, callback.transaction_id, payment)
    return _settle_atomic(db, callback.transaction_id, payment)

def _settle_atomic(db: Session, transaction_id: str, payment: GatewayPayment) -> SettlementOutcome:
    try:
        result = reconcile_transaction(db, transaction_id, payment)
    except SettlementError:
        db.rollback()
        raise
    txn = result.transaction
    if not result.transitioned:
        db.commit()
        return SettlementOutcome(txn, payment, ALREADY_PROCESSED, False)

    settlement = NOT_APPLICABLE
    if _needs_wallet_credit(txn):
        try:
            credit_wallet(db, txn.owner_id, txn.amount, txn.currency)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "wallet_credit_failed_rolled_back",
                extra={"transaction_id": transaction_id, "error": str(e)},
            )
            raise WalletSettlementError(
                "Wallet settlement failed; transaction left pending for redelivery"
            ) from e
        settlement = APPLIED
    db.commit()
    logger.info("transaction_settled", extra={"transaction_id": transaction_id, "settlement": settlement})
    return SettlementOutcome(txn, payment, settlement, True)

def _settle_two_step(db: Session, transaction_id: str, payment: GatewayPayment) -> SettlementOutcome:
    try:
        result = reconcile_transaction(db, transaction_id, payment)
    except SettlementError:
        db.rollback()
        raise
    # terminal status is durable before any wallet effect
    db.commit()
    txn = result.transaction
    if not result.transitioned:
        return SettlementOutcome(txn, payment, ALREADY_PROCESSED, False)
    if not _needs_wallet_credit(txn):
        return SettlementOutcome(txn, payment, NOT_APPLICABLE, True)

    owner_id, amount = txn.owner_id, txn.amount
    try:
        credit_wallet(db, owner_id, amount, txn.currency)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        reconciliation_logger.error(
            "reconciliation_discrepancy",
            extra={"transaction_id": transaction_id, "owner_id": owner_id, "amount": amount, "error": str(e)},
        )
        _record_issue(db, transaction_id, owner_id, amount, txn.currency, reason=f"Wallet credit failed: {e}")
        return SettlementOutcome(txn, payment, RECONCILIATION_REQUIRED, True)
    return SettlementOutcome(txn, payment, APPLIED, True)

def _record_issue(db: Session, transaction_id: str, owner_id: str, amount: int, currency: str, reason: str) -> None:
    try:
        db.add(ReconciliationIssue(
            transaction_id=transaction_id,
            owner_id=owner_id,
            amount=amount,
            currency=currency,
            reason=reason,
            status=IssueStatus.open,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        # the discrepancy is still in the log and in the partial response
        reconciliation_logger.exception(
            "reconciliation_issue_not_recorded", extra={"transaction_id": transaction_id}
        )


# -----------------------------------------------------------------------------
# Operator queue
# -----------------------------------------------------------------------------
def retry_reconciliation_issue(db: Session, issue_id: int, operator_id: Optional[int] = None) -> ReconciliationIssue:
    """Credit the wallet for an open issue and resolve it in one database transaction."""
    now = datetime.utcnow()
    result = db.execute(
        update(ReconciliationIssue)
        .where(ReconciliationIssue.id == issue_id, ReconciliationIssue.status == IssueStatus.open)
        .values(status=IssueStatus.resolved, resolved_at=now, resolved_by=operator_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        exists = db.get(ReconciliationIssue, issue_id) is not None
        db.rollback()
        if not exists:
            raise IssueNotFound(f"Reconciliation issue not found: {issue_id}")
        raise IssueAlreadyResolved(f"Reconciliation issue already resolved: {issue_id}")

    issue = (
        db.query(ReconciliationIssue)
        .filter(ReconciliationIssue.id == issue_id)
        .populate_existing()
        .one()
    )
    owner_id, amount, transaction_id = issue.owner_id, issue.amount, issue.transaction_id
    txn = db.query(Transaction).filter(Transaction.transaction_id == transaction_id).first()
    if txn is None or not _needs_wallet_credit(txn) or txn.owner_id != owner_id:
        db.rollback()
        raise IssueNotSettleable(
            f"Transaction {transaction_id} is not a completed wallet top-up for {owner_id}"
        )
    try:
        credit_wallet(db, owner_id, amount, issue.currency or txn.currency)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise WalletSettlementError(f"Wallet credit failed again: {e}") from e
    reconciliation_logger.info(
        "reconciliation_resolved",
        extra={"issue_id": issue_id, "transaction_id": transaction_id, "operator_id": operator_id},
    )
    return issue


# -----------------------------------------------------------------------------
# Initiation
# -----------------------------------------------------------------------------
def initiate_payment(
    db: Session,
    gateway: RazorpayClient,
    body: PaymentInitiationIn,
) -> Tuple[Transaction, GatewayOrder]:
    """Create a gateway order and the matching pending transaction."""
    if not gateway.is_configured:
        raise ConfigurationError("Razorpay credentials not configured")

    transaction_id = generate_transaction_id()
    notes = {
        "description": body.description,
        "customer_email": body.customer_email,
        "customer_phone": body.customer_phone,
        "transaction_id": transaction_id,
    }
    try:
        order = gateway.create_order(
            amount=body.amount,
            currency=body.currency,
            receipt=transaction_id,
            notes={k: v for k, v in notes.items() if v},
        )
    except GatewayError as e:
        raise GatewayUnavailable(f"Failed to create payment order: {e}") from e

    txn = Transaction(
        transaction_id=transaction_id,
        owner_id=body.patient_id,
        provider_id=body.provider_id,
        appointment_id=body.appointment_id,
        kind=body.transaction_type,
        status=TransactionStatus.pending,
        amount=body.amount,
        currency=body.currency,
        payment_method=body.payment_method,
        payment_gateway="razorpay",
        gateway_order_id=order.id,
        gateway_response=order.raw,
        meta={
            "description": body.description,
            "customer_email": body.customer_email,
            "customer_phone": body.customer_phone,
        },
    )
    try:
        db.add(txn)
        db.flush()
        if body.transaction_type == TransactionKind.wallet_topup:
            get_or_create_wallet(db, body.patient_id, body.currency)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(
        "payment_initiated",
        extra={"transaction_id": transaction_id, "order_id": order.id, "kind": body.transaction_type.value},
    )
    return txn, order
