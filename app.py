# app.py

import logging
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

import config
from auth import authenticate_operator, create_access_token, get_current_user, require_role
from database import create_db, engine, ensure_sqlite_schema, get_db
from models import (
    IssueStatus, ReconciliationIssue, Transaction, TransactionStatus, User, UserRole,
)
from receipts import render_receipt_pdf
from routers.payments import router as payments_router
from schemas import (
    ReconciliationIssueOut, Token, TransactionOut, TransactionPage, UserOut, WalletOut,
)
from settlement import (
    IssueAlreadyResolved, IssueNotFound, IssueNotSettleable, WalletSettlementError,
    get_or_create_wallet, retry_reconciliation_issue,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}

# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
app = FastAPI(title="Payment Settlement API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for k, v in SECURITY_HEADERS.items():
        response.headers.setdefault(k, v)
    return response

app.include_router(payments_router)

@app.on_event("shutdown")
def on_shutdown():
    engine.dispose()

@app.on_event("startup")
def on_startup():
    create_db()
    ensure_sqlite_schema(engine)
    if config.SETTLEMENT_MODE != "atomic":
        logger.warning("settlement_mode_two_step: wallet credits are committed separately")


@app.get("/ping")
def ping(): return {"ok": True}

@app.get("/whoami", response_model=UserOut)
def whoami(current: User = Depends(get_current_user)): return current

# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------
@app.post("/auth/login", response_model=Token)
def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    u = authenticate_operator(db, form.username, form.password)
    if u is None:
        raise HTTPException(400, "Incorrect email or password")
    return Token(access_token=create_access_token(u))

# -----------------------------------------------------------------------------
# Operator: transactions
# -----------------------------------------------------------------------------
staff = require_role(UserRole.admin, UserRole.operator)

def _get_transaction(db: Session, transaction_id: str) -> Transaction:
    txn = db.query(Transaction).filter(Transaction.transaction_id == transaction_id).first()
    if not txn:
        raise HTTPException(404, "Transaction not found")
    return txn

@app.get("/admin/transactions", response_model=TransactionPage)
def admin_list_transactions(
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    owner_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current: User = Depends(staff),
    db: Session = Depends(get_db),
):
    base = db.query(Transaction)
    if status_filter:
        base = base.filter(Transaction.status == status_filter)
    if owner_id:
        base = base.filter(Transaction.owner_id == owner_id)
    total = base.count()
    rows = (
        base.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return TransactionPage(
        items=[TransactionOut.model_validate(r) for r in rows],
        page=page, page_size=page_size, total=total,
    )

@app.get("/admin/transactions/{transaction_id}", response_model=TransactionOut)
def admin_get_transaction(transaction_id: str, current: User = Depends(staff),
                          db: Session = Depends(get_db)):
    return _get_transaction(db, transaction_id)

@app.get("/admin/transactions/{transaction_id}/receipt")
def admin_transaction_receipt(transaction_id: str, current: User = Depends(staff),
                              db: Session = Depends(get_db)):
    txn = _get_transaction(db, transaction_id)
    if txn.status != TransactionStatus.completed:
        raise HTTPException(409, "Receipts are only issued for completed transactions")
    pdf = render_receipt_pdf(txn)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="receipt-{txn.transaction_id}.pdf"'},
    )

# -----------------------------------------------------------------------------
# Operator: wallets
# -----------------------------------------------------------------------------
@app.get("/admin/wallets/{owner_id}", response_model=WalletOut)
def admin_get_wallet(owner_id: str, current: User = Depends(staff), db: Session = Depends(get_db)):
    wallet = get_or_create_wallet(db, owner_id)
    db.commit()
    return wallet

# -----------------------------------------------------------------------------
# Operator: reconciliation queue
# -----------------------------------------------------------------------------
@app.get("/admin/reconciliation", response_model=List[ReconciliationIssueOut])
def admin_list_reconciliation(
    status_filter: IssueStatus = Query(IssueStatus.open, alias="status"),
    current: User = Depends(staff),
    db: Session = Depends(get_db),
):
    return (
        db.query(ReconciliationIssue)
        .filter(ReconciliationIssue.status == status_filter)
        .order_by(ReconciliationIssue.created_at.asc(), ReconciliationIssue.id.asc())
        .all()
    )

@app.post("/admin/reconciliation/{issue_id}/retry", response_model=ReconciliationIssueOut)
def admin_retry_reconciliation(issue_id: int, current: User = Depends(require_role(UserRole.admin)),
                               db: Session = Depends(get_db)):
    try:
        return retry_reconciliation_issue(db, issue_id, operator_id=current.id)
    except IssueNotFound:
        raise HTTPException(404, "Reconciliation issue not found")
    except IssueAlreadyResolved:
        raise HTTPException(409, "Reconciliation issue already resolved")
    except IssueNotSettleable as e:
        raise HTTPException(409, str(e))
    except WalletSettlementError as e:
        raise HTTPException(503, str(e))


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
