import json
import os

# keep the module-level engine away from any real database file
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from app import app
from create_operator import upsert_operator
from database import Base, get_db
from gateway import RazorpayClient
from models import Transaction, TransactionKind, TransactionStatus, UserRole, Wallet
from routers.payments import get_gateway
from signature import sign_payment

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
BASE_URL = "https://api.razorpay.test/v1"


class FakeRazorpay:
    """Serves canned gateway responses through httpx.MockTransport."""

    def __init__(self):
        self.payments = {}
        self.requests = []
        self.fail_status = None
        self.raise_exc = None
        self._orders = 0

    def add_payment(self, payment_id, status="captured", amount=50000, method="upi", order_id="order_1"):
        self.payments[payment_id] = {
            "id": payment_id,
            "entity": "payment",
            "amount": amount,
            "currency": "INR",
            "status": status,
            "order_id": order_id,
            "method": method,
            "captured": status == "captured",
        }

    @property
    def calls(self):
        return len(self.requests)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail_status is not None:
            return httpx.Response(
                self.fail_status,
                json={"error": {"code": "SERVER_ERROR", "description": "gateway down"}},
            )
        path = request.url.path
        if request.method == "GET" and path.startswith("/v1/payments/"):
            payment_id = path.rsplit("/", 1)[-1]
            if payment_id not in self.payments:
                return httpx.Response(
                    400,
                    json={"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
                )
            return httpx.Response(200, json=self.payments[payment_id])
        if request.method == "POST" and path == "/v1/orders":
            body = json.loads(request.content)
            self._orders += 1
            return httpx.Response(200, json={
                "id": f"order_{self._orders}",
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            })
        return httpx.Response(404, json={"error": {"code": "NOT_FOUND", "description": "no route"}})


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'payments-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def fake_razorpay():
    return FakeRazorpay()

@pytest.fixture
def gateway(fake_razorpay):
    return RazorpayClient(
        KEY_ID, KEY_SECRET, base_url=BASE_URL, timeout=2,
        transport=httpx.MockTransport(fake_razorpay.handler),
    )

@pytest.fixture
def client(session_factory, gateway):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def make_transaction(db):
    def _make(transaction_id="TXN_1", owner_id="patient-1", amount=50000,
              kind=TransactionKind.wallet_topup, status=TransactionStatus.pending):
        txn = Transaction(
            transaction_id=transaction_id,
            owner_id=owner_id,
            kind=kind,
            status=status,
            amount=amount,
            currency="INR",
            gateway_order_id="order_1",
        )
        db.add(txn)
        db.commit()
        return txn
    return _make

@pytest.fixture
def signed_callback():
    def _build(transaction_id="TXN_1", payment_id="pay_1", order_id="order_1", secret=KEY_SECRET):
        return {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": sign_payment(order_id, payment_id, secret),
            "transaction_id": transaction_id,
        }
    return _build

@pytest.fixture
def read_state(session_factory):
    """Fresh-session reads so assertions never see a stale identity map."""
    def _read(transaction_id="TXN_1", owner_id="patient-1"):
        session = session_factory()
        try:
            txn = session.query(Transaction).filter(Transaction.transaction_id == transaction_id).first()
            wallet = session.query(Wallet).filter(Wallet.owner_id == owner_id).first()
            return txn, (wallet.balance if wallet else None)
        finally:
            session.close()
    return _read

@pytest.fixture
def operator_headers(client, db):
    def _login(role=UserRole.admin, email="admin@clinic.test", password="s3cret-pass"):
        upsert_operator(db, email, "Ops", password, role)
        resp = client.post("/auth/login", data={"username": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return _login
