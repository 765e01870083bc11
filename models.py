# models.py

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON, BigInteger, Column, DateTime, Enum as SAEnum, Integer, String, Text,
)

from database import Base


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class UserRole(str, Enum):
    admin = "admin"
    operator = "operator"

class TransactionKind(str, Enum):
    debit = "debit"
    credit = "credit"
    refund = "refund"
    consultation_fee = "consultation_fee"
    prescription_fee = "prescription_fee"
    lab_fee = "lab_fee"
    wallet_topup = "wallet_topup"

class TransactionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"

TERMINAL_STATUSES = (TransactionStatus.completed, TransactionStatus.failed)

class WalletStatus(str, Enum):
    active = "active"
    suspended = "suspended"

class IssueStatus(str, Enum):
    open = "open"
    resolved = "resolved"


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    role = Column(SAEnum(UserRole), nullable=False, default=UserRole.operator)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True)
    transaction_id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=True)
    appointment_id = Column(String, nullable=True)
    kind = Column(SAEnum(TransactionKind), nullable=False)
    status = Column(SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.pending)
    amount = Column(BigInteger, nullable=False)      # smallest currency unit (paise)
    currency = Column(String, nullable=False, default="INR")
    payment_method = Column(String, nullable=True)
    payment_gateway = Column(String, nullable=False, default="razorpay")
    gateway_order_id = Column(String, nullable=True, index=True)
    gateway_payment_id = Column(String, nullable=True)
    gateway_status = Column(String, nullable=True)
    gateway_amount = Column(BigInteger, nullable=True)
    gateway_response = Column(JSON, nullable=True)   # stored verbatim for audit
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

class Wallet(Base):
    __tablename__ = "wallets"
    id = Column(Integer, primary_key=True)
    owner_id = Column(String, unique=True, nullable=False, index=True)
    balance = Column(BigInteger, nullable=False, default=0)
    currency = Column(String, nullable=False, default="INR")
    status = Column(SAEnum(WalletStatus), nullable=False, default=WalletStatus.active)
    kyc_status = Column(String, nullable=False, default="pending")
    daily_limit = Column(BigInteger, nullable=True)
    monthly_limit = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

class ReconciliationIssue(Base):
    """Completed transaction whose wallet credit did not land."""
    __tablename__ = "reconciliation_issues"
    id = Column(Integer, primary_key=True)
    transaction_id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=False)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String, nullable=False, default="INR")
    reason = Column(Text, default="")
    status = Column(SAEnum(IssueStatus), nullable=False, default=IssueStatus.open)
    created_at = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(Integer, nullable=True)  # operator user id
