# schemas.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models import IssueStatus, TransactionKind, TransactionStatus, UserRole, WalletStatus


# -----------------------------------------------------------------------------
# Inbound
# -----------------------------------------------------------------------------
class PaymentCallback(BaseModel):
    """Checkout callback forwarded by the client after the gateway redirect.

    Values are used byte-exact for the HMAC and the lookup, so whitespace is
    rejected rather than stripped.
    """
    razorpay_order_id: str = Field(..., pattern=r"^\S+$")
    razorpay_payment_id: str = Field(..., pattern=r"^\S+$")
    razorpay_signature: str = Field(..., pattern=r"^\S+$")
    transaction_id: str = Field(..., pattern=r"^\S+$")

class PaymentInitiationIn(BaseModel):
    amount: int = Field(..., gt=0)   # paise
    currency: str = "INR"
    patient_id: str = Field(..., min_length=1)
    transaction_type: TransactionKind
    provider_id: Optional[str] = None
    appointment_id: Optional[str] = None
    payment_method: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    description: Optional[str] = None


# -----------------------------------------------------------------------------
# Outbound
# -----------------------------------------------------------------------------
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    class Config: from_attributes = True

class TransactionOut(BaseModel):
    transaction_id: str
    owner_id: str
    provider_id: Optional[str] = None
    appointment_id: Optional[str] = None
    kind: TransactionKind
    status: TransactionStatus
    amount: int
    currency: str
    payment_method: Optional[str] = None
    payment_gateway: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_status: Optional[str] = None
    gateway_amount: Optional[int] = None
    gateway_response: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    class Config: from_attributes = True

class TransactionPage(BaseModel):
    items: List[TransactionOut]
    page: int
    page_size: int
    total: int

class WalletOut(BaseModel):
    owner_id: str
    balance: int
    currency: str
    status: WalletStatus
    kyc_status: str
    daily_limit: Optional[int] = None
    monthly_limit: Optional[int] = None
    updated_at: Optional[datetime] = None
    class Config: from_attributes = True

class ReconciliationIssueOut(BaseModel):
    id: int
    transaction_id: str
    owner_id: str
    amount: int
    currency: str
    reason: str
    status: IssueStatus
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    class Config: from_attributes = True
