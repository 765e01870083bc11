"""Razorpay checkout signature checks.

The gateway signs ``"{order_id}|{payment_id}"`` with HMAC-SHA256 keyed by the
account's key secret and sends the hex digest back to the client, which
forwards it to ``/verify-payment``.
"""

import hashlib
import hmac
from typing import Optional


def sign_payment(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(
    order_id: Optional[str],
    payment_id: Optional[str],
    secret: Optional[str],
    signature: Optional[str],
) -> bool:
    """
    Return True only when ``signature`` matches the expected HMAC.
    Missing or empty fields count as a failed verification.
    """
    for value in (order_id, payment_id, secret, signature):
        if not isinstance(value, str) or not value:
            return False
    expected = sign_payment(order_id, payment_id, secret)
    # bytes, so non-ASCII input compares as a mismatch instead of raising
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
