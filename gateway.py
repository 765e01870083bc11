"""Thin client for the Razorpay REST API."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

import config

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Raised when the gateway cannot give an authoritative answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class GatewayTimeout(GatewayError):
    """Raised when the gateway does not answer within the configured timeout."""


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    status: str
    method: Optional[str]
    amount: Optional[int]
    currency: Optional[str]
    order_id: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def captured(self) -> bool:
        return self.status == "captured"

@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int
    currency: str
    receipt: Optional[str]
    status: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


class RazorpayClient:
    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "RazorpayClient":
        return cls(
            key_id=config.RAZORPAY_API_KEY,
            key_secret=config.RAZORPAY_SECRET_KEY,
            base_url=config.RAZORPAY_BASE_URL,
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.key_id or "", self.key_secret or ""),
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("gateway_timeout", extra={"path": path})
            raise GatewayTimeout(f"Razorpay request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.warning("gateway_transport_error", extra={"path": path, "error": str(e)})
            raise GatewayError(f"Razorpay request failed: {e}") from e

        if response.status_code >= 400:
            message = self._extract_error_message(response)
            logger.warning(
                "gateway_error_response",
                extra={"path": path, "status_code": response.status_code, "gateway_message": message},
            )
            raise GatewayError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewayError("Razorpay returned a non-JSON body", response.status_code) from e
        if not isinstance(payload, dict):
            raise GatewayError("Razorpay returned an unexpected body", response.status_code)
        return payload

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Fetch the authoritative state of a payment. Never retried here."""
        payload = self._request("GET", f"/payments/{quote(payment_id, safe='')}")
        status = payload.get("status")
        if not isinstance(status, str) or not status:
            raise GatewayError("Razorpay payment response has no status")
        amount = payload.get("amount")
        return GatewayPayment(
            id=str(payload.get("id") or payment_id),
            status=status,
            method=payload.get("method"),
            amount=amount if isinstance(amount, int) else None,
            currency=payload.get("currency"),
            order_id=payload.get("order_id"),
            raw=payload,
        )

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        # amount is already in the smallest currency unit
        payload = self._request(
            "POST",
            "/orders",
            json={"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}},
        )
        order_id = payload.get("id")
        if not order_id:
            raise GatewayError("Razorpay order response has no id")
        logger.info("gateway_order_created", extra={"order_id": order_id, "receipt": receipt})
        return GatewayOrder(
            id=order_id,
            amount=payload.get("amount", amount),
            currency=payload.get("currency", currency),
            receipt=payload.get("receipt"),
            status=payload.get("status"),
            raw=payload,
        )

    @staticmethod
    def _extract_error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"Razorpay request failed with status {response.status_code}"

        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                description = error.get("description")
                code = error.get("code")
                if description and code:
                    return f"{code}: {description}"
                if description or code:
                    return str(description or code)
        return f"Razorpay request failed with status {response.status_code}"
