"""Payment gateway port (abstract interface).

Defines the contract every gateway adapter implements. The lifecycle service
only talks to this interface, so MidtransGateway and FakeGateway are
interchangeable.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence


@dataclass(frozen=True)
class ChargeItem:
    id: str
    name: str
    price: int
    quantity: int


@dataclass(frozen=True)
class Customer:
    first_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class ChargeResult:
    """Result of a Snap (redirect) charge."""

    order_id: str
    token: str
    redirect_url: str


@dataclass(frozen=True)
class QrisChargeResult:
    """Result of a QRIS charge."""

    order_id: str
    qr_string: str
    qr_url: Optional[str] = None
    gateway_transaction_id: Optional[str] = None


SIGNATURE_FIELDS = ("order_id", "status_code", "gross_amount")


def notification_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA512 over order_id + status_code + gross_amount + server_key, hex encoded."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_notification_signature(payload: Mapping[str, Any], server_key: str) -> bool:
    """Check `signature_key` in a notification payload against the server key."""
    if not server_key:
        return False
    values = [payload.get(field) for field in SIGNATURE_FIELDS]
    signature = payload.get("signature_key")
    if not all(isinstance(v, str) for v in values) or not isinstance(signature, str):
        return False
    expected = notification_signature(*values, server_key=server_key)
    return hmac.compare_digest(expected, signature.lower())


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name = "gateway"

    @abstractmethod
    async def create_charge(
        self,
        amount: int,
        items: Sequence[ChargeItem],
        customer: Customer,
        shipping: Optional[Customer] = None,
    ) -> ChargeResult:
        """Create a redirect charge. Raises GatewayError on failure."""
        ...

    @abstractmethod
    async def create_qris_charge(
        self,
        amount: int,
        items: Sequence[ChargeItem],
        customer: Customer,
        shipping: Optional[Customer] = None,
    ) -> QrisChargeResult:
        """Create a QRIS charge. Raises GatewayError on failure."""
        ...

    @abstractmethod
    async def cancel_charge(self, order_id: str) -> None:
        """Cancel a charge that has not settled yet. Raises GatewayError on failure."""
        ...

    @abstractmethod
    def verify_notification(self, payload: Mapping[str, Any]) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...

    async def aclose(self) -> None:
        return None
