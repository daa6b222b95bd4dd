"""Configurable fake payment gateway for development and testing.

Simulates Midtrans without any network calls. Notifications are signed and
verified with the same SHA512 scheme as the real gateway, using the fake's
own server key, so webhook handling can be exercised end to end.
"""

from typing import Any, Mapping
from uuid import uuid4

from paygate.errors import GatewayError, GatewayTimeoutError
from paygate.gateway.port import (
    ChargeResult,
    PaymentGateway,
    QrisChargeResult,
    notification_signature,
    verify_notification_signature,
)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self, server_key: str = "fake-server-key") -> None:
        self.server_key = server_key
        self.should_succeed: bool = True
        self.failure_reason: str = "Charge declined"
        self.timeout: bool = False
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Charge declined", timeout: bool = False) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.timeout = timeout

    def _check(self, order_id: str) -> None:
        if self.timeout:
            raise GatewayTimeoutError("Payment gateway timed out", {"order_id": order_id})
        if not self.should_succeed:
            raise GatewayError(self.failure_reason, {"order_id": order_id, "cause": self.failure_reason})

    async def create_charge(self, amount, items, customer, shipping=None) -> ChargeResult:
        order_id = f"ORDER-{uuid4().hex}"
        self.calls.append({
            "method": "create_charge",
            "order_id": order_id,
            "amount": amount,
            "items": list(items),
            "customer": customer,
            "shipping": shipping,
        })
        self._check(order_id)
        token = f"fake_snap_{uuid4().hex[:12]}"
        return ChargeResult(
            order_id=order_id,
            token=token,
            redirect_url=f"https://fake-gateway.local/snap/v2/vtweb/{token}",
        )

    async def create_qris_charge(self, amount, items, customer, shipping=None) -> QrisChargeResult:
        order_id = f"QRIS-{uuid4().hex}"
        self.calls.append({
            "method": "create_qris_charge",
            "order_id": order_id,
            "amount": amount,
            "items": list(items),
            "customer": customer,
            "shipping": shipping,
        })
        self._check(order_id)
        transaction_id = uuid4().hex
        return QrisChargeResult(
            order_id=order_id,
            qr_string=f"00020101021226620014COM.FAKE.WWW{transaction_id}",
            qr_url=f"https://fake-gateway.local/v2/qris/{transaction_id}/qr-code",
            gateway_transaction_id=transaction_id,
        )

    async def cancel_charge(self, order_id: str) -> None:
        self.calls.append({"method": "cancel_charge", "order_id": order_id})
        self._check(order_id)

    def sign(self, order_id: str, status_code: str, gross_amount: str) -> str:
        """Produce the signature_key the fake would attach to a notification."""
        return notification_signature(order_id, status_code, gross_amount, self.server_key)

    def verify_notification(self, payload: Mapping[str, Any]) -> bool:
        return verify_notification_signature(payload, self.server_key)
