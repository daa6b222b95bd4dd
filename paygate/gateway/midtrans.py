"""Midtrans gateway adapter.

- Snap API for redirect charges (token + redirect_url)
- Core API for QRIS charges and cancellation
- SHA512 signature check for HTTP notifications

Charge calls are never retried here: a blind retry of a charge can double
charge the customer. Notification idempotency covers the gateway's own retries.
"""

import base64
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx

from paygate.errors import GatewayError, GatewayTimeoutError
from paygate.gateway.port import (
    ChargeItem,
    ChargeResult,
    Customer,
    PaymentGateway,
    QrisChargeResult,
    verify_notification_signature,
)

logger = logging.getLogger(__name__)

SNAP_BASE_URLS = {
    "sandbox": "https://app.sandbox.midtrans.com",
    "production": "https://app.midtrans.com",
}
CORE_API_BASE_URLS = {
    "sandbox": "https://api.sandbox.midtrans.com",
    "production": "https://api.midtrans.com",
}


def generate_order_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def _customer_details(customer: Customer, shipping: Optional[Customer]) -> Dict[str, Any]:
    billing = {
        "first_name": customer.first_name,
        "phone": customer.phone,
        "address": customer.address,
        "city": customer.city,
        "postal_code": customer.postal_code,
        "country_code": "IDN",
    }
    details: Dict[str, Any] = {
        "first_name": customer.first_name,
        "email": customer.email,
        "phone": customer.phone,
        "billing_address": {k: v for k, v in billing.items() if v},
    }
    if shipping is not None:
        address = {
            "first_name": shipping.first_name,
            "phone": shipping.phone,
            "address": shipping.address,
            "city": shipping.city,
            "postal_code": shipping.postal_code,
            "country_code": "IDN",
        }
        details["shipping_address"] = {k: v for k, v in address.items() if v}
    return {k: v for k, v in details.items() if v}


def build_charge_body(
    order_id: str,
    amount: int,
    items: Sequence[ChargeItem],
    customer: Customer,
    shipping: Optional[Customer] = None,
) -> Dict[str, Any]:
    return {
        "transaction_details": {"order_id": order_id, "gross_amount": amount},
        "item_details": [
            {"id": item.id, "name": item.name, "price": item.price, "quantity": item.quantity}
            for item in items
        ],
        "customer_details": _customer_details(customer, shipping),
    }


class MidtransGateway(PaymentGateway):
    name = "midtrans"

    def __init__(
        self,
        server_key: str,
        environment: str = "sandbox",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if environment not in SNAP_BASE_URLS:
            raise ValueError(f"Unknown Midtrans environment: {environment}")
        self.server_key = server_key
        self.environment = environment
        self.snap_base_url = SNAP_BASE_URLS[environment]
        self.core_api_base_url = CORE_API_BASE_URLS[environment]
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        credentials = base64.b64encode(f"{self.server_key}:".encode()).decode()
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Basic {credentials}",
        }

    async def _post(self, url: str, body: Optional[dict], order_id: str) -> httpx.Response:
        try:
            return await self.client.post(url, json=body, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error("Gateway call timed out", extra={"order_id": order_id, "gateway": self.name})
            raise GatewayTimeoutError("Payment gateway timed out", {"order_id": order_id}) from e
        except httpx.RequestError as e:
            logger.error("Gateway unreachable", extra={"order_id": order_id, "gateway": self.name})
            raise GatewayError("Payment gateway unavailable", {"order_id": order_id, "cause": str(e)}) from e

    @staticmethod
    def _json(response: httpx.Response, order_id: str) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(
                "Payment gateway returned an unreadable response",
                {"order_id": order_id, "http_status": response.status_code},
            ) from e
        if not isinstance(data, dict):
            raise GatewayError("Payment gateway returned an unexpected response", {"order_id": order_id})
        return data

    async def create_charge(self, amount, items, customer, shipping=None) -> ChargeResult:
        order_id = generate_order_id("ORDER")
        body = build_charge_body(order_id, amount, items, customer, shipping)
        response = await self._post(f"{self.snap_base_url}/snap/v1/transactions", body, order_id)
        data = self._json(response, order_id)

        if response.status_code >= 400 or "token" not in data:
            messages = data.get("error_messages") or [response.reason_phrase]
            logger.warning(
                "Snap charge rejected",
                extra={"order_id": order_id, "status_code": response.status_code, "gateway": self.name},
            )
            raise GatewayError(
                "Payment gateway rejected the charge",
                {"order_id": order_id, "http_status": response.status_code, "cause": messages},
            )

        return ChargeResult(order_id=order_id, token=data["token"], redirect_url=data.get("redirect_url", ""))

    async def create_qris_charge(self, amount, items, customer, shipping=None) -> QrisChargeResult:
        order_id = generate_order_id("QRIS")
        body = build_charge_body(order_id, amount, items, customer, shipping)
        body["payment_type"] = "qris"
        body["qris"] = {"acquirer": "gopay"}
        response = await self._post(f"{self.core_api_base_url}/v2/charge", body, order_id)
        data = self._json(response, order_id)

        # Core API reports failures in the body's status_code, often with HTTP 200
        status_code = str(data.get("status_code", response.status_code))
        if response.status_code >= 400 or not status_code.startswith("2") or not data.get("qr_string"):
            logger.warning(
                "QRIS charge rejected",
                extra={"order_id": order_id, "status_code": status_code, "gateway": self.name},
            )
            raise GatewayError(
                "Payment gateway rejected the QRIS charge",
                {"order_id": order_id, "gateway_status": status_code, "cause": data.get("status_message")},
            )

        qr_url = None
        for action in data.get("actions") or []:
            if action.get("name") == "generate-qr-code":
                qr_url = action.get("url")
                break

        return QrisChargeResult(
            order_id=order_id,
            qr_string=data["qr_string"],
            qr_url=qr_url,
            gateway_transaction_id=data.get("transaction_id"),
        )

    async def cancel_charge(self, order_id: str) -> None:
        response = await self._post(f"{self.core_api_base_url}/v2/{order_id}/cancel", None, order_id)
        data = self._json(response, order_id)
        status_code = str(data.get("status_code", response.status_code))
        if response.status_code >= 400 or not status_code.startswith("2"):
            raise GatewayError(
                "Payment gateway refused to cancel the charge",
                {"order_id": order_id, "gateway_status": status_code, "cause": data.get("status_message")},
            )

    def verify_notification(self, payload: Mapping[str, Any]) -> bool:
        return verify_notification_signature(payload, self.server_key)

    async def aclose(self) -> None:
        await self.client.aclose()
