"""MidtransGateway against a mocked HTTP transport."""
import base64
import json

import httpx
import pytest

from paygate.errors import GatewayError, GatewayTimeoutError
from paygate.gateway import FakeGateway, MidtransGateway, build_gateway
from paygate.gateway.midtrans import build_charge_body
from paygate.gateway.port import ChargeItem, Customer, notification_signature
from paygate_common.utils import Settings

SERVER_KEY = "SB-Mid-server-test"
ITEMS = [ChargeItem(id="SKU-1", name="Coffee Beans", price=1000, quantity=2)]
CUSTOMER = Customer(first_name="Alice Wijaya", email="alice@example.com", phone="0812", city="Jakarta")


def make_gateway(handler, environment="sandbox"):
    requests = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return MidtransGateway(SERVER_KEY, environment=environment, client=client), requests


class TestSnapCharge:
    @pytest.mark.asyncio
    async def test_success(self):
        gateway, requests = make_gateway(
            lambda r: httpx.Response(201, json={"token": "snap-token", "redirect_url": "https://pay.test/snap-token"})
        )

        result = await gateway.create_charge(2000, ITEMS, CUSTOMER)

        assert result.token == "snap-token"
        assert result.redirect_url == "https://pay.test/snap-token"
        assert result.order_id.startswith("ORDER-")

        request = requests[0]
        assert str(request.url) == "https://app.sandbox.midtrans.com/snap/v1/transactions"
        expected_auth = base64.b64encode(f"{SERVER_KEY}:".encode()).decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"
        body = json.loads(request.content)
        assert body["transaction_details"] == {"order_id": result.order_id, "gross_amount": 2000}
        assert body["item_details"][0]["quantity"] == 2
        assert body["customer_details"]["email"] == "alice@example.com"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_production_url(self):
        gateway, requests = make_gateway(
            lambda r: httpx.Response(201, json={"token": "t", "redirect_url": "u"}),
            environment="production",
        )
        await gateway.create_charge(2000, ITEMS, CUSTOMER)
        assert requests[0].url.host == "app.midtrans.com"

    @pytest.mark.asyncio
    async def test_rejected(self):
        gateway, _ = make_gateway(
            lambda r: httpx.Response(401, json={"error_messages": ["Access denied"]})
        )

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_charge(2000, ITEMS, CUSTOMER)
        assert exc_info.value.details["cause"] == ["Access denied"]
        assert exc_info.value.details["http_status"] == 401

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        gateway, _ = make_gateway(handler)
        with pytest.raises(GatewayTimeoutError):
            await gateway.create_charge(2000, ITEMS, CUSTOMER)

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway, _ = make_gateway(handler)
        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_charge(2000, ITEMS, CUSTOMER)
        assert not isinstance(exc_info.value, GatewayTimeoutError)

    @pytest.mark.asyncio
    async def test_unreadable_response(self):
        gateway, _ = make_gateway(lambda r: httpx.Response(502, text="<html>Bad Gateway</html>"))
        with pytest.raises(GatewayError):
            await gateway.create_charge(2000, ITEMS, CUSTOMER)


class TestQrisCharge:
    @pytest.mark.asyncio
    async def test_success(self):
        gateway, requests = make_gateway(lambda r: httpx.Response(200, json={
            "status_code": "201",
            "transaction_id": "trx-1",
            "qr_string": "00020101021226",
            "actions": [
                {"name": "generate-qr-code", "method": "GET", "url": "https://api.test/qr.png"},
            ],
        }))

        result = await gateway.create_qris_charge(2000, ITEMS, CUSTOMER)

        assert result.order_id.startswith("QRIS-")
        assert result.qr_string == "00020101021226"
        assert result.qr_url == "https://api.test/qr.png"
        assert result.gateway_transaction_id == "trx-1"
        assert str(requests[0].url) == "https://api.sandbox.midtrans.com/v2/charge"
        assert json.loads(requests[0].content)["payment_type"] == "qris"

    @pytest.mark.asyncio
    async def test_failure_reported_in_body(self):
        gateway, _ = make_gateway(lambda r: httpx.Response(200, json={
            "status_code": "402",
            "status_message": "Payment channel is not activated",
        }))

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_qris_charge(2000, ITEMS, CUSTOMER)
        assert exc_info.value.details["gateway_status"] == "402"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel(self):
        gateway, requests = make_gateway(lambda r: httpx.Response(200, json={"status_code": "200"}))
        await gateway.cancel_charge("ORDER-1")
        assert str(requests[0].url) == "https://api.sandbox.midtrans.com/v2/ORDER-1/cancel"

    @pytest.mark.asyncio
    async def test_cancel_refused(self):
        gateway, _ = make_gateway(lambda r: httpx.Response(200, json={"status_code": "412"}))
        with pytest.raises(GatewayError):
            await gateway.cancel_charge("ORDER-1")


class TestNotificationSignature:
    def payload(self, **overrides):
        payload = {"order_id": "ORDER-1", "status_code": "200", "gross_amount": "2000.00"}
        payload["signature_key"] = notification_signature(
            payload["order_id"], payload["status_code"], payload["gross_amount"], SERVER_KEY
        )
        payload.update(overrides)
        return payload

    def test_valid(self):
        gateway = MidtransGateway(SERVER_KEY)
        assert gateway.verify_notification(self.payload())

    def test_tampered_amount(self):
        gateway = MidtransGateway(SERVER_KEY)
        assert not gateway.verify_notification(self.payload(gross_amount="1.00"))

    def test_missing_signature(self):
        payload = self.payload()
        del payload["signature_key"]
        assert not MidtransGateway(SERVER_KEY).verify_notification(payload)

    def test_non_string_field(self):
        assert not MidtransGateway(SERVER_KEY).verify_notification(self.payload(status_code=200))

    def test_empty_server_key_rejects_everything(self):
        assert not MidtransGateway("").verify_notification(self.payload())


def test_build_charge_body_includes_shipping():
    shipping = Customer(first_name="Alice", address="Jl. Sudirman 9", city="Bandung")
    body = build_charge_body("ORDER-1", 2000, ITEMS, CUSTOMER, shipping)
    assert body["customer_details"]["shipping_address"]["city"] == "Bandung"
    assert body["customer_details"]["billing_address"]["country_code"] == "IDN"


def test_build_gateway_selects_adapter():
    assert isinstance(build_gateway(Settings(PAYMENT_GATEWAY="fake")), FakeGateway)
    gateway = build_gateway(Settings(PAYMENT_GATEWAY="midtrans", MIDTRANS_SERVER_KEY=SERVER_KEY))
    assert isinstance(gateway, MidtransGateway)
    assert gateway.snap_base_url == "https://app.sandbox.midtrans.com"


def test_unknown_environment():
    with pytest.raises(ValueError):
        MidtransGateway(SERVER_KEY, environment="staging")
