"""
Pytest configuration and fixtures.

Everything runs against the in-memory store, the in-memory user directory and
the fake gateway; no MongoDB or network access is needed.
"""
import pytest
from fastapi.testclient import TestClient

from paygate_common.utils import Settings, create_access_token, get_password_hash

from paygate.gateway.fake import FakeGateway
from paygate.main import create_app
from paygate.models import UserDB
from paygate.schemas import ItemDetailRequest
from paygate.service import PaymentService
from paygate.store import InMemoryTransactionStore
from paygate.users import InMemoryRevokedTokenStore, InMemoryUserDirectory

ALICE_ID = "user-alice"
BOB_ID = "user-bob"
PASSWORD = "Password123"


@pytest.fixture(scope="session")
def password_hash() -> str:
    return get_password_hash(PASSWORD)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        SECRET_KEY="test-secret",
        STORAGE_BACKEND="memory",
        PAYMENT_GATEWAY="fake",
        MIDTRANS_CLIENT_KEY="client-key-test",
    )


@pytest.fixture
def users(password_hash) -> InMemoryUserDirectory:
    return InMemoryUserDirectory([
        UserDB(
            id=ALICE_ID,
            email="alice@example.com",
            password_hash=password_hash,
            full_name="Alice Wijaya",
            phone="081200000001",
            address="Jl. Merdeka 1",
            city="Jakarta",
            postal_code="10110",
        ),
        UserDB(
            id=BOB_ID,
            email="bob@example.com",
            password_hash=password_hash,
            full_name="Bob Santoso",
            phone="081200000002",
        ),
    ])


@pytest.fixture
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def revoked_tokens() -> InMemoryRevokedTokenStore:
    return InMemoryRevokedTokenStore()


@pytest.fixture
def service(store, users, gateway) -> PaymentService:
    return PaymentService(store=store, users=users, gateway=gateway)


@pytest.fixture
def client(test_settings, store, users, revoked_tokens, gateway) -> TestClient:
    app = create_app(
        test_settings,
        store=store,
        users=users,
        revoked_tokens=revoked_tokens,
        gateway=gateway,
    )
    return TestClient(app)


@pytest.fixture
def auth_headers(test_settings):
    """Return a function building bearer headers for a user id."""
    def _headers(user_id: str = ALICE_ID) -> dict:
        token = create_access_token({"sub": user_id}, config=test_settings)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def one_item():
    return [ItemDetailRequest(id="SKU-1", name="Coffee Beans", price=1000, quantity=1)]


@pytest.fixture
def notify(gateway):
    """Return a function building a correctly signed notification payload."""
    def _notify(order_id: str, transaction_status: str, gross_amount: str = "1000.00", **extra) -> dict:
        status_code = "200" if transaction_status in ("settlement", "capture") else "201"
        if transaction_status in ("deny", "cancel", "expire", "failure"):
            status_code = "202"
        payload = {
            "order_id": order_id,
            "transaction_status": transaction_status,
            "status_code": status_code,
            "gross_amount": gross_amount,
            "payment_type": "bank_transfer",
            "transaction_id": "a1b2c3",
        }
        payload.update(extra)
        payload["signature_key"] = gateway.sign(order_id, payload["status_code"], gross_amount)
        return payload
    return _notify
