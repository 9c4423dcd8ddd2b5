import json
from unittest.mock import patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import Settings, get_settings
from app.core.enums import UserRole
from app.core.security import create_access_token, hash_password
from app.db.session import get_db
from app.main import app
from app.models import Base
from app.models.user import User
from app.services.paypal import PayPalClient, get_processor

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeRedis:
    """Just enough of redis.asyncio.Redis for rate limits and idempotency"""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value.encode() if isinstance(value, str) else value
        return True

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        return True

    async def delete(self, key):
        self.store.pop(key, None)


class FakePayPal:
    """PayPal sandbox double served through httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.orders = {}
        self.capture_status = "COMPLETED"
        self.capture_reference = None
        self.capture_error = None
        self.create_error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-test-token", "expires_in": 32400})

        if path == "/v2/checkout/orders":
            if self.create_error:
                raise self.create_error
            order_id = f"ORDER-{len(self.orders) + 1}"
            self.orders[order_id] = json.loads(request.content)["purchase_units"][0]
            return httpx.Response(201, json={
                "id": order_id,
                "status": "CREATED",
                "links": [{"rel": "approve", "href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}"}],
            })

        if path.endswith("/capture"):
            if self.capture_error:
                raise self.capture_error
            order_id = path.split("/")[-2]
            unit = self.orders.get(order_id, {})
            reference = self.capture_reference or unit.get("reference_id")
            value = unit.get("amount", {}).get("value", "0.00")
            return httpx.Response(201, json={
                "id": order_id,
                "status": self.capture_status,
                "payer": {"email_address": "buyer@example.com"},
                "purchase_units": [{
                    "reference_id": reference,
                    "payments": {"captures": [{
                        "id": f"CAP-{order_id}",
                        "status": self.capture_status,
                        "amount": {"currency_code": "USD", "value": value},
                    }]},
                }],
            })

        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "Unknown path"})

    def client(self, settings: Settings) -> PayPalClient:
        http = httpx.AsyncClient(
            base_url=settings.PAYPAL_BASE_URL,
            transport=httpx.MockTransport(self.handler),
        )
        return PayPalClient(settings, http=http)


@pytest.fixture
def test_settings():
    return Settings(
        SITE_URL="https://shop.test",
        OPERATOR_EMAIL="info@shop.test",
        OPERATIONS_EMAIL="ops@shop.test",
        PAYPAL_CLIENT_ID="client-id",
        PAYPAL_CLIENT_SECRET="client-secret",
        MAIL_API_URL="https://mail.test/send",
        MAIL_API_KEY="mail-key",
    )


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def sent_notifications():
    """Celery dispatch replaced by a mock; ``.delay.call_args_list`` holds the mails"""
    with patch("app.services.tasks.deliver_notification") as task:
        yield task.delay


@pytest.fixture
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr("app.core.redis.redis", redis)
    return redis


@pytest.fixture
def paypal():
    return FakePayPal()


@pytest.fixture
async def processor(paypal, test_settings):
    client = paypal.client(test_settings)
    yield client
    await client.aclose()


@pytest.fixture
async def test_client(session_factory, processor, test_settings):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_processor():
        yield processor

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_processor] = override_get_processor
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _create_user(session_factory, username: str, role: UserRole) -> User:
    async with session_factory() as session:
        user = User(username=username, email=f"{username}@shop.test", password_hash=hash_password("secret-pass"), role=role)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
async def operator_user(session_factory):
    return await _create_user(session_factory, "operator", UserRole.OPERATOR)


@pytest.fixture
async def admin_user(session_factory):
    return await _create_user(session_factory, "admin", UserRole.ADMIN)


@pytest.fixture
def operator_headers(operator_user):
    token = create_access_token(str(operator_user.id), operator_user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user):
    token = create_access_token(str(admin_user.id), admin_user.role)
    return {"Authorization": f"Bearer {token}"}


def item_payload(product_id: int, unit_price: str, quantity: int, name=None, category_id=None) -> dict:
    return {
        "product_id": product_id,
        "quantity": quantity,
        "category_id": category_id,
        "product_snapshot": {
            "name": name or f"Handmade item {product_id}",
            "sku": f"SKU-{product_id}",
            "image_url": f"https://cdn.shop.test/{product_id}.jpg",
            "unit_price": unit_price,
        },
    }


@pytest.fixture
def make_item():
    return item_payload


@pytest.fixture
def valid_quotation_data():
    """1 @ $20 and 2 @ $15: $50 of goods"""
    return {
        "requester_name": "Ana Mora",
        "organization": "Escuela Central",
        "email": "ana@example.com",
        "phone": "+506 8888-1234",
        "notes": "Souvenirs for a school event",
        "items": [
            item_payload(1, "20.00", 1, "Painted mug", category_id=3),
            item_payload(2, "15.00", 2, "Woven bracelet", category_id=4),
        ],
    }


@pytest.fixture
def shipping_info():
    return {
        "name": "Ana Mora",
        "address": "Avenida 2, Calle 5",
        "city": "San José",
        "state": "San José",
        "postal_code": "10101",
        "phone": "+506 8888-1234",
    }


@pytest.fixture
def create_quotation_factory(test_client, valid_quotation_data):
    async def _create(**overrides):
        data = dict(valid_quotation_data)
        data.update(overrides)
        response = await test_client.post("/quotations/", json=data)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def sent_quotation_factory(test_client, create_quotation_factory, operator_headers):
    """A quotation released to the buyer: fixed $5 off, $7 shipping, $52 to pay"""
    async def _send(discount=None, shipping_cost="7.00", **overrides):
        created = await create_quotation_factory(**overrides)
        pricing = {
            "discount": discount if discount is not None else {"type": "fixed_amount", "value": "5"},
            "shipping_cost": shipping_cost,
        }
        response = await test_client.post(
            f"/quotations/{created['request_id']}/send",
            json=pricing,
            headers=operator_headers,
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _send


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "payments: marks tests related to processor orders and capture"
    )
    config.addinivalue_line(
        "markers", "discounts: marks tests related to discount computation"
    )
    config.addinivalue_line(
        "markers", "rate_limit: marks tests related to rate limiting"
    )
    config.addinivalue_line(
        "markers", "audit: marks tests related to audit logging"
    )
    config.addinivalue_line(
        "markers", "idempotency: marks tests related to idempotency"
    )
