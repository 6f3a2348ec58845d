"""
Shared fixtures.

Provides:
- db: a session on a fresh in-memory SQLite database per test
- gateway: a Razorpay client whose HTTP calls hit an in-process mock
- client: TestClient with get_db and the payment gateway overridden
- customer / admin (+ *_headers): seeded users and bearer headers
- make_product: builds a product through the repository
"""
import json
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"
os.environ["WEBHOOK_API_KEY"] = "msg91-test-key"
os.environ["GEMINI_API_KEY"] = ""

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.security import create_session_token, hash_password
from storefront.main import app
from storefront.models import Address, Base, Category, User, UserRole, get_db
from storefront.repositories.products import ProductRepository
from storefront.schemas.products import ProductCreate
from storefront.services.gateway import RazorpayClient, get_payment_gateway

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "Str0ngP@ss!"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


class MockRazorpay:
    """In-process stand-in for the Razorpay REST API."""

    def __init__(self):
        self.requests = []
        self.orders = {}
        self.payment_status = "captured"
        self.payment_order_id = None
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"description": "Gateway says no"}})

        path = request.url.path
        if request.method == "POST" and path.endswith("/orders"):
            payload = json.loads(request.content)
            order_id = f"order_TEST{len(self.orders) + 1}"
            self.orders[order_id] = payload
            return httpx.Response(200, json={"id": order_id, "status": "created", **payload})
        if request.method == "GET" and "/payments/" in path:
            return httpx.Response(200, json={
                "id": path.rsplit("/", 1)[-1],
                "order_id": self.payment_order_id or self.last_order_id,
                "status": self.payment_status,
            })
        if request.method == "GET" and "/orders/" in path:
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "status": "paid"})
        return httpx.Response(404, json={"error": {"description": "Not found"}})

    @property
    def last_order_id(self):
        return list(self.orders)[-1] if self.orders else None


@pytest.fixture
def razorpay():
    return MockRazorpay()


@pytest.fixture
def gateway(razorpay):
    return RazorpayClient(
        key_id="rzp_test_key",
        key_secret="rzp_test_secret",
        webhook_secret="whsec_test",
        transport=httpx.MockTransport(razorpay),
    )


@pytest.fixture
def client(db, gateway):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email, role=UserRole.CUSTOMER, name="Test User", is_active=True, phone=None):
    user = User(
        name=name,
        email=email,
        phone=phone,
        role=role,
        is_active=is_active,
        password_hash=hash_password(PASSWORD),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_session_token(user.id, user.email, user.role.value)}"}


@pytest.fixture
def customer(db):
    return make_user(db, "customer@example.com", name="Asha Customer")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role=UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def address(db, customer):
    address = Address(
        user_id=customer.id,
        name="Asha Customer",
        street="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        zip="560001",
        phone="+919999999999",
        is_default=True,
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


@pytest.fixture
def category(db):
    category = Category(name="Menswear", slug="menswear")
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def product_payload(**overrides):
    payload = {
        "name": "Classic Hoodie",
        "description": "A heavyweight cotton hoodie.",
        "base_price": 50.0,
        "status": "live",
        "images": ["https://cdn.example.com/hoodie-front.jpg", "https://cdn.example.com/hoodie-back.jpg"],
        "variants": [
            {"color": "Black", "size": "M", "stock": 10},
            {"color": "Navy Blue", "size": "L", "stock": 3, "price_override": 55.0},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        return ProductRepository(db).create_product(ProductCreate(**product_payload(**overrides)))
    return _make
