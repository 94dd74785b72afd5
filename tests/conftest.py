import os
from decimal import Decimal
from typing import Generator
from datetime import datetime, timedelta, timezone

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_PAYMEE_API_KEY = "paymee_test_key"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["PAYMEE_API_KEY"] = TEST_PAYMEE_API_KEY
os.environ["PAYMEE_ENV"] = "sandbox"
os.environ["PAYMEE_MODE"] = "dynamic"
os.environ["PAYMEE_WEBHOOK_URL"] = "https://shop.example.com/webhooks/paymee"
os.environ["PAYMEE_RETURN_URL"] = "https://shop.example.com/api/paymee/redirect/success"
os.environ["PAYMEE_CANCEL_URL"] = "https://shop.example.com/api/paymee/redirect/cancel"
os.environ["FRONTEND_URL"] = "https://shop.example.com"
os.environ["RECONCILIATION_ENABLED"] = "false"

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.dependencies import get_payment_gateway, get_session_factory
from app.main import app
from app.models.database import Base, get_db
from app.models.order import Order
from app.models.product import Product, ProductCombination
from app.models.user import User
from app.services.order_placement import CustomerContact, OrderLine, place_order
from app.services.paymee_service import PaymeeGateway

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Session factory bound to the test database, for background work and the sweeper."""
    return TestSessionLocal


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    yield TestClient(app)
    app.dependency_overrides.clear()


class PaymeeStub:
    """Records Paymee API calls and answers with a canned response."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token = "paymee_tok_123"
        self.status_code = 200
        self.body: dict | None = None
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        body = self.body
        if body is None:
            body = {
                "status": True,
                "message": "Success",
                "data": {
                    "token": self.token,
                    "payment_url": f"https://sandbox.paymee.tn/gateway/{self.token}",
                },
            }
        return httpx.Response(self.status_code, json=body)


@pytest.fixture
def paymee_stub() -> PaymeeStub:
    return PaymeeStub()


@pytest.fixture
def paymee_gateway(paymee_stub: PaymeeStub) -> PaymeeGateway:
    return PaymeeGateway(
        api_key=TEST_PAYMEE_API_KEY,
        webhook_url=settings.PAYMEE_WEBHOOK_URL,
        return_url=settings.PAYMEE_RETURN_URL,
        cancel_url=settings.PAYMEE_CANCEL_URL,
        mode="dynamic",
        environment="sandbox",
        app_env="test",
        http_client=httpx.Client(transport=httpx.MockTransport(paymee_stub.handler)),
    )


@pytest.fixture
def gateway_client(client: TestClient, paymee_gateway: PaymeeGateway) -> TestClient:
    """Test client whose Paymee calls go to the stub transport."""
    app.dependency_overrides[get_payment_gateway] = lambda: paymee_gateway
    return client


@pytest.fixture
def test_user(db: Session) -> User:
    """Create a test user."""
    user = User(email="test@example.com", display_name="Test User")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user2(db: Session) -> User:
    """Create a second test user."""
    user = User(email="test2@example.com", display_name="Test User 2")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_access_token(user: User, expires_in: timedelta = timedelta(hours=1)) -> str:
    return jwt.encode(
        {"sub": str(user.id), "type": "access", "exp": datetime.now(timezone.utc) + expires_in},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Get auth headers with token."""
    return {"Authorization": f"Bearer {make_access_token(test_user)}"}


@pytest.fixture
def test_product(db: Session) -> Product:
    """Simple product without variants, 10 units in stock."""
    product = Product(name="Ceramic Mug", price=Decimal("25.500"), available_quantity=10, in_stock=True)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def test_variant_product(db: Session) -> Product:
    """Product with two variants: red-M (3 units) and blue-L (2 units)."""
    product = Product(name="Linen Shirt", price=Decimal("89.000"), available_quantity=5, in_stock=True)
    db.add(product)
    db.flush()
    db.add_all(
        [
            ProductCombination(product_id=product.id, id="red-M", label="Red / M", stock=3, position=0),
            ProductCombination(product_id=product.id, id="blue-L", label="Blue / L", stock=2, position=1),
        ]
    )
    db.commit()
    db.refresh(product)
    return product


def create_order(
    db: Session,
    lines: list[OrderLine],
    email: str = "test@example.com",
    provider_payment_id: str | None = None,
    created_at: datetime | None = None,
) -> Order:
    """Place an order through the stock ledger and optionally attach a Paymee token."""
    order = place_order(
        db,
        lines,
        CustomerContact(name="Amira Ben Salah", email=email, phone="+21620000000"),
    )
    if provider_payment_id is not None or created_at is not None:
        if provider_payment_id is not None:
            order.provider_payment_id = provider_payment_id
            order.payment_method = "paymee_card"
        if created_at is not None:
            order.created_at = created_at
        db.commit()
        db.refresh(order)
    return order


@pytest.fixture
def pending_order(db: Session, test_product: Product) -> Order:
    """pending_payment order holding 2 units of test_product, with a Paymee token."""
    return create_order(
        db,
        [OrderLine(product_id=test_product.id, quantity=2)],
        provider_payment_id="paymee_tok_123",
    )


@pytest.fixture
def order_factory(db: Session):
    """create_order bound to the test session."""

    def factory(lines: list[OrderLine], **kwargs) -> Order:
        return create_order(db, lines, **kwargs)

    return factory


@pytest.fixture
def token_for():
    return make_access_token
