import os
import tempfile

# Point the service at a throwaway database before the app module builds its engine.
_fd, TEST_DB_PATH = tempfile.mkstemp(suffix=".db")
os.close(_fd)
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test-gateway-secret"

import contextlib
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from marketplace import db, payments
from marketplace.auth import create_access_token
from marketplace.errors import GatewayError
from marketplace.main import app
from marketplace.models import (
    Address,
    Base,
    DeliveryPartner,
    MenuItem,
    Order,
    OrderItem,
    Restaurant,
    User,
)

GATEWAY_SECRET = "test-gateway-secret"


def pytest_sessionfinish(session, exitstatus):
    db.engine.dispose()
    with contextlib.suppress(OSError):
        os.remove(TEST_DB_PATH)


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=db.engine)
    db.init_db()
    yield


@pytest.fixture()
def session():
    s = db.SessionLocal()
    try:
        yield s
    finally:
        s.close()


class FakeGateway:
    """Stands in for the Razorpay client; records every order it is asked to create.

    ``key_secret`` is also served as the callback-verification secret.
    """

    def __init__(self, key_id="rzp_test_key", key_secret=GATEWAY_SECRET):
        self.key_id = key_id
        self.key_secret = key_secret
        self.created = []
        self.fail_with = None

    def create_order(self, amount, currency, receipt, notes):
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        return {"id": f"order_rzp_{receipt}", "amount": amount, "currency": currency, "status": "created"}

    def time_out(self):
        self.fail_with = GatewayError("Payment gateway timed out, please retry")


@pytest.fixture()
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[payments.get_gateway] = lambda: fake
    app.dependency_overrides[payments.get_key_secret] = lambda: fake.key_secret
    yield fake
    app.dependency_overrides.pop(payments.get_gateway, None)
    app.dependency_overrides.pop(payments.get_key_secret, None)


@pytest.fixture()
def client(gateway):
    with TestClient(app) as c:
        yield c


def token_headers(user_id, role, name="Test", email=None):
    token = create_access_token(user_id, role, name=name, email=email or f"{role}{user_id}@example.com")
    return {"Authorization": f"Bearer {token}"}


# ---------- Seeding helpers ----------

@pytest.fixture()
def seed(session):
    """Two customers, two restaurants with menus, two delivery partners."""
    customer = User(name="Asha", email="asha@example.com", phone="9876543210", role="customer")
    other_customer = User(name="Ravi", email="ravi@example.com", phone="9876500000", role="customer")
    session.add_all([customer, other_customer])
    session.flush()

    address = Address(user_id=customer.id, address_line1="12 MG Road", city="Bengaluru", pincode="560001")
    other_address = Address(user_id=other_customer.id, address_line1="4 Park St", city="Kolkata")

    restaurant = Restaurant(name="Spice Route", email="spice@example.com", address="1 Food Lane",
                            city="Bengaluru", cuisine_type="North Indian")
    other_restaurant = Restaurant(name="Dosa Corner", email="dosa@example.com", address="2 Idli St",
                                  city="Chennai", cuisine_type="South Indian")
    session.add_all([address, other_address, restaurant, other_restaurant])
    session.flush()

    biryani = MenuItem(restaurant_id=restaurant.id, name="Biryani", price=Decimal("200.00"), category="mains")
    paneer = MenuItem(restaurant_id=restaurant.id, name="Paneer Tikka", price=Decimal("100.00"), category="starters")
    kulfi = MenuItem(restaurant_id=restaurant.id, name="Kulfi", price=Decimal("60.00"), is_available=False)
    masala_dosa = MenuItem(restaurant_id=other_restaurant.id, name="Masala Dosa", price=Decimal("80.00"))

    partner = DeliveryPartner(name="Kiran", email="kiran@example.com", is_active=True, is_available=True)
    other_partner = DeliveryPartner(name="Meena", email="meena@example.com", is_active=True, is_available=True)
    session.add_all([biryani, paneer, kulfi, masala_dosa, partner, other_partner])
    session.commit()

    return SimpleNamespace(
        customer_id=customer.id,
        other_customer_id=other_customer.id,
        address_id=address.id,
        other_address_id=other_address.id,
        restaurant_id=restaurant.id,
        other_restaurant_id=other_restaurant.id,
        biryani_id=biryani.id,
        paneer_id=paneer.id,
        kulfi_id=kulfi.id,
        masala_dosa_id=masala_dosa.id,
        partner_id=partner.id,
        other_partner_id=other_partner.id,
    )


@pytest.fixture()
def customer_headers(seed):
    return token_headers(seed.customer_id, "customer", name="Asha")


@pytest.fixture()
def restaurant_headers(seed):
    return token_headers(seed.restaurant_id, "restaurant", name="Spice Route")


@pytest.fixture()
def partner_headers(seed):
    return token_headers(seed.partner_id, "delivery_partner", name="Kiran")


@pytest.fixture()
def other_partner_headers(seed):
    return token_headers(seed.other_partner_id, "delivery_partner", name="Meena")


@pytest.fixture()
def make_order(session, seed):
    """Insert an order directly in a given state, bypassing the API."""

    def _make(status="pending", payment_status="pending", partner_id=None, customer_id=None,
              payment_method="online"):
        order = Order(
            customer_id=customer_id or seed.customer_id,
            restaurant_id=seed.restaurant_id,
            delivery_partner_id=partner_id,
            delivery_address_id=seed.address_id,
            status=status,
            payment_status=payment_status,
            payment_method=payment_method,
            subtotal=Decimal("500.00"),
            delivery_fee=Decimal("40.00"),
            tax=Decimal("25.00"),
            total_amount=Decimal("565.00"),
        )
        session.add(order)
        session.flush()
        session.add(OrderItem(order_id=order.id, menu_item_id=seed.biryani_id, item_name="Biryani",
                              price=Decimal("200.00"), quantity=2))
        session.add(OrderItem(order_id=order.id, menu_item_id=seed.paneer_id, item_name="Paneer Tikka",
                              price=Decimal("100.00"), quantity=1))
        session.commit()
        return order.id

    return _make


@pytest.fixture()
def headers_for():
    return token_headers
