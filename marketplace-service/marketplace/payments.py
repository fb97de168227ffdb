"""Payment settlement against a Razorpay-compatible gateway.

The flow has two halves. ``create_payment_intent`` asks the gateway for a
remote order sized in paise; the customer then pays in the gateway's
checkout. ``verify_payment`` checks the callback signature the checkout
hands back and, when it is genuine, marks the order paid and appends the
transaction record.

The gateway client (``get_gateway``) and the callback secret
(``get_key_secret``) are injected separately, so verifying a callback
never opens a connection and tests can swap in a fake gateway.
"""

import hashlib
import hmac
import logging
from typing import Optional, Protocol

import httpx
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, schemas
from .db import transaction
from .errors import ConflictError, GatewayError, NotFoundError, SignatureError, StateError
from .lifecycle import OrderStatus, PaymentMethod, PaymentStatus, Role
from .models import Order, Transaction, utcnow
from .orders import record_event
from .pricing import to_minor_units

logger = logging.getLogger("marketplace.payments")

GATEWAY_METHOD = "razorpay"


class PaymentGateway(Protocol):
    key_id: str

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        ...


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, base_url: str = None,
                 timeout: float = None, transport: Optional[httpx.BaseTransport] = None):
        self.key_id = key_id
        self._client = httpx.Client(
            base_url=base_url or config.RAZORPAY_BASE_URL,
            auth=(key_id, key_secret),
            timeout=timeout if timeout is not None else config.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        body = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        try:
            r = self._client.post("/v1/orders", json=body)
        except httpx.TimeoutException:
            logger.warning("Payment gateway timed out creating order for receipt %s", receipt)
            raise GatewayError("Payment gateway timed out, please retry") from None
        except httpx.HTTPError as e:
            logger.warning("Payment gateway unreachable: %s", type(e).__name__)
            raise GatewayError("Payment gateway unavailable") from None

        if r.status_code >= 400:
            logger.warning("Payment gateway rejected order for receipt %s (HTTP %s)", receipt, r.status_code)
            raise GatewayError("Failed to create payment order")
        return r.json()

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def get_gateway():
    with RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET) as gateway:
        yield gateway


def get_key_secret() -> str:
    """Secret used to check checkout callbacks; no gateway client is needed for that."""
    return config.RAZORPAY_KEY_SECRET


def expected_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, gateway_order_id: str, gateway_payment_id: str,
                     signature: str) -> bool:
    if not secret or not signature:
        return False
    expected = expected_signature(secret, gateway_order_id, gateway_payment_id)
    return hmac.compare_digest(expected.encode(), signature.encode())


def create_payment_intent(session: Session, gateway: PaymentGateway, customer_id: int,
                          order_id: int) -> schemas.PaymentIntentRead:
    order = session.scalar(select(Order).where(Order.id == order_id, Order.customer_id == customer_id))
    if order is None:
        raise NotFoundError("Order not found")
    if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
        raise StateError("Cash on delivery orders are paid on delivery")
    if order.payment_status == PaymentStatus.SUCCESS.value:
        raise StateError("Order is already paid")
    if order.status != OrderStatus.PENDING.value:
        raise StateError("Order is not in pending state")

    remote = gateway.create_order(
        amount=to_minor_units(order.total_amount),
        currency=config.PAYMENT_CURRENCY,
        receipt=str(order.id),
        notes={"order_id": str(order.id), "customer_id": str(customer_id)},
    )
    logger.info("Payment intent %s created for order %s", remote["id"], order.id)

    return schemas.PaymentIntentRead(
        razorpay_order_id=remote["id"],
        amount=remote["amount"],
        currency=remote["currency"],
        key_id=gateway.key_id,
    )


def verify_payment(session: Session, key_secret: str, customer_id: int,
                   payload: schemas.PaymentVerifyRequest) -> schemas.PaymentConfirmation:
    """Record a captured payment once its callback signature checks out.

    A paid order that is still ``pending`` becomes ``confirmed``; an order
    the restaurant has already moved along keeps its status. Only
    cancelled orders refuse the payment.
    """
    if not verify_signature(key_secret, payload.razorpay_order_id,
                            payload.razorpay_payment_id, payload.razorpay_signature):
        logger.warning("Payment signature mismatch for order %s", payload.order_id)
        raise SignatureError()

    with transaction(session):
        order = session.scalar(
            select(Order).where(Order.id == payload.order_id, Order.customer_id == customer_id)
        )
        if order is None:
            raise NotFoundError("Order not found")

        if order.payment_status == PaymentStatus.SUCCESS.value:
            logger.info("Payment for order %s already verified", order.id)
            return schemas.PaymentConfirmation(
                order_id=order.id,
                payment_status=order.payment_status,
                order_status=order.status,
                already_verified=True,
            )

        previous = order.status
        result = session.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status != PaymentStatus.SUCCESS.value,
                Order.status != OrderStatus.CANCELLED.value,
            )
            .values(
                payment_status=PaymentStatus.SUCCESS.value,
                status=case(
                    (Order.status == OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value),
                    else_=Order.status,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StateError("Order can no longer be paid")

        session.add(
            Transaction(
                order_id=order.id,
                amount=order.total_amount,
                payment_method=GATEWAY_METHOD,
                payment_gateway_id=payload.razorpay_payment_id,
                status=PaymentStatus.SUCCESS.value,
            )
        )
        try:
            session.flush()
        except IntegrityError:
            raise ConflictError("Payment already recorded for this order") from None

        current = session.scalar(select(Order.status).where(Order.id == order.id))
        if current != previous:
            record_event(session, order.id, Role.CUSTOMER, customer_id, previous, current)

    logger.info("Payment %s verified for order %s", payload.razorpay_payment_id, order.id)
    return schemas.PaymentConfirmation(
        order_id=order.id,
        payment_status=PaymentStatus.SUCCESS.value,
        order_status=current,
    )
