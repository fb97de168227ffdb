import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select, true, update
from sqlalchemy.orm import Session

from . import schemas
from .db import transaction
from .errors import (
    AvailabilityError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from .lifecycle import OrderStatus, PaymentStatus, Role, check_transition, parse_target
from .models import Address, MenuItem, Order, OrderEvent, OrderItem, Restaurant, User, utcnow
from .pricing import price_lines

logger = logging.getLogger("marketplace.orders")


def record_event(session: Session, order_id: int, role: Role, actor_id: Optional[int],
                 from_status: Optional[str], to_status: str):
    session.add(
        OrderEvent(
            order_id=order_id,
            actor_role=Role(role).value,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
        )
    )


def apply_transition(session: Session, order: Order, role: Role, actor_id: int,
                     requested: str) -> OrderStatus:
    """Move ``order`` to ``requested`` if ``role`` may do so from its current status.

    The write is conditional on the status the caller read, so a concurrent
    change between the read and the write surfaces as a conflict instead of
    being overwritten.
    """
    current = order.status
    target = check_transition(role, current, requested)

    values = {"status": target.value, "updated_at": utcnow()}
    if target is OrderStatus.DELIVERED:
        values["actual_delivery_time"] = utcnow()

    conditions = [Order.id == order.id, Order.status == current]
    if Role(role) is Role.DELIVERY_PARTNER:
        conditions.append(Order.delivery_partner_id == actor_id)
    elif Role(role) is Role.RESTAURANT:
        conditions.append(Order.restaurant_id == actor_id)

    result = session.execute(
        update(Order).where(*conditions).values(**values).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Order was updated by someone else, please reload")

    record_event(session, order.id, role, actor_id, current, target.value)
    return target


# ----- Create -----

def create_order(session: Session, customer_id: int,
                 payload: schemas.CreateOrderRequest) -> schemas.OrderCreated:
    if not payload.restaurant_id or not payload.items:
        raise ValidationError("Restaurant and items are required")

    with transaction(session):
        if payload.delivery_address_id is not None:
            owner = session.scalar(
                select(Address.user_id).where(Address.id == payload.delivery_address_id)
            )
            if owner != customer_id:
                raise ValidationError("Invalid delivery address")

        requested_ids = {it.menu_item_id for it in payload.items}
        menu = session.scalars(select(MenuItem).where(MenuItem.id.in_(requested_ids))).all()
        if len(menu) != len(requested_ids):
            raise NotFoundError("Some menu items not found")

        if any(m.restaurant_id != payload.restaurant_id for m in menu):
            raise ConsistencyError("All items must be from the same restaurant")

        unavailable = [m.name for m in menu if not m.is_available]
        if unavailable:
            raise AvailabilityError(unavailable)

        by_id = {m.id: m for m in menu}
        breakdown = price_lines((by_id[it.menu_item_id].price, it.quantity) for it in payload.items)
        stored = breakdown.stored()

        order = Order(
            customer_id=customer_id,
            restaurant_id=payload.restaurant_id,
            delivery_address_id=payload.delivery_address_id,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payload.payment_method.value,
            special_instructions=payload.special_instructions,
            **stored,
        )
        session.add(order)
        session.flush()  # get order.id

        lines = []
        for it in payload.items:
            item = by_id[it.menu_item_id]
            line = OrderItem(
                order_id=order.id,
                menu_item_id=item.id,
                item_name=item.name,
                price=item.price,
                quantity=it.quantity,
            )
            session.add(line)
            lines.append(line)

        record_event(session, order.id, Role.CUSTOMER, customer_id, None, OrderStatus.PENDING.value)

    logger.info("Order %s created pending payment, total %s", order.id, stored["total_amount"])

    return schemas.OrderCreated(
        order_id=order.id,
        total_amount=stored["total_amount"],
        status=order.status,
        items=[schemas.OrderItemRead.model_validate(line) for line in lines],
        breakdown=schemas.PriceBreakdownRead(
            subtotal=stored["subtotal"],
            delivery_fee=stored["delivery_fee"],
            tax=stored["tax"],
            total=stored["total_amount"],
        ),
    )


# ----- Restaurant status updates -----

def update_order_status(session: Session, restaurant_id: int, order_id: int,
                        requested: str) -> Order:
    parse_target(Role.RESTAURANT, requested)

    with transaction(session):
        order = session.scalar(
            select(Order).where(Order.id == order_id, Order.restaurant_id == restaurant_id)
        )
        if order is None:
            raise NotFoundError("Order not found")
        previous = order.status
        target = apply_transition(session, order, Role.RESTAURANT, restaurant_id, requested)

    session.refresh(order)
    logger.info("Order %s moved %s -> %s by restaurant %s", order.id, previous, target.value, restaurant_id)
    return order


# ----- Read models -----

def _format_address(address: Optional[Address]) -> Optional[str]:
    if address is None:
        return None
    parts = [address.address_line1, address.address_line2, address.city, address.pincode]
    return ", ".join(p for p in parts if p)


def get_order_detail(session: Session, user, order_id: int) -> schemas.OrderDetail:
    stmt = select(Order).where(Order.id == order_id)
    role = Role(user.role)
    if role is Role.CUSTOMER:
        stmt = stmt.where(Order.customer_id == user.id)
    elif role is Role.RESTAURANT:
        stmt = stmt.where(Order.restaurant_id == user.id)
    elif role is Role.DELIVERY_PARTNER:
        stmt = stmt.where(
            (Order.delivery_partner_id == user.id)
            | ((Order.delivery_partner_id.is_(None)) & (Order.status == OrderStatus.READY.value))
        )

    order = session.scalar(stmt)
    if order is None:
        raise NotFoundError("Order not found")

    return schemas.OrderDetail(
        order=schemas.OrderRead.model_validate(order),
        items=[schemas.OrderItemRead.model_validate(i) for i in order.items],
        restaurant_name=order.restaurant.name if order.restaurant else None,
        customer_name=order.customer.name if order.customer else None,
        delivery_address=_format_address(order.address),
    )


def _summaries(session: Session, *conditions, status: Optional[str] = None,
               limit: int = 20, offset: int = 0) -> List[schemas.OrderSummary]:
    stmt = (
        select(Order, Restaurant.name, User.name, func.count(OrderItem.id))
        .join(Restaurant, Restaurant.id == Order.restaurant_id)
        .join(User, User.id == Order.customer_id)
        .outerjoin(OrderItem, OrderItem.order_id == Order.id)
        .where(*conditions)
        .group_by(Order.id, Restaurant.name, User.name)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if status:
        stmt = stmt.where(Order.status == status)

    return [
        schemas.OrderSummary(
            id=order.id,
            restaurant_id=order.restaurant_id,
            restaurant_name=restaurant_name,
            customer_name=customer_name,
            status=order.status,
            payment_status=order.payment_status,
            total_amount=order.total_amount,
            items_count=items_count,
            created_at=order.created_at,
        )
        for order, restaurant_name, customer_name, items_count in session.execute(stmt)
    ]


def list_customer_orders(session: Session, customer_id: int, status: Optional[str] = None,
                         limit: int = 20, offset: int = 0):
    return _summaries(session, Order.customer_id == customer_id, status=status, limit=limit, offset=offset)


def list_restaurant_orders(session: Session, restaurant_id: int, status: Optional[str] = None,
                           limit: int = 50, offset: int = 0):
    return _summaries(session, Order.restaurant_id == restaurant_id, status=status, limit=limit, offset=offset)


def list_all_orders(session: Session, status: Optional[str] = None, limit: int = 50,
                    offset: int = 0) -> Tuple[List[schemas.OrderSummary], int]:
    rows = _summaries(session, true(), status=status, limit=limit, offset=offset)
    return rows, session.scalar(select(func.count(Order.id)))
