import logging
from datetime import datetime, timezone
from typing import List, Tuple

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.orm import Session

from . import schemas
from .db import transaction
from .errors import ConflictError, NotFoundError, StateError
from .lifecycle import OrderStatus, Role, parse_target
from .models import Address, DeliveryPartner, Order, Restaurant, User, utcnow
from .orders import apply_transition, record_event
from .pricing import to_money

logger = logging.getLogger("marketplace.delivery")

AVAILABLE_ORDERS_LIMIT = 20


def _get_order(session: Session, order_id: int):
    return session.get(Order, order_id)


def _get_partner(session: Session, partner_id: int) -> DeliveryPartner:
    partner = session.get(DeliveryPartner, partner_id)
    if partner is None:
        raise NotFoundError("Delivery partner not found")
    return partner


def accept_order(session: Session, partner_id: int, order_id: int) -> Order:
    with transaction(session):
        order = _get_order(session, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.delivery_partner_id and order.delivery_partner_id != partner_id:
            raise ConflictError("Order already assigned to another partner")
        if order.status != OrderStatus.READY.value:
            raise StateError("Order is not ready for pickup")

        # The predicate is re-checked by the write itself; another partner
        # may have claimed the order since it was read above.
        claimed = session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.READY.value,
                or_(Order.delivery_partner_id.is_(None), Order.delivery_partner_id == partner_id),
            )
            .values(
                delivery_partner_id=partner_id,
                status=OrderStatus.PICKED_UP.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            raise ConflictError("Order already taken by another partner")

        record_event(
            session, order_id, Role.DELIVERY_PARTNER, partner_id,
            OrderStatus.READY.value, OrderStatus.PICKED_UP.value,
        )

    logger.info("Order %s accepted by delivery partner %s", order_id, partner_id)
    return session.get(Order, order_id, populate_existing=True)


def update_delivery_status(session: Session, partner_id: int, order_id: int,
                           payload: schemas.DeliveryStatusRequest) -> Order:
    target = parse_target(Role.DELIVERY_PARTNER, payload.status)

    order = _get_order(session, order_id)
    if order is None:
        raise NotFoundError("Order not found or not assigned to you")

    if (
        order.delivery_partner_id is None
        and target is OrderStatus.PICKED_UP
        and order.status == OrderStatus.READY.value
    ):
        order = accept_order(session, partner_id, order_id)
    else:
        with transaction(session):
            if order.delivery_partner_id != partner_id:
                raise NotFoundError("Order not found or not assigned to you")
            previous = order.status
            apply_transition(session, order, Role.DELIVERY_PARTNER, partner_id, payload.status)
        logger.info("Order %s moved %s -> %s by delivery partner %s",
                    order_id, previous, target.value, partner_id)
        order = session.get(Order, order_id, populate_existing=True)

    if payload.latitude is not None and payload.longitude is not None:
        with transaction(session):
            session.execute(
                update(DeliveryPartner)
                .where(DeliveryPartner.id == partner_id)
                .values(current_latitude=payload.latitude, current_longitude=payload.longitude)
                .execution_options(synchronize_session=False)
            )

    return order


def toggle_availability(session: Session, partner_id: int) -> schemas.AvailabilityRead:
    with transaction(session):
        result = session.execute(
            update(DeliveryPartner)
            .where(DeliveryPartner.id == partner_id)
            .values(is_available=~DeliveryPartner.is_available)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Delivery partner not found")

    partner = session.get(DeliveryPartner, partner_id, populate_existing=True)
    return schemas.AvailabilityRead(id=partner.id, name=partner.name, is_available=partner.is_available)


def _delivery_rows(session: Session, *conditions, order_by, limit=None, offset=0):
    stmt = (
        select(Order, Restaurant, Address, User.name)
        .join(Restaurant, Restaurant.id == Order.restaurant_id)
        .join(User, User.id == Order.customer_id)
        .outerjoin(Address, Address.id == Order.delivery_address_id)
        .where(*conditions)
        .order_by(*order_by)
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    rows = []
    for order, restaurant, address, customer_name in session.execute(stmt):
        rows.append(
            schemas.DeliveryOrderRead(
                id=order.id,
                status=order.status,
                total_amount=order.total_amount,
                delivery_fee=order.delivery_fee,
                created_at=order.created_at,
                actual_delivery_time=order.actual_delivery_time,
                restaurant_name=restaurant.name,
                restaurant_address=restaurant.address,
                delivery_address=", ".join(p for p in (address.address_line1, address.city) if p)
                if address else None,
                customer_name=customer_name,
            )
        )
    return rows


def available_orders(session: Session, partner_id: int) -> Tuple[List[schemas.DeliveryOrderRead], str]:
    partner = _get_partner(session, partner_id)
    if not partner.is_available:
        return [], "You are offline. Go online to see available orders."

    rows = _delivery_rows(
        session,
        Order.status == OrderStatus.READY.value,
        or_(Order.delivery_partner_id.is_(None), Order.delivery_partner_id == partner_id),
        order_by=(Order.created_at.asc(), Order.id.asc()),
        limit=AVAILABLE_ORDERS_LIMIT,
    )
    return rows, None


def my_deliveries(session: Session, partner_id: int) -> List[schemas.DeliveryOrderRead]:
    return _delivery_rows(
        session,
        Order.delivery_partner_id == partner_id,
        Order.status.in_([OrderStatus.PICKED_UP.value, OrderStatus.IN_TRANSIT.value]),
        order_by=(Order.created_at.desc(), Order.id.desc()),
    )


def delivery_history(session: Session, partner_id: int, limit: int = 50,
                     offset: int = 0) -> List[schemas.DeliveryOrderRead]:
    return _delivery_rows(
        session,
        Order.delivery_partner_id == partner_id,
        Order.status == OrderStatus.DELIVERED.value,
        order_by=(Order.actual_delivery_time.desc(), Order.id.desc()),
        limit=limit,
        offset=offset,
    )


def partner_stats(session: Session, partner_id: int, now: datetime = None) -> schemas.PartnerStats:
    now = now or datetime.now(timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    delivered = Order.status == OrderStatus.DELIVERED.value

    total, completed, earnings = session.execute(
        select(
            func.count(Order.id),
            func.count(case((delivered, 1))),
            func.sum(case((delivered, Order.delivery_fee), else_=0)),
        ).where(Order.delivery_partner_id == partner_id)
    ).one()

    today_count, today_earnings = session.execute(
        select(func.count(Order.id), func.sum(Order.delivery_fee)).where(
            Order.delivery_partner_id == partner_id,
            delivered,
            Order.actual_delivery_time >= start_of_day,
        )
    ).one()

    return schemas.PartnerStats(
        total_deliveries=total,
        completed_deliveries=completed,
        total_earnings=to_money(earnings or 0),
        today_deliveries=today_count,
        today_earnings=to_money(today_earnings or 0),
    )
