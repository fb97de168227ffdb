"""Order status state machine shared by restaurant and delivery endpoints."""

from enum import Enum

from .errors import NotFoundError, StateError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    CASH_ON_DELIVERY = "cash_on_delivery"


class Role(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY_PARTNER = "delivery_partner"
    ADMIN = "admin"


_PRE_PICKUP = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY}
)

# role -> target status -> statuses the order may currently be in
TRANSITIONS = {
    Role.RESTAURANT: {
        OrderStatus.CONFIRMED: frozenset({OrderStatus.PENDING}),
        OrderStatus.PREPARING: frozenset({OrderStatus.CONFIRMED}),
        OrderStatus.READY: frozenset({OrderStatus.PREPARING}),
        OrderStatus.CANCELLED: _PRE_PICKUP,
    },
    Role.DELIVERY_PARTNER: {
        OrderStatus.PICKED_UP: frozenset({OrderStatus.READY}),
        OrderStatus.IN_TRANSIT: frozenset({OrderStatus.PICKED_UP}),
        OrderStatus.DELIVERED: frozenset({OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT}),
    },
}


def allowed_targets(role: Role) -> frozenset:
    return frozenset(TRANSITIONS.get(Role(role), {}))


def parse_target(role: Role, requested: str) -> OrderStatus:
    """Resolve a requested status for an actor.

    Anything outside the actor's settable set is reported as not found so
    that actors cannot poke at statuses they have no business with.
    """
    try:
        target = OrderStatus(requested)
    except ValueError:
        raise NotFoundError("Invalid status") from None
    if target not in allowed_targets(role):
        raise NotFoundError("Invalid status")
    return target


def check_transition(role: Role, current: str, requested: str) -> OrderStatus:
    """Validate ``current -> requested`` for ``role`` and return the target."""
    target = parse_target(role, requested)
    source = OrderStatus(current)
    if source.is_terminal:
        raise StateError(f"Order is already {source.value}")
    if source not in TRANSITIONS[Role(role)][target]:
        raise StateError(f"Cannot move order from {source.value} to {target.value}")
    return target
