"""Status enums and the single transition table shared by every mutating endpoint.

Orders, payments, escrow and deliveries each move through a small state machine.
Handlers never compare statuses ad hoc: they ask :func:`ensure_transition` (or
:func:`can_transition` when a batch should skip rather than fail).
"""
import enum
from typing import Dict, FrozenSet, Hashable, Mapping

from marketplace.common.custom_exceptions import IllegalTransition


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PREPARING = "PREPARING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class EscrowStatus(str, enum.Enum):
    HELD = "HELD"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    DISPUTED = "DISPUTED"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


def _table(spec: Mapping[Hashable, tuple]) -> Dict[Hashable, FrozenSet]:
    return {state: frozenset(targets) for state, targets in spec.items()}


ORDER_TRANSITIONS = _table({
    OrderStatus.PENDING: (OrderStatus.PAID, OrderStatus.PREPARING, OrderStatus.CANCELLED),
    OrderStatus.PAID: (OrderStatus.PREPARING, OrderStatus.CANCELLED, OrderStatus.DISPUTED),
    OrderStatus.PREPARING: (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED, OrderStatus.DISPUTED),
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.DISPUTED),
    OrderStatus.DELIVERED: (OrderStatus.DISPUTED,),
    OrderStatus.DISPUTED: (OrderStatus.CANCELLED, OrderStatus.DELIVERED),
    OrderStatus.CANCELLED: (),
})

# what a seller may do by hand, one order or a batch
SELLER_ORDER_TRANSITIONS = _table({
    OrderStatus.PENDING: (OrderStatus.PREPARING,),
    OrderStatus.PAID: (OrderStatus.PREPARING,),
    OrderStatus.PREPARING: (OrderStatus.OUT_FOR_DELIVERY,),
})

PAYMENT_TRANSITIONS = _table({
    PaymentStatus.PENDING: (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
    PaymentStatus.FAILED: (PaymentStatus.COMPLETED,),
    PaymentStatus.COMPLETED: (PaymentStatus.RELEASED, PaymentStatus.REFUNDED),
    PaymentStatus.RELEASED: (),
    PaymentStatus.REFUNDED: (),
})

ESCROW_TRANSITIONS = _table({
    EscrowStatus.HELD: (EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.DISPUTED),
    EscrowStatus.DISPUTED: (EscrowStatus.RELEASED, EscrowStatus.REFUNDED),
    EscrowStatus.RELEASED: (),
    EscrowStatus.REFUNDED: (),
})

DELIVERY_TRANSITIONS = _table({
    DeliveryStatus.PENDING: (DeliveryStatus.ASSIGNED, DeliveryStatus.FAILED),
    DeliveryStatus.ASSIGNED: (DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED),
    DeliveryStatus.PICKED_UP: (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED, DeliveryStatus.FAILED),
    DeliveryStatus.IN_TRANSIT: (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED),
    DeliveryStatus.DELIVERED: (),
    DeliveryStatus.FAILED: (),
})

# statuses a rider can push a delivery into from the app
RIDER_DELIVERY_TARGETS = frozenset({
    DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED, DeliveryStatus.FAILED,
})

# order status that follows a delivery milestone
ORDER_STATUS_FOR_DELIVERY = {
    DeliveryStatus.PICKED_UP: OrderStatus.OUT_FOR_DELIVERY,
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
}

_TABLES = {
    "order": ORDER_TRANSITIONS,
    "seller_order": SELLER_ORDER_TRANSITIONS,
    "payment": PAYMENT_TRANSITIONS,
    "escrow": ESCROW_TRANSITIONS,
    "delivery": DELIVERY_TRANSITIONS,
}


def can_transition(kind: str, current, target) -> bool:
    table = _TABLES[kind]
    return target in table.get(current, frozenset())


def ensure_transition(kind: str, current, target) -> None:
    if not can_transition(kind, current, target):
        label = "order" if kind == "seller_order" else kind
        raise IllegalTransition(
            f"Cannot move {label} from {_value(current)} to {_value(target)}",
            extra={"current": _value(current), "target": _value(target)},
        )


def allowed_targets(kind: str, current) -> FrozenSet:
    return _TABLES[kind].get(current, frozenset())


def _value(status) -> str:
    return status.value if isinstance(status, enum.Enum) else str(status)
