from marketplace.common.logging_setup import get_logger
from marketplace.schema.lifecycle import OrderStatus

logger = get_logger("marketplace.orders")

ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_SUFFIX_LENGTH = 6
ORDER_NUMBER_ATTEMPTS = 5

# a buyer may cancel anything not listed here; a seller additionally loses OUT_FOR_DELIVERY
NON_CANCELLABLE = {
    OrderStatus.CANCELLED: "Order is already cancelled",
    OrderStatus.DELIVERED: "Cannot cancel a delivered order",
    OrderStatus.DISPUTED: "Cannot cancel an order that is in dispute. Please resolve the dispute first.",
}
SELLER_OUT_FOR_DELIVERY_MESSAGE = "Cannot cancel an order that is already out for delivery. Please contact support."
