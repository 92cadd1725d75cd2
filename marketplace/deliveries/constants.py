from marketplace.common.logging_setup import get_logger
from marketplace.schema.lifecycle import DeliveryStatus

logger = get_logger("marketplace.deliveries")

ACTIVE_DELIVERY_STATUSES = (DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT)
