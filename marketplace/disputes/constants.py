from marketplace.common.logging_setup import get_logger
from marketplace.schema.full_schema import DisputeStatus

logger = get_logger("marketplace.disputes")

CLOSED_DISPUTE_STATUSES = (DisputeStatus.RESOLVED, DisputeStatus.CLOSED)
OPEN_DISPUTE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.IN_REVIEW)
