from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.admin")

ROLE_LABELS = {"SELLER": "Seller", "RIDER": "Rider"}
REJECTION_REASON_REQUIRED = "Rejection reason is required"
