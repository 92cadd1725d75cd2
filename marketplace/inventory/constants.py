from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.inventory")

LOW_STOCK_ALERT_INTERVAL_SECONDS = 3600
STOCK_HISTORY_LIMIT = 50
