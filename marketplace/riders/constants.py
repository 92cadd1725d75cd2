from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.riders")

RIDER_DELIVERIES_LIMIT = 50
EARNINGS_CHART_DAYS = 30
EARNINGS_PERIODS = ("all", "today", "week", "month")
UNPAID_PICKUP_MESSAGE = "Order has not been paid"
