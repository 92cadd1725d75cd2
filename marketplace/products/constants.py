from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.products")

PRICING_UNITS_PER_LISTING = 5

CSV_HEADER = ["Name", "Description", "Category", "Images", "Unit", "Price", "Stock", "LowStockThreshold", "IsAvailable"]
CSV_REQUIRED_COLUMNS = ("Name", "Unit", "Price")
CSV_MAX_BYTES = 2 * 1024 * 1024
