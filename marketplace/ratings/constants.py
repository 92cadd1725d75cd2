from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.ratings")

MIN_RATING = 1
MAX_RATING = 5
REVIEWS_DEFAULT_LIMIT = 20

RATING_RANGE_MESSAGE = f"Rating must be between {MIN_RATING} and {MAX_RATING}"
DUPLICATE_REVIEW_MESSAGE = "Review already exists for this order"
DUPLICATE_RIDER_RATING_MESSAGE = "You have already rated this rider"
