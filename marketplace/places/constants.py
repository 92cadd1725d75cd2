from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.places")

COUNTRY_COMPONENT = "country:ng"
LOCATION_BIAS_RADIUS_M = 50000
MIN_INPUT_LENGTH = 2
DETAIL_FIELDS = "formatted_address,geometry,address_components"
OK_STATUSES = ("OK", "ZERO_RESULTS")
NOT_CONFIGURED_MESSAGE = "Places API not configured"
