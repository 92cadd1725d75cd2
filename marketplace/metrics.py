from prometheus_fastapi_instrumentator import Instrumentator

instrumentator = Instrumentator(
    should_ignore_untemplated=True,      # /orders/123 -> /orders/{order_id}
    excluded_handlers=["/metrics"],
    should_instrument_requests_inprogress=True,
    should_group_status_codes=False,
)
