from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.payments")

PROVIDER = "paystack"
SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS_EVENT = "charge.success"
REFUND_FAILED_STATUS = "failed"
