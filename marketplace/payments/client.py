import hashlib
import hmac
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional
import httpx
from marketplace.common.custom_exceptions import PaymentGatewayError
from marketplace.common.retries import retry_http
from marketplace.config.settings import config_settings
from marketplace.payments.constants import logger


def to_kobo(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def paystack_signature(secret_key: str, body: bytes) -> str:
    return hmac.new(secret_key.encode(), body, hashlib.sha512).hexdigest()


def verify_paystack_signature(secret_key: str, body: bytes, signature: Optional[str]) -> bool:
    if not secret_key or not signature:
        return False
    return hmac.compare_digest(paystack_signature(secret_key, body), signature)


class PaystackClient:
    """Thin async wrapper over the Paystack REST API.

    One instance lives on ``app.state.paystack`` for the lifetime of the app and shares
    a pooled ``httpx.AsyncClient``. Every failure surfaces as :class:`PaymentGatewayError`.
    """

    def __init__(self, secret_key: str, base_url: str, timeout: float = 25.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.secret_key = secret_key
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {secret_key}", "Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls) -> "PaystackClient":
        return cls(
            secret_key=config_settings.PAYSTACK_SECRET_KEY,
            base_url=config_settings.PAYSTACK_BASE_URL,
            timeout=config_settings.PAYSTACK_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        return verify_paystack_signature(self.secret_key, body, signature)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, path: str, *, label: str, json: Optional[dict] = None) -> Dict[str, Any]:
        if not self.configured:
            raise PaymentGatewayError("Payment gateway is not configured")

        try:
            resp = await retry_http(lambda: self._client.request(method, path, json=json), label=label)
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response) or f"Payment gateway returned {exc.response.status_code}"
            raise PaymentGatewayError(message, extra={"gatewayStatus": exc.response.status_code})
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Payment gateway unreachable: {exc.__class__.__name__}")

        try:
            body = resp.json()
        except ValueError:
            raise PaymentGatewayError("Payment gateway returned an invalid response")
        if not body.get("status"):
            raise PaymentGatewayError(body.get("message") or "Payment gateway rejected the request")
        return body.get("data") or {}

    async def initialize_transaction(self, email: str, amount: float, reference: str,
                                     metadata: Optional[dict] = None, callback_url: Optional[str] = None) -> Dict[str, Any]:
        payload = {"email": email, "amount": to_kobo(amount), "reference": reference, "metadata": metadata or {}}
        if callback_url:
            payload["callback_url"] = callback_url
        data = await self._call("POST", "/transaction/initialize", label="paystack.initialize", json=payload)
        logger.info("paystack.initialize.success", extra={"reference": reference})
        return data

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        data = await self._call("GET", f"/transaction/verify/{reference}", label="paystack.verify")
        logger.info("paystack.verify.success", extra={"reference": reference, "gateway_status": data.get("status")})
        return data

    async def refund(self, reference: str, amount: Optional[float] = None, customer_note: Optional[str] = None,
                     merchant_note: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"transaction": reference}
        if amount is not None:
            payload["amount"] = to_kobo(amount)
        if customer_note:
            payload["customer_note"] = customer_note
        if merchant_note:
            payload["merchant_note"] = merchant_note
        data = await self._call("POST", "/refund", label="paystack.refund", json=payload)
        logger.info("paystack.refund.success", extra={"reference": reference, "refund_status": data.get("status")})
        return data


def _error_message(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get("message") if isinstance(body, dict) else None
