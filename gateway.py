import hashlib
import hmac
from typing import Any, Dict, Optional

import razorpay
import requests
import structlog
from razorpay.errors import BadRequestError, ServerError
from razorpay.errors import GatewayError as RazorpayGatewayError
from requests.adapters import HTTPAdapter

from errors import GatewayError

logger = structlog.get_logger().bind(component="gateway")

GATEWAY_NAME = 'razorpay'

# Everything the SDK or the transport raises for a failed call
GATEWAY_FAILURES = (BadRequestError, ServerError, RazorpayGatewayError, requests.RequestException)


class TimeoutHTTPAdapter(HTTPAdapter):
    """Applies a default timeout to every request sent through the session."""

    def __init__(self, *args, timeout: float = 10, **kwargs):
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):
        if kwargs.get('timeout') is None:
            kwargs['timeout'] = self.timeout
        return super().send(request, **kwargs)


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_minor_units(amount: int) -> float:
    return amount / 100


class RazorpayGateway:
    """Thin wrapper over the Razorpay SDK for the two calls the payment flow needs."""

    name = GATEWAY_NAME

    def __init__(self, key_id: str, key_secret: str, timeout: float = 10):
        self.key_id = key_id
        self.key_secret = key_secret
        self.session = requests.Session()
        adapter = TimeoutHTTPAdapter(timeout=timeout)
        self.session.mount('https://', adapter)
        self.session.mount('http://', adapter)
        self.client = razorpay.Client(session=self.session, auth=(key_id, key_secret))

    @classmethod
    def from_config(cls, config) -> 'RazorpayGateway':
        return cls(
            config['RAZORPAY_KEY_ID'],
            config['RAZORPAY_KEY_SECRET'],
            timeout=config.get('GATEWAY_TIMEOUT_SECONDS', 10),
        )

    def create_order(self, amount: float, currency: str, receipt: str,
                     notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create Razorpay order using Orders API.
        ``amount`` is in major units; Razorpay expects paise/cents.
        """
        order_data = {
            'amount': to_minor_units(amount),
            'currency': currency,
            'receipt': receipt,
            'payment_capture': 1,  # auto-capture
            'notes': notes or {},
        }
        try:
            order = self.client.order.create(data=order_data)
        except GATEWAY_FAILURES as e:
            logger.error("gateway_error", operation="create_order", receipt=receipt, error=str(e))
            raise GatewayError(f"Razorpay order error: {e}") from e
        logger.info("gateway_order_created", gateway_order_id=order.get('id'), receipt=receipt)
        return order

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        try:
            return self.client.payment.fetch(payment_id)
        except GATEWAY_FAILURES as e:
            logger.error("gateway_error", operation="fetch_payment", payment_id=payment_id, error=str(e))
            raise GatewayError(f"Razorpay payment fetch error: {e}") from e

    def close(self) -> None:
        self.session.close()


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Signature Razorpay Checkout returns: HMAC-SHA256 over ``order_id|payment_id``."""
    body = f"{order_id}|{payment_id}".encode('utf-8')
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode('utf-8'), (signature or '').encode('utf-8'))


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify Razorpay webhook signature."""
    expected = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode('utf-8'), (signature or '').encode('utf-8'))
