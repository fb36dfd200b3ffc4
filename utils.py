import logging
import secrets
import string
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
import structlog
from flask import jsonify

ORDER_CODE_PREFIX = 'ORD_'
JWT_ALGORITHM = 'HS256'

_BASE36 = string.digits + string.ascii_lowercase


def configure_logging(level: str = 'INFO') -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


def generate_order_code() -> str:
    """ORD_<epoch millis>_<9 random base36 chars>; collisions are not retried."""
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(9))
    return f"{ORDER_CODE_PREFIX}{int(time.time() * 1000)}_{suffix}"


def is_order_code(value: str) -> bool:
    return value.startswith(ORDER_CODE_PREFIX)


def _encode(claims: Dict[str, Any], secret: str, expires_in: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims, iat=now, exp=now + expires_in)
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def issue_access_token(user_id: int, secret: str, hours: int) -> str:
    return _encode({'id': user_id}, secret, timedelta(hours=hours))


def mint_payment_token(claims: Dict[str, Any], secret: str, minutes: int = 60) -> str:
    """Signed, short-lived token carrying the payment intent for the checkout page."""
    return _encode(dict(claims, typ='payment'), secret, timedelta(minutes=minutes))


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    # raises jwt.ExpiredSignatureError / jwt.InvalidTokenError
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


def bearer_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def success_response(data: Any = None, message: Optional[str] = None, status_code: int = 200):
    body: Dict[str, Any] = {'success': True}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return jsonify(body), status_code
