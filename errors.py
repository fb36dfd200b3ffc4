"""Error taxonomy and the JSON error envelope.

Controllers raise these; ``register_error_handlers`` turns them (and the
library errors that reach the top of a request) into
``{"success": false, "message": ..., "errors": [...]}`` responses.
"""
import re
from typing import Any, Dict, List, Optional

import jwt
import structlog
from flask import Flask, jsonify, request
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from models import db

logger = structlog.get_logger().bind(component="errors")


class APIError(Exception):
    status_code = 500
    message = 'Internal server error'

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.errors = errors


class ValidationFailed(APIError):
    status_code = 400
    message = 'Validation failed'


class SignatureError(APIError):
    status_code = 400
    message = 'Invalid payment signature'


class DuplicateError(APIError):
    status_code = 400
    message = 'Resource already exists'


class AuthenticationError(APIError):
    status_code = 401
    message = 'Authentication required'


class AuthorizationError(APIError):
    status_code = 403
    message = 'Access denied'


class NotFoundError(APIError):
    status_code = 404
    message = 'Not found'


class GatewayError(APIError):
    """The payment gateway could not be reached or rejected the call."""
    status_code = 500
    message = 'Payment gateway error'


class PersistenceError(APIError):
    status_code = 500
    message = 'Database error'


def error_response(status_code: int, message: str, errors: Optional[List[Any]] = None, **extra):
    body: Dict[str, Any] = {'success': False, 'message': message}
    if errors:
        body['errors'] = errors
    body.update(extra)
    return jsonify(body), status_code


def validation_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten pydantic errors into ``{field, message}`` pairs."""
    return [
        {'field': '.'.join(str(part) for part in err['loc']), 'message': err['msg']}
        for err in exc.errors()
    ]


_UNIQUE_FIELD = re.compile(r'(?:UNIQUE constraint failed: \w+\.(\w+))|(?:Key \((\w+)\)=)')


def duplicate_field(exc: IntegrityError) -> Optional[str]:
    match = _UNIQUE_FIELD.search(str(exc.orig))
    if not match:
        return None
    return match.group(1) or match.group(2)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(APIError)
    def handle_api_error(exc: APIError):
        return error_response(exc.status_code, exc.message, exc.errors)

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return error_response(400, 'Validation failed', validation_errors(exc))

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc: IntegrityError):
        db.session.rollback()
        field = duplicate_field(exc)
        if field:
            return error_response(400, f'{field} already exists')
        logger.warning("integrity_error", error=str(exc.orig))
        return error_response(400, 'Invalid data')

    @app.errorhandler(jwt.ExpiredSignatureError)
    def handle_expired_token(exc):
        return error_response(401, 'Token has expired')

    @app.errorhandler(jwt.InvalidTokenError)
    def handle_invalid_token(exc):
        return error_response(401, 'Invalid token')

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        if exc.code == 404:
            return error_response(404, 'Route not found', path=request.path)
        if exc.code == 429:
            return error_response(429, 'Too many requests from this IP, please try again later.')
        return error_response(exc.code or 500, exc.description or exc.name)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        logger.exception("unhandled_error", path=request.path, error=str(exc))
        return error_response(500, 'Internal server error')
