from functools import wraps

import jwt
import structlog
from flask import Blueprint, current_app, g, request

from errors import AuthenticationError, AuthorizationError, DuplicateError, ValidationFailed
from models import User, db, utcnow
from schemas import ChangePasswordRequest, LoginRequest, ProfileUpdateRequest, RegisterRequest
from utils import bearer_token, decode_token, issue_access_token, success_response

logger = structlog.get_logger().bind(component="auth")

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def authenticate() -> User:
    """Resolve the bearer token on the current request to an active user."""
    token = bearer_token(request.headers.get('Authorization'))
    if not token:
        raise AuthenticationError('Access denied. No token provided.')
    try:
        claims = decode_token(token, current_app.config['JWT_SECRET'])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError('Token has expired.') from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError('Invalid token.') from e

    user_id = claims.get('id')
    if claims.get('typ') == 'payment' or not isinstance(user_id, int):
        raise AuthenticationError('Invalid token.')
    user = db.session.get(User, user_id)
    if not user:
        raise AuthenticationError('Token is not valid. User not found.')
    if not user.is_active:
        raise AuthenticationError('Account has been deactivated.')
    g.current_user = user
    return user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        authenticate()
        return view(*args, **kwargs)
    return wrapper


def roles_required(*roles):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = g.get('current_user') or authenticate()
            if user.role not in roles:
                raise AuthorizationError(f"Access denied. Requires role: {', '.join(roles)}.")
            return view(*args, **kwargs)
        return wrapper
    return decorator


def _ensure_unique(username=None, email=None, exclude_id=None):
    for field, value in (('email', email), ('username', username)):
        if value is None:
            continue
        query = User.query.filter(getattr(User, field) == value)
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise DuplicateError(f'{field} already exists')


def _token_for(user: User) -> str:
    return issue_access_token(user.id, current_app.config['JWT_SECRET'],
                              current_app.config['JWT_EXPIRES_HOURS'])


@auth_bp.post('/register')
def register():
    data = RegisterRequest.model_validate(request.get_json(silent=True) or {})
    _ensure_unique(username=data.username, email=data.email)

    user = User(username=data.username, email=data.email, role=data.role, school_id=data.school_id)
    user.set_password(data.password)
    db.session.add(user)
    db.session.commit()

    logger.info("user_registered", user_id=user.id, role=user.role)
    return success_response({'token': _token_for(user), 'user': user.to_dict()},
                            'User registered successfully', 201)


@auth_bp.post('/login')
def login():
    data = LoginRequest.model_validate(request.get_json(silent=True) or {})
    user = User.query.filter_by(email=data.email).first()
    if not user or not user.check_password(data.password):
        logger.info("login_failed", email=data.email)
        raise AuthenticationError('Invalid email or password')
    if not user.is_active:
        raise AuthenticationError('Account has been deactivated.')

    user.last_login = utcnow()
    db.session.commit()

    logger.info("user_logged_in", user_id=user.id)
    return success_response({'token': _token_for(user), 'user': user.to_dict()}, 'Login successful')


@auth_bp.get('/profile')
@login_required
def get_profile():
    return success_response({'user': g.current_user.to_dict()})


@auth_bp.put('/profile')
@login_required
def update_profile():
    data = ProfileUpdateRequest.model_validate(request.get_json(silent=True) or {})
    user = g.current_user
    _ensure_unique(username=data.username, email=data.email, exclude_id=user.id)
    if data.username is not None:
        user.username = data.username
    if data.email is not None:
        user.email = data.email
    db.session.commit()
    return success_response({'user': user.to_dict()}, 'Profile updated successfully')


@auth_bp.put('/change-password')
@login_required
def change_password():
    data = ChangePasswordRequest.model_validate(request.get_json(silent=True) or {})
    user = g.current_user
    if not user.check_password(data.current_password):
        raise ValidationFailed('Current password is incorrect')
    user.set_password(data.new_password)
    db.session.commit()
    logger.info("password_changed", user_id=user.id)
    return success_response(message='Password changed successfully')
