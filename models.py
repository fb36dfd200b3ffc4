from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

# Create the SQLAlchemy db instance (initialized in app.py)
db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(30), unique=True, index=True, nullable=False)
    email = db.Column(db.String(120), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default='user', nullable=False)
    school_id = db.Column(db.String(64), index=True)  # required for school_admin
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'school_id': self.school_id,
            'is_active': self.is_active,
            'last_login': _iso(self.last_login),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Order(db.Model):
    __tablename__ = 'orders'
    id = db.Column(db.Integer, primary_key=True)  # collect_id
    school_id = db.Column(db.String(64), index=True, nullable=False)
    trustee_id = db.Column(db.String(64), nullable=False)
    student_name = db.Column(db.String(100), nullable=False)
    student_id = db.Column(db.String(64), nullable=False)
    student_email = db.Column(db.String(120), nullable=False)
    gateway_name = db.Column(db.String(50), default='razorpay', nullable=False)
    custom_order_id = db.Column(db.String(64), unique=True, index=True, nullable=False)
    order_amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(8), default='INR', nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('order_amount > 0', name='ck_orders_amount_positive'),
    )

    @property
    def student_info(self):
        return {'name': self.student_name, 'id': self.student_id, 'email': self.student_email}

    def to_dict(self):
        return {
            'id': self.id,
            'school_id': self.school_id,
            'trustee_id': self.trustee_id,
            'student_info': self.student_info,
            'gateway_name': self.gateway_name,
            'custom_order_id': self.custom_order_id,
            'order_amount': self.order_amount,
            'currency': self.currency,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class OrderStatus(db.Model):
    __tablename__ = 'order_statuses'
    id = db.Column(db.Integer, primary_key=True)
    collect_id = db.Column(db.Integer, db.ForeignKey('orders.id'), index=True, nullable=False)
    order_amount = db.Column(db.Float, nullable=False)
    transaction_amount = db.Column(db.Float, nullable=False)
    payment_mode = db.Column(db.String(20), default='pending', nullable=False)
    payment_details = db.Column(db.String(255))
    bank_reference = db.Column(db.String(100))
    payment_message = db.Column(db.String(255))
    status = db.Column(db.String(20), default='pending', index=True, nullable=False)
    error_message = db.Column(db.String(255), default='NA')
    payment_time = db.Column(db.DateTime, default=utcnow, index=True, nullable=False)
    gateway_order_id = db.Column(db.String(100), index=True)
    gateway_payment_id = db.Column(db.String(100))
    gateway_signature = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'collect_id': self.collect_id,
            'order_amount': self.order_amount,
            'transaction_amount': self.transaction_amount,
            'payment_mode': self.payment_mode,
            'payment_details': self.payment_details,
            'bank_reference': self.bank_reference,
            'payment_message': self.payment_message,
            'status': self.status,
            'error_message': self.error_message,
            'payment_time': _iso(self.payment_time),
            'razorpay_order_id': self.gateway_order_id,
            'razorpay_payment_id': self.gateway_payment_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class WebhookLog(db.Model):
    __tablename__ = 'webhook_logs'
    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(50), index=True, nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), default='processed', nullable=False)
    order_id = db.Column(db.String(64), index=True)  # order code as received
    gateway_payment_id = db.Column(db.String(100))
    error_message = db.Column(db.Text)
    processed_at = db.Column(db.DateTime, default=utcnow, index=True)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
