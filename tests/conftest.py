import itertools
from datetime import timedelta

import pytest

from app import create_app
from config import TestConfig
from gateway import to_minor_units
from models import Order, OrderStatus, User, db, utcnow
from utils import issue_access_token

SCHOOL_ID = '65b0e6293e9f76a9694d84b4'
OTHER_SCHOOL_ID = '65b0e6293e9f76a9694d84ff'
TRUSTEE_ID = '65b0e5529d31950a9b41c5ba'


class FakeGateway:
    """Stands in for RazorpayGateway; records calls instead of touching the network."""

    name = 'razorpay'

    def __init__(self):
        self.orders = []
        self.fetched = []
        self.payments = {}
        self.error = None

    def create_order(self, amount, currency, receipt, notes=None):
        if self.error:
            raise self.error
        order = {
            'id': f'order_test{len(self.orders) + 1:04d}',
            'amount': to_minor_units(amount),
            'currency': currency,
            'receipt': receipt,
            'notes': notes or {},
        }
        self.orders.append(order)
        return order

    def fetch_payment(self, payment_id):
        if self.error:
            raise self.error
        self.fetched.append(payment_id)
        return self.payments[payment_id]

    def close(self):
        pass


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(gateway):
    app = create_app(TestConfig, gateway=gateway)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def make(role='admin', school_id=None, is_active=True, password='Passw0rd'):
        n = next(counter)
        with app.app_context():
            user = User(username=f'{role}{n}', email=f'{role}{n}@example.com', role=role,
                        school_id=school_id, is_active=is_active)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id
    return make


@pytest.fixture
def token_for(app):
    def token(user_id, hours=1):
        return issue_access_token(user_id, app.config['JWT_SECRET'], hours)
    return token


@pytest.fixture
def auth_headers(make_user, token_for):
    def headers(role='admin', school_id=None):
        return {'Authorization': f'Bearer {token_for(make_user(role=role, school_id=school_id))}'}
    return headers


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers('admin')


@pytest.fixture
def make_order(app):
    """Insert an order (and a status row unless ``status`` is None); returns its code."""
    counter = itertools.count(1)
    base_time = utcnow().replace(microsecond=0)

    def make(name='John Doe', email=None, school_id=SCHOOL_ID, amount=1000, status='success',
             payment_time=None, payment_mode='upi'):
        n = next(counter)
        with app.app_context():
            order = Order(
                school_id=school_id,
                trustee_id=TRUSTEE_ID,
                student_name=name,
                student_id=f'ST{n:03d}',
                student_email=email or f'student{n}@example.com',
                custom_order_id=f'ORD_1700000000000_test{n:05d}',
                order_amount=amount,
                currency='INR',
            )
            db.session.add(order)
            db.session.flush()
            if status is not None:
                db.session.add(OrderStatus(
                    collect_id=order.id,
                    order_amount=amount,
                    transaction_amount=amount,
                    payment_mode=payment_mode,
                    payment_details='details',
                    bank_reference='REF001',
                    payment_message='message',
                    status=status,
                    payment_time=payment_time or base_time - timedelta(minutes=n),
                ))
            db.session.commit()
            return order.custom_order_id
    return make
