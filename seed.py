import secrets
import string
from datetime import timedelta
from random import Random

import click
import structlog
from flask.cli import with_appcontext

from models import Order, OrderStatus, User, WebhookLog, db, utcnow

logger = structlog.get_logger().bind(component="seed")

DEMO_SCHOOL_ID = '65b0e6293e9f76a9694d84b4'
DEMO_TRUSTEE_ID = '65b0e5529d31950a9b41c5ba'
DEMO_PASSWORD = 'password123'

SAMPLE_USERS = [
    {'username': 'admin', 'email': 'admin@example.com', 'role': 'admin'},
    {'username': 'school_admin', 'email': 'school@example.com', 'role': 'school_admin',
     'school_id': DEMO_SCHOOL_ID},
    {'username': 'user1', 'email': 'user@example.com', 'role': 'user'},
]

SAMPLE_ORDERS = [
    ('John Doe', 'ST001', 'john.student@example.com', 'ORD_1703248751_demo001', 5000),
    ('Jane Smith', 'ST002', 'jane.student@example.com', 'ORD_1703248752_demo002', 3000),
    ('Bob Johnson', 'ST003', 'bob.student@example.com', 'ORD_1703248753_demo003', 7500),
]

# cycled across the sample orders
STATUS_CYCLE = [
    ('success', 'upi', 'success@upi', 'Payment successful'),
    ('failed', 'card', 'card****1234', 'Payment failed'),
    ('pending', 'netbanking', 'HDFC Bank', 'Payment pending'),
]


def seed_database(rng=None):
    """Replace all rows with the demo data set. Returns (users, orders) counts."""
    rng = rng or Random()
    for model in (WebhookLog, OrderStatus, Order, User):
        db.session.query(model).delete()

    for sample in SAMPLE_USERS:
        user = User(**sample)
        user.set_password(DEMO_PASSWORD)
        db.session.add(user)

    now = utcnow()
    for index, (name, student_id, email, code, amount) in enumerate(SAMPLE_ORDERS):
        order = Order(
            school_id=DEMO_SCHOOL_ID,
            trustee_id=DEMO_TRUSTEE_ID,
            student_name=name,
            student_id=student_id,
            student_email=email,
            gateway_name='razorpay',
            custom_order_id=code,
            order_amount=amount,
            currency='INR',
        )
        db.session.add(order)
        db.session.flush()

        status, mode, details, message = STATUS_CYCLE[index % len(STATUS_CYCLE)]
        reference = ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(9))
        db.session.add(OrderStatus(
            collect_id=order.id,
            order_amount=amount,
            transaction_amount=amount,
            payment_mode=mode,
            payment_details=details,
            bank_reference=f'REF{reference}',
            payment_message=message,
            status=status,
            # somewhere within the last week
            payment_time=now - timedelta(seconds=rng.uniform(0, 7 * 24 * 3600)),
        ))

    db.session.commit()
    logger.info("database_seeded", users=len(SAMPLE_USERS), orders=len(SAMPLE_ORDERS))
    return len(SAMPLE_USERS), len(SAMPLE_ORDERS)


@click.command('seed')
@with_appcontext
def seed_command():
    """Clear the database and load demo users, orders and statuses."""
    users, orders = seed_database()
    click.echo(f'Created {users} users and {orders} orders.')
    click.echo('Sample logins (password: password123):')
    for sample in SAMPLE_USERS:
        click.echo(f"  {sample['role']}: {sample['email']}")
