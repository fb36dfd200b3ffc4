import hashlib
import hmac
import json
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from models import Order, OrderStatus, WebhookLog
from payment_service import PaymentService


def webhook_payload(order_id, status='success', **overrides):
    info = {
        'order_id': order_id,
        'order_amount': 2000,
        'transaction_amount': 2200,
        'gateway': 'PhonePe',
        'bank_reference': 'YESBNK222',
        'status': status,
        'payment_mode': 'upi',
        'payemnt_details': 'success@ybl',
        'Payment_message': 'payment success',
        'payment_time': '2025-04-23T08:14:21.945+00:00',
        'error_message': 'NA',
    }
    info.update(overrides)
    return {'status': 200, 'order_info': info}


def _post(client, payload, **kwargs):
    return client.post('/api/payment/webhook', json=payload,
                       headers={'User-Agent': 'gateway-bot/1.0'}, **kwargs)


def _logs(app):
    with app.app_context():
        return [
            {'status': log.status, 'error_message': log.error_message, 'order_id': log.order_id,
             'event_type': log.event_type, 'user_agent': log.user_agent, 'payload': log.payload}
            for log in WebhookLog.query.order_by(WebhookLog.id).all()
        ]


def _statuses(app, code):
    with app.app_context():
        order = Order.query.filter_by(custom_order_id=code).one()
        return [s.to_dict() for s in OrderStatus.query.filter_by(collect_id=order.id).all()]


def test_unknown_order_is_logged_and_rejected(app, client):
    resp = _post(client, webhook_payload('ORD_0_doesnotexist', status='failed'))

    assert resp.status_code == 404
    assert resp.get_json() == {'success': False, 'message': 'Order not found'}
    logs = _logs(app)
    assert len(logs) == 1
    assert logs[0]['status'] == 'failed'
    assert logs[0]['error_message'] == 'Order not found'
    assert logs[0]['order_id'] == 'ORD_0_doesnotexist'
    assert logs[0]['event_type'] == 'payment_update'
    assert logs[0]['user_agent'] == 'gateway-bot/1.0'


def test_webhook_overwrites_status_with_payload(app, client, make_order):
    code = make_order(amount=2000, status='pending', payment_mode='pending')

    resp = _post(client, webhook_payload(code))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body['message'] == 'Webhook processed successfully'
    status = body['data']['order_status']
    assert status['status'] == 'success'
    assert status['transaction_amount'] == 2200
    assert status['payment_mode'] == 'upi'
    # both historical spellings land on the canonical fields
    assert status['payment_details'] == 'success@ybl'
    assert status['payment_message'] == 'payment success'
    assert status['bank_reference'] == 'YESBNK222'
    assert status['payment_time'] == '2025-04-23T08:14:21.945000'

    rows = _statuses(app, code)
    assert len(rows) == 1
    assert _logs(app)[0]['status'] == 'success'


def test_correct_spellings_are_accepted_too(client, make_order):
    code = make_order(status='pending')
    payload = webhook_payload(code)
    info = payload['order_info']
    info['payment_details'] = info.pop('payemnt_details')
    info['payment_message'] = info.pop('Payment_message')

    status = _post(client, payload).get_json()['data']['order_status']

    assert status['payment_details'] == 'success@ybl'
    assert status['payment_message'] == 'payment success'


def test_replayed_webhook_is_last_write_wins(app, client, make_order):
    code = make_order(status='pending')

    _post(client, webhook_payload(code, status='success', transaction_amount=2200))
    _post(client, webhook_payload(code, status='failed', transaction_amount=0,
                                  error_message='Bank declined'))

    rows = _statuses(app, code)
    assert len(rows) == 1
    assert rows[0]['status'] == 'failed'
    assert rows[0]['transaction_amount'] == 0
    assert rows[0]['error_message'] == 'Bank declined'
    assert [log['status'] for log in _logs(app)] == ['success', 'success']


def test_error_message_defaults_to_na(client, make_order):
    code = make_order(status='pending')
    payload = webhook_payload(code)
    del payload['order_info']['error_message']

    status = _post(client, payload).get_json()['data']['order_status']

    assert status['error_message'] == 'NA'


def test_webhook_creates_status_when_missing(app, client, make_order):
    code = make_order(status=None)

    resp = _post(client, webhook_payload(code, status='cancelled'))

    assert resp.status_code == 200
    rows = _statuses(app, code)
    assert len(rows) == 1
    assert rows[0]['status'] == 'cancelled'


def test_webhook_resolves_internal_identity(app, client, make_order):
    code = make_order(status='pending')
    with app.app_context():
        collect_id = Order.query.filter_by(custom_order_id=code).one().id

    resp = _post(client, webhook_payload(str(collect_id)))

    assert resp.status_code == 200
    assert _statuses(app, code)[0]['status'] == 'success'


def test_invalid_payload_is_logged_once(app, client):
    resp = _post(client, {'status': 'ok', 'order_info': {'order_id': 'ORD_1_x', 'status': 'paid'}})

    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Validation failed'
    logs = _logs(app)
    assert len(logs) == 1
    assert logs[0]['status'] == 'failed'
    assert logs[0]['error_message'] == 'Validation failed'
    assert logs[0]['order_id'] == 'ORD_1_x'


def test_one_log_row_per_call_whatever_the_outcome(app, client, make_order):
    code = make_order(status='pending')
    _post(client, webhook_payload(code))
    _post(client, webhook_payload('ORD_0_missing'))
    _post(client, {'order_info': {}})
    assert [log['status'] for log in _logs(app)] == ['success', 'failed', 'failed']


def test_database_failure_is_recorded_and_reraised(app, client, make_order):
    code = make_order(status='pending')
    boom = OperationalError('SELECT', {}, Exception('disk I/O error'))

    with patch.object(PaymentService, '_status_for', side_effect=boom):
        resp = _post(client, webhook_payload(code))

    assert resp.status_code == 500
    assert resp.get_json()['message'] == 'Error processing webhook'
    logs = _logs(app)
    assert len(logs) == 1
    assert logs[0]['status'] == 'failed'
    assert 'disk I/O error' in logs[0]['error_message']
    assert _statuses(app, code)[0]['status'] == 'pending'


def test_signature_enforcement_is_opt_in(app, client, make_order):
    code = make_order(status='pending')
    app.config['WEBHOOK_SIGNATURE_REQUIRED'] = True
    body = json.dumps(webhook_payload(code)).encode()
    good = hmac.new(b'test_webhook_secret', body, hashlib.sha256).hexdigest()

    rejected = client.post('/api/payment/webhook', data=body, content_type='application/json',
                           headers={'X-Razorpay-Signature': 'bad'})
    accepted = client.post('/api/payment/webhook', data=body, content_type='application/json',
                           headers={'X-Razorpay-Signature': good})

    assert rejected.status_code == 400
    assert rejected.get_json()['message'] == 'Invalid webhook signature'
    assert accepted.status_code == 200
    assert [log['status'] for log in _logs(app)] == ['failed', 'success']


def test_oversized_numeric_reference_is_not_found(app, client):
    resp = _post(client, webhook_payload('9' * 30))

    assert resp.status_code == 404
    logs = _logs(app)
    assert len(logs) == 1
    assert logs[0]['status'] == 'failed'
    assert logs[0]['error_message'] == 'Order not found'


def test_unexpected_failure_is_still_logged(app, client, make_order):
    code = make_order(status='pending')

    with patch.object(PaymentService, '_status_for', side_effect=ValueError('bad status row')):
        resp = _post(client, webhook_payload(code))

    assert resp.status_code == 500
    assert resp.get_json()['message'] == 'Error processing webhook'
    logs = _logs(app)
    assert len(logs) == 1
    assert logs[0]['status'] == 'failed'
    assert logs[0]['error_message'] == 'bad status row'


def test_non_finite_amounts_are_rejected(app, client, make_order):
    code = make_order(status='pending')
    body = json.dumps(webhook_payload(code, transaction_amount=float('inf')))

    resp = client.post('/api/payment/webhook', data=body, content_type='application/json')

    assert resp.status_code == 400
    assert _statuses(app, code)[0]['transaction_amount'] == 1000
    assert [log['status'] for log in _logs(app)] == ['failed']
