import hashlib
import hmac
from unittest.mock import patch

import pytest
import requests
from razorpay.errors import BadRequestError, ServerError

from errors import GatewayError
from gateway import (
    RazorpayGateway,
    TimeoutHTTPAdapter,
    from_minor_units,
    payment_signature,
    to_minor_units,
    verify_payment_signature,
    verify_webhook_signature,
)


@pytest.fixture
def razorpay_gateway():
    gw = RazorpayGateway('rzp_test_key', 'test_secret', timeout=3)
    yield gw
    gw.close()


def test_payment_signature_matches_checkout_format():
    expected = hmac.new(b'test_secret', b'order_1|pay_1', hashlib.sha256).hexdigest()
    assert payment_signature('order_1', 'pay_1', 'test_secret') == expected
    assert verify_payment_signature('order_1', 'pay_1', expected, 'test_secret')


@pytest.mark.parametrize('order_id, payment_id, secret, signature', [
    ('order_2', 'pay_1', 'test_secret', None),
    ('order_1', 'pay_2', 'test_secret', None),
    ('order_1', 'pay_1', 'other_secret', None),
    ('order_1', 'pay_1', 'test_secret', ''),
])
def test_payment_signature_rejects_any_change(order_id, payment_id, secret, signature):
    good = payment_signature('order_1', 'pay_1', 'test_secret')
    assert not verify_payment_signature(order_id, payment_id,
                                        good if signature is None else signature, secret)


def test_webhook_signature():
    body = b'{"status": 200}'
    good = hmac.new(b'whsec', body, hashlib.sha256).hexdigest()
    assert verify_webhook_signature(body, good, 'whsec')
    assert not verify_webhook_signature(body + b' ', good, 'whsec')
    assert not verify_webhook_signature(body, None, 'whsec')


@pytest.mark.parametrize('amount, paise', [(5000, 500000), (10.5, 1050), (0.29, 29), (1, 100)])
def test_minor_units(amount, paise):
    assert to_minor_units(amount) == paise
    assert from_minor_units(paise) == pytest.approx(amount)


def test_create_order_sends_paise_and_receipt(razorpay_gateway):
    with patch.object(razorpay_gateway.client.order, 'create',
                      return_value={'id': 'order_abc', 'amount': 500000}) as create:
        order = razorpay_gateway.create_order(5000, 'INR', receipt='ORD_1_abc', notes={'k': 'v'})

    assert order['id'] == 'order_abc'
    sent = create.call_args.kwargs['data']
    assert sent == {'amount': 500000, 'currency': 'INR', 'receipt': 'ORD_1_abc',
                    'payment_capture': 1, 'notes': {'k': 'v'}}


@pytest.mark.parametrize('failure', [
    BadRequestError('The amount must be atleast INR 1.00'),
    ServerError('upstream down'),
    requests.ConnectionError('connection refused'),
    requests.Timeout('read timed out'),
])
def test_create_order_wraps_failures(razorpay_gateway, failure):
    with patch.object(razorpay_gateway.client.order, 'create', side_effect=failure):
        with pytest.raises(GatewayError) as excinfo:
            razorpay_gateway.create_order(100, 'INR', receipt='ORD_1_abc')

    assert excinfo.value.status_code == 500
    assert excinfo.value.message.startswith('Razorpay order error:')
    assert excinfo.value.__cause__ is failure


def test_fetch_payment(razorpay_gateway):
    payment = {'id': 'pay_1', 'method': 'card', 'amount': 1000}
    with patch.object(razorpay_gateway.client.payment, 'fetch', return_value=payment) as fetch:
        assert razorpay_gateway.fetch_payment('pay_1') == payment
    fetch.assert_called_once_with('pay_1')


def test_fetch_payment_wraps_failures(razorpay_gateway):
    with patch.object(razorpay_gateway.client.payment, 'fetch',
                      side_effect=BadRequestError('The id provided does not exist')):
        with pytest.raises(GatewayError, match='Razorpay payment fetch error'):
            razorpay_gateway.fetch_payment('pay_missing')


def test_session_applies_default_timeout(razorpay_gateway):
    adapter = razorpay_gateway.session.get_adapter('https://api.razorpay.com/v1/orders')
    assert isinstance(adapter, TimeoutHTTPAdapter)
    assert adapter.timeout == 3

    with patch('requests.adapters.HTTPAdapter.send', return_value='sent') as send:
        adapter.send('request')
        adapter.send('request', timeout=30)

    assert send.call_args_list[0].kwargs['timeout'] == 3
    assert send.call_args_list[1].kwargs['timeout'] == 30


def test_from_config():
    gw = RazorpayGateway.from_config({'RAZORPAY_KEY_ID': 'rzp_live', 'RAZORPAY_KEY_SECRET': 's',
                                      'GATEWAY_TIMEOUT_SECONDS': 7})
    try:
        assert gw.key_id == 'rzp_live'
        assert gw.session.get_adapter('https://api.razorpay.com').timeout == 7
    finally:
        gw.close()
