from flask import Blueprint, current_app, request

from utils import success_response

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/payment')


@webhooks_bp.post('/webhook')
def payment_webhook():
    # Public route: the gateway calls this server-to-server, no bearer token
    raw_body = request.get_data()  # raw body bytes
    payload = request.get_json(silent=True)

    order_status = current_app.extensions['payment_service'].handle_webhook(
        payload,
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent'),
        raw_body=raw_body,
        signature=request.headers.get('X-Razorpay-Signature'),
    )
    return success_response({'order_status': order_status}, 'Webhook processed successfully')
