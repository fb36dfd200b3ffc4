from flask import Blueprint, current_app, request

from auth_handlers import login_required
from errors import AuthenticationError
from payment_service import PaymentService
from schemas import CreatePaymentRequest, VerifyPaymentRequest
from utils import success_response

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payment')


def payment_service() -> PaymentService:
    return current_app.extensions['payment_service']


@payments_bp.post('/create-payment')
@login_required
def create_payment():
    data = CreatePaymentRequest.model_validate(request.get_json(silent=True) or {})
    result = payment_service().create_payment(
        school_id=data.school_id,
        trustee_id=data.trustee_id,
        student_info=data.student_info.model_dump(),
        order_amount=data.order_amount,
        currency=data.currency,
    )
    return success_response(result, 'Payment order created successfully', 201)


@payments_bp.post('/verify-payment')
@login_required
def verify_payment():
    # Called by the frontend after Checkout reports success
    data = VerifyPaymentRequest.model_validate(request.get_json(silent=True) or {})
    result = payment_service().verify_payment(**data.model_dump())
    return success_response(result, 'Payment verified successfully')


@payments_bp.get('/details/<order_id>')
@login_required
def payment_details(order_id: str):
    return success_response(payment_service().get_payment_details(order_id))


@payments_bp.get('/checkout')
def checkout():
    token = request.args.get('token', '').strip()
    if not token:
        raise AuthenticationError('Payment token is required')
    return success_response(payment_service().decode_checkout(token))
