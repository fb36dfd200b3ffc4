from typing import Any, Dict, Mapping, Optional

import jwt
import structlog
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import AuthenticationError, NotFoundError, PersistenceError, SignatureError
from gateway import from_minor_units, verify_payment_signature, verify_webhook_signature
from models import Order, OrderStatus, WebhookLog, utcnow
from schemas import WebhookPayload
from utils import decode_token, generate_order_code, is_order_code, mint_payment_token

logger = structlog.get_logger().bind(component="payments")

WEBHOOK_EVENT = 'payment_update'

# largest value a signed 64-bit primary key can hold
MAX_ORDER_ID = 2 ** 63 - 1


class PaymentService:
    """Creates orders, verifies checkout payments and reconciles gateway webhooks.

    The gateway client and database session are handed in by the application
    factory; ``settings`` is the Flask config mapping.
    """

    def __init__(self, gateway, session, settings: Mapping[str, Any]):
        self.gateway = gateway
        self.session = session
        self.settings = settings

    # ------------------------------------------------------------ helpers

    def _commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("persistence_error", error=str(e))
            raise PersistenceError('Database write failed') from e

    def _order_by_code(self, custom_order_id: str) -> Order:
        order = self.session.query(Order).filter_by(custom_order_id=custom_order_id).first()
        if not order:
            raise NotFoundError('Order not found')
        return order

    def _status_for(self, order: Order) -> Optional[OrderStatus]:
        return (self.session.query(OrderStatus)
                .filter_by(collect_id=order.id)
                .order_by(OrderStatus.id)
                .first())

    def _resolve_order(self, order_ref: str) -> Optional[Order]:
        # external order code first, internal identity otherwise
        if is_order_code(order_ref):
            return self.session.query(Order).filter_by(custom_order_id=order_ref).first()
        if order_ref.isdigit() and int(order_ref) <= MAX_ORDER_ID:
            return self.session.get(Order, int(order_ref))
        return None

    def _finish_log(self, log: WebhookLog, status: str, error: Optional[str] = None) -> None:
        log.status = status
        log.error_message = error
        self.session.add(log)
        self.session.commit()

    # --------------------------------------------------------- operations

    def create_payment(self, school_id: str, trustee_id: str, student_info: Dict[str, str],
                       order_amount: float, currency: str = 'INR') -> Dict[str, Any]:
        custom_order_id = generate_order_code()
        order = Order(
            school_id=school_id,
            trustee_id=trustee_id,
            student_name=student_info['name'],
            student_id=student_info['id'],
            student_email=student_info['email'],
            gateway_name=self.gateway.name,
            custom_order_id=custom_order_id,
            order_amount=order_amount,
            currency=currency,
        )
        self.session.add(order)
        self._commit()

        # A gateway failure here leaves the order without a status row
        gateway_order = self.gateway.create_order(
            order_amount,
            currency,
            receipt=custom_order_id,
            notes={
                'school_id': school_id,
                'student_id': student_info['id'],
                'student_name': student_info['name'],
                'custom_order_id': custom_order_id,
            },
        )

        self.session.add(OrderStatus(
            collect_id=order.id,
            order_amount=order_amount,
            transaction_amount=order_amount,
            payment_mode='pending',
            payment_details='Payment initiated',
            bank_reference='pending',
            payment_message='Payment order created',
            status='pending',
            gateway_order_id=gateway_order['id'],
        ))
        self._commit()

        payment_token = mint_payment_token(
            {
                'order_id': custom_order_id,
                'amount': order_amount,
                'currency': currency,
                'school_id': school_id,
                'student_info': dict(student_info),
                'razorpay_order_id': gateway_order['id'],
                'created_at': utcnow().isoformat(),
            },
            self.settings['JWT_SECRET'],
            minutes=self.settings.get('PAYMENT_TOKEN_EXPIRES_MINUTES', 60),
        )
        frontend = self.settings['FRONTEND_URL']
        logger.info("payment_created", order_id=custom_order_id,
                    gateway_order_id=gateway_order['id'], amount=order_amount, currency=currency)
        return {
            'order_id': custom_order_id,
            'razorpay_order_id': gateway_order['id'],
            'amount': order_amount,
            'currency': currency,
            'key_id': self.settings['RAZORPAY_KEY_ID'],
            'payment_token': payment_token,
            'student_info': dict(student_info),
            'redirect_url': f"{frontend}/payment/{custom_order_id}",
            'checkout_url': f"{frontend}/checkout?token={payment_token}",
        }

    def verify_payment(self, razorpay_order_id: str, razorpay_payment_id: str,
                       razorpay_signature: str, custom_order_id: str) -> Dict[str, Any]:
        if not verify_payment_signature(razorpay_order_id, razorpay_payment_id,
                                        razorpay_signature, self.settings['RAZORPAY_KEY_SECRET']):
            logger.warning("signature_mismatch", order_id=custom_order_id,
                           gateway_order_id=razorpay_order_id)
            raise SignatureError('Invalid payment signature')

        order = self._order_by_code(custom_order_id)
        # the gateway's record wins over anything the caller sent
        payment = self.gateway.fetch_payment(razorpay_payment_id)

        status = self._status_for(order)
        if status is None:
            status = OrderStatus(collect_id=order.id, order_amount=order.order_amount)
            self.session.add(status)
        status.payment_mode = payment.get('method') or 'pending'
        status.payment_details = payment.get('email') or payment.get('contact') or 'success'
        status.bank_reference = payment.get('bank') or 'RAZORPAY'
        status.payment_message = 'Payment successful'
        status.status = 'success'
        status.gateway_order_id = razorpay_order_id
        status.gateway_payment_id = razorpay_payment_id
        status.gateway_signature = razorpay_signature
        status.transaction_amount = from_minor_units(payment.get('amount') or 0)
        status.payment_time = utcnow()
        self._commit()

        logger.info("payment_verified", order_id=custom_order_id, payment_id=razorpay_payment_id,
                    amount=status.transaction_amount)
        return {'order_id': custom_order_id, 'payment_id': razorpay_payment_id, 'status': 'success'}

    def handle_webhook(self, payload: Any, ip_address: Optional[str] = None,
                       user_agent: Optional[str] = None, raw_body: Optional[bytes] = None,
                       signature: Optional[str] = None) -> Dict[str, Any]:
        """Reconcile a gateway notification into the order's status row.

        Exactly one WebhookLog row is appended per call whatever the outcome.
        The status row is overwritten (last write wins); no history is kept.
        """
        log = WebhookLog(
            event_type=WEBHOOK_EVENT,
            payload=payload if isinstance(payload, dict) else {'raw': payload},
            status='processed',
            ip_address=ip_address,
            user_agent=(user_agent or '')[:255] or None,
        )
        order_info = payload.get('order_info') if isinstance(payload, dict) else None
        if isinstance(order_info, dict) and order_info.get('order_id') is not None:
            log.order_id = str(order_info['order_id'])[:64]

        if self.settings.get('WEBHOOK_SIGNATURE_REQUIRED'):
            if not verify_webhook_signature(raw_body or b'', signature,
                                            self.settings['RAZORPAY_WEBHOOK_SECRET']):
                logger.warning("webhook_signature_mismatch", order_id=log.order_id, ip=ip_address)
                self._finish_log(log, 'failed', 'Invalid webhook signature')
                raise SignatureError('Invalid webhook signature')

        try:
            event = WebhookPayload.model_validate(payload)
        except ValidationError:
            self._finish_log(log, 'failed', 'Validation failed')
            raise
        info = event.order_info
        log.gateway_payment_id = info.payment_id

        try:
            order = self._resolve_order(info.order_id)
            if order is None:
                logger.warning("webhook_order_missing", order_id=info.order_id)
                self._finish_log(log, 'failed', 'Order not found')
                raise NotFoundError('Order not found')

            status = self._status_for(order)
            if status is None:
                status = OrderStatus(collect_id=order.id, payment_mode='pending')
                self.session.add(status)
            status.order_amount = info.order_amount
            status.transaction_amount = info.transaction_amount
            status.status = info.status
            if info.payment_mode is not None:
                status.payment_mode = info.payment_mode
            if info.payment_details is not None:
                status.payment_details = info.payment_details
            if info.payment_message is not None:
                status.payment_message = info.payment_message
            if info.bank_reference is not None:
                status.bank_reference = info.bank_reference
            if info.payment_id is not None:
                status.gateway_payment_id = info.payment_id
            status.error_message = info.error_message or 'NA'
            status.payment_time = info.payment_time or utcnow()
            status.updated_at = utcnow()

            log.status = 'success'
            self.session.add(log)
            self.session.commit()
        except NotFoundError:
            raise
        except Exception as e:
            self.session.rollback()
            logger.error("webhook_failed", order_id=info.order_id, error=str(e))
            self._finish_log(log, 'failed', str(e))
            raise PersistenceError('Error processing webhook') from e

        logger.info("webhook_processed", order_id=info.order_id, status=info.status)
        return status.to_dict()

    def get_payment_details(self, custom_order_id: str) -> Dict[str, Any]:
        order = self._order_by_code(custom_order_id)
        status = self._status_for(order)
        return {'order': order.to_dict(), 'order_status': status.to_dict() if status else None}

    def decode_checkout(self, token: str) -> Dict[str, Any]:
        try:
            claims = decode_token(token, self.settings['JWT_SECRET'])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError('Payment token has expired') from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError('Invalid payment token') from e
        if claims.get('typ') != 'payment':
            raise AuthenticationError('Invalid payment token')
        data = {k: v for k, v in claims.items() if k not in ('iat', 'exp', 'typ')}
        data['key_id'] = self.settings['RAZORPAY_KEY_ID']
        return data
