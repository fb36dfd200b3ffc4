from math import ceil
from typing import Any, Dict, Optional

from sqlalchemy import case, func, or_

from errors import NotFoundError
from models import Order, OrderStatus
from schemas import TransactionFilters, TransactionQuery

SORT_COLUMNS = {
    'payment_time': OrderStatus.payment_time,
    'order_amount': OrderStatus.order_amount,
    'status': OrderStatus.status,
    'created_at': Order.created_at,
}


def _iso(value):
    return value.isoformat() if value else None


def _like_pattern(term: str) -> str:
    escaped = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"


def flatten(order: Order, status: Optional[OrderStatus]) -> Dict[str, Any]:
    """One transaction row; status fields are None when no status row exists yet."""
    return {
        'collect_id': order.id,
        'school_id': order.school_id,
        'custom_order_id': order.custom_order_id,
        'gateway': order.gateway_name,
        'student_info': order.student_info,
        'order_amount': status.order_amount if status else None,
        'transaction_amount': status.transaction_amount if status else None,
        'status': status.status if status else None,
        'payment_mode': status.payment_mode if status else None,
        'payment_time': _iso(status.payment_time) if status else None,
        'bank_reference': status.bank_reference if status else None,
        'payment_message': status.payment_message if status else None,
        'created_at': _iso(order.created_at),
    }


class TransactionService:
    """Read side: Order left-joined with OrderStatus, filtered, sorted and paged."""

    def __init__(self, session):
        self.session = session

    def _joined(self, *entities):
        # orders without a status row are kept
        return (self.session.query(*entities)
                .select_from(Order)
                .outerjoin(OrderStatus, OrderStatus.collect_id == Order.id))

    @staticmethod
    def _apply_filters(query, filters: TransactionFilters):
        if filters.status:
            query = query.filter(OrderStatus.status == filters.status)
        if filters.school_id:
            query = query.filter(Order.school_id == filters.school_id)
        if filters.date_from:
            query = query.filter(OrderStatus.payment_time >= filters.date_from)
        if filters.date_to:
            query = query.filter(OrderStatus.payment_time <= filters.date_to)
        if filters.search:
            pattern = _like_pattern(filters.search)
            query = query.filter(or_(
                Order.custom_order_id.ilike(pattern, escape='\\'),
                Order.student_name.ilike(pattern, escape='\\'),
                Order.student_email.ilike(pattern, escape='\\'),
            ))
        return query

    @staticmethod
    def _ordering(query: TransactionQuery):
        column = SORT_COLUMNS[query.sort]
        if query.order == 'asc':
            return column.asc().nulls_first(), Order.id.asc()
        return column.desc().nulls_last(), Order.id.desc()

    def list_transactions(self, query: TransactionQuery) -> Dict[str, Any]:
        base = self._apply_filters(self._joined(Order, OrderStatus), query)
        total = base.order_by(None).count()
        rows = (base.order_by(*self._ordering(query))
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
                .all())
        total_pages = ceil(total / query.limit)
        return {
            'transactions': [flatten(order, status) for order, status in rows],
            'pagination': {
                'current_page': query.page,
                'total_pages': total_pages,
                'total_records': total,
                'limit': query.limit,
                'has_next': query.page < total_pages,
                'has_prev': query.page > 1,
            },
            'filters': query.filters_dict(),
        }

    def list_transactions_for_school(self, school_id: str, query: TransactionQuery) -> Dict[str, Any]:
        result = self.list_transactions(query.model_copy(update={'school_id': school_id}))
        result['school_id'] = school_id
        return result

    def get_transaction_status(self, custom_order_id: str) -> Dict[str, Any]:
        order = self.session.query(Order).filter_by(custom_order_id=custom_order_id).first()
        if not order:
            raise NotFoundError('Transaction not found')
        status = (self.session.query(OrderStatus)
                  .filter_by(collect_id=order.id)
                  .order_by(OrderStatus.id)
                  .first())
        return {
            'custom_order_id': custom_order_id,
            'status': status.status if status else 'pending',
            'order_amount': status.order_amount if status else order.order_amount,
            'transaction_amount': status.transaction_amount if status else None,
            'payment_mode': status.payment_mode if status else None,
            'payment_time': _iso(status.payment_time) if status else None,
            'payment_message': status.payment_message if status else None,
            'bank_reference': status.bank_reference if status else None,
            'student_info': order.student_info,
            'school_id': order.school_id,
            'gateway': order.gateway_name,
            'created_at': _iso(order.created_at),
        }

    def get_statistics(self, filters: TransactionFilters) -> Dict[str, Any]:
        succeeded = OrderStatus.status == 'success'
        query = self._joined(
            func.count(Order.id),
            func.coalesce(func.sum(OrderStatus.transaction_amount), 0),
            func.coalesce(func.sum(case((succeeded, 1), else_=0)), 0),
            func.coalesce(func.sum(case((succeeded, OrderStatus.transaction_amount), else_=0)), 0),
            func.coalesce(func.sum(case((OrderStatus.status == 'failed', 1), else_=0)), 0),
            func.coalesce(func.sum(case((OrderStatus.status == 'pending', 1), else_=0)), 0),
        )
        total, total_amount, successful, successful_amount, failed, pending = \
            self._apply_filters(query, filters).one()
        return {
            'total_transactions': total,
            'total_amount': float(total_amount),
            'successful_transactions': successful,
            'successful_amount': float(successful_amount),
            'failed_transactions': failed,
            'pending_transactions': pending,
            'success_rate': round(successful / total * 100, 2) if total else 0,
        }
