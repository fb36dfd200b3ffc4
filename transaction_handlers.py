from flask import Blueprint, current_app, g, request

from auth_handlers import authenticate, roles_required
from errors import AuthorizationError
from schemas import SchoolPath, TransactionFilters, TransactionQuery
from transaction_service import TransactionService
from utils import success_response

transactions_bp = Blueprint('transactions', __name__, url_prefix='/api/transactions')


@transactions_bp.before_request
def require_user():
    # every transaction route needs an authenticated user; CORS preflights carry no token
    if request.method != 'OPTIONS':
        authenticate()


def transaction_service() -> TransactionService:
    return current_app.extensions['transaction_service']


@transactions_bp.get('')
def list_transactions():
    query = TransactionQuery.from_args(request.args)
    return success_response(transaction_service().list_transactions(query))


@transactions_bp.get('/stats')
def transaction_stats():
    filters = TransactionFilters.from_args(request.args)
    return success_response(transaction_service().get_statistics(filters))


@transactions_bp.get('/school/<school_id>')
@roles_required('admin', 'school_admin')
def school_transactions(school_id: str):
    school_id = SchoolPath.model_validate({'school_id': school_id}).school_id
    user = g.current_user
    if user.role == 'school_admin' and user.school_id != school_id:
        raise AuthorizationError('Access denied. You can only view transactions for your own school.')
    query = TransactionQuery.from_args(request.args)
    return success_response(transaction_service().list_transactions_for_school(school_id, query))


@transactions_bp.get('/status/<custom_order_id>')
def transaction_status(custom_order_id: str):
    return success_response(transaction_service().get_transaction_status(custom_order_id.strip()))
