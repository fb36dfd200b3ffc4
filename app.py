import atexit
import os

import structlog
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from auth_handlers import auth_bp
from config import Config
from errors import register_error_handlers
from gateway import RazorpayGateway
from models import db, utcnow
from payment_handlers import payments_bp
from payment_service import PaymentService
from seed import seed_command
from transaction_handlers import transactions_bp
from transaction_service import TransactionService
from utils import configure_logging
from webhook_handlers import webhooks_bp

API_VERSION = '1.0.0'

# local frontend dev servers, allowed alongside FRONTEND_URL
DEV_ORIGINS = ('http://localhost:3000', 'http://localhost:5173')

logger = structlog.get_logger().bind(component="app")


def create_app(config=Config, gateway=None) -> Flask:
    """Application factory.

    ``gateway`` lets callers supply their own payment gateway client; by
    default a Razorpay client is built from config and closed at exit.
    """
    app = Flask(__name__)
    app.config.from_object(config)
    configure_logging(app.config['LOG_LEVEL'])

    # Init DB
    db.init_app(app)
    with app.app_context():
        db.create_all()

    # Clients are built once here and handed to the services
    if gateway is None:
        gateway = RazorpayGateway.from_config(app.config)
        atexit.register(gateway.close)
    app.extensions['gateway'] = gateway
    app.extensions['payment_service'] = PaymentService(gateway, db.session, app.config)
    app.extensions['transaction_service'] = TransactionService(db.session)

    limiter = Limiter(
        get_remote_address,
        app=app,
        default_limits=[app.config['RATELIMIT_DEFAULT']],
        storage_uri=app.config['RATELIMIT_STORAGE_URI'],
    )
    limiter.limit(app.config['RATELIMIT_AUTH'])(auth_bp)

    CORS(
        app,
        origins=list(dict.fromkeys([app.config['FRONTEND_URL'], *DEV_ORIGINS])),
        supports_credentials=True,
        methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization'],
    )

    register_error_handlers(app)

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(transactions_bp)

    app.cli.add_command(seed_command)

    @app.get("/health")
    def health():
        return {
            'success': True,
            'message': 'Server is running',
            'timestamp': utcnow().isoformat(),
            'environment': app.config['ENVIRONMENT'],
        }

    @app.get("/")
    def index():
        return {
            'success': True,
            'message': 'School Payment API Server',
            'version': API_VERSION,
            'endpoints': {
                'auth': '/api/auth',
                'payments': '/api/payment',
                'transactions': '/api/transactions',
            },
        }

    logger.info("app_created", environment=app.config['ENVIRONMENT'])
    return app


if __name__ == "__main__":
    # Dev server; use `flask --app app run` or a WSGI server elsewhere
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=True)
