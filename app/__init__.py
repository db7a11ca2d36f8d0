from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from app.config import Config
from app.extensions import db, jwt, tenant_spaces
from app.celery_app import init_celery
from app.errors import TenancyError

migrate = Migrate()

def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)
    migrate.init_app(app, db)
    tenant_spaces.init_app(app)
    CORS(app)

    # Health check endpoint - register early so it's always available
    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok"}), 200

    # Import models so they are registered on db.metadata
    from app.models import plan, tenant, subscription_event  # noqa: F401

    # Billing provider (tests replace app.extensions['billing_gateway'])
    from app.services.billing_gateway import StripeGateway
    app.extensions['billing_gateway'] = StripeGateway.from_config(app.config)

    # Register blueprints
    from app.api import tenants
    app.register_blueprint(tenants.bp, url_prefix='/api/v1/tenants')
    from app.api import plans
    app.register_blueprint(plans.bp, url_prefix='/api/v1/plans')
    from app.api import auth
    app.register_blueprint(auth.bp, url_prefix='/api/auth')
    from app.api import billing
    app.register_blueprint(billing.bp, url_prefix='/api/billing')
    from app.api import boards
    app.register_blueprint(boards.bp, url_prefix='/api/boards')
    from app.api import webhooks
    app.register_blueprint(webhooks.bp, url_prefix='/api/webhooks')

    # Provisioning/billing/entitlement errors carry their own status and reason
    @app.errorhandler(TenancyError)
    def handle_tenancy_error(err):
        if err.status_code >= 500:
            app.logger.error(f"{type(err).__name__}: {err.message} context={err.context}")
        return jsonify(err.to_dict()), err.status_code

    # JWT error handlers for clearer responses
    @jwt.unauthorized_loader
    def jwt_missing_token(err):
        return jsonify({"error": "Unauthorized", "details": err}), 401

    @jwt.invalid_token_loader
    def jwt_invalid_token(err):
        return jsonify({"error": "Invalid token", "details": err}), 401

    @jwt.expired_token_loader
    def jwt_expired_token(header, payload):
        return jsonify({"error": "Token expired"}), 401

    init_celery(app)

    from app.cli import init_cli
    init_cli(app)

    # Register tasks with the configured Celery app
    from app.tasks import tenant_tasks  # noqa: F401

    return app
