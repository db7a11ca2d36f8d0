"""Test fixtures and configuration."""
import hashlib
import hmac
import itertools
import json
import time

import pytest

from app import create_app, errors
from app.config import Config
from app.extensions import db, tenant_spaces
from app.services.billing_gateway import StripeGateway
from app.services.plan_catalog import seed_plans
from app.services.provisioning import ProvisioningService, ProvisionRequest

WEBHOOK_SECRET = 'whsec_test_secret'
ADMIN_TOKEN = 'admin-test-token'
OWNER_PASSWORD = 'SecurePass123'


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    CELERY_TASK_ALWAYS_EAGER = True
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    TENANT_SPACE_TIMEOUT_SECONDS = 10
    DEFAULT_PLAN_SLUG = 'free'
    SLUG_MAX_ATTEMPTS = 20
    APP_DOMAIN = 'example.test'
    APP_SCHEME = 'https'
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    STRIPE_PRO_MONTHLY_PRICE_ID = 'price_pro_monthly'
    STRIPE_PRO_YEARLY_PRICE_ID = 'price_pro_yearly'
    RECONCILE_MAX_RETRIES = 3
    ADMIN_API_TOKEN = ADMIN_TOKEN


class FakeGateway(StripeGateway):
    """StripeGateway that records calls instead of talking to Stripe. Webhook verification is real."""

    def __init__(self):
        super().__init__(secret_key=None, webhook_secret=WEBHOOK_SECRET, app_domain='example.test')
        self.calls = []
        self.fail_cancel = False
        self.fail_update = False

    def get_or_create_customer(self, tenant, owner_email=None):
        if tenant.stripe_customer_id:
            return tenant.stripe_customer_id
        self.calls.append(('customer', tenant.slug, owner_email))
        return f'cus_{tenant.slug}'

    def create_checkout_session(self, tenant, plan, customer_id, success_url=None, cancel_url=None):
        self.calls.append(('checkout', tenant.slug, plan.slug, customer_id))
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    def create_portal_session(self, tenant, return_url=None):
        if not tenant.stripe_customer_id:
            raise errors.ValidationError("No billing account found for this organization")
        self.calls.append(('portal', tenant.slug))
        return {"url": "https://billing.stripe.test/session"}

    def update_subscription(self, tenant, plan):
        if self.fail_update:
            raise errors.DependencyError("Stripe subscription.update failed: boom", tenant=tenant.slug)
        self.calls.append(('update', tenant.slug, plan.slug))

    def cancel_subscription(self, tenant):
        self.calls.append(('cancel', tenant.slug, tenant.stripe_subscription_id))
        if self.fail_cancel:
            raise errors.DependencyError("Stripe subscription.cancel failed: boom", tenant=tenant.slug)


@pytest.fixture
def app(tmp_path):
    """Flask app with an in-memory central store and per-test SQLite tenant spaces."""
    config = type('Config', (TestConfig,), {
        'TENANT_DATABASE_URL': f"sqlite:///{tmp_path}/tenants/{{slug}}.db",
    })
    app = create_app(config)
    app.extensions['billing_gateway'] = FakeGateway()

    with app.app_context():
        db.create_all()
        seed_plans()
        yield app
        db.session.remove()
        db.drop_all()
        tenant_spaces.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions['billing_gateway']


@pytest.fixture
def provisioning(app):
    return ProvisioningService()


@pytest.fixture
def make_tenant(provisioning):
    """Provision a tenant through the real saga."""
    def _make(name='Acme Inc', slug=None, plan=None, email='owner@acme.test'):
        return provisioning.provision(ProvisionRequest(
            name=name,
            slug=slug,
            plan_slug=plan,
            owner_name='Olivia Owner',
            owner_email=email,
            owner_password=OWNER_PASSWORD,
        ))
    return _make


@pytest.fixture
def tenant(make_tenant):
    return make_tenant(slug='acme')


@pytest.fixture
def owner_headers(client, tenant):
    response = client.post('/api/auth/login', json={
        "tenant": tenant.slug,
        "email": 'owner@acme.test',
        "password": OWNER_PASSWORD,
    })
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['access_token']}"}


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


_event_ids = itertools.count(1)


@pytest.fixture
def stripe_event():
    """Build a Stripe event envelope: stripe_event('invoice.paid', {...})."""
    def _make(event_type, obj, event_id=None):
        return {
            "id": event_id or f"evt_test_{next(_event_ids)}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
    return _make


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def post_webhook(client):
    """POST a correctly signed event to the Stripe webhook endpoint."""
    def _post(event, secret=WEBHOOK_SECRET, timestamp=None):
        payload = json.dumps(event).encode('utf-8')
        return client.post(
            '/api/webhooks/stripe',
            data=payload,
            content_type='application/json',
            headers={"Stripe-Signature": sign_payload(payload, secret, timestamp)},
        )
    return _post
