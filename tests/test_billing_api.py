import pytest
from werkzeug.security import generate_password_hash

from app.extensions import db, tenant_spaces
from app.models.tenant import Tenant
from app.models.tenant_space import TenantUser
from app.services.tenant_spaces import TenantContext


@pytest.fixture
def viewer_headers(client, tenant):
    with tenant_spaces.session(TenantContext(tenant.slug)) as session:
        session.add(TenantUser(
            name='Victor Viewer',
            email='viewer@acme.test',
            password_hash=generate_password_hash('ViewerPass123'),
            role='viewer',
        ))
    token = client.post('/api/auth/login', json={
        "tenant": tenant.slug, "email": "viewer@acme.test", "password": "ViewerPass123",
    }).get_json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def _subscribe(tenant, plan_id):
    tenant.plan_id = plan_id
    tenant.stripe_customer_id = 'cus_acme'
    tenant.stripe_subscription_id = 'sub_1'
    tenant.subscription_status = 'active'
    db.session.commit()


def test_login_and_me(client, owner_headers):
    body = client.get('/api/auth/me', headers=owner_headers).get_json()

    assert body["tenant"] == "acme"
    assert body["user"]["role"] == "owner"
    assert "manage settings" in body["permissions"]


def test_login_rejects_wrong_password_and_unknown_tenant(client, tenant):
    wrong = client.post('/api/auth/login', json={"tenant": "acme", "email": "owner@acme.test", "password": "Nope12345"})
    ghost = client.post('/api/auth/login', json={"tenant": "ghost", "email": "owner@acme.test", "password": "x"})

    assert wrong.status_code == 401
    assert ghost.status_code == 401


def test_token_stops_working_after_deprovisioning(client, owner_headers, provisioning):
    provisioning.deprovision('acme')

    assert client.get('/api/billing/subscription', headers=owner_headers).status_code == 404


def test_subscription_view(client, owner_headers):
    body = client.get('/api/billing/subscription', headers=owner_headers).get_json()

    assert body["status"] == "none"
    assert body["current_plan"]["slug"] == "free"
    assert body["has_active_subscription"] is False
    assert body["is_active"] is False


def test_usage_view(client, owner_headers):
    usage = client.get('/api/billing/usage', headers=owner_headers).get_json()["usage"]

    assert usage["max_boards"] == {"current": 1, "limit": 3}


def test_checkout_creates_customer_once(client, owner_headers, gateway):
    response = client.post('/api/billing/checkout', json={"plan": "pro-monthly"}, headers=owner_headers)

    assert response.status_code == 200
    assert response.get_json()["checkout_url"].startswith("https://checkout.stripe.test/")
    assert ('customer', 'acme', 'owner@acme.test') in gateway.calls
    assert ('checkout', 'acme', 'pro-monthly', 'cus_acme') in gateway.calls
    assert db.session.get(Tenant, 'acme').stripe_customer_id == 'cus_acme'

    client.post('/api/billing/checkout', json={"plan": "pro-yearly"}, headers=owner_headers)
    assert [c for c in gateway.calls if c[0] == 'customer'] == [('customer', 'acme', 'owner@acme.test')]


def test_checkout_rejects_free_and_unknown_plans(client, owner_headers):
    assert client.post('/api/billing/checkout', json={"plan": "free"}, headers=owner_headers).status_code == 400
    assert client.post('/api/billing/checkout', json={"plan": "gold"}, headers=owner_headers).status_code == 404
    assert client.post('/api/billing/checkout', json={}, headers=owner_headers).status_code == 400


def test_checkout_requires_manage_settings(client, viewer_headers):
    response = client.post('/api/billing/checkout', json={"plan": "pro-monthly"}, headers=viewer_headers)

    assert response.status_code == 403
    assert response.get_json()["permission"] == "manage settings"


def test_portal_requires_billing_account(client, owner_headers, tenant):
    assert client.post('/api/billing/portal', headers=owner_headers).status_code == 400

    tenant.stripe_customer_id = 'cus_acme'
    db.session.commit()
    response = client.post('/api/billing/portal', headers=owner_headers)
    assert response.get_json()["portal_url"] == "https://billing.stripe.test/session"


def test_change_plan(client, owner_headers, tenant, gateway):
    from app.models.plan import Plan
    _subscribe(tenant, Plan.query.filter_by(slug='pro-monthly').one().id)

    response = client.post('/api/billing/change-plan', json={"plan": "pro-yearly"}, headers=owner_headers)

    assert response.status_code == 200
    assert response.get_json()["tenant"]["plan"] == "pro-yearly"
    assert ('update', 'acme', 'pro-yearly') in gateway.calls


def test_change_plan_same_plan(client, owner_headers):
    response = client.post('/api/billing/change-plan', json={"plan": "free"}, headers=owner_headers)

    assert response.status_code == 400


def test_change_plan_stripe_down_is_503(client, owner_headers, tenant, gateway):
    from app.models.plan import Plan
    _subscribe(tenant, Plan.query.filter_by(slug='pro-monthly').one().id)
    gateway.fail_update = True

    response = client.post('/api/billing/change-plan', json={"plan": "pro-yearly"}, headers=owner_headers)

    assert response.status_code == 503
    assert response.get_json()["reason"] == "dependency"


def test_cancel(client, owner_headers, tenant):
    from app.models.plan import Plan
    _subscribe(tenant, Plan.query.filter_by(slug='pro-monthly').one().id)

    response = client.post('/api/billing/cancel', headers=owner_headers)

    assert response.status_code == 200
    body = response.get_json()["tenant"]
    assert body["subscription"]["status"] == "canceled"
    assert body["plan"] == "free"

    history = client.get('/api/billing/history', headers=owner_headers).get_json()["events"]
    assert history[0]["event_type"] == "canceled"


def test_cancel_without_subscription(client, owner_headers):
    assert client.post('/api/billing/cancel', headers=owner_headers).status_code == 404
