from app.extensions import db, tenant_spaces
from app.models.tenant import STATE_FAILED, Tenant

SIGNUP = {
    "name": "Acme Inc",
    "owner_name": "Olivia Owner",
    "owner_email": "owner@acme.test",
    "owner_password": "SecurePass123",
}


def test_signup_returns_tenant_and_redirect(client):
    response = client.post('/api/v1/tenants', json=SIGNUP)

    assert response.status_code == 201
    body = response.get_json()
    assert body["tenant"]["slug"] == "acme-inc"
    assert body["tenant"]["state"] == "active"
    assert body["tenant"]["plan"] == "free"
    assert body["redirect_url"] == "https://acme-inc.example.test/login"


def test_signup_validation_error(client):
    response = client.post('/api/v1/tenants', json={**SIGNUP, "owner_password": "weak"})

    assert response.status_code == 400
    assert "owner_password" in response.get_json()["details"]


def test_signup_malformed_slug(client):
    response = client.post('/api/v1/tenants', json={**SIGNUP, "slug": "-bad-"})

    assert response.status_code == 400
    assert response.get_json()["reason"] == "validation"


def test_signup_same_slug_twice_gets_suffix(client):
    first = client.post('/api/v1/tenants', json={**SIGNUP, "slug": "acme"})
    second = client.post('/api/v1/tenants', json={**SIGNUP, "slug": "acme"})

    assert first.get_json()["tenant"]["slug"] == "acme"
    assert second.get_json()["tenant"]["slug"] == "acme-1"


def test_signup_provisioning_failure_is_503(client, monkeypatch):
    def broken_allocate(slug):
        raise RuntimeError("disk full")

    monkeypatch.setattr(tenant_spaces, 'allocate', broken_allocate)

    response = client.post('/api/v1/tenants', json={**SIGNUP, "slug": "acme"})

    assert response.status_code == 503
    assert response.get_json()["reason"] == "provisioning_failed"
    assert db.session.get(Tenant, 'acme') is None


def test_check_slug(client, tenant):
    assert client.get('/api/v1/tenants/check-slug/acme').get_json()["available"] is False
    assert client.get('/api/v1/tenants/check-slug/globex').get_json()["available"] is True
    assert client.get('/api/v1/tenants/check-slug/www').get_json()["available"] is False
    assert client.get('/api/v1/tenants/check-slug/x').status_code == 400


def test_admin_endpoints_require_token(client, tenant):
    assert client.get('/api/v1/tenants/acme').status_code == 401
    assert client.get('/api/v1/tenants/acme', headers={"X-Admin-Token": "wrong"}).status_code == 401


def test_admin_get_and_health(client, tenant, admin_headers):
    response = client.get('/api/v1/tenants/acme', headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["tenant"]["slug"] == "acme"

    health = client.get('/api/v1/tenants/acme/health', headers=admin_headers).get_json()
    assert health == {"slug": "acme", "healthy": True, "issues": []}


def test_admin_get_failed_tenant_shows_reason(client, tenant, admin_headers):
    tenant.state = STATE_FAILED
    tenant.failure_reason = "compensation failed"
    db.session.commit()

    body = client.get('/api/v1/tenants/acme', headers=admin_headers).get_json()
    assert body["tenant"]["state"] == "failed"
    assert body["tenant"]["failure_reason"] == "compensation failed"


def test_admin_delete_runs_deprovisioning(client, tenant, admin_headers):
    response = client.delete('/api/v1/tenants/acme', headers=admin_headers)

    assert response.status_code == 202
    assert db.session.get(Tenant, 'acme') is None
    assert not tenant_spaces.exists('acme')

    events = client.get('/api/v1/tenants/acme/events', headers=admin_headers).get_json()["events"]
    assert [e["event_type"] for e in events] == ["created"]


def test_admin_delete_unknown_tenant(client, admin_headers):
    assert client.delete('/api/v1/tenants/nobody', headers=admin_headers).status_code == 404


def test_plans_listing(client):
    plans = client.get('/api/v1/plans').get_json()["plans"]

    assert [p["slug"] for p in plans] == ["free", "pro-monthly", "pro-yearly"]
    assert plans[0]["features"]["max_boards"] == 3


def test_plan_admin_crud(client, admin_headers):
    payload = {"slug": "team", "name": "Team", "price": 99, "features": {"max_boards": 20, "analytics": True}}

    assert client.post('/api/v1/plans', json=payload).status_code == 401
    created = client.post('/api/v1/plans', json=payload, headers=admin_headers)
    assert created.status_code == 201
    assert client.post('/api/v1/plans', json=payload, headers=admin_headers).status_code == 409

    updated = client.put('/api/v1/plans/team', json={"trial_days": 7}, headers=admin_headers)
    assert updated.get_json()["plan"]["trial_days"] == 7

    assert client.delete('/api/v1/plans/team', headers=admin_headers).status_code == 200
    assert client.get('/api/v1/plans/team').status_code == 404


def test_plan_slug_cannot_be_renamed(client, tenant, admin_headers):
    response = client.put('/api/v1/plans/free', json={"slug": "basic"}, headers=admin_headers)

    assert response.status_code == 400
    assert client.get('/api/v1/plans/free').status_code == 200
    assert client.get('/api/v1/plans/basic').status_code == 404

    same = client.put('/api/v1/plans/free', json={"slug": "free", "name": "Starter"}, headers=admin_headers)
    assert same.get_json()["plan"]["name"] == "Starter"


def test_plan_in_use_cannot_be_deleted(client, tenant, admin_headers):
    response = client.delete('/api/v1/plans/free', headers=admin_headers)

    assert response.status_code == 409
    assert response.get_json()["reason"] == "conflict"


def test_plan_rejects_bad_feature_limit(client, admin_headers):
    payload = {"slug": "odd", "name": "Odd", "price": 1, "features": {"max_boards": -5}}

    assert client.post('/api/v1/plans', json=payload, headers=admin_headers).status_code == 400


def test_health(client):
    assert client.get('/api/health').get_json() == {"status": "ok"}
