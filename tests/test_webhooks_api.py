import json
import time

from app.extensions import db
from app.models.subscription_event import SubscriptionEvent
from app.models.tenant import Tenant


def _subscription(status='active', sub='sub_1', plan='pro-monthly'):
    return {
        "id": sub,
        "object": "subscription",
        "customer": "cus_acme",
        "status": status,
        "metadata": {"tenant_id": "acme", "plan_id": plan},
    }


def _status():
    db.session.expire_all()
    return db.session.get(Tenant, 'acme').subscription_status


def test_missing_signature_is_400(client, tenant, stripe_event):
    payload = json.dumps(stripe_event('customer.subscription.created', _subscription()))

    response = client.post('/api/webhooks/stripe', data=payload, content_type='application/json')

    assert response.status_code == 400
    assert _status() == 'none'


def test_bad_signature_is_400(post_webhook, tenant, stripe_event):
    response = post_webhook(stripe_event('customer.subscription.created', _subscription()), secret='whsec_wrong')

    assert response.status_code == 400
    assert _status() == 'none'


def test_stale_timestamp_is_400(post_webhook, tenant, stripe_event):
    response = post_webhook(
        stripe_event('customer.subscription.created', _subscription()),
        timestamp=int(time.time()) - 3600,
    )

    assert response.status_code == 400


def test_unconfigured_secret_is_503(client, post_webhook, gateway, tenant, stripe_event):
    gateway.webhook_secret = None

    response = post_webhook(stripe_event('customer.subscription.created', _subscription()))

    assert response.status_code == 503


def test_subscription_lifecycle_through_webhooks(post_webhook, tenant, stripe_event):
    assert post_webhook(stripe_event('checkout.session.completed', {
        "id": "cs_1",
        "customer": "cus_acme",
        "subscription": "sub_1",
        "metadata": {"tenant_id": "acme", "plan_id": "pro-monthly"},
    })).status_code == 200
    assert _status() == 'active'

    assert post_webhook(stripe_event('invoice.payment_failed', {
        "id": "in_1", "customer": "cus_acme", "subscription": "sub_1", "attempt_count": 1,
    })).status_code == 200
    assert _status() == 'past_due'

    assert post_webhook(stripe_event('invoice.paid', {
        "id": "in_1", "customer": "cus_acme", "subscription": "sub_1",
    })).status_code == 200
    assert _status() == 'active'

    deleted = stripe_event('customer.subscription.deleted', _subscription(status='canceled'))
    assert post_webhook(deleted).status_code == 200
    assert post_webhook(deleted).status_code == 200
    assert _status() == 'canceled'

    canceled = SubscriptionEvent.query.filter_by(tenant_slug='acme', event_type='canceled').count()
    assert canceled == 1


def test_unhandled_event_type_is_acknowledged(post_webhook, tenant, stripe_event):
    response = post_webhook(stripe_event('customer.created', {"id": "cus_1"}))

    assert response.status_code == 200
    assert response.get_json()["handled"] is False


def test_event_for_unknown_tenant_is_dropped_with_200(post_webhook, tenant, stripe_event):
    obj = _subscription(sub='sub_x')
    obj["metadata"]["tenant_id"] = "ghost"

    response = post_webhook(stripe_event('customer.subscription.created', obj))

    assert response.status_code == 200
    assert response.get_json()["changed"] is False


def test_malformed_payload_is_400(post_webhook, tenant):
    response = post_webhook({"type": "invoice.paid", "data": {}})

    assert response.status_code == 400


def test_processing_failure_is_500(post_webhook, tenant, stripe_event, monkeypatch):
    from app.services.subscription_reconciler import SubscriptionReconciler

    def explode(self, event):
        raise RuntimeError("database went away")

    monkeypatch.setattr(SubscriptionReconciler, 'apply', explode)

    response = post_webhook(stripe_event('customer.subscription.created', _subscription()))

    assert response.status_code == 500
