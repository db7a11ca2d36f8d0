"""
Billing events

A verified Stripe webhook payload is parsed once, at the edge, into one of
the dataclasses below. Each variant carries only the fields the reconciler
needs for that kind of event, so nothing downstream digs through raw
payload dicts.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingEvent:
    event_id: str


@dataclass(frozen=True)
class CheckoutCompleted(BillingEvent):
    customer_id: Optional[str]
    subscription_id: Optional[str]
    tenant_ref: Optional[str]
    plan_ref: Optional[str]


@dataclass(frozen=True)
class SubscriptionCreated(BillingEvent):
    subscription_id: str
    customer_id: Optional[str]
    status: str
    tenant_ref: Optional[str]
    plan_ref: Optional[str]
    trial_end: Optional[datetime] = None


@dataclass(frozen=True)
class SubscriptionUpdated(BillingEvent):
    subscription_id: str
    customer_id: Optional[str]
    status: str
    tenant_ref: Optional[str]
    trial_end: Optional[datetime] = None


@dataclass(frozen=True)
class SubscriptionDeleted(BillingEvent):
    subscription_id: str
    customer_id: Optional[str]
    tenant_ref: Optional[str]


@dataclass(frozen=True)
class InvoicePaid(BillingEvent):
    customer_id: Optional[str]
    subscription_id: Optional[str]
    tenant_ref: Optional[str] = None


@dataclass(frozen=True)
class InvoicePaymentFailed(BillingEvent):
    customer_id: Optional[str]
    subscription_id: Optional[str]
    tenant_ref: Optional[str] = None
    attempt_count: int = field(default=0)


def _timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.utcfromtimestamp(int(value))


def _metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    return obj.get('metadata') or {}


def _invoice_tenant_ref(invoice: Dict[str, Any]) -> Optional[str]:
    # newer API versions move subscription metadata under parent.subscription_details
    details = invoice.get('subscription_details') or \
        ((invoice.get('parent') or {}).get('subscription_details') or {})
    return (details.get('metadata') or {}).get('tenant_id')


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get('subscription')
    if subscription is None:
        details = (invoice.get('parent') or {}).get('subscription_details') or {}
        subscription = details.get('subscription')
    if isinstance(subscription, dict):
        return subscription.get('id')
    return subscription


def _checkout_completed(event_id, obj):
    metadata = _metadata(obj)
    return CheckoutCompleted(
        event_id=event_id,
        customer_id=obj.get('customer'),
        subscription_id=obj.get('subscription'),
        tenant_ref=metadata.get('tenant_id'),
        plan_ref=metadata.get('plan_id'),
    )


def _subscription_created(event_id, obj):
    metadata = _metadata(obj)
    return SubscriptionCreated(
        event_id=event_id,
        subscription_id=obj['id'],
        customer_id=obj.get('customer'),
        status=obj.get('status', ''),
        tenant_ref=metadata.get('tenant_id'),
        plan_ref=metadata.get('plan_id'),
        trial_end=_timestamp(obj.get('trial_end')),
    )


def _subscription_updated(event_id, obj):
    return SubscriptionUpdated(
        event_id=event_id,
        subscription_id=obj['id'],
        customer_id=obj.get('customer'),
        status=obj.get('status', ''),
        tenant_ref=_metadata(obj).get('tenant_id'),
        trial_end=_timestamp(obj.get('trial_end')),
    )


def _subscription_deleted(event_id, obj):
    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=obj['id'],
        customer_id=obj.get('customer'),
        tenant_ref=_metadata(obj).get('tenant_id'),
    )


def _invoice_paid(event_id, obj):
    return InvoicePaid(
        event_id=event_id,
        customer_id=obj.get('customer'),
        subscription_id=_invoice_subscription_id(obj),
        tenant_ref=_invoice_tenant_ref(obj),
    )


def _invoice_payment_failed(event_id, obj):
    return InvoicePaymentFailed(
        event_id=event_id,
        customer_id=obj.get('customer'),
        subscription_id=_invoice_subscription_id(obj),
        tenant_ref=_invoice_tenant_ref(obj),
        attempt_count=obj.get('attempt_count') or 0,
    )


PARSERS: Dict[str, Callable[[str, Dict[str, Any]], BillingEvent]] = {
    'checkout.session.completed': _checkout_completed,
    'customer.subscription.created': _subscription_created,
    'customer.subscription.updated': _subscription_updated,
    'customer.subscription.deleted': _subscription_deleted,
    'invoice.paid': _invoice_paid,
    'invoice.payment_succeeded': _invoice_paid,
    'invoice.payment_failed': _invoice_payment_failed,
}


def parse_event(payload: Dict[str, Any]) -> Optional[BillingEvent]:
    """
    Turn a Stripe event dict into a BillingEvent.

    Returns:
        The parsed event, or None when the event type is not one we handle

    Raises:
        ValueError: the payload is not a Stripe event
    """
    try:
        event_type = payload['type']
        event_id = payload['id']
        obj = payload['data']['object']
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed Stripe event: missing {e}") from e

    parser = PARSERS.get(event_type)
    if parser is None:
        logger.info("Unhandled Stripe event type", extra={"event_type": event_type, "event_id": event_id})
        return None

    try:
        return parser(event_id, obj)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed Stripe '{event_type}' event: missing {e}") from e
