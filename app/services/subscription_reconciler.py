"""
Subscription Reconciler

Applies billing events to the tenant row so local plan/subscription state
converges on what Stripe reports.

    none -> trialing -> active -> past_due -> canceled
                        active ----------------> canceled
                        past_due -> active (invoice paid)

Every transition is computed from (persisted status, incoming event) only.
Events are applied last-write-wins in arrival order; Stripe's status string
is stored verbatim. A SubscriptionEvent row is appended only when the
resulting status or plan differs from the last one recorded for the tenant,
which makes replayed webhooks no-ops.
"""
import logging
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from app import errors
from app.models.subscription_event import (
    EVENT_CANCELED,
    EVENT_CREATED,
    EVENT_DOWNGRADED,
    EVENT_UPDATED,
    EVENT_UPGRADED,
)
from app.models.tenant import STATUS_ACTIVE, STATUS_CANCELED, STATUS_PAST_DUE, STATUS_TRIALING
from app.services.billing_events import (
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from app.services.billing_gateway import get_billing_gateway
from app.services.tenant_registry import TenantRegistry

logger = logging.getLogger(__name__)

LIVE_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE, STATUS_PAST_DUE)


class SubscriptionReconciler:

    def __init__(self, registry=None, gateway=None, config=None):
        config = config if config is not None else current_app.config
        self.registry = registry or TenantRegistry()
        self._gateway = gateway
        self.max_retries = config.get('RECONCILE_MAX_RETRIES', 3)
        self.free_plan_slug = config.get('DEFAULT_PLAN_SLUG', 'free')
        self._handlers = {
            CheckoutCompleted: self._checkout_completed,
            SubscriptionCreated: self._subscription_created,
            SubscriptionUpdated: self._subscription_updated,
            SubscriptionDeleted: self._subscription_deleted,
            InvoicePaid: self._invoice_paid,
            InvoicePaymentFailed: self._invoice_payment_failed,
        }

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = get_billing_gateway()
        return self._gateway

    # ------------------------------------------------------------------
    # Webhook events
    # ------------------------------------------------------------------

    def apply(self, event) -> bool:
        """
        Apply one billing event.

        Returns:
            True if the tenant row changed, False for no-ops and dropped events

        Raises:
            Anything other than InvariantViolation, so the webhook answers 5xx
            and Stripe redelivers.
        """
        handler = self._handlers[type(event)]
        log_context = {"event_id": event.event_id, "event_kind": type(event).__name__}

        attempt = 0
        while True:
            attempt += 1
            try:
                return handler(event)
            except errors.InvariantViolation as e:
                logger.warning("Billing event dropped", extra={**log_context, "reason": e.message, **e.context})
                return False
            except StaleDataError:
                if attempt > self.max_retries:
                    logger.error("Billing event lost the tenant row race too many times", extra={
                        **log_context, "attempts": attempt,
                    })
                    raise
                logger.info("Tenant row changed concurrently, retrying billing event", extra={
                    **log_context, "attempt": attempt,
                })

    def _resolve(self, event) -> str:
        """Find the active tenant an event belongs to."""
        tenant = None
        if isinstance(event, CheckoutCompleted):
            tenant = self.registry.get_active(event.tenant_ref)
        elif isinstance(event, (InvoicePaid, InvoicePaymentFailed)):
            tenant = (
                self.registry.find_by_customer(event.customer_id)
                or self.registry.find_by_subscription(event.subscription_id)
                or (self.registry.get_active(event.tenant_ref) if event.tenant_ref else None)
            )
        else:
            tenant = self.registry.find_by_subscription(event.subscription_id)
            if tenant is None and event.tenant_ref:
                tenant = self.registry.get_active(event.tenant_ref)

        if tenant is None:
            raise errors.InvariantViolation(
                "No active tenant for billing event",
                tenant_ref=getattr(event, 'tenant_ref', None),
                subscription_id=getattr(event, 'subscription_id', None),
                customer_id=getattr(event, 'customer_id', None),
            )
        return tenant.slug

    def _record(self, tenant, event_type, event_id=None, metadata=None) -> bool:
        """Append an audit row if status or plan moved since the last one."""
        last = self.registry.last_event(tenant.slug)
        if last is not None and last.status == tenant.subscription_status and last.plan_id == tenant.plan_id:
            return False
        self.registry.append_event(tenant, event_type, metadata=metadata, provider_event_id=event_id)
        return True

    def _is_stale(self, tenant, event) -> bool:
        if tenant.stripe_subscription_id and tenant.stripe_subscription_id != event.subscription_id:
            logger.warning("Billing event for a superseded subscription dropped", extra={
                "event_id": event.event_id,
                "tenant": tenant.slug,
                "subscription_id": event.subscription_id,
                "bound_subscription_id": tenant.stripe_subscription_id,
            })
            return True
        return False

    def _bind_plan(self, tenant, plan_ref, event_id):
        if not plan_ref:
            return
        plan = self.registry.get_plan(plan_ref)
        if plan is None:
            logger.warning("Billing event references an unknown plan", extra={
                "event_id": event_id, "tenant": tenant.slug, "plan": plan_ref,
            })
            return
        tenant.plan_id = plan.id

    def _free_plan(self):
        plan = self.registry.get_plan(self.free_plan_slug)
        if plan is None:
            logger.error("Free plan missing, cannot downgrade canceled tenants", extra={
                "plan": self.free_plan_slug,
            })
            raise errors.DependencyError(
                f"Free plan '{self.free_plan_slug}' is not configured", plan=self.free_plan_slug
            )
        return plan

    def _checkout_completed(self, event: CheckoutCompleted) -> bool:
        slug = self._resolve(event)
        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.InvariantViolation("Tenant left the active state", tenant=slug)

            if event.customer_id:
                tenant.stripe_customer_id = event.customer_id
            if event.subscription_id:
                tenant.stripe_subscription_id = event.subscription_id
            self._bind_plan(tenant, event.plan_ref, event.event_id)
            tenant.subscription_status = STATUS_ACTIVE
            tenant.subscription_ends_at = None

            changed = self._record(tenant, EVENT_UPDATED, event.event_id, {"source": "checkout"})

        logger.info("Checkout completed", extra={
            "event_id": event.event_id,
            "tenant": slug,
            "subscription_id": event.subscription_id,
        })
        return changed

    def _subscription_created(self, event: SubscriptionCreated) -> bool:
        slug = self._resolve(event)
        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.InvariantViolation("Tenant left the active state", tenant=slug)

            tenant.stripe_subscription_id = event.subscription_id
            if event.customer_id and not tenant.stripe_customer_id:
                tenant.stripe_customer_id = event.customer_id
            self._bind_plan(tenant, event.plan_ref, event.event_id)
            tenant.subscription_status = event.status or tenant.subscription_status
            tenant.trial_ends_at = event.trial_end
            tenant.subscription_ends_at = None

            changed = self._record(tenant, EVENT_CREATED, event.event_id)

        logger.info("Subscription created", extra={
            "event_id": event.event_id,
            "tenant": slug,
            "subscription_id": event.subscription_id,
            "status": event.status,
        })
        return changed

    def _subscription_updated(self, event: SubscriptionUpdated) -> bool:
        slug = self._resolve(event)
        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.InvariantViolation("Tenant left the active state", tenant=slug)
            if self._is_stale(tenant, event):
                return False

            tenant.stripe_subscription_id = event.subscription_id
            tenant.subscription_status = event.status or tenant.subscription_status
            tenant.trial_ends_at = event.trial_end

            changed = self._record(tenant, EVENT_UPDATED, event.event_id)

        logger.info("Subscription updated", extra={
            "event_id": event.event_id,
            "tenant": slug,
            "subscription_id": event.subscription_id,
            "status": event.status,
        })
        return changed

    def _subscription_deleted(self, event: SubscriptionDeleted) -> bool:
        slug = self._resolve(event)
        free_plan = self._free_plan()
        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.InvariantViolation("Tenant left the active state", tenant=slug)
            if self._is_stale(tenant, event):
                return False

            if not tenant.is_canceled():
                tenant.subscription_ends_at = datetime.utcnow()
            tenant.subscription_status = STATUS_CANCELED
            tenant.plan_id = free_plan.id

            changed = self._record(tenant, EVENT_CANCELED, event.event_id)

        logger.info("Subscription canceled", extra={
            "event_id": event.event_id,
            "tenant": slug,
            "subscription_id": event.subscription_id,
        })
        return changed

    def _invoice_paid(self, event: InvoicePaid) -> bool:
        slug = self._resolve(event)
        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.InvariantViolation("Tenant left the active state", tenant=slug)
            if not tenant.is_past_due():
                return False

            tenant.subscription_status = STATUS_ACTIVE
            changed = self._record(tenant, EVENT_UPDATED, event.event_id, {"source": "invoice"})

        logger.info("Invoice paid, subscription recovered", extra={"event_id": event.event_id, "tenant": slug})
        return changed

    def _invoice_payment_failed(self, event: InvoicePaymentFailed) -> bool:
        slug = self._resolve(event)
        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.InvariantViolation("Tenant left the active state", tenant=slug)
            if tenant.is_canceled():
                return False

            tenant.subscription_status = STATUS_PAST_DUE
            changed = self._record(tenant, EVENT_UPDATED, event.event_id, {
                "source": "invoice",
                "attempt_count": event.attempt_count,
            })

        logger.warning("Invoice payment failed", extra={
            "event_id": event.event_id,
            "tenant": slug,
            "attempt_count": event.attempt_count,
        })
        return changed

    # ------------------------------------------------------------------
    # Owner actions
    # ------------------------------------------------------------------

    def change_plan(self, slug: str, plan_slug: str):
        """
        Move a tenant to another plan. A live paid subscription is switched
        to the new price at Stripe first; the lock is only taken afterwards
        so it is never held across the round trip.

        Raises:
            NotFound: tenant or plan missing
            ValidationError: same plan, or a move checkout/cancel must handle
            DependencyError: Stripe refused the change
        """
        tenant = self.registry.get_active(slug)
        if tenant is None:
            raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
        new_plan = self.registry.get_plan(plan_slug)
        if new_plan is None or not new_plan.is_active:
            raise errors.NotFound(f"Plan '{plan_slug}' not found", plan=plan_slug)

        old_plan = tenant.plan
        if old_plan is not None and old_plan.id == new_plan.id:
            raise errors.ValidationError("Organization is already on this plan", plan=plan_slug)

        live = bool(tenant.stripe_subscription_id) and tenant.subscription_status in LIVE_STATUSES
        if new_plan.is_free and live:
            raise errors.ValidationError("Cancel the current subscription to move to the free plan")
        if not new_plan.is_free and not live:
            raise errors.ValidationError("Start a checkout to subscribe to a paid plan", plan=plan_slug)

        if live:
            self.gateway.update_subscription(tenant, new_plan)

        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
            tenant.plan_id = new_plan.id
            self.registry.append_event(tenant, _plan_change_kind(old_plan, new_plan), metadata={
                "old_plan": old_plan.slug if old_plan else None,
                "new_plan": new_plan.slug,
            })

        logger.info("Tenant plan changed", extra={
            "tenant": slug,
            "old_plan": old_plan.slug if old_plan else None,
            "plan": new_plan.slug,
        })
        return tenant

    def cancel_subscription(self, slug: str):
        """
        Cancel the tenant's subscription at Stripe and fall back to the free
        plan. The later customer.subscription.deleted webhook is then a no-op.
        """
        tenant = self.registry.get_active(slug)
        if tenant is None:
            raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
        if not tenant.stripe_subscription_id or tenant.is_canceled():
            raise errors.NotFound("No active subscription found", slug=slug)

        # resolved before Stripe is touched so a cancel is never half-applied
        free_plan = self._free_plan()
        self.gateway.cancel_subscription(tenant)

        with self.registry.locked(slug) as tenant:
            if tenant is None:
                raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
            tenant.subscription_status = STATUS_CANCELED
            tenant.subscription_ends_at = datetime.utcnow()
            tenant.plan_id = free_plan.id
            self._record(tenant, EVENT_CANCELED, metadata={"source": "owner"})

        logger.info("Subscription canceled by owner", extra={"tenant": slug})
        return tenant


def _plan_change_kind(old_plan, new_plan) -> str:
    old_price = Decimal(old_plan.price or 0) if old_plan else Decimal(0)
    new_price = Decimal(new_plan.price or 0)
    if new_price > old_price:
        return EVENT_UPGRADED
    if new_price < old_price:
        return EVENT_DOWNGRADED
    return EVENT_UPDATED
