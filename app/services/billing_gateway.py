"""
Billing Gateway

Thin adapter over the Stripe SDK: customers, checkout and portal sessions,
subscription changes and webhook signature verification. Stripe is treated
as an unreliable remote: every call is bounded by BILLING_TIMEOUT_SECONDS and
every Stripe failure is logged with the tenant/plan ids and re-raised as
DependencyError.
"""
import logging
from typing import Any, Dict, Optional

import stripe
from flask import current_app

from app import errors

logger = logging.getLogger(__name__)


def get_billing_gateway():
    """Return the gateway registered on the current app (tests swap in a fake)."""
    return current_app.extensions['billing_gateway']


class StripeGateway:
    """Service for talking to Stripe on behalf of one deployment."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str],
                 timeout: float = 20, max_network_retries: int = 2,
                 webhook_tolerance: int = 300, frontend_url: str = '', app_domain: str = '',
                 app_scheme: str = 'https'):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance
        self.frontend_url = frontend_url.rstrip('/')
        self.app_domain = app_domain
        self.app_scheme = app_scheme

        stripe.max_network_retries = max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get('STRIPE_SECRET_KEY'),
            webhook_secret=config.get('STRIPE_WEBHOOK_SECRET'),
            timeout=config.get('BILLING_TIMEOUT_SECONDS', 20),
            max_network_retries=config.get('STRIPE_MAX_NETWORK_RETRIES', 2),
            webhook_tolerance=config.get('STRIPE_WEBHOOK_TOLERANCE', 300),
            frontend_url=config.get('FRONTEND_URL', ''),
            app_domain=config.get('APP_DOMAIN', ''),
            app_scheme=config.get('APP_SCHEME', 'https'),
        )

    def _require_key(self):
        if not self.secret_key:
            raise errors.DependencyError("Stripe is not configured. Set STRIPE_SECRET_KEY in environment.")
        return self.secret_key

    def _call(self, action: str, fn, context: Dict[str, Any], **params):
        api_key = self._require_key()
        try:
            return fn(api_key=api_key, **params)
        except stripe.StripeError as e:
            logger.error("Stripe API error", extra={"action": action, "error": str(e), **context})
            raise errors.DependencyError(f"Stripe {action} failed: {e.user_message or str(e)}", **context) from e

    def tenant_url(self, slug: str) -> str:
        return f"{self.app_scheme}://{slug}.{self.app_domain}"

    # ------------------------------------------------------------------
    # Customers / sessions
    # ------------------------------------------------------------------

    def get_or_create_customer(self, tenant, owner_email: Optional[str] = None) -> str:
        """Return the tenant's Stripe customer id, creating the customer on first use."""
        if tenant.stripe_customer_id:
            return tenant.stripe_customer_id

        customer = self._call(
            'customer.create',
            stripe.Customer.create,
            {"tenant": tenant.slug},
            name=tenant.name,
            email=owner_email,
            metadata={"tenant_id": tenant.slug, "tenant_name": tenant.name},
        )
        logger.info("Stripe customer created", extra={"tenant": tenant.slug, "customer_id": customer.id})
        return customer.id

    def create_checkout_session(self, tenant, plan, customer_id: str,
                                success_url: Optional[str] = None, cancel_url: Optional[str] = None) -> Dict[str, str]:
        """
        Start a subscription checkout for a plan.

        Both the session and the resulting subscription carry the tenant and
        plan in their metadata so webhooks can be matched back to the tenant.

        Returns:
            Dict with 'id' and 'url'
        """
        if not plan.stripe_price_id:
            raise errors.ValidationError(f"Plan '{plan.slug}' does not have a Stripe price ID configured.")

        base = self.tenant_url(tenant.slug)
        metadata = {"tenant_id": tenant.slug, "plan_id": plan.slug}
        subscription_data = {"metadata": metadata}
        if plan.trial_days:
            subscription_data["trial_period_days"] = plan.trial_days

        session = self._call(
            'checkout.create',
            stripe.checkout.Session.create,
            {"tenant": tenant.slug, "plan": plan.slug},
            customer=customer_id,
            mode='subscription',
            line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
            success_url=success_url or f"{base}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{base}/billing/cancel",
            metadata=metadata,
            subscription_data=subscription_data,
            allow_promotion_codes=True,
            billing_address_collection='required',
        )
        return {"id": session.id, "url": session.url}

    def create_portal_session(self, tenant, return_url: Optional[str] = None) -> Dict[str, str]:
        if not tenant.stripe_customer_id:
            raise errors.ValidationError("No billing account found for this organization")

        session = self._call(
            'portal.create',
            stripe.billing_portal.Session.create,
            {"tenant": tenant.slug},
            customer=tenant.stripe_customer_id,
            return_url=return_url or f"{self.tenant_url(tenant.slug)}/dashboard",
        )
        return {"url": session.url}

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def update_subscription(self, tenant, plan) -> None:
        """Swap the subscription's single price for the new plan's price."""
        if not plan.stripe_price_id:
            raise errors.ValidationError(f"Plan '{plan.slug}' does not have a Stripe price ID configured.")
        context = {"tenant": tenant.slug, "plan": plan.slug, "subscription_id": tenant.stripe_subscription_id}

        subscription = self._call(
            'subscription.retrieve', stripe.Subscription.retrieve, context,
            id=tenant.stripe_subscription_id,
        )
        item_id = subscription['items']['data'][0]['id']
        self._call(
            'subscription.update', stripe.Subscription.modify, context,
            id=tenant.stripe_subscription_id,
            items=[{"id": item_id, "price": plan.stripe_price_id}],
            proration_behavior='always_invoice',
            metadata={"tenant_id": tenant.slug, "plan_id": plan.slug},
        )

    def cancel_subscription(self, tenant) -> None:
        self._call(
            'subscription.cancel', stripe.Subscription.cancel,
            {"tenant": tenant.slug, "subscription_id": tenant.stripe_subscription_id},
            subscription_exposed_id=tenant.stripe_subscription_id,
            prorate=True,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> None:
        """
        Check the Stripe-Signature header against the endpoint secret.

        Raises:
            ValidationError: missing/invalid signature
            DependencyError: webhook secret not configured
        """
        if not self.webhook_secret:
            raise errors.DependencyError("Stripe webhook secret not configured")
        if not signature:
            raise errors.ValidationError("Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode('utf-8'), signature, self.webhook_secret, self.webhook_tolerance
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise errors.ValidationError(f"Invalid signature: {e}") from e
