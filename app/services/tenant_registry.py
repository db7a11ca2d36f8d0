"""
Tenant Registry

Single source of truth for tenant identity, plan assignment and cached
subscription status. Holds no business rules: it reserves slugs, looks
tenants up, applies state changes under a row lock and appends to the
subscription audit log.
"""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import FlushError

from app import errors
from app.extensions import db
from app.models.plan import Plan
from app.models.subscription_event import SubscriptionEvent
from app.models.tenant import (
    STATE_ACTIVE,
    STATE_DELETING,
    STATE_FAILED,
    STATE_PROVISIONING,
    STATUS_NONE,
    Tenant,
)

logger = logging.getLogger(__name__)


class TenantRegistry:

    # ------------------------------------------------------------------
    # Slug reservation
    # ------------------------------------------------------------------

    def exists(self, slug: str) -> bool:
        return db.session.get(Tenant, slug) is not None

    def reserve(self, slug: str, name: str, plan: Plan) -> Tenant:
        """
        Insert the tenant row in the 'provisioning' state.

        The insert is the lock: primary-key uniqueness makes concurrent
        reservations of one slug fail for everyone but the first.

        Raises:
            SlugTaken: the slug was inserted by someone else
        """
        tenant = Tenant(
            slug=slug,
            name=name,
            plan_id=plan.id,
            state=STATE_PROVISIONING,
            subscription_status=STATUS_NONE,
            settings={},
        )
        db.session.add(tenant)
        try:
            db.session.commit()
        except (IntegrityError, FlushError):
            db.session.rollback()
            logger.info("Slug reservation lost", extra={"tenant": slug})
            raise errors.SlugTaken(f"Slug '{slug}' is already taken", slug=slug)
        return tenant

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, slug: str) -> Optional[Tenant]:
        return db.session.get(Tenant, slug)

    def get_active(self, slug: str) -> Optional[Tenant]:
        tenant = db.session.get(Tenant, slug)
        if tenant is None or tenant.state != STATE_ACTIVE:
            return None
        return tenant

    def find_by_subscription(self, subscription_id: str) -> Optional[Tenant]:
        if not subscription_id:
            return None
        return Tenant.query.filter_by(stripe_subscription_id=subscription_id, state=STATE_ACTIVE).first()

    def find_by_customer(self, customer_id: str) -> Optional[Tenant]:
        if not customer_id:
            return None
        return Tenant.query.filter_by(stripe_customer_id=customer_id, state=STATE_ACTIVE).first()

    def get_plan(self, slug: str) -> Optional[Plan]:
        if not slug:
            return None
        return Plan.query.filter_by(slug=slug).first()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self, slug: str):
        """
        Atomic read-modify-write of one tenant row.

        The row is read with SELECT ... FOR UPDATE (ignored by SQLite) and
        written back under the optimistic version counter, so a concurrent
        writer either waits or makes this commit fail with StaleDataError.
        Yields None when the tenant is not active.

        Usage:
            with registry.locked(slug) as tenant:
                tenant.subscription_status = 'past_due'
        """
        tenant = (
            Tenant.query
            .filter_by(slug=slug, state=STATE_ACTIVE)
            .with_for_update()
            .populate_existing()
            .first()
        )
        try:
            yield tenant
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def discard_changes(self) -> None:
        db.session.rollback()

    def mark_active(self, tenant: Tenant) -> None:
        tenant.state = STATE_ACTIVE
        tenant.failure_reason = None
        db.session.commit()

    def mark_failed(self, slug: str, reason: str) -> None:
        tenant = db.session.get(Tenant, slug)
        if tenant is None:
            return
        tenant.state = STATE_FAILED
        tenant.failure_reason = reason[:2000]
        db.session.commit()

    def mark_deleting(self, tenant: Tenant) -> None:
        tenant.state = STATE_DELETING
        db.session.commit()

    def delete(self, slug: str) -> None:
        tenant = db.session.get(Tenant, slug)
        if tenant is None:
            return
        db.session.delete(tenant)
        db.session.commit()

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def last_event(self, slug: str) -> Optional[SubscriptionEvent]:
        return (
            SubscriptionEvent.query
            .filter_by(tenant_slug=slug)
            .order_by(SubscriptionEvent.id.desc())
            .first()
        )

    def append_event(self, tenant: Tenant, event_type: str, metadata=None, provider_event_id=None) -> SubscriptionEvent:
        """Add an audit row for the tenant's current status/plan. Committed with the caller's transaction."""
        event = SubscriptionEvent(
            tenant_slug=tenant.slug,
            plan_id=tenant.plan_id,
            event_type=event_type,
            status=tenant.subscription_status,
            provider_event_id=provider_event_id,
            event_metadata=metadata or {},
        )
        db.session.add(event)
        return event

    def history(self, slug: str, limit: int = 50):
        return (
            SubscriptionEvent.query
            .filter_by(tenant_slug=slug)
            .order_by(SubscriptionEvent.id.desc())
            .limit(limit)
            .all()
        )
