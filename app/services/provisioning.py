"""
Tenant Provisioning Service

Creates and tears down tenants. Creation is a saga:

    1. reserve the slug (tenant row in 'provisioning')
    2. allocate the tenant's isolated space
    3. seed roles/permissions and create the owner
    4. create starter resources
    5. mark the tenant active and log 'created'

A failure in steps 2-5 is compensated (space dropped, row deleted) so the
slug is free again. If compensation fails too, the row is parked in the
'failed' state for an operator; it is never retried automatically. A row
left in 'provisioning' by a crashed worker can be cleared by an operator
once it is older than PROVISIONING_STALE_SECONDS.
"""
import logging
import re
import unicodedata
from concurrent.futures import ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from werkzeug.security import generate_password_hash

from app import errors
from app.extensions import tenant_spaces
from app.models.subscription_event import EVENT_CREATED
from app.models.tenant import STATE_FAILED, STATE_PROVISIONING, STATUS_NONE
from app.models.tenant_space import Board, Permission, Role, TenantUser
from app.services.billing_gateway import get_billing_gateway
from app.services.permissions import ROLE_OWNER, bootstrap_permissions
from app.services.tenant_registry import TenantRegistry
from app.services.tenant_spaces import TenantContext

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r'^[a-z0-9](?:[a-z0-9-]{1,61})[a-z0-9]$')
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 63

RESERVED_SLUGS = frozenset([
    'www', 'app', 'api', 'admin', 'mail', 'ftp', 'localhost',
    'dashboard', 'help', 'support', 'blog',
])

STARTER_BOARD = {
    'name': 'Getting Started',
    'description': 'Your first board to get started',
    'color': '#3B82F6',
    'is_private': False,
}

# Steps 2-4 run here so they can be abandoned after a timeout
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix='tenant-provisioning')


def slugify(value: str) -> str:
    """'Acme Inc.' -> 'acme-inc'"""
    value = unicodedata.normalize('NFKD', value or '').encode('ascii', 'ignore').decode('ascii')
    value = re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-')
    value = re.sub(r'-{2,}', '-', value)
    return value[:SLUG_MAX_LENGTH].rstrip('-')


def validate_slug(slug: str) -> None:
    """
    Raises:
        ValidationError: slug is malformed
    """
    if not slug or not SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH:
        raise errors.ValidationError(
            f"Slug must be between {SLUG_MIN_LENGTH} and {SLUG_MAX_LENGTH} characters", slug=slug
        )
    if not SLUG_PATTERN.match(slug):
        raise errors.ValidationError(
            "Slug can only contain lowercase letters, numbers, and hyphens, "
            "and must start and end with a letter or number",
            slug=slug,
        )


def is_reserved(slug: str) -> bool:
    return slug in RESERVED_SLUGS


@dataclass
class ProvisionRequest:
    name: str
    owner_name: str
    owner_email: str
    owner_password: str
    slug: Optional[str] = None
    plan_slug: Optional[str] = None


class ProvisioningService:

    def __init__(self, registry=None, spaces=None, gateway=None, config=None):
        config = config if config is not None else current_app.config
        self.registry = registry or TenantRegistry()
        self.spaces = spaces or tenant_spaces
        self._gateway = gateway
        self.default_plan_slug = config.get('DEFAULT_PLAN_SLUG', 'free')
        self.max_slug_attempts = config.get('SLUG_MAX_ATTEMPTS', 20)
        self.step_timeout = config.get('TENANT_SPACE_TIMEOUT_SECONDS', 30)
        self.stale_after = config.get('PROVISIONING_STALE_SECONDS', 600)
        self.app_domain = config.get('APP_DOMAIN', 'localhost')
        self.app_scheme = config.get('APP_SCHEME', 'https')

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = get_billing_gateway()
        return self._gateway

    # ------------------------------------------------------------------
    # Slugs
    # ------------------------------------------------------------------

    def is_slug_available(self, slug: str) -> bool:
        validate_slug(slug)
        return not is_reserved(slug) and not self.registry.exists(slug)

    def choose_slug(self, base: str) -> str:
        """
        Return base, or base-1, base-2, ... skipping reserved and registered slugs.

        Raises:
            ValidationError: base is malformed
            SlugExhausted: no free candidate within SLUG_MAX_ATTEMPTS
        """
        validate_slug(base)
        for attempt in range(self.max_slug_attempts):
            if attempt == 0:
                candidate = base
            else:
                suffix = f'-{attempt}'
                candidate = base[:SLUG_MAX_LENGTH - len(suffix)].rstrip('-') + suffix
            if not is_reserved(candidate) and not self.registry.exists(candidate):
                return candidate

        raise errors.SlugExhausted(
            f"No free slug found for '{base}' after {self.max_slug_attempts} attempts", slug=base
        )

    def tenant_url(self, slug: str) -> str:
        return f"{self.app_scheme}://{slug}.{self.app_domain}"

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision(self, request: ProvisionRequest):
        """
        Create a tenant with its isolated space, roles, owner and starter board.

        Returns:
            Tenant in the 'active' state

        Raises:
            ValidationError: bad name/slug/plan
            SlugTaken: a concurrent request reserved the same slug first
            SlugExhausted: no free slug variant
            ProvisioningFailed: a step failed; the tenant was rolled back
                (compensated=True) or parked as 'failed' (compensated=False)
        """
        name = (request.name or '').strip()
        if not name:
            raise errors.ValidationError("Organization name is required")

        plan_slug = request.plan_slug or self.default_plan_slug
        plan = self.registry.get_plan(plan_slug)
        if plan is None or not plan.is_active:
            raise errors.ValidationError(f"Plan '{plan_slug}' does not exist or is not available", plan=plan_slug)

        base = request.slug if request.slug else slugify(name)
        slug = self.choose_slug(base)

        # Step 1: the insert is the lock
        tenant = self.registry.reserve(slug, name, plan)
        logger.info("Tenant slug reserved", extra={"tenant": slug, "plan": plan.slug})

        ctx = TenantContext(slug)
        allocated = False
        try:
            # Step 2
            self._run_step('allocate_space', self.spaces.allocate, slug)
            allocated = True

            # Steps 3 and 4
            self._run_step('bootstrap', self._bootstrap_space, ctx, request)

            # Step 5
            tenant.subscription_status = STATUS_NONE
            self.registry.append_event(tenant, EVENT_CREATED, metadata={"owner_email": request.owner_email})
            self.registry.mark_active(tenant)
        except Exception as exc:
            logger.exception("Tenant provisioning failed, compensating", extra={
                "tenant": slug,
                "space_allocated": allocated,
                "error": str(exc),
            })
            compensated = self._compensate(slug, allocated, exc)
            if compensated:
                raise errors.ProvisioningFailed(
                    "Organization could not be created, please try again", compensated=True, slug=slug
                ) from exc
            raise errors.ProvisioningFailed(
                "Organization could not be created and needs manual cleanup", compensated=False, slug=slug
            ) from exc

        logger.info("Tenant provisioned", extra={"tenant": slug, "plan": plan.slug})
        return tenant

    def _run_step(self, step, fn, *args):
        future = _executor.submit(fn, *args)
        try:
            return future.result(timeout=self.step_timeout)
        except FutureTimeout:
            future.cancel()
            raise errors.DependencyError(
                f"Provisioning step '{step}' timed out after {self.step_timeout}s", step=step, future=future
            )

    def _bootstrap_space(self, ctx: TenantContext, request: ProvisionRequest) -> None:
        with self.spaces.session(ctx) as session:
            bootstrap_permissions(session)

            owner = TenantUser(
                name=request.owner_name,
                email=request.owner_email.strip().lower(),
                password_hash=generate_password_hash(request.owner_password),
                role=ROLE_OWNER,
                is_active=True,
            )
            session.add(owner)
            session.flush()

            session.add(Board(created_by=owner.id, **STARTER_BOARD))

    def _compensate(self, slug: str, allocated: bool, cause: Exception) -> bool:
        """Undo steps 1-5. Returns False (and parks the tenant as failed) if the undo itself fails."""
        stray = cause.context.get('future') if isinstance(cause, errors.TenancyError) else None
        try:
            # a failed step 5 commit leaves the session unusable
            self.registry.discard_changes()
            if stray is not None:
                # a timed-out step may still be writing; give it one more bounded window
                wait([stray], timeout=self.step_timeout)
                if not stray.done():
                    raise RuntimeError("timed-out provisioning step is still running")
            if allocated or self.spaces.exists(slug):
                self.spaces.drop(slug)
            self.registry.delete(slug)
            logger.info("Tenant provisioning compensated", extra={"tenant": slug})
            return True
        except Exception as exc:
            logger.exception("Tenant compensation failed, manual cleanup required", extra={
                "tenant": slug,
                "error": str(exc),
            })
            try:
                self.registry.mark_failed(slug, f"{cause}; compensation failed: {exc}")
            except Exception:
                logger.exception("Could not mark tenant as failed", extra={"tenant": slug})
            return False

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def deprovision(self, slug: str) -> None:
        """
        Delete a tenant: cancel its subscription (best effort), drop its
        space and delete its row. Irreversible.

        Raises:
            NotFound: no such tenant
            ConflictError: the tenant is still being provisioned
            DependencyError: the space could not be dropped (row stays 'deleting')
        """
        tenant = self.registry.get(slug)
        if tenant is None:
            raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
        if tenant.state == STATE_PROVISIONING:
            raise errors.ConflictError(f"Tenant '{slug}' is still being provisioned", slug=slug)

        subscription_id = tenant.stripe_subscription_id
        live_subscription = subscription_id and not tenant.is_canceled()

        self.registry.mark_deleting(tenant)

        if live_subscription:
            try:
                self.gateway.cancel_subscription(tenant)
                logger.info("Subscription canceled for deprovisioned tenant", extra={
                    "tenant": slug,
                    "subscription_id": subscription_id,
                })
            except Exception as exc:
                logger.error("Failed to cancel subscription during deprovisioning", extra={
                    "tenant": slug,
                    "subscription_id": subscription_id,
                    "error": str(exc),
                })

        try:
            self.spaces.drop(slug)
        except Exception as exc:
            logger.exception("Failed to drop tenant space", extra={"tenant": slug})
            raise errors.DependencyError(f"Could not drop space of tenant '{slug}'", slug=slug) from exc

        self.registry.delete(slug)
        logger.info("Tenant deprovisioned", extra={"tenant": slug})

    def is_stuck(self, tenant) -> bool:
        """A 'provisioning' row no live saga can still own."""
        if tenant.state != STATE_PROVISIONING or tenant.created_at is None:
            return False
        return datetime.utcnow() - tenant.created_at > timedelta(seconds=self.stale_after)

    def clear_failed(self, slug: str) -> None:
        """
        Operator cleanup of a tenant parked in the 'failed' state, or stuck
        in 'provisioning' past PROVISIONING_STALE_SECONDS; frees the slug.
        """
        tenant = self.registry.get(slug)
        if tenant is None:
            raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
        if tenant.state != STATE_FAILED and not self.is_stuck(tenant):
            raise errors.ConflictError(f"Tenant '{slug}' is not in the failed state", slug=slug)

        self.spaces.drop(slug)
        self.registry.delete(slug)
        logger.info("Failed tenant cleared", extra={"tenant": slug})

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def reseed_permissions(self, slug: str) -> bool:
        """Re-run the bootstrapper on an existing tenant. Returns True if anything was missing."""
        if self.registry.get_active(slug) is None:
            raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
        with self.spaces.session(TenantContext(slug)) as session:
            return bootstrap_permissions(session)

    def check_health(self, slug: str) -> List[str]:
        """Return a list of problems with a tenant's space (empty when healthy)."""
        if self.registry.get(slug) is None:
            raise errors.NotFound(f"Tenant '{slug}' not found", slug=slug)
        if not self.spaces.exists(slug):
            return ['Tenant space missing']

        issues = []
        with self.spaces.session(TenantContext(slug)) as session:
            owners = session.query(TenantUser).filter_by(role=ROLE_OWNER).count()
            if owners == 0:
                issues.append('No owner user found')
            elif owners > 1:
                issues.append('More than one owner user found')
            if session.query(Role).filter_by(name=ROLE_OWNER).first() is None:
                issues.append('Roles not seeded')
            if session.query(Permission).count() == 0:
                issues.append('Permissions not seeded')
        return issues
