"""
Entitlement Gate

Read-only pre-check run before any tenant-scoped create: may this tenant
make one more unit of a metered resource under its plan? Usage is counted
inside the tenant's own space. Anything ambiguous is a denial.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import func, select

from app.extensions import tenant_spaces
from app.models.plan import UNLIMITED
from app.models.tenant_space import Board, Task, Team, TenantUser
from app.services.tenant_registry import TenantRegistry
from app.services.tenant_spaces import TenantContext

logger = logging.getLogger(__name__)

# feature -> model whose rows count against it
USAGE_COUNTERS = {
    'max_users': TenantUser,
    'max_teams': Team,
    'max_boards': Board,
    'max_tasks': Task,
}


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    feature: str
    limit: Optional[int]
    usage: Optional[int] = None

    def to_dict(self):
        return {"allowed": self.allowed, "feature": self.feature, "limit": self.limit, "usage": self.usage}


class EntitlementGate:

    def __init__(self, registry=None, spaces=None):
        self.registry = registry or TenantRegistry()
        self.spaces = spaces or tenant_spaces

    def check_limit(self, ctx: TenantContext, feature: str) -> bool:
        return self.evaluate(ctx, feature).allowed

    def evaluate(self, ctx: TenantContext, feature: str) -> EntitlementDecision:
        tenant = self.registry.get_active(ctx.slug)
        plan = tenant.plan if tenant is not None else None
        if plan is None:
            logger.warning("Entitlement denied, tenant has no plan", extra={"tenant": ctx.slug, "feature": feature})
            return EntitlementDecision(False, feature, None)

        limit = plan.feature_limit(feature)
        if limit is None or isinstance(limit, bool):
            logger.warning("Entitlement denied, plan does not define a limit", extra={
                "tenant": ctx.slug, "plan": plan.slug, "feature": feature,
            })
            return EntitlementDecision(False, feature, None)

        if limit == UNLIMITED:
            return EntitlementDecision(True, feature, UNLIMITED)

        model = USAGE_COUNTERS.get(feature)
        if model is None:
            logger.warning("Entitlement denied, no usage counter for feature", extra={
                "tenant": ctx.slug, "plan": plan.slug, "feature": feature,
            })
            return EntitlementDecision(False, feature, limit)

        with self.spaces.session(ctx) as session:
            count = session.scalar(select(func.count()).select_from(model))

        return EntitlementDecision(count < limit, feature, limit, count)

    def usage(self, ctx: TenantContext) -> Dict[str, Dict[str, Optional[int]]]:
        """
        Current usage of every metered feature next to the plan's limit.
        A feature the plan does not define reports limit None (denied).
        """
        tenant = self.registry.get_active(ctx.slug)
        features = (tenant.plan.features if tenant is not None and tenant.plan else None) or {}

        result = {}
        with self.spaces.session(ctx) as session:
            for feature, model in USAGE_COUNTERS.items():
                result[feature] = {
                    "current": session.scalar(select(func.count()).select_from(model)),
                    "limit": features.get(feature),
                }
        return result
