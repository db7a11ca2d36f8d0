import logging

from app.celery_app import celery_app
from app import errors
from app.services.provisioning import ProvisioningService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, autoretry_for=(errors.DependencyError,), retry_backoff=True, retry_kwargs={'max_retries': 3})
def deprovision_tenant_task(self, slug):
    """
    Tear a tenant down: cancel its subscription (best effort), drop its
    space, delete its row. Retried only when the space could not be dropped.
    """
    logger.info("Deprovisioning tenant", extra={"tenant": slug, "task_id": self.request.id})
    try:
        ProvisioningService().deprovision(slug)
    except errors.NotFound:
        logger.warning("Tenant already gone, nothing to deprovision", extra={"tenant": slug})
        return {"slug": slug, "deleted": False}

    return {"slug": slug, "deleted": True}
