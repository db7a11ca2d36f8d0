"""
Celery tasks package.

Import directly from modules when needed:
  from app.tasks.tenant_tasks import deprovision_tenant_task
"""
