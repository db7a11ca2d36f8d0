from celery import Celery
from flask import has_app_context


celery_app = Celery(__name__)


def init_celery(app):
    """
    Bind Celery to the current Flask app context so tasks can use database/session.
    """
    broker_url = app.config.get('CELERY_BROKER_URL')
    result_backend = app.config.get('CELERY_RESULT_BACKEND')
    eager = app.config.get('CELERY_TASK_ALWAYS_EAGER', False)

    celery_app.conf.update(
        broker_url=broker_url,
        result_backend=result_backend,
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        timezone='UTC',
        # Tests and single-process deployments run tasks inline
        task_always_eager=eager,
        task_eager_propagates=eager,
        task_store_eager_result=False,
    )

    class ContextTask(celery_app.Task):
        def __call__(self, *args, **kwargs):
            # eager tasks run inside the caller's request
            if has_app_context():
                return super().__call__(*args, **kwargs)
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = ContextTask
    return celery_app
