from celery import Celery

from toolgostar.core.config import get_settings

settings = get_settings()

celery_app = Celery("toolgostar_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    task_ignore_result=True,
    task_acks_late=False,
    task_default_queue="toolgostar.analytics",
    task_publish_retry=False,
    broker_connection_timeout=2,
)
