"""Celery application for the job queue.

Run a worker with:
    celery -A shortpipe.workers.celery_app worker -Q video-processing
or ``shortpipe worker``.
"""

from celery import Celery

from shortpipe.config import settings

celery_app = Celery(
    "shortpipe",
    broker=settings.broker_url,
    include=["shortpipe.workers.tasks"],
)
celery_app.conf.update(
    task_default_queue=settings.queue.name,
    task_serializer="json",
    accept_content=["json"],
    task_ignore_result=True,
    # A job attempt is only acknowledged once it has finished
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.queue.concurrency,
    broker_connection_retry_on_startup=True,
)
