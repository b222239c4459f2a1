from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from kombu import Queue

from labelflow.core.config import settings
from labelflow.core.log import setup_logging

LABEL_QUEUE = "label-queue"
REVIEW_QUEUE = "review-queue"
COMPLETED_QUEUE = "completed-queue"
EXPORT_QUEUE = "export-queue"

celery_app = Celery(
    "labelflow_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["labelflow.worker.jobs"],
)

celery_app.conf.update(
    task_track_started=True,
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
    task_queues=[
        Queue(LABEL_QUEUE),
        Queue(REVIEW_QUEUE),
        Queue(COMPLETED_QUEUE),
        Queue(EXPORT_QUEUE),
    ],
    task_default_queue=EXPORT_QUEUE,
    # priorities 0..9 on the redis transport
    broker_transport_options={"queue_order_strategy": "priority"},
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    # same format as the API process
    setup_logging(settings.log_level)
