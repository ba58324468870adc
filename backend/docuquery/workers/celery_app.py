"""
Celery Application Factory

Durable queue for document processing. The upload handler enqueues a task
and returns; delivery is at-least-once (acks_late + reject_on_worker_lost)
and processing is idempotent per document id, so a redelivered task either
re-runs the pipeline cleanly or is skipped by the per-document lock.

Queue topology:
  documents.process  — first processing run after upload
  documents.retry    — the stale-upload scanner (Beat)

Never pass file bytes in task payloads; tasks carry document ids only and
load everything else from the database and object storage.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docuquery.core.config import settings
from docuquery.core.logging import setup_logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.process",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.process",
        durable=True,
    ),
    Queue(
        "documents.retry",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.retry",
        durable=True,
    ),
)

TASK_ROUTES = {
    "docuquery.workers.tasks.process_document":      {"queue": "documents.process"},
    "docuquery.workers.tasks.enqueue_stale_uploads": {"queue": "documents.retry"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("docuquery")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.process",
        task_default_exchange="documents",
        task_default_routing_key="documents.process",

        # --- Reliability ---
        task_acks_late=True,         # ack only after task completes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Timeouts ---
        task_soft_time_limit=300,
        task_time_limit=360,

        # --- Result TTL (document state lives in PostgreSQL) ---
        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (stale-upload scanner) ---
        beat_schedule={
            "enqueue-stale-uploads-every-60s": {
                "task":     "docuquery.workers.tasks.enqueue_stale_uploads",
                "schedule": 60,
                "options":  {"queue": "documents.retry"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["docuquery.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: logging setup and task lifecycle
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_after_setup_logger(**_):
    setup_logging()


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, kwargs.get("document_id", "?"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, kwargs.get("document_id", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, kwargs.get("document_id", "?"), exception,
        exc_info=True,
    )
