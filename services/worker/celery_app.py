from __future__ import annotations

import os
from typing import Any

from celery import Celery
from kombu import Exchange, Queue
from prometheus_client import Counter, Gauge, start_http_server

CONTENT_QUEUE = "content.default"


def _eager() -> bool:
    return os.getenv("CF_CELERY_EAGER", "false").lower() in {"1", "true", "yes"}


def _new_app() -> Celery:
    broker_url = os.getenv("CF_REDIS_URL", "redis://127.0.0.1:6379/0")
    # No result backend; request state and results live in the database
    app = Celery("content_forge", broker=broker_url, backend=None)

    app.conf.update(
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_always_eager=_eager(),
        worker_concurrency=int(os.getenv("CF_WORKER_CONCURRENCY", "2")),
        broker_connection_retry_on_startup=True,
        imports=("services.worker.tasks.content",),
    )

    exchange = Exchange(CONTENT_QUEUE, type="direct")
    app.conf.task_queues = (Queue(CONTENT_QUEUE, exchange=exchange, routing_key=CONTENT_QUEUE),)
    app.conf.task_default_queue = CONTENT_QUEUE
    app.conf.task_default_exchange = CONTENT_QUEUE
    app.conf.task_default_exchange_type = "direct"
    app.conf.task_default_routing_key = CONTENT_QUEUE

    # Make this the default app so @shared_task binds here
    app.set_default()  # pragma: no cover
    app.autodiscover_tasks(["services.worker.tasks"])  # pragma: no cover
    return app


app: Celery = _new_app()

_PING_COUNT = Counter("cf_worker_ping_total", "Number of ping health checks")
_READY = Gauge("cf_worker_ready", "Worker module import completed (1=ready)")


@app.task(name="cf.ping")
def ping() -> dict[str, Any]:
    """Simple health task that returns a static payload."""
    _PING_COUNT.inc()
    return {"status": "ok"}


def _start_metrics_server() -> None:
    port = int(os.getenv("CF_WORKER_METRICS_PORT", "9009"))
    try:
        start_http_server(port)
        _READY.set(1)
    except OSError:
        # Port in use (common in dev when reloaded); keep gauge at 0
        pass


_start_metrics_server()

import services.worker.tasks.content  # noqa: E402,F401
