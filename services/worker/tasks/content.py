from __future__ import annotations

import logging
import os
import time
import uuid as _uuid
from typing import Any

import httpx
from celery import Celery, shared_task

from modules.persistence import repos
from modules.persistence.db import get_session
from modules.persistence.stores import (
    SqlEntitlementStore,
    SqlNotificationSink,
    SqlRequestStore,
    SqlResultStore,
    SqlSettingsStore,
)
from modules.storage.s3 import S3FileStore
from services.worker.config import Settings, get_settings
from services.worker.domain import FileStore, Stores
from services.worker.errors import AdmissionDenied, DispatchFailed, GenerationError
from services.worker.orchestrator import ContentRequestHandler

logger = logging.getLogger(__name__)

TASK_NAME = "content.handle_request"
QUEUE = "content.default"
# Stop waiting on fan-out tasks this long before the hard time limit
_DEADLINE_MARGIN_S = 30.0


def _eager() -> bool:
    return os.getenv("CF_CELERY_EAGER", "false").lower() in {"1", "true", "yes"}


def build_stores(files: FileStore | None = None) -> Stores:
    return Stores(
        entitlements=SqlEntitlementStore(),
        notifications=SqlNotificationSink(),
        results=SqlResultStore(),
        requests=SqlRequestStore(),
        settings=SqlSettingsStore(),
        files=files or S3FileStore(),
    )


def _http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(timeout=settings.provider_timeout_s)


def _error_payload(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, GenerationError):
        return exc.to_error()
    return {"code": "internal", "message": str(exc)}


@shared_task(name=TASK_NAME, acks_late=True, time_limit=get_settings().job_timeout_s)
def handle_content_request(*, request_id: str) -> dict[str, Any]:
    settings = get_settings()
    rid = _uuid.UUID(request_id)
    started = time.monotonic()
    with get_session() as session:
        if repos.get_request(session, rid) is None:
            raise LookupError(f"content request {request_id} not found")

    http = _http_client(settings)
    try:
        with get_session() as session:
            request = repos.hydrate_request(session, rid)
            if request is None:
                raise LookupError(f"content request {request_id} not found")
            repos.append_event(session, request_id=rid, code="request.start", payload={"number": request.number})

        handler = ContentRequestHandler(build_stores(), settings=settings, http=http)
        deadline = started + max(1.0, settings.job_timeout_s - _DEADLINE_MARGIN_S)
        report = handler.handle(request, deadline=deadline)
        if report.all_failed:
            causes = "; ".join(f"#{i}: {msg}" for i, msg in sorted(report.failures.items()))
            raise DispatchFailed(f"all {len(report.attempted)} generation tasks failed ({causes})")

        with get_session() as session:
            repos.mark_request_status(session, rid, "completed")
            repos.append_event(
                session,
                request_id=rid,
                code="request.finish",
                payload={
                    "path": report.path,
                    "succeeded": len(report.succeeded),
                    "failed": len(report.failures),
                    "skipped": len(report.skipped),
                },
            )
        return {
            "status": "ok",
            "results": [str(report.succeeded[i]) for i in sorted(report.succeeded)],
            "failures": {str(i): msg for i, msg in report.failures.items()},
        }
    except AdmissionDenied as exc:
        with get_session() as session:
            repos.mark_request_status(session, rid, "denied", error=exc.to_error())
            repos.append_event(session, request_id=rid, code="error", level="error", payload=exc.to_error())
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("content request %s failed", request_id)
        err = _error_payload(exc)
        with get_session() as session:
            repos.mark_request_status(session, rid, "failed", error=err)
            repos.append_event(session, request_id=rid, code="error", level="error", payload=err)
        raise
    finally:
        http.close()


def _celery() -> Celery:
    broker = os.getenv("CF_REDIS_URL", "redis://127.0.0.1:6379/0")
    app = Celery("cf_producer", broker=broker)
    app.conf.update(broker_connection_retry_on_startup=True, task_always_eager=_eager())
    return app


def submit_content_request(request_id: str | _uuid.UUID, *, inline: bool | None = None) -> dict[str, Any]:
    """Dispatch a persisted request: inline when eager (or asked), else onto the queue."""
    rid = str(request_id)
    run_inline = _eager() if inline is None else inline
    if run_inline:
        return handle_content_request(request_id=rid)
    try:
        _celery().send_task(TASK_NAME, kwargs={"request_id": rid}, queue=QUEUE)
    except Exception as exc:  # noqa: BLE001
        # Broker unavailable: the request would never run
        with get_session() as session:
            repos.mark_request_status(
                session, _uuid.UUID(rid), "failed", error={"code": "infra_unavailable", "message": str(exc)}
            )
        raise
    return {"status": "queued", "request_id": rid}
