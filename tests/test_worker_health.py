import importlib
import time
from typing import Any

import httpx
import pytest


@pytest.mark.asyncio
async def test_worker_ping_and_metrics(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    # Run Celery tasks eagerly to avoid needing Redis in this test
    monkeypatch.setenv("CF_CELERY_EAGER", "true")
    monkeypatch.setenv("CF_WORKER_METRICS_PORT", "9010")  # avoid collisions

    celery_mod = importlib.import_module("services.worker.celery_app")

    res = celery_mod.ping.delay()
    assert res.get(timeout=1) == {"status": "ok"}

    # Allow a short delay for the metrics server to bind
    for _ in range(10):
        try:
            async with httpx.AsyncClient() as client:
                r = await client.get("http://127.0.0.1:9010/metrics", timeout=1.0)
            if r.status_code == 200 and "cf_worker_ping_total" in r.text:
                assert "cf_requests_total" in r.text
                break
        except httpx.HTTPError:
            time.sleep(0.05)
    else:
        pytest.fail("Worker metrics endpoint did not respond as expected")
