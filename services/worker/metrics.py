from __future__ import annotations

from prometheus_client import Counter

REQUESTS = Counter("cf_requests_total", "Content requests handled, by outcome", ["outcome"])
RESULTS = Counter("cf_results_total", "Generation tasks finished, by provider and status", ["provider", "status"])
ADMISSION_DENIED = Counter("cf_admission_denied_total", "Requests denied at admission, by exhausted limit", ["limit"])
