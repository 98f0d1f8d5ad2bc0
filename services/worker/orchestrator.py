"""Content request orchestration.

Stages: received -> validated -> admitted -> input-built -> dispatched. Every
stage is recorded on the request's event log. Validation, admission and input
failures are fatal and happen before any provider call. After dispatch each
result slot is an independent task: a failed slot never cancels its siblings.
"""

from __future__ import annotations

import logging
import time
import uuid as _uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

import httpx

from .admission import AdmissionController
from .config import Settings, get_settings
from .domain import CONTENT_TYPES, QUOTA_KIND, GenerationOutput, GenerationRequest, ResultRecord, Stores
from .errors import AdmissionDenied, ConfigurationError, GenerationError, ProviderError
from .fanout import TaskOutcome, fan_out
from .metrics import REQUESTS, RESULTS
from .prompts import PromptBuilder
from .providers.base import ProviderClient
from .providers.registry import ProviderRegistry, default_registry
from .textutil import render_markdown, word_count
from .training import TrainingClient

logger = logging.getLogger(__name__)
UTC = timezone.utc


class Stage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    ADMITTED = "admitted"
    INPUT_BUILT = "input-built"
    DISPATCHED = "dispatched"


@dataclass
class DispatchReport:
    request_id: _uuid.UUID
    path: str
    attempted: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    succeeded: dict[int, _uuid.UUID] = field(default_factory=dict)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return bool(self.attempted) and not self.succeeded


def effective_model(request: GenerationRequest) -> str:
    template = request.template
    if request.is_batch and template.batch_model:
        return template.batch_model
    return template.api_model


class ContentRequestHandler:
    def __init__(
        self,
        stores: Stores,
        *,
        settings: Settings | None = None,
        registry: ProviderRegistry | None = None,
        http: httpx.Client | None = None,
        training: TrainingClient | None = None,
    ) -> None:
        self.stores = stores
        self.settings = settings or get_settings()
        self.registry = registry or default_registry()
        self._http = http
        self._training = training
        self.admission = AdmissionController(stores.entitlements, stores.notifications, stores.requests, self.settings)
        self.prompts = PromptBuilder(stores.settings, stores.files)

    # -- stages -----------------------------------------------------------

    def handle(self, request: GenerationRequest, *, deadline: float | None = None) -> DispatchReport:
        """Run one request to dispatch. ``deadline`` is a ``time.monotonic()`` value."""
        owns_http = self._http is None
        http = self._http or httpx.Client(timeout=self.settings.provider_timeout_s)
        try:
            report = self._handle(request, http, deadline)
        except AdmissionDenied:
            REQUESTS.labels(outcome="denied").inc()
            raise
        except GenerationError:
            REQUESTS.labels(outcome="failed").inc()
            raise
        finally:
            if owns_http:
                http.close()
        REQUESTS.labels(outcome="partial" if report.failures else "dispatched").inc()
        return report

    def _handle(self, request: GenerationRequest, http: httpx.Client, deadline: float | None) -> DispatchReport:
        self._stage(request, Stage.RECEIVED)
        model = effective_model(request)
        self.validate(request)
        self._stage(request, Stage.VALIDATED, model=model, provider=request.template.provider)

        pending, _ = self._pending_slots(request)
        self.admission.admit(request, slots=len(pending))
        self._stage(request, Stage.ADMITTED)

        prompt = self.prompts.build(request)
        request.status = "processing"
        self.stores.requests.mark_status(request, "processing")
        self._stage(request, Stage.INPUT_BUILT)

        if request.template.type == "text" and request.has_training:
            training = self._training or TrainingClient.from_settings(self.settings, http)
            return self._dispatch_training(request, training, prompt, model, deadline)

        client = self.build_client(request, model=model, prompt=prompt, http=http)
        return self._dispatch_direct(request, client, prompt, deadline)

    def validate(self, request: GenerationRequest) -> None:
        template = request.template
        if template.max_blocks and request.number > template.max_blocks:
            raise ConfigurationError(
                f"Max blocks exceeded: requested {request.number}, template allows {template.max_blocks}."
            )
        if request.number < 1:
            raise ConfigurationError(f"requested output count must be at least 1, got {request.number}")
        if template.type not in CONTENT_TYPES:
            raise ConfigurationError(f"invalid template type: {template.type!r}")
        if not self.registry.knows(template.provider, template.type):
            raise ConfigurationError(f"invalid provider {template.provider!r} for content type {template.type!r}")
        if not self.registry.supports(template.provider, template.type, template.endpoint):
            raise ConfigurationError(
                f"provider {template.provider!r} does not support endpoint {template.endpoint!r} for {template.type}"
            )

    def build_client(self, request: GenerationRequest, *, model: str, prompt: str, http: httpx.Client) -> ProviderClient:
        """Construct and configure the one client shared by every slot of the request."""
        client = self.registry.build(request, model=model, input=prompt, settings=self.settings, http=http)
        if request.template.type == "image":
            client.set_resolution(request.resolution)
        client.freeze()
        return client

    # -- dispatch ---------------------------------------------------------

    def _pending_slots(self, request: GenerationRequest) -> tuple[list[int], list[int]]:
        done = self.stores.results.completed_indices(request.id)
        slots = list(range(request.number))
        return [i for i in slots if i not in done], [i for i in slots if i in done]

    def _dispatch_direct(
        self, request: GenerationRequest, client: ProviderClient, prompt: str, deadline: float | None
    ) -> DispatchReport:
        def run(index: int) -> _uuid.UUID:
            output = client.generate()
            return self._persist(request, index, prompt, output, deadline)

        return self._run_slots(request, "direct", client.provider, run, deadline)

    def _dispatch_training(
        self, request: GenerationRequest, training: TrainingClient, prompt: str, model: str, deadline: float | None
    ) -> DispatchReport:
        payload = TrainingClient.payload(request, prompt=prompt, model=model)

        def run(index: int) -> _uuid.UUID:
            text = training.query(payload)
            return self._persist(request, index, prompt, GenerationOutput(text=text), deadline)

        return self._run_slots(request, "training", "training", run, deadline)

    def _run_slots(
        self,
        request: GenerationRequest,
        path: str,
        provider: str,
        run: Callable[[int], _uuid.UUID],
        deadline: float | None,
    ) -> DispatchReport:
        pending, skipped = self._pending_slots(request)
        report = DispatchReport(request_id=request.id, path=path, attempted=pending, skipped=skipped)
        self._stage(request, Stage.DISPATCHED, path=path, slots=pending, skipped=skipped)

        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        outcomes = fan_out(run, pending, max_workers=self.settings.fanout_workers, timeout=timeout)
        for outcome in outcomes:
            self._record_outcome(request, provider, outcome, report)
        return report

    def _record_outcome(
        self, request: GenerationRequest, provider: str, outcome: TaskOutcome[_uuid.UUID], report: DispatchReport
    ) -> None:
        if outcome.ok and outcome.value is not None:
            RESULTS.labels(provider=provider, status="succeeded").inc()
            report.succeeded[outcome.index] = outcome.value
            return
        message = str(outcome.error) or type(outcome.error).__name__
        RESULTS.labels(provider=provider, status="failed").inc()
        report.failures[outcome.index] = message
        logger.warning("request %s slot %s failed: %s", request.id, outcome.index, message)
        self.stores.requests.record_event(
            request,
            "result.failed",
            level="error",
            payload={"item_index": outcome.index, "message": message, "error": type(outcome.error).__name__},
        )

    def _persist(
        self,
        request: GenerationRequest,
        index: int,
        prompt: str,
        output: GenerationOutput,
        deadline: float | None = None,
    ) -> _uuid.UUID:
        # A slot abandoned by the fan-out was already reported failed
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError(f"slot {index} finished after the deadline; result discarded")
        template = request.template
        if output.is_binary:
            assert output.data is not None
            body = self.stores.files.save_output(request, index, output.data, output.content_type)
            words = 0
            spend = 1
        else:
            text = output.text or ""
            if not text.strip():
                raise ProviderError(f"{template.provider} returned empty output", provider=template.provider)
            words = word_count(text)
            body = render_markdown(text) if template.parse_markdown else text
            # Text spends words; audio conversions (speech to text) spend one unit
            spend = words if template.type == "text" else 1

        record = ResultRecord(
            request_id=request.id,
            item_index=index,
            status="completed",
            body=body,
            word_count=words,
            tokens_used=output.tokens_used,
            input=prompt,
            folder_id=request.folder_id,
            expires_at=datetime.now(UTC) + timedelta(days=self.settings.result_ttl_days),
        )
        result_id = self.stores.results.create_result(record)
        if spend:
            self.stores.entitlements.spend(request.customer, QUOTA_KIND[template.type], spend)
        self.stores.requests.record_event(
            request,
            "result.written",
            payload={"item_index": index, "result_id": str(result_id), "words": words, "tokens_used": output.tokens_used},
        )
        return result_id

    def _stage(self, request: GenerationRequest, stage: Stage, **payload: Any) -> None:
        self.stores.requests.record_event(request, f"stage.{stage.value}", payload=payload or None)
