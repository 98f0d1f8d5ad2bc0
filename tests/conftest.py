from __future__ import annotations

import json
import threading
import uuid
from typing import Any, Callable

import httpx
import pytest

from services.worker.config import Settings
from services.worker.domain import (
    ContentTemplate,
    Customer,
    GenerationRequest,
    ResultRecord,
    Stores,
    TemplateField,
)


class FakeEntitlements:
    def __init__(self, *, words: int = 1000, images: int = 10, speech: int = 10, average: float = 0.0) -> None:
        self.words = words
        self.images = images
        self.speech = speech
        self.average = average
        self.reads: list[str] = []
        self.spent: list[tuple[str, int]] = []
        self._lock = threading.Lock()

    def remaining_words(self, customer: Customer) -> int:
        self.reads.append("words")
        return self.words

    def remaining_images(self, customer: Customer) -> int:
        self.reads.append("images")
        return self.images

    def remaining_speech_to_text(self, customer: Customer) -> int:
        self.reads.append("speech_to_text")
        return self.speech

    def average_words(self, template_id: uuid.UUID, *, days: int = 30) -> float:
        return self.average

    def spend(self, customer: Customer, kind: str, amount: int) -> None:
        with self._lock:
            self.spent.append((kind, amount))


class FakeNotifications:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[tuple[Any, dict[str, Any]]] = []
        self.fail = fail

    def notify(self, user_id: Any, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append((user_id, payload))


class FakeResults:
    def __init__(self, completed: set[int] | None = None) -> None:
        self.records: list[ResultRecord] = []
        self.completed = set(completed or ())
        self._lock = threading.Lock()

    def create_result(self, record: ResultRecord) -> uuid.UUID:
        with self._lock:
            self.records.append(record)
            self.completed.add(record.item_index)
        return uuid.uuid4()

    def completed_indices(self, request_id: uuid.UUID) -> set[int]:
        return set(self.completed)


class FakeRequests:
    def __init__(self) -> None:
        self.statuses: list[str] = []
        self.events: list[tuple[str, str, dict[str, Any] | None]] = []
        self._lock = threading.Lock()

    def mark_status(self, request: GenerationRequest, status: str) -> None:
        self.statuses.append(status)

    def record_event(self, request: GenerationRequest, code: str, *, level: str = "info", payload: dict[str, Any] | None = None) -> None:
        with self._lock:
            self.events.append((code, level, payload))

    def codes(self) -> list[str]:
        return [c for c, _, _ in self.events]


class FakeSettingsStore:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values = dict(values or {})

    def get_setting(self, name: str) -> str | None:
        return self.values.get(name)


class FakeFiles:
    def __init__(self, root: str = "/uploads") -> None:
        self.root = root
        self.saved: list[tuple[int, bytes, str | None]] = []
        self._lock = threading.Lock()

    def resolve_input(self, ref: str) -> str:
        return f"{self.root}/{ref}"

    def save_output(self, request: GenerationRequest, item_index: int, data: bytes, content_type: str | None) -> str:
        with self._lock:
            self.saved.append((item_index, data, content_type))
        return f"out/{request.id}/{item_index}"


def make_stores(**overrides: Any) -> Stores:
    parts: dict[str, Any] = {
        "entitlements": FakeEntitlements(),
        "notifications": FakeNotifications(),
        "results": FakeResults(),
        "requests": FakeRequests(),
        "settings": FakeSettingsStore(),
        "files": FakeFiles(),
    }
    parts.update(overrides)
    return Stores(**parts)


def make_template(**kw: Any) -> ContentTemplate:
    base: dict[str, Any] = {
        "id": uuid.uuid4(),
        "type": "text",
        "provider": "openai",
        "api_model": "gpt-3.5-turbo",
        "input_text": "Write about {{ name }}",
    }
    base.update(kw)
    if "fields" in base:
        base["fields"] = tuple(
            f if isinstance(f, TemplateField) else TemplateField(**f) for f in base["fields"]
        )
    return ContentTemplate(**base)


def make_request(template: ContentTemplate | None = None, **kw: Any) -> GenerationRequest:
    customer = kw.pop("customer", None) or Customer(
        id=uuid.uuid4(),
        available_words=1000,
        available_images=10,
        available_speech_to_text=10,
        business_name="Acme",
    )
    return GenerationRequest(
        id=uuid.uuid4(),
        template=template or make_template(),
        customer=customer,
        user_id=uuid.uuid4(),
        uid=uuid.uuid4().hex,
        **kw,
    )


class Recorder:
    """httpx MockTransport handler that records requests and replies via a callback."""

    def __init__(self, reply: Callable[[httpx.Request], httpx.Response]) -> None:
        self.reply = reply
        self.requests: list[httpx.Request] = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        return self.reply(request)

    def json_bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        openai_api_key="sk-test",
        openai_base_url="https://openai.test/v1",
        anthropic_api_key="ak-test",
        anthropic_base_url="https://anthropic.test/v1",
        gemini_api_key="gk-test",
        gemini_base_url="https://gemini.test/v1beta",
        stable_diffusion_api_key="sd-test",
        stable_diffusion_base_url="https://sd.test/api/v3",
        stability_api_key="st-test",
        stability_base_url="https://stability.test/v1",
        leonardo_api_key="leo-test",
        leonardo_base_url="https://leonardo.test/api/rest/v1",
        elevenlabs_api_key="el-test",
        elevenlabs_base_url="https://elevenlabs.test/v1",
        trainer_base_url="https://trainer.test",
        trainer_api_key="tr-test",
        poll_interval_s=0.0,
        poll_attempts=5,
        fanout_workers=4,
    )
