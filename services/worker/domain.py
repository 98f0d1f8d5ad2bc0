"""Hydrated request model and the collaborator interfaces the worker calls.

The worker never touches persistence directly: the job wrapper loads a fully
hydrated :class:`GenerationRequest` and passes a :class:`Stores` bundle whose
members satisfy the protocols below.
"""

from __future__ import annotations

import uuid as _uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

ContentType = Literal["text", "image", "audio"]
CONTENT_TYPES: frozenset[str] = frozenset({"text", "image", "audio"})

# Allotment counters, one per content type
QUOTA_KIND: dict[str, str] = {"text": "words", "image": "images", "audio": "speech_to_text"}


@dataclass(frozen=True)
class TemplateField:
    key: str
    type: str = "text"
    appended_prompt: str | None = None
    position: int = 0


@dataclass(frozen=True)
class ContentTemplate:
    id: _uuid.UUID
    type: str
    provider: str
    api_model: str
    endpoint: str | None = None
    input_text: str = ""
    batch_model: str | None = None
    batch_input: str | None = None
    fields: tuple[TemplateField, ...] = ()
    temperature: int = 70
    frequency_penalty: int = 0
    presence_penalty: int = 0
    system_message: str | None = None
    input_prep_text: str | None = None
    parse_markdown: bool = False
    max_blocks: int | None = None

    def ordered_fields(self) -> list[TemplateField]:
        return sorted(self.fields, key=lambda f: f.position)


@dataclass(frozen=True)
class Customer:
    id: _uuid.UUID
    available_words: int = 0
    total_words: int = 0
    available_images: int = 0
    total_images: int = 0
    available_speech_to_text: int = 0
    total_speech_to_text: int = 0
    business_name: str | None = None
    business_description: str | None = None
    business_street: str | None = None
    business_city: str | None = None


@dataclass(frozen=True)
class ServiceRecord:
    product_url: str | None = None
    ideal_customer: str | None = None
    customer_wants: str | None = None


@dataclass(frozen=True)
class BrandVoice:
    internal_description: str = ""


@dataclass(frozen=True)
class TrainingDataSet:
    id: _uuid.UUID
    index_name: str
    record_count: int = 0


@dataclass
class GenerationRequest:
    id: _uuid.UUID
    template: ContentTemplate
    customer: Customer
    user_id: _uuid.UUID | None = None
    uid: str | None = None
    number: int = 1
    max_tokens: int | None = None
    max_output_length: int | None = None
    name: str | None = None
    description: str | None = None
    tone: str | None = None
    input_language: str | None = None
    output_language: str | None = None
    style: str | None = None
    medium: str | None = None
    mood: str | None = None
    resolution: str | None = None
    custom_input: dict[str, Any] = field(default_factory=dict)
    input_file: str | None = None
    batch_request_id: _uuid.UUID | None = None
    folder_id: _uuid.UUID | None = None
    service: ServiceRecord | None = None
    brand_voice: BrandVoice | None = None
    training: TrainingDataSet | None = None
    locale: str | None = None
    status: str = "queued"

    @property
    def has_training(self) -> bool:
        return self.training is not None and self.training.record_count > 0

    @property
    def is_batch(self) -> bool:
        return self.batch_request_id is not None


@dataclass(frozen=True)
class GenerationOutput:
    """Raw output of one provider call: either text or binary data."""

    text: str | None = None
    data: bytes | None = None
    content_type: str | None = None
    tokens_used: int = 0
    raw: Any = None

    @property
    def is_binary(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class ResultRecord:
    request_id: _uuid.UUID
    item_index: int
    status: str
    body: str
    word_count: int
    tokens_used: int
    input: str
    folder_id: _uuid.UUID | None
    expires_at: datetime


class EntitlementStore(Protocol):
    def remaining_words(self, customer: Customer) -> int: ...

    def remaining_images(self, customer: Customer) -> int: ...

    def remaining_speech_to_text(self, customer: Customer) -> int: ...

    def average_words(self, template_id: _uuid.UUID, *, days: int = 30) -> float: ...

    def spend(self, customer: Customer, kind: str, amount: int) -> None: ...


class NotificationSink(Protocol):
    def notify(self, user_id: _uuid.UUID | None, payload: dict[str, Any]) -> None: ...


class ResultStore(Protocol):
    def create_result(self, record: ResultRecord) -> _uuid.UUID: ...

    def completed_indices(self, request_id: _uuid.UUID) -> set[int]: ...


class RequestStore(Protocol):
    def mark_status(self, request: GenerationRequest, status: str) -> None: ...

    def record_event(
        self,
        request: GenerationRequest,
        code: str,
        *,
        level: str = "info",
        payload: dict[str, Any] | None = None,
    ) -> None: ...


class SettingsStore(Protocol):
    def get_setting(self, name: str) -> str | None: ...


class FileStore(Protocol):
    def resolve_input(self, ref: str) -> str: ...

    def save_output(self, request: GenerationRequest, item_index: int, data: bytes, content_type: str | None) -> str: ...


@dataclass
class Stores:
    entitlements: EntitlementStore
    notifications: NotificationSink
    results: ResultStore
    requests: RequestStore
    settings: SettingsStore
    files: FileStore


def knob(value: int | None) -> float | None:
    """Templates store knobs on a 0-100 scale; providers expect 0.0-1.0."""
    return None if value is None else value / 100
