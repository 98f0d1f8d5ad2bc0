from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from services.worker.domain import GenerationOutput
from services.worker.errors import ConfigurationError, ProviderError


@dataclass(frozen=True)
class ProviderCall:
    """Immutable snapshot of a configured client, handed to a backend per call."""

    endpoint: str | None
    model: str
    input: str
    content_type: str
    temperature: float | None = None
    max_tokens: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    system_message: str | None = None
    input_prep_text: str | None = None
    negative_prompt: str | None = None
    voice: str | None = None
    resolution: str | None = None
    prompt: Any = None

    @property
    def primary_prompt(self) -> Any:
        # Structured or merged prompt wins over the raw input
        return self.prompt if self.prompt is not None else self.input


class ProviderBackend(Protocol):
    """Vendor wire adapter. Implementations must be safe to call from several threads."""

    name: str

    def generate(self, call: ProviderCall) -> GenerationOutput:
        """Perform one external call and return its raw output, or raise ProviderError."""


class ProviderClient:
    """Uniform client over every provider.

    Built from ``(endpoint, model, input)``; optional settings are recorded by the
    setters and ignored by backends they do not apply to. After :meth:`freeze` the
    client is read-only and may be shared across fan-out tasks.
    """

    def __init__(self, endpoint: str | None, model: str, input: str, *, backend: ProviderBackend, content_type: str) -> None:
        self.endpoint = endpoint
        self.model = model
        self.input = input
        self.content_type = content_type
        self._backend = backend
        self._options: dict[str, Any] = {}
        self._frozen = False

    @property
    def provider(self) -> str:
        return self._backend.name

    def _set(self, name: str, value: Any) -> None:
        if self._frozen:
            raise ConfigurationError(f"client for {self.provider} is frozen; cannot set {name}")
        self._options[name] = value

    def set_temperature(self, value: float | None) -> None:
        self._set("temperature", value)

    def set_max_tokens(self, value: int | None) -> None:
        self._set("max_tokens", value)

    def set_frequency_penalty(self, value: float | None) -> None:
        self._set("frequency_penalty", value)

    def set_presence_penalty(self, value: float | None) -> None:
        self._set("presence_penalty", value)

    def set_system_message(self, value: str | None) -> None:
        self._set("system_message", value)

    def set_input_prep_text(self, value: str | None) -> None:
        self._set("input_prep_text", value)

    def set_negative_prompt(self, value: str | None) -> None:
        self._set("negative_prompt", value)

    def set_voice(self, value: str | None) -> None:
        self._set("voice", value)

    def set_resolution(self, value: str | None) -> None:
        self._set("resolution", value)

    def set_prompt(self, value: Any) -> None:
        self._set("prompt", value)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def snapshot(self) -> ProviderCall:
        return ProviderCall(
            endpoint=self.endpoint,
            model=self.model,
            input=self.input,
            content_type=self.content_type,
            **self._options,
        )

    def generate(self) -> GenerationOutput:
        return self._backend.generate(self.snapshot())


def parse_resolution(value: str | None, default: tuple[int, int] = (1024, 1024)) -> tuple[int, int]:
    """Parse ``"WIDTHxHEIGHT"``; anything else falls back to the default."""
    if not value:
        return default
    try:
        w, h = value.lower().replace(" ", "").split("x", 1)
        width, height = int(w), int(h)
    except ValueError:
        return default
    if width <= 0 or height <= 0:
        return default
    return width, height


def require_key(provider: str, key: str | None) -> str:
    if not key:
        raise ConfigurationError(f"missing API key for provider {provider}")
    return key


def send(http: httpx.Client, provider: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Issue one request and map transport and non-2xx failures to ProviderError."""
    try:
        resp = http.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise ProviderError(f"{provider} request failed: {exc}", provider=provider) from exc
    if resp.status_code >= 400:
        detail = resp.text[:300] if resp.content else ""
        raise ProviderError(
            f"{provider} returned HTTP {resp.status_code}: {detail}".rstrip(": "),
            provider=provider,
            status_code=resp.status_code,
        )
    return resp


def json_body(provider: str, resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(f"{provider} returned a non-JSON body", provider=provider, status_code=resp.status_code) from exc
    if not isinstance(data, dict):
        raise ProviderError(f"{provider} returned an unexpected payload", provider=provider, status_code=resp.status_code)
    return data


def read_file(provider: str, path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        raise ProviderError(f"{provider} input file unreadable: {path}", provider=provider) from exc
