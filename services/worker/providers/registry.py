from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationRequest, knob
from services.worker.errors import ConfigurationError

from .base import ProviderBackend, ProviderClient
from .claude import ClaudeBackend
from .eleven_labs import ElevenLabsBackend
from .gemini import GeminiBackend
from .leonardo import LeonardoBackend
from .openai import OpenAIBackend
from .stability_ai import StabilityAIBackend
from .stable_diffusion import StableDiffusionBackend


@dataclass(frozen=True)
class ClientContext:
    request: GenerationRequest
    input: str
    settings: Settings


BackendFactory = Callable[[Settings, httpx.Client], ProviderBackend]
Configure = Callable[[ProviderClient, ClientContext], None]


@dataclass(frozen=True)
class ProviderSpec:
    backend: BackendFactory
    configure: Configure
    # Allowed template endpoints; None accepts any (text providers)
    endpoints: frozenset[str] | None = None


def is_vision_model(model: str, settings: Settings) -> bool:
    return "vision" in model.lower() or model in settings.vision_model_set()


def vision_prompt(ctx: ClientContext) -> list[dict[str, Any]]:
    """Text part followed by one image part per image-typed template field."""
    content: list[dict[str, Any]] = [{"type": "text", "text": ctx.input}]
    for f in ctx.request.template.ordered_fields():
        if f.type != "image":
            continue
        url = ctx.request.custom_input.get(f.key)
        if url:
            content.append({"type": "image_url", "image_url": {"url": url}})
    return content


def _configure_openai(client: ProviderClient, ctx: ClientContext) -> None:
    template = ctx.request.template
    client.set_max_tokens(ctx.request.max_tokens)
    client.set_temperature(knob(template.temperature))
    if template.type == "text":
        client.set_frequency_penalty(knob(template.frequency_penalty))
        client.set_presence_penalty(knob(template.presence_penalty))
        if is_vision_model(client.model, ctx.settings):
            client.set_prompt(vision_prompt(ctx))
    # Prep text is also the prompt for audio conversions
    if template.input_prep_text:
        client.set_input_prep_text(template.input_prep_text)
    if template.system_message:
        client.set_system_message(template.system_message)


def _configure_claude(client: ProviderClient, ctx: ClientContext) -> None:
    template = ctx.request.template
    client.set_max_tokens(ctx.request.max_tokens)
    client.set_temperature(knob(template.temperature))
    # No back-to-back user turns: merge prep text into the single user turn
    if template.input_prep_text:
        client.set_prompt(f"{template.input_prep_text}\n\n{ctx.input}")
    if template.system_message:
        client.set_system_message(template.system_message)


def _configure_gemini(client: ProviderClient, ctx: ClientContext) -> None:
    template = ctx.request.template
    client.set_temperature(knob(template.temperature))
    client.set_max_tokens(ctx.request.max_tokens)
    if template.input_prep_text:
        client.set_input_prep_text(template.input_prep_text)
    if template.system_message:
        client.set_system_message(template.system_message)


def _configure_diffusion(client: ProviderClient, ctx: ClientContext) -> None:
    client.set_negative_prompt(ctx.request.custom_input.get("negative_prompt"))


def _configure_speech(client: ProviderClient, ctx: ClientContext) -> None:
    client.set_voice(ctx.request.custom_input.get("voice"))


class ProviderRegistry:
    """Maps ``(provider, content type)`` to the spec that builds its client."""

    def __init__(self) -> None:
        self._specs: dict[tuple[str, str], ProviderSpec] = {}

    def register(self, provider: str, content_type: str, spec: ProviderSpec) -> None:
        self._specs[(provider.lower().strip(), content_type)] = spec

    def knows(self, provider: str, content_type: str) -> bool:
        return (provider.lower().strip(), content_type) in self._specs

    def supports(self, provider: str, content_type: str, endpoint: str | None) -> bool:
        spec = self._specs.get((provider.lower().strip(), content_type))
        return spec is not None and (spec.endpoints is None or endpoint in spec.endpoints)

    def spec_for(self, provider: str, content_type: str) -> ProviderSpec:
        try:
            return self._specs[(provider.lower().strip(), content_type)]
        except KeyError:
            raise ConfigurationError(f"unknown provider {provider!r} for content type {content_type!r}") from None

    def pairs(self) -> list[tuple[str, str]]:
        return sorted(self._specs)

    def build(
        self,
        request: GenerationRequest,
        *,
        model: str,
        input: str,
        settings: Settings,
        http: httpx.Client,
    ) -> ProviderClient:
        template = request.template
        spec = self.spec_for(template.provider, template.type)
        if spec.endpoints is not None and template.endpoint not in spec.endpoints:
            raise ConfigurationError(
                f"provider {template.provider!r} does not support endpoint {template.endpoint!r} for {template.type}"
            )
        backend = spec.backend(settings, http)
        client = ProviderClient(template.endpoint, model, input, backend=backend, content_type=template.type)
        spec.configure(client, ClientContext(request=request, input=input, settings=settings))
        return client


def default_registry() -> ProviderRegistry:
    reg = ProviderRegistry()
    reg.register("openai", "text", ProviderSpec(OpenAIBackend, _configure_openai))
    reg.register(
        "openai",
        "image",
        ProviderSpec(OpenAIBackend, _configure_openai, frozenset({"image-generation", "image-variation"})),
    )
    reg.register(
        "openai",
        "audio",
        ProviderSpec(OpenAIBackend, _configure_openai, frozenset({"text-to-speech", "speech-to-text", "translation"})),
    )
    reg.register("claude", "text", ProviderSpec(ClaudeBackend, _configure_claude))
    reg.register("gemini", "text", ProviderSpec(GeminiBackend, _configure_gemini))
    reg.register(
        "stable-diffusion",
        "image",
        ProviderSpec(StableDiffusionBackend, _configure_diffusion, frozenset({"image-generation"})),
    )
    reg.register(
        "stability-ai",
        "image",
        ProviderSpec(StabilityAIBackend, _configure_diffusion, frozenset({"image-generation", "upscale"})),
    )
    reg.register(
        "leonardo",
        "image",
        ProviderSpec(LeonardoBackend, _configure_diffusion, frozenset({"image-generation"})),
    )
    reg.register(
        "eleven-labs",
        "audio",
        ProviderSpec(ElevenLabsBackend, _configure_speech, frozenset({"text-to-speech", "speech-to-speech"})),
    )
    return reg
