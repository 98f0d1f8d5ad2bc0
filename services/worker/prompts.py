"""Primary input assembly for content requests.

Text requests render the template text through the prompt pipeline; audio and
image requests render their generation text, or resolve the uploaded file for
conversion endpoints (speech-to-text, upscale, variations).

Pipeline for rendered inputs:
    1. optional global prefix/suffix settings (text only)
    2. per-field appended prompt fragments, in field order
    3. token substitution: request descriptors, business profile, product profile,
       brand voice, then caller custom fields (custom fields win on collision)

Rendering uses a sandboxed Jinja2 environment. Unknown tokens render as an empty
string, so a template never fails on a missing value.
"""

from __future__ import annotations

import logging
from typing import Any

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .domain import FileStore, GenerationRequest, SettingsStore
from .errors import ConfigurationError, InputBuildError

logger = logging.getLogger(__name__)

GENERATION_ENDPOINTS = {"audio": "text-to-speech", "image": "image-generation"}
PREFIX_SETTING = "template_prefix"
SUFFIX_SETTING = "template_suffix"

_env = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True, undefined=ChainableUndefined)


def prompt_tokens(request: GenerationRequest) -> dict[str, Any]:
    customer = request.customer
    tokens: dict[str, Any] = {
        "name": request.name,
        "description": request.description,
        "tone": request.tone,
        "input_language": request.input_language,
        "output_language": request.output_language,
        "business_name": customer.business_name or "",
        "business_description": customer.business_description or "",
        "business_street": customer.business_street or "",
        "business_city": customer.business_city or "",
        "style": request.style,
        "medium": request.medium,
        "mood": request.mood,
        "resolution": request.resolution,
        "brand_voice": "",
    }
    if request.service is not None:
        tokens["product_url"] = request.service.product_url
        tokens["product_audience"] = request.service.ideal_customer
        tokens["product_benefits"] = request.service.customer_wants
    if request.brand_voice is not None:
        tokens["brand_voice"] = request.brand_voice.internal_description
    if request.custom_input:
        tokens.update(request.custom_input)
    # None renders as "None" in Jinja2
    return {k: ("" if v is None else v) for k, v in tokens.items()}


class PromptBuilder:
    def __init__(self, settings: SettingsStore, files: FileStore) -> None:
        self._settings = settings
        self._files = files

    def build(self, request: GenerationRequest) -> str:
        template = request.template
        if template.type == "text":
            text = template.input_text
            if request.is_batch and template.batch_input:
                text = template.batch_input
            result = self.render(text, request)
        elif template.type in GENERATION_ENDPOINTS:
            if template.endpoint == GENERATION_ENDPOINTS[template.type]:
                result = self.render(template.input_text, request, affix=False)
            else:
                result = self._input_path(request)
        else:
            raise ConfigurationError(f"invalid template type: {template.type!r}")

        if not result or not result.strip():
            raise InputBuildError(f"empty input for request {request.id}")
        return result

    def render(self, text: str | None, request: GenerationRequest, *, affix: bool = True) -> str:
        text = text or ""
        if affix:
            prefix = self._settings.get_setting(PREFIX_SETTING)
            if prefix is not None:
                text = f"{prefix} {text}"
            suffix = self._settings.get_setting(SUFFIX_SETTING)
            if suffix is not None:
                text = f"{text} {suffix}"

        for f in request.template.ordered_fields():
            if f.appended_prompt:
                text += "\n" + f.appended_prompt

        try:
            rendered = _env.from_string(text).render(prompt_tokens(request))
        except TemplateError as exc:
            raise InputBuildError(f"template {request.template.id} could not be rendered: {exc.message or exc}") from exc

        logger.debug("prompt with appended fields for request %s: %s", request.id, rendered)
        return rendered

    def _input_path(self, request: GenerationRequest) -> str:
        if not request.input_file:
            raise InputBuildError(f"request {request.id} has no input file for endpoint {request.template.endpoint!r}")
        return self._files.resolve_input(request.input_file)
