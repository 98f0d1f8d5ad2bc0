from __future__ import annotations

from typing import Any

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput
from services.worker.errors import ProviderError

from .base import ProviderCall, json_body, require_key, send


class GeminiBackend:
    name = "gemini"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.gemini_base_url.rstrip("/")
        self._key = settings.gemini_api_key

    def generate(self, call: ProviderCall) -> GenerationOutput:
        parts: list[dict[str, Any]] = []
        if call.input_prep_text:
            parts.append({"text": call.input_prep_text})
        parts.append({"text": call.input})

        payload: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if call.system_message:
            payload["systemInstruction"] = {"parts": [{"text": call.system_message}]}
        generation_config: dict[str, Any] = {}
        if call.temperature is not None:
            generation_config["temperature"] = call.temperature
        if call.max_tokens:
            generation_config["maxOutputTokens"] = call.max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config

        url = f"{self._base}/models/{call.model}:generateContent"
        headers = {"x-goog-api-key": require_key(self.name, self._key)}
        resp = send(self._http, self.name, "POST", url, headers=headers, json=payload)
        data = json_body(self.name, resp)

        try:
            candidate_parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("gemini response has no candidates", provider=self.name) from exc
        text = "".join(p.get("text", "") for p in candidate_parts if isinstance(p, dict))
        usage = data.get("usageMetadata") or {}
        return GenerationOutput(text=text.strip(), tokens_used=int(usage.get("totalTokenCount") or 0), raw=data)
