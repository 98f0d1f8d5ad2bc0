from __future__ import annotations

from typing import Any

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput
from services.worker.errors import ProviderError

from .base import ProviderCall, json_body, require_key, send


DEFAULT_MAX_TOKENS = 1024


class ClaudeBackend:
    """Anthropic messages API.

    The API rejects two consecutive turns from the same role, so only one user turn
    is ever sent; prep text must already be merged into the prompt by the caller.
    """

    name = "claude"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.anthropic_base_url.rstrip("/")
        self._key = settings.anthropic_api_key
        self._version = settings.anthropic_version

    def generate(self, call: ProviderCall) -> GenerationOutput:
        payload: dict[str, Any] = {
            "model": call.model,
            "max_tokens": call.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": call.primary_prompt}],
        }
        if call.system_message:
            payload["system"] = call.system_message
        if call.temperature is not None:
            payload["temperature"] = call.temperature

        headers = {
            "x-api-key": require_key(self.name, self._key),
            "anthropic-version": self._version,
        }
        resp = send(self._http, self.name, "POST", f"{self._base}/messages", headers=headers, json=payload)
        data = json_body(self.name, resp)

        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text")
        if not text:
            raise ProviderError("claude response has no text content", provider=self.name)
        usage = data.get("usage") or {}
        tokens = int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        return GenerationOutput(text=text.strip(), tokens_used=tokens, raw=data)
