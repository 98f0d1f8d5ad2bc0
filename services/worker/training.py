from __future__ import annotations

from typing import Any

import httpx

from .config import Settings
from .domain import GenerationRequest, knob
from .errors import ConfigurationError, TrainingServiceError


class TrainingClient:
    """Client for the retrieval/generation service that serves trained knowledge bases."""

    def __init__(self, base_url: str | None, api_key: str | None, http: httpx.Client) -> None:
        if not base_url:
            raise ConfigurationError("training service base URL is not configured")
        self._base = base_url.rstrip("/")
        self._api_key = api_key or ""
        self._http = http

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.Client) -> "TrainingClient":
        return cls(settings.trainer_base_url, settings.trainer_api_key, http)

    @staticmethod
    def payload(request: GenerationRequest, *, prompt: str, model: str) -> dict[str, Any]:
        template = request.template
        if request.training is None:
            raise ConfigurationError(f"request {request.id} has no training data set")
        return {
            "index_name": request.training.index_name,
            "prompt": prompt,
            "model": model,
            "provider": template.provider,
            "max_tokens": request.max_tokens,
            "temperature": knob(template.temperature),
            "prep_text": template.input_prep_text,
            "system_message": template.system_message,
        }

    def query(self, payload: dict[str, Any]) -> str:
        """POST /query and return the ``response`` field; any other shape is an error."""
        headers = {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}
        try:
            resp = self._http.post(f"{self._base}/query", headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise TrainingServiceError(f"training service request failed: {exc}") from exc
        if not resp.is_success:
            raise TrainingServiceError(f"training service returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise TrainingServiceError("Invalid response from trainer.") from exc
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise TrainingServiceError("Invalid response from trainer.")
        return data["response"]
