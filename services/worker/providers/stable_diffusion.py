from __future__ import annotations

import time
from typing import Any

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput
from services.worker.errors import ProviderError

from .base import ProviderCall, json_body, parse_resolution, require_key, send


class StableDiffusionBackend:
    """stablediffusionapi.com text2img; the API key travels in the JSON body."""

    name = "stable-diffusion"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.stable_diffusion_base_url.rstrip("/")
        self._key = settings.stable_diffusion_api_key
        self._poll_interval = settings.poll_interval_s
        self._poll_attempts = settings.poll_attempts

    def generate(self, call: ProviderCall) -> GenerationOutput:
        key = require_key(self.name, self._key)
        width, height = parse_resolution(call.resolution)
        payload: dict[str, Any] = {
            "key": key,
            "model_id": call.model,
            "prompt": call.input,
            "negative_prompt": call.negative_prompt,
            "width": str(width),
            "height": str(height),
            "samples": "1",
        }
        resp = send(self._http, self.name, "POST", f"{self._base}/text2img", json=payload)
        data = self._await_output(key, json_body(self.name, resp))

        url = data["output"][0]
        image = send(self._http, self.name, "GET", url)
        return GenerationOutput(data=image.content, content_type=image.headers.get("content-type", "image/png"), raw=data)

    def _await_output(self, key: str, data: dict[str, Any]) -> dict[str, Any]:
        for _ in range(self._poll_attempts):
            status = data.get("status")
            if status == "success" and data.get("output"):
                return data
            if status != "processing":
                raise ProviderError(f"stable-diffusion generation failed: {data.get('message') or status}", provider=self.name)
            job_id = data.get("id")
            if job_id is None:
                raise ProviderError("stable-diffusion processing response has no id", provider=self.name)
            time.sleep(self._poll_interval)
            resp = send(self._http, self.name, "POST", f"{self._base}/fetch/{job_id}", json={"key": key})
            data = json_body(self.name, resp)
        raise ProviderError("stable-diffusion generation did not finish in time", provider=self.name)
