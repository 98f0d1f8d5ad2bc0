from __future__ import annotations

import time
from typing import Any

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput
from services.worker.errors import ProviderError

from .base import ProviderCall, json_body, parse_resolution, require_key, send


class LeonardoBackend:
    """Leonardo generations are asynchronous: submit, poll until COMPLETE, download."""

    name = "leonardo"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.leonardo_base_url.rstrip("/")
        self._key = settings.leonardo_api_key
        self._poll_interval = settings.poll_interval_s
        self._poll_attempts = settings.poll_attempts

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_key(self.name, self._key)}", "Accept": "application/json"}

    def generate(self, call: ProviderCall) -> GenerationOutput:
        width, height = parse_resolution(call.resolution)
        payload: dict[str, Any] = {
            "prompt": call.input,
            "modelId": call.model,
            "width": width,
            "height": height,
            "num_images": 1,
        }
        if call.negative_prompt:
            payload["negative_prompt"] = call.negative_prompt
        resp = send(self._http, self.name, "POST", f"{self._base}/generations", headers=self._headers(), json=payload)
        body = json_body(self.name, resp)
        try:
            generation_id = body["sdGenerationJob"]["generationId"]
        except (KeyError, TypeError) as exc:
            raise ProviderError("leonardo response has no generation id", provider=self.name) from exc

        url = self._await_image(generation_id)
        image = send(self._http, self.name, "GET", url)
        return GenerationOutput(
            data=image.content,
            content_type=image.headers.get("content-type", "image/jpeg"),
            raw={"generation_id": generation_id},
        )

    def _await_image(self, generation_id: str) -> str:
        for _ in range(self._poll_attempts):
            resp = send(self._http, self.name, "GET", f"{self._base}/generations/{generation_id}", headers=self._headers())
            gen = json_body(self.name, resp).get("generations_by_pk") or {}
            status = gen.get("status")
            if status == "COMPLETE":
                images = gen.get("generated_images") or []
                if not images or not images[0].get("url"):
                    raise ProviderError("leonardo generation completed without images", provider=self.name)
                return str(images[0]["url"])
            if status == "FAILED":
                raise ProviderError(f"leonardo generation {generation_id} failed", provider=self.name)
            time.sleep(self._poll_interval)
        raise ProviderError(f"leonardo generation {generation_id} did not finish in time", provider=self.name)
