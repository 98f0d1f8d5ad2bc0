from __future__ import annotations

import base64
import os
from typing import Any

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput
from services.worker.errors import ProviderError

from .base import ProviderCall, json_body, parse_resolution, read_file, require_key, send


class StabilityAIBackend:
    name = "stability-ai"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.stability_base_url.rstrip("/")
        self._key = settings.stability_api_key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_key(self.name, self._key)}", "Accept": "application/json"}

    def generate(self, call: ProviderCall) -> GenerationOutput:
        if call.endpoint == "upscale":
            return self._upscale(call)
        width, height = parse_resolution(call.resolution)
        prompts: list[dict[str, Any]] = [{"text": call.input, "weight": 1}]
        if call.negative_prompt:
            prompts.append({"text": call.negative_prompt, "weight": -1})
        payload = {"text_prompts": prompts, "width": width, "height": height, "samples": 1}
        url = f"{self._base}/generation/{call.model}/text-to-image"
        resp = send(self._http, self.name, "POST", url, headers=self._headers(), json=payload)
        return self._decode(json_body(self.name, resp))

    def _upscale(self, call: ProviderCall) -> GenerationOutput:
        files = {"image": (os.path.basename(call.input), read_file(self.name, call.input), "image/png")}
        data: dict[str, str] = {}
        if call.resolution:
            data["width"] = str(parse_resolution(call.resolution)[0])
        url = f"{self._base}/generation/{call.model}/image-to-image/upscale"
        resp = send(self._http, self.name, "POST", url, headers=self._headers(), data=data, files=files)
        return self._decode(json_body(self.name, resp))

    def _decode(self, data: dict[str, Any]) -> GenerationOutput:
        try:
            artifact = data["artifacts"][0]
            image = base64.b64decode(artifact["base64"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderError("stability-ai response has no image artifact", provider=self.name) from exc
        if artifact.get("finishReason") == "ERROR":
            raise ProviderError("stability-ai reported a generation error", provider=self.name)
        return GenerationOutput(data=image, content_type="image/png", raw={"seed": artifact.get("seed")})
