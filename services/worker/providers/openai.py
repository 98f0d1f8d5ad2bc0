from __future__ import annotations

import base64
import os
from typing import Any

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput
from services.worker.errors import ProviderError

from .base import ProviderCall, json_body, read_file, require_key, send


class OpenAIBackend:
    """Chat completions, image generation/variation, speech and transcription."""

    name = "openai"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.openai_base_url.rstrip("/")
        self._key = settings.openai_api_key
        self._default_voice = settings.openai_default_voice

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {require_key(self.name, self._key)}"}

    def generate(self, call: ProviderCall) -> GenerationOutput:
        if call.content_type == "image":
            if call.endpoint == "image-variation":
                return self._image_variation(call)
            return self._image_generation(call)
        if call.content_type == "audio":
            if call.endpoint == "text-to-speech":
                return self._speech(call)
            return self._transcription(call)
        return self._chat(call)

    def _chat(self, call: ProviderCall) -> GenerationOutput:
        messages: list[dict[str, Any]] = []
        if call.system_message:
            messages.append({"role": "system", "content": call.system_message})
        if call.input_prep_text:
            messages.append({"role": "user", "content": call.input_prep_text})
        messages.append({"role": "user", "content": call.primary_prompt})

        payload: dict[str, Any] = {"model": call.model, "messages": messages}
        for key in ("temperature", "max_tokens", "frequency_penalty", "presence_penalty"):
            value = getattr(call, key)
            if value is not None:
                payload[key] = value

        resp = send(self._http, self.name, "POST", f"{self._base}/chat/completions", headers=self._headers(), json=payload)
        data = json_body(self.name, resp)
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("openai response has no message content", provider=self.name) from exc
        usage = data.get("usage") or {}
        return GenerationOutput(text=(text or "").strip(), tokens_used=int(usage.get("total_tokens") or 0), raw=data)

    def _image_generation(self, call: ProviderCall) -> GenerationOutput:
        payload: dict[str, Any] = {
            "model": call.model,
            "prompt": call.input,
            "n": 1,
            "response_format": "b64_json",
        }
        if call.resolution:
            payload["size"] = call.resolution
        resp = send(self._http, self.name, "POST", f"{self._base}/images/generations", headers=self._headers(), json=payload)
        return self._decode_image(json_body(self.name, resp))

    def _image_variation(self, call: ProviderCall) -> GenerationOutput:
        data = {"model": call.model, "n": "1", "response_format": "b64_json"}
        if call.resolution:
            data["size"] = call.resolution
        files = {"image": (os.path.basename(call.input), read_file(self.name, call.input), "image/png")}
        resp = send(self._http, self.name, "POST", f"{self._base}/images/variations", headers=self._headers(), data=data, files=files)
        return self._decode_image(json_body(self.name, resp))

    def _decode_image(self, data: dict[str, Any]) -> GenerationOutput:
        try:
            encoded = data["data"][0]["b64_json"]
            image = base64.b64decode(encoded)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderError("openai image response missing b64_json", provider=self.name) from exc
        return GenerationOutput(data=image, content_type="image/png", raw={"created": data.get("created")})

    def _speech(self, call: ProviderCall) -> GenerationOutput:
        payload = {"model": call.model, "input": call.input, "voice": call.voice or self._default_voice}
        resp = send(self._http, self.name, "POST", f"{self._base}/audio/speech", headers=self._headers(), json=payload)
        return GenerationOutput(data=resp.content, content_type=resp.headers.get("content-type", "audio/mpeg"))

    def _transcription(self, call: ProviderCall) -> GenerationOutput:
        path = "translations" if call.endpoint == "translation" else "transcriptions"
        data: dict[str, str] = {"model": call.model}
        # Prep text doubles as the transcription prompt
        if call.input_prep_text:
            data["prompt"] = call.input_prep_text
        if call.temperature is not None:
            data["temperature"] = str(call.temperature)
        files = {"file": (os.path.basename(call.input), read_file(self.name, call.input), "application/octet-stream")}
        resp = send(self._http, self.name, "POST", f"{self._base}/audio/{path}", headers=self._headers(), data=data, files=files)
        body = json_body(self.name, resp)
        if "text" not in body:
            raise ProviderError("openai transcription response has no text", provider=self.name)
        return GenerationOutput(text=str(body["text"]).strip(), raw=body)
