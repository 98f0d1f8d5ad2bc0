from __future__ import annotations

import os

import httpx

from services.worker.config import Settings
from services.worker.domain import GenerationOutput

from .base import ProviderCall, read_file, require_key, send


class ElevenLabsBackend:
    name = "eleven-labs"

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self._http = http
        self._base = settings.elevenlabs_base_url.rstrip("/")
        self._key = settings.elevenlabs_api_key
        self._default_voice = settings.elevenlabs_default_voice

    def generate(self, call: ProviderCall) -> GenerationOutput:
        voice = call.voice or self._default_voice
        headers = {"xi-api-key": require_key(self.name, self._key), "Accept": "audio/mpeg"}
        if call.endpoint == "speech-to-speech":
            files = {"audio": (os.path.basename(call.input), read_file(self.name, call.input), "audio/mpeg")}
            resp = send(
                self._http,
                self.name,
                "POST",
                f"{self._base}/speech-to-speech/{voice}",
                headers=headers,
                data={"model_id": call.model},
                files=files,
            )
        else:
            payload = {"text": call.input, "model_id": call.model}
            resp = send(self._http, self.name, "POST", f"{self._base}/text-to-speech/{voice}", headers=headers, json=payload)
        return GenerationOutput(data=resp.content, content_type=resp.headers.get("content-type", "audio/mpeg"))
