import base64
import json

import httpx
import pytest

from conftest import Recorder
from services.worker.errors import ConfigurationError, ProviderError
from services.worker.providers.base import ProviderCall
from services.worker.providers.claude import ClaudeBackend
from services.worker.providers.eleven_labs import ElevenLabsBackend
from services.worker.providers.gemini import GeminiBackend
from services.worker.providers.leonardo import LeonardoBackend
from services.worker.providers.openai import OpenAIBackend
from services.worker.providers.stability_ai import StabilityAIBackend
from services.worker.providers.stable_diffusion import StableDiffusionBackend

PNG = b"\x89PNG\r\n\x1a\nfake"


def _call(**kw):
    base = {"endpoint": None, "model": "m", "input": "hello", "content_type": "text"}
    base.update(kw)
    return ProviderCall(**base)


def test_openai_chat_wire_format(settings):
    rec = Recorder(
        lambda r: httpx.Response(
            200, json={"choices": [{"message": {"content": " hi there "}}], "usage": {"total_tokens": 12}}
        )
    )
    backend = OpenAIBackend(settings, rec.client())
    out = backend.generate(_call(system_message="sys", input_prep_text="prep", temperature=0.5, max_tokens=50))

    assert out.text == "hi there" and out.tokens_used == 12
    req = rec.requests[0]
    assert str(req.url) == "https://openai.test/v1/chat/completions"
    assert req.headers["authorization"] == "Bearer sk-test"
    body = rec.json_bodies()[0]
    assert body["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "prep"},
        {"role": "user", "content": "hello"},
    ]
    assert body["temperature"] == 0.5 and body["max_tokens"] == 50
    assert "frequency_penalty" not in body


def test_openai_image_generation_decodes_b64(settings):
    rec = Recorder(lambda r: httpx.Response(200, json={"data": [{"b64_json": base64.b64encode(PNG).decode()}]}))
    out = OpenAIBackend(settings, rec.client()).generate(
        _call(content_type="image", endpoint="image-generation", resolution="512x512")
    )
    assert out.data == PNG and out.is_binary
    assert rec.json_bodies()[0]["size"] == "512x512"


def test_openai_speech_uses_default_voice(settings):
    rec = Recorder(lambda r: httpx.Response(200, content=b"ID3audio", headers={"content-type": "audio/mpeg"}))
    out = OpenAIBackend(settings, rec.client()).generate(_call(content_type="audio", endpoint="text-to-speech"))
    assert out.data == b"ID3audio" and out.content_type == "audio/mpeg"
    assert rec.json_bodies()[0]["voice"] == "alloy"


def test_openai_transcription_sends_file_and_prompt(settings, tmp_path):
    clip = tmp_path / "clip.mp3"
    clip.write_bytes(b"audio-bytes")
    rec = Recorder(lambda r: httpx.Response(200, json={"text": "transcribed words"}))
    out = OpenAIBackend(settings, rec.client()).generate(
        _call(content_type="audio", endpoint="speech-to-text", input=str(clip), input_prep_text="names: Ada")
    )
    assert out.text == "transcribed words"
    req = rec.requests[0]
    assert req.url.path.endswith("/audio/transcriptions")
    assert b"names: Ada" in req.content and b"audio-bytes" in req.content


def test_missing_key_is_configuration_error(settings):
    settings = settings.model_copy(update={"openai_api_key": None})
    rec = Recorder(lambda r: httpx.Response(200, json={}))
    with pytest.raises(ConfigurationError):
        OpenAIBackend(settings, rec.client()).generate(_call())
    assert rec.requests == []


def test_http_errors_map_to_provider_error(settings):
    rec = Recorder(lambda r: httpx.Response(429, text="slow down"))
    with pytest.raises(ProviderError) as exc:
        OpenAIBackend(settings, rec.client()).generate(_call())
    assert exc.value.status_code == 429 and exc.value.provider == "openai"


def test_transport_errors_map_to_provider_error(settings):
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderError):
        ClaudeBackend(settings, Recorder(boom).client()).generate(_call())


def test_claude_sends_one_user_turn(settings):
    rec = Recorder(
        lambda r: httpx.Response(
            200,
            json={"content": [{"type": "text", "text": "answer"}], "usage": {"input_tokens": 3, "output_tokens": 4}},
        )
    )
    out = ClaudeBackend(settings, rec.client()).generate(_call(prompt="prep\n\nhello", system_message="sys"))
    assert out.text == "answer" and out.tokens_used == 7
    req = rec.requests[0]
    assert req.headers["x-api-key"] == "ak-test"
    assert req.headers["anthropic-version"] == settings.anthropic_version
    body = rec.json_bodies()[0]
    assert body["messages"] == [{"role": "user", "content": "prep\n\nhello"}]
    assert body["system"] == "sys" and body["max_tokens"] == 1024


def test_claude_empty_content_is_an_error(settings):
    rec = Recorder(lambda r: httpx.Response(200, json={"content": []}))
    with pytest.raises(ProviderError):
        ClaudeBackend(settings, rec.client()).generate(_call())


def test_gemini_wire_format(settings):
    rec = Recorder(
        lambda r: httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": "gem"}]}}], "usageMetadata": {"totalTokenCount": 9}},
        )
    )
    out = GeminiBackend(settings, rec.client()).generate(
        _call(model="gemini-pro", input_prep_text="prep", system_message="sys", temperature=0.2, max_tokens=30)
    )
    assert out.text == "gem" and out.tokens_used == 9
    assert rec.requests[0].url.path.endswith("/models/gemini-pro:generateContent")
    body = rec.json_bodies()[0]
    assert body["contents"][0]["parts"] == [{"text": "prep"}, {"text": "hello"}]
    assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert body["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 30}


def test_stable_diffusion_polls_until_success(settings):
    state = {"fetches": 0}

    def reply(request):
        if request.url.path.endswith("/text2img"):
            return httpx.Response(200, json={"status": "processing", "id": 42})
        if "/fetch/42" in request.url.path:
            state["fetches"] += 1
            if state["fetches"] < 2:
                return httpx.Response(200, json={"status": "processing", "id": 42})
            return httpx.Response(200, json={"status": "success", "output": ["https://cdn.test/img.png"]})
        return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})

    rec = Recorder(reply)
    out = StableDiffusionBackend(settings, rec.client()).generate(
        _call(content_type="image", endpoint="image-generation", negative_prompt="ugly", resolution="640x480")
    )
    assert out.data == PNG
    first = json.loads(rec.requests[0].content)
    assert first["key"] == "sd-test" and first["width"] == "640" and first["negative_prompt"] == "ugly"
    assert state["fetches"] == 2


def test_stability_weights_negative_prompt(settings):
    rec = Recorder(lambda r: httpx.Response(200, json={"artifacts": [{"base64": base64.b64encode(PNG).decode(), "finishReason": "SUCCESS"}]}))
    out = StabilityAIBackend(settings, rec.client()).generate(
        _call(content_type="image", endpoint="image-generation", negative_prompt="blur")
    )
    assert out.data == PNG
    assert rec.json_bodies()[0]["text_prompts"] == [{"text": "hello", "weight": 1}, {"text": "blur", "weight": -1}]


def test_stability_error_artifact(settings):
    rec = Recorder(lambda r: httpx.Response(200, json={"artifacts": [{"base64": "", "finishReason": "ERROR"}]}))
    with pytest.raises(ProviderError):
        StabilityAIBackend(settings, rec.client()).generate(_call(content_type="image", endpoint="image-generation"))


def test_leonardo_submit_poll_download(settings):
    polls = iter(["PENDING", "COMPLETE"])

    def reply(request):
        if request.method == "POST":
            return httpx.Response(200, json={"sdGenerationJob": {"generationId": "g1"}})
        if request.url.path.endswith("/generations/g1"):
            status = next(polls)
            images = [{"url": "https://cdn.test/leo.jpg"}] if status == "COMPLETE" else []
            return httpx.Response(200, json={"generations_by_pk": {"status": status, "generated_images": images}})
        return httpx.Response(200, content=b"jpeg", headers={"content-type": "image/jpeg"})

    rec = Recorder(reply)
    out = LeonardoBackend(settings, rec.client()).generate(_call(content_type="image", endpoint="image-generation"))
    assert out.data == b"jpeg" and out.content_type == "image/jpeg"
    assert [r.method for r in rec.requests] == ["POST", "GET", "GET", "GET"]


def test_leonardo_failed_generation(settings):
    def reply(request):
        if request.method == "POST":
            return httpx.Response(200, json={"sdGenerationJob": {"generationId": "g2"}})
        return httpx.Response(200, json={"generations_by_pk": {"status": "FAILED"}})

    with pytest.raises(ProviderError):
        LeonardoBackend(settings, Recorder(reply).client()).generate(_call(content_type="image"))


def test_eleven_labs_text_to_speech(settings):
    rec = Recorder(lambda r: httpx.Response(200, content=b"mp3", headers={"content-type": "audio/mpeg"}))
    out = ElevenLabsBackend(settings, rec.client()).generate(
        _call(content_type="audio", endpoint="text-to-speech", voice="v1", model="eleven_monolingual_v1")
    )
    assert out.data == b"mp3"
    req = rec.requests[0]
    assert req.url.path.endswith("/text-to-speech/v1")
    assert req.headers["xi-api-key"] == "el-test"
    assert rec.json_bodies()[0] == {"text": "hello", "model_id": "eleven_monolingual_v1"}
