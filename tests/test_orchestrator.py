import base64
import threading
import time
import uuid

import httpx
import pytest

from conftest import (
    FakeEntitlements,
    FakeFiles,
    FakeResults,
    Recorder,
    make_request,
    make_template,
    make_stores,
)
from services.worker.domain import TrainingDataSet
from services.worker.errors import AdmissionDenied, ConfigurationError
from services.worker.orchestrator import ContentRequestHandler, effective_model


def _chat_reply(text="Generated words here"):
    return lambda r: httpx.Response(200, json={"choices": [{"message": {"content": text}}], "usage": {"total_tokens": 5}})


def _handler(settings, stores, rec):
    return ContentRequestHandler(stores, settings=settings, http=rec.client())


def test_text_request_fans_out_with_one_shared_configuration(settings):
    stores = make_stores(entitlements=FakeEntitlements(words=500, average=100))
    rec = Recorder(_chat_reply("one two three"))
    template = make_template(temperature=30, system_message="Be brief.")
    req = make_request(template, number=3, name="Widgets")

    report = _handler(settings, stores, rec).handle(req)

    assert report.path == "direct"
    assert sorted(report.succeeded) == [0, 1, 2] and not report.failures
    bodies = rec.json_bodies()
    assert len(bodies) == 3
    assert all(b == bodies[0] for b in bodies)
    assert bodies[0]["temperature"] == pytest.approx(0.3)
    assert bodies[0]["messages"][0] == {"role": "system", "content": "Be brief."}

    records = stores.results.records
    assert sorted(r.item_index for r in records) == [0, 1, 2]
    assert all(r.word_count == 3 and r.body == "one two three" and r.status == "completed" for r in records)
    assert all(r.input == "Write about Widgets" for r in records)
    assert stores.entitlements.spent == [("words", 3)] * 3
    assert stores.requests.statuses == ["processing"]
    codes = stores.requests.codes()
    stages = [c for c in codes if c.startswith("stage.")]
    assert stages == ["stage.received", "stage.validated", "stage.admitted", "stage.input-built", "stage.dispatched"]
    assert codes.count("result.written") == 3


def test_image_request_denied_without_provider_calls(settings):
    stores = make_stores(entitlements=FakeEntitlements(images=0))
    rec = Recorder(lambda r: httpx.Response(500))
    req = make_request(make_template(type="image", provider="openai", endpoint="image-generation", input_text="a cat"))

    with pytest.raises(AdmissionDenied):
        _handler(settings, stores, rec).handle(req)

    assert req.status == "denied"
    assert stores.requests.statuses == ["denied"]
    assert [p["type"] for _, p in stores.notifications.sent] == ["images-exceeded"]
    assert rec.requests == []
    assert stores.results.records == []


def test_block_limit_fails_before_admission(settings):
    stores = make_stores()
    rec = Recorder(_chat_reply())
    req = make_request(make_template(max_blocks=2), number=5, name="x")

    with pytest.raises(ConfigurationError, match="Max blocks"):
        _handler(settings, stores, rec).handle(req)

    assert stores.entitlements.reads == []
    assert rec.requests == []
    assert stores.requests.statuses == []


def test_training_path_isolates_malformed_reply(settings):
    calls = {"n": 0}
    lock = threading.Lock()

    def reply(request):
        assert request.url.host == "trainer.test"
        with lock:
            calls["n"] += 1
            n = calls["n"]
        if n == 1:
            return httpx.Response(200, text="<html>oops</html>")
        return httpx.Response(200, json={"response": "From **your** data"})

    stores = make_stores()
    rec = Recorder(reply)
    template = make_template(parse_markdown=True)
    req = make_request(
        template,
        number=3,
        name="q",
        training=TrainingDataSet(id=uuid.uuid4(), index_name="kb", record_count=2),
    )

    report = _handler(settings, stores, rec).handle(req)

    assert report.path == "training"
    assert len(rec.requests) == 3
    assert len(report.succeeded) == 2 and len(report.failures) == 1
    assert all("<strong>your</strong>" in r.body and "\n" not in r.body for r in stores.results.records)
    assert all(r.tokens_used == 0 for r in stores.results.records)
    assert "result.failed" in stores.requests.codes()


def test_empty_training_set_uses_direct_provider(settings):
    stores = make_stores()
    rec = Recorder(_chat_reply())
    req = make_request(number=1, name="q", training=TrainingDataSet(id=uuid.uuid4(), index_name="kb", record_count=0))
    report = _handler(settings, stores, rec).handle(req)
    assert report.path == "direct"
    assert rec.requests[0].url.host == "openai.test"


def test_claude_prep_text_is_merged_into_primary_input(settings):
    rec = Recorder(lambda r: httpx.Response(200, json={"content": [{"type": "text", "text": "ok done"}]}))
    template = make_template(provider="claude", api_model="claude-3-haiku", input_prep_text="Read this first.")
    req = make_request(template, number=1, name="Topic")

    _handler(settings, make_stores(), rec).handle(req)

    (body,) = rec.json_bodies()
    assert body["messages"] == [{"role": "user", "content": "Read this first.\n\nWrite about Topic"}]


def test_unknown_provider_has_no_side_effects(settings):
    stores = make_stores()
    rec = Recorder(_chat_reply())
    req = make_request(make_template(provider="nonexistent"), name="x")

    with pytest.raises(ConfigurationError):
        _handler(settings, stores, rec).handle(req)

    assert stores.notifications.sent == []
    assert stores.entitlements.spent == []
    assert stores.entitlements.reads == []
    assert stores.requests.statuses == []
    assert rec.requests == []


def test_partial_failure_keeps_successful_results(settings):
    calls = {"n": 0}
    lock = threading.Lock()

    def reply(request):
        with lock:
            calls["n"] += 1
            n = calls["n"]
        if n == 2:
            return httpx.Response(503, text="overloaded")
        return _chat_reply("fine words")(request)

    stores = make_stores()
    report = _handler(settings, stores, Recorder(reply)).handle(make_request(number=3, name="x"))

    assert len(report.succeeded) == 2 and len(report.failures) == 1
    assert not report.all_failed
    assert len(stores.entitlements.spent) == 2
    (failed,) = [e for e in stores.requests.events if e[0] == "result.failed"]
    assert failed[1] == "error" and "503" in failed[2]["message"]


def test_all_failures_are_reported(settings):
    stores = make_stores()
    report = _handler(settings, stores, Recorder(lambda r: httpx.Response(500))).handle(make_request(number=2, name="x"))
    assert report.all_failed
    assert stores.results.records == [] and stores.entitlements.spent == []


def test_empty_provider_output_is_a_slot_failure(settings):
    stores = make_stores()
    report = _handler(settings, stores, Recorder(_chat_reply("   "))).handle(make_request(number=1, name="x"))
    assert report.all_failed


def test_completed_slots_are_skipped_on_rerun(settings):
    stores = make_stores(results=FakeResults(completed={0, 2}))
    rec = Recorder(_chat_reply())
    report = _handler(settings, stores, rec).handle(make_request(number=3, name="x"))
    assert report.skipped == [0, 2] and report.attempted == [1]
    assert len(rec.requests) == 1
    assert [r.item_index for r in stores.results.records] == [1]


def test_image_results_are_stored_as_files_and_spend_one_each(settings):
    png = base64.b64encode(b"\x89PNG\r\n\x1a\nimg").decode()
    rec = Recorder(lambda r: httpx.Response(200, json={"data": [{"b64_json": png}]}))
    files = FakeFiles()
    stores = make_stores(files=files)
    template = make_template(type="image", provider="openai", api_model="dall-e-3", endpoint="image-generation", input_text="a {{ mood }} cat")
    req = make_request(template, number=2, mood="sleepy", resolution="1024x1792")

    report = _handler(settings, stores, rec).handle(req)

    assert len(report.succeeded) == 2
    assert all(b["size"] == "1024x1792" and b["prompt"] == "a sleepy cat" for b in rec.json_bodies())
    assert sorted(i for i, _, _ in files.saved) == [0, 1]
    assert sorted(r.body for r in stores.results.records) == [f"out/{req.id}/0", f"out/{req.id}/1"]
    assert stores.entitlements.spent == [("images", 1), ("images", 1)]


def test_speech_to_text_spends_one_unit(settings, tmp_path):
    clip = tmp_path / "clip.mp3"
    clip.write_bytes(b"audio")
    rec = Recorder(lambda r: httpx.Response(200, json={"text": "hello from the recording"}))
    stores = make_stores(files=FakeFiles(root=str(tmp_path)))
    template = make_template(type="audio", provider="openai", api_model="whisper-1", endpoint="speech-to-text", input_text="")
    req = make_request(template, number=1, input_file="clip.mp3")

    _handler(settings, stores, rec).handle(req)

    (record,) = stores.results.records
    assert record.body == "hello from the recording" and record.word_count == 4
    assert stores.entitlements.spent == [("speech_to_text", 1)]


def test_batch_requests_use_batch_model():
    template = make_template(api_model="gpt-4o", batch_model="gpt-4o-mini")
    assert effective_model(make_request(template)) == "gpt-4o"
    assert effective_model(make_request(template, batch_request_id=uuid.uuid4())) == "gpt-4o-mini"


def test_invalid_number_is_rejected(settings):
    with pytest.raises(ConfigurationError):
        _handler(settings, make_stores(), Recorder(_chat_reply())).handle(make_request(number=0, name="x"))


def test_slot_finishing_after_deadline_writes_and_spends_nothing(settings):
    finished = threading.Event()

    def slow(request):
        time.sleep(0.3)
        finished.set()
        return _chat_reply("late words")(request)

    stores = make_stores()
    report = _handler(settings, stores, Recorder(slow)).handle(
        make_request(number=1, name="x"), deadline=time.monotonic() + 0.05
    )

    assert report.failures and 0 in report.failures and not report.succeeded
    assert finished.wait(2.0)
    time.sleep(0.1)
    assert stores.results.records == []
    assert stores.entitlements.spent == []
    assert "result.written" not in stores.requests.codes()


def test_unsupported_endpoint_fails_before_admission_and_input(settings):
    resolved = []

    class TrackingFiles(FakeFiles):
        def resolve_input(self, ref):
            resolved.append(ref)
            return super().resolve_input(ref)

    stores = make_stores(files=TrackingFiles())
    rec = Recorder(lambda r: httpx.Response(500))
    template = make_template(type="image", provider="stable-diffusion", api_model="sdxl", endpoint="upscale")
    req = make_request(template, input_file="images/in.png")

    with pytest.raises(ConfigurationError, match="does not support endpoint"):
        _handler(settings, stores, rec).handle(req)

    assert stores.entitlements.reads == []
    assert stores.requests.statuses == []
    assert resolved == []
    assert rec.requests == []


def test_rerun_admits_only_the_pending_slots(settings):
    png = base64.b64encode(b"\x89PNG\r\n\x1a\nimg").decode()
    rec = Recorder(lambda r: httpx.Response(200, json={"data": [{"b64_json": png}]}))
    stores = make_stores(entitlements=FakeEntitlements(images=1), results=FakeResults(completed={0, 2}))
    template = make_template(type="image", provider="openai", api_model="dall-e-3", endpoint="image-generation", input_text="a cat")

    report = _handler(settings, stores, rec).handle(make_request(template, number=3))

    assert report.attempted == [1] and sorted(report.succeeded) == [1]
    assert stores.entitlements.spent == [("images", 1)]
