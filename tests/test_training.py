import uuid

import httpx
import pytest

from conftest import Recorder, make_request, make_template
from services.worker.domain import TrainingDataSet
from services.worker.errors import ConfigurationError, TrainingServiceError
from services.worker.training import TrainingClient


def _client(reply, settings):
    return TrainingClient.from_settings(settings, Recorder(reply).client())


def test_payload_shape():
    template = make_template(provider="openai", temperature=40, input_prep_text="prep", system_message="sys")
    req = make_request(
        template,
        max_tokens=300,
        training=TrainingDataSet(id=uuid.uuid4(), index_name="kb-acme", record_count=4),
    )
    payload = TrainingClient.payload(req, prompt="question", model="gpt-4o")
    assert payload == {
        "index_name": "kb-acme",
        "prompt": "question",
        "model": "gpt-4o",
        "provider": "openai",
        "max_tokens": 300,
        "temperature": 0.4,
        "prep_text": "prep",
        "system_message": "sys",
    }


def test_payload_requires_training_set():
    with pytest.raises(ConfigurationError):
        TrainingClient.payload(make_request(), prompt="p", model="m")


def test_query_returns_response_and_sends_bearer(settings):
    rec = Recorder(lambda r: httpx.Response(200, json={"response": "grounded answer"}))
    client = TrainingClient.from_settings(settings, rec.client())
    assert client.query({"prompt": "q"}) == "grounded answer"
    req = rec.requests[0]
    assert str(req.url) == "https://trainer.test/query"
    assert req.headers["authorization"] == "Bearer tr-test"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"answer": "wrong key"}),
        httpx.Response(200, json={"response": 12}),
        httpx.Response(502, json={"response": "late"}),
    ],
)
def test_malformed_replies_raise(settings, response):
    with pytest.raises(TrainingServiceError):
        _client(lambda r: response, settings).query({"prompt": "q"})


def test_missing_base_url_is_configuration_error(settings):
    settings = settings.model_copy(update={"trainer_base_url": None})
    with pytest.raises(ConfigurationError):
        TrainingClient.from_settings(settings, httpx.Client())
