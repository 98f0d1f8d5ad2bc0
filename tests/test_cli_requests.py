import json
import os
import uuid

import pytest

from modules.persistence import models, repos
from modules.persistence.db import get_session
from tools.contentforge_cli.main import main


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    if os.getenv("CF_DB_URL"):
        monkeypatch.delenv("CF_DB_URL", raising=False)


def _seed_request() -> str:
    with get_session() as session:
        customer = models.Customer(id=uuid.uuid4(), available_words=10)
        ws = models.Workspace(id=uuid.uuid4(), customer_id=customer.id)
        template = models.ContentTemplate(
            id=uuid.uuid4(), name="cli", type="text", provider="openai", api_model="gpt-3.5-turbo", input_text="x"
        )
        session.add_all([customer, ws, template])
        session.flush()
        req = repos.create_content_request(session, user_id=None, workspace_id=ws.id, template_id=template.id, number=2)
        repos.append_event(session, request_id=req.id, code="stage.received")
        repos.append_event(session, request_id=req.id, code="result.failed", level="error", payload={"item_index": 1, "message": "boom"})
        return str(req.id)


def test_cli_requests_list_and_get(capsys):
    rid = _seed_request()
    assert main(["requests", "list", "--status", "queued", "--limit", "200"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert any(r["id"] == rid for r in data["requests"])

    assert main(["requests", "get", rid]) == 0
    d = json.loads(capsys.readouterr().out)
    assert d["id"] == rid and d["status"] == "queued"
    assert d["summary"] == {"number": 2, "completed": 0}


def test_cli_logs_tail(capsys):
    rid = _seed_request()
    assert main(["requests", "logs", rid, "--tail", "1"]) == 0
    lines = [json.loads(ln) for ln in capsys.readouterr().out.splitlines() if ln.strip()]
    assert len(lines) == 1
    assert lines[0]["code"] == "result.failed" and lines[0]["item_index"] == 1 and lines[0]["message"] == "boom"


def test_cli_delete_and_not_found(capsys):
    rid = _seed_request()
    assert main(["requests", "delete", rid]) == 0
    capsys.readouterr()
    assert main(["requests", "get", rid]) == 2
    err = json.loads(capsys.readouterr().out)
    assert err["error"]["code"] == "not_found"


def test_cli_without_command_prints_help(capsys):
    assert main([]) == 1
