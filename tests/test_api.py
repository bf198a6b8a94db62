import pytest
from fastapi.testclient import TestClient

from app import app
from conftest import HangingLLM, StubCharts, StubLLM, StubQueryEngine, StubScraper
from data_analyst import config
from data_analyst.errors import LLMAuthenticationError
from data_analyst.extractor import PlanExtractor
from data_analyst.orchestrator import Orchestrator
from data_analyst.stages import StageRunner


def install(client: TestClient, llm) -> None:
    runner = StageRunner(StubScraper(), StubQueryEngine(), llm, StubCharts())
    client.app.state.orchestrator = Orchestrator(PlanExtractor(None), runner)


@pytest.fixture
def client():
    with TestClient(app) as c:
        install(c, StubLLM())
        yield c


def test_health(client) -> None:
    r = client.get("/")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["service"] == "Data Analyst Agent API"
    assert "timestamp" in body


def test_json_body(client) -> None:
    r = client.post("/api", json={"task": "How many items in [1,2,3,4,5]?", "timeout": 5000})
    assert r.status_code == 200
    assert r.json() == ["42"]


def test_trailing_slash_and_bare_string(client) -> None:
    r = client.post("/api/", json="How many items in [1,2,3,4,5]?")
    assert r.status_code == 200
    assert r.json() == ["42"]


def test_raw_text_body(client) -> None:
    r = client.post("/api", content="Who won", headers={"Content-Type": "text/plain"})
    assert r.status_code == 200
    assert r.json() == ["42"]


def test_multipart_question_file(client) -> None:
    files = {"questions.txt": ("questions.txt", b"How many items in [1,2,3,4,5]?", "text/plain")}
    r = client.post("/api", files=files, data={"timeout": "5000"})
    assert r.status_code == 200
    assert r.json() == ["42"]


def test_form_text_field(client) -> None:
    r = client.post("/api", data={"taskText": "Who won"})
    assert r.status_code == 200
    assert r.json() == ["42"]


def test_file_reference(client, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(config, "TASK_FILE_ROOT", str(tmp_path))
    (tmp_path / "question.txt").write_text("How many items in [1,2,3,4,5]?")

    for task in ("file://question.txt", "file:///question.txt"):
        r = client.post("/api", json={"task": task})
        assert r.status_code == 200
        assert r.json() == ["42"]


@pytest.mark.parametrize("task", ["file:///etc/passwd", "file://../../etc/passwd", "file://sub/../../secret.txt"])
def test_file_reference_stays_inside_task_root(client, tmp_path, monkeypatch, task) -> None:
    root = tmp_path / "tasks"
    root.mkdir()
    (tmp_path / "secret.txt").write_text("do not leak")
    monkeypatch.setattr(config, "TASK_FILE_ROOT", str(root))

    r = client.post("/api", json={"task": task})

    assert r.status_code == 400
    assert r.json()["error"] == "Could not read specified file"
    assert "root:" not in r.text and "do not leak" not in r.text


@pytest.mark.parametrize(
    "kwargs,error",
    [
        ({"json": {"timeout": 5000}}, "Invalid request"),
        ({"json": {"task": "   "}}, "Invalid request"),
        ({"json": {"task": "Who won", "timeout": -1}}, "Invalid request"),
        ({"json": [1, 2]}, "Invalid request format"),
        ({"content": b"{not json", "headers": {"Content-Type": "application/json"}}, "Invalid request format"),
        ({"data": {"other": "x"}}, "Invalid request format"),
        ({"json": {"task": "file:///definitely/not/here.txt"}}, "Could not read specified file"),
    ],
)
def test_malformed_requests(client, kwargs, error) -> None:
    r = client.post("/api", **kwargs)
    assert r.status_code == 400
    assert r.json()["error"] == error
    assert r.json()["details"]


def test_timeout_status(client) -> None:
    install(client, HangingLLM())
    r = client.post("/api", json={"task": "Who won", "timeout": 50})

    assert r.status_code == 408
    assert r.json() == {
        "error": "Analysis timeout - task took longer than expected",
        "details": "No result within 50ms",
        "processingTime": "50ms",
    }


def test_authentication_status(client) -> None:
    install(client, StubLLM(error=LLMAuthenticationError("LLM authentication failed", "provider answered 401")))
    r = client.post("/api", json={"task": "Who won"})

    assert r.status_code == 401
    assert r.json()["error"] == "LLM authentication failed"
