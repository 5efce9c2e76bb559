import json

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.dependencies import get_chatbot_service
from app.main import app
from app.services.chatbot import ChatbotService
from app.services.redaction import HeuristicNameDetector, build_redactor
from app.services.session_turns import ActiveStreamRegistry
from tests.fakes import (
    InMemoryChatbotRepository,
    InMemoryDocumentRepository,
    InMemoryMessageRepository,
    ScriptedProvider,
    make_chatbot,
    make_orchestrator,
)

TOKEN = "test-token"


@pytest.fixture
def primary():
    return ScriptedProvider("responses", ["Hel", "lo!"])


@pytest.fixture
def service(primary):
    return ChatbotService(
        chatbot_repo=InMemoryChatbotRepository([make_chatbot()]),
        message_repo=InMemoryMessageRepository(),
        document_repo=InMemoryDocumentRepository(),
        orchestrator=make_orchestrator(primary),
        redactor=build_redactor(HeuristicNameDetector()),
        stream_registry=ActiveStreamRegistry(),
    )


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_TOKEN", TOKEN)
    app.dependency_overrides[get_chatbot_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def parse_sse(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_public_chatbot_info(client):
    response = client.get("/api/public/chatbot/support")

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Support Bot"
    assert body["welcomeMessage"] == "Hi there!"
    assert body["suggestedQuestions"] == ["What are your hours?"]


def test_unknown_chatbot_returns_404(client):
    response = client.get("/api/public/chatbot/missing")

    assert response.status_code == 404
    assert response.json() == {"detail": "Chatbot not found"}


@pytest.mark.parametrize("payload", [{"message": "   "}, {"message": 5}, {}])
def test_invalid_message_returns_400(client, payload):
    response = client.post("/api/public/chatbot/support/messages", json=payload)

    assert response.status_code == 400


def test_blank_message_reports_reason(client):
    response = client.post("/api/public/chatbot/support/messages", json={"message": ""})

    assert response.json() == {"detail": "Invalid message"}


def test_submit_message_returns_bot_answer(client):
    response = client.post(
        "/api/public/chatbot/support/messages",
        json={"sessionId": "s1", "message": "hi"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["sessionId"] == "s1"
    assert body["message"]["content"] == "Hello!"
    assert body["message"]["isUser"] is False


def test_stream_flow_delivers_sse_events_and_persists_answer(client, service):
    submitted = client.post(
        "/api/public/chatbot/support/messages",
        json={"sessionId": "s1", "message": "hi", "stream": True},
    )
    assert submitted.json()["message"]["content"] == ""

    response = client.get("/api/public/chatbot/support/stream", params={"sessionId": "s1"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"

    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["session", "chunk", "chunk", "complete"]
    assert events[0][1] == {"sessionId": "s1"}
    assert "".join(data["content"] for name, data in events if name == "chunk") == "Hello!"
    assert events[-1][1]["message"]["content"] == "Hello!"

    history = client.get("/api/public/chatbot/support/messages/s1").json()
    assert [(m["isUser"], m["content"]) for m in history] == [(True, "hi"), (False, "Hello!")]


def test_stream_without_pending_turn_sends_error_event(client):
    response = client.get("/api/public/chatbot/support/stream", params={"sessionId": "empty"})

    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["session", "error"]


def test_stream_requires_session_id(client):
    response = client.get("/api/public/chatbot/support/stream")

    assert response.status_code == 400


def test_history_redaction_flag(client, service):
    service._message_repo.add(1, "s1", True, "My name is Alex, call 555-123-4567")
    service._message_repo.add(1, "s1", False, "Thanks Alex!")

    redacted = client.get(
        "/api/public/chatbot/support/messages/s1", params={"redact": "true"}
    ).json()

    assert "Alex" not in redacted[0]["content"]
    assert redacted[1]["content"] == "Thanks Alex!"


def test_logs_require_api_token(client):
    response = client.get("/api/logs", headers={"User-Id": "7"})

    assert response.status_code == 401


def test_logs_require_operator_header(client):
    response = client.get("/api/logs", headers={"Ai-Token": TOKEN})

    assert response.status_code == 400


def test_logs_listing(client, service):
    service._message_repo.add(1, "s1", True, "hello, I am Alex")
    service._message_repo.add(1, "s1", False, "Hi!")

    response = client.get(
        "/api/logs",
        headers={"Ai-Token": TOKEN, "User-Id": "7"},
        params={"chatbotId": "all", "pageSize": 10, "redact": "true"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["totalCount"] == 2
    assert body["totalPages"] == 1
    assert body["redactionEnabled"] is True
    assert body["logs"][0]["chatbotName"] == "Support Bot"
    assert body["logs"][1]["content"] == "hello, I am [REDACTED]"


def test_logs_reject_other_operators_chatbot(client):
    response = client.get(
        "/api/logs",
        headers={"Ai-Token": TOKEN, "User-Id": "8"},
        params={"chatbotId": "1"},
    )

    assert response.status_code == 403


def test_preview_generates_response(client):
    response = client.post(
        "/api/preview/generate-response",
        headers={"Ai-Token": TOKEN},
        json={"message": "hi", "systemPrompt": "Be terse."},
    )

    assert response.status_code == 200
    assert response.json() == {"response": "Hello!"}


def test_health_is_public(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["data"]["database"] == "not_checked"
