"""Tests for API routes."""
import json

import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from clarity.api.deps import resolve_credential
from clarity.config import settings
from clarity.main import app
from clarity.models.answer import Source
from clarity.services.event_stream import EventStreamParser
from clarity.services.upstream import UpstreamError


class FakeAnswerStream:
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def iter_text(self):
        async for chunk in self:
            yield chunk.decode("utf-8")

    async def aclose(self):
        self.closed = True


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def fresh_sse_status():
    # sse-starlette caches its shutdown event on the first event loop it sees
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "clarity"


@pytest.mark.parametrize("body", [{}, {"query": ""}, {"query": "   "}, {"query": None}])
def test_sources_rejects_missing_query(client, body):
    with patch("clarity.api.routes.sources.discover", new=AsyncMock()) as mock_discover:
        response = client.post("/api/sources", json=body)

    assert response.status_code == 400
    assert response.json() == {"sources": []}
    mock_discover.assert_not_called()


def test_sources_returns_discovered_pages(client):
    found = [
        Source(url="https://example.com/a", text="Alpha text"),
        Source(url="https://example.org/b", text="Beta text"),
    ]
    with patch("clarity.api.routes.sources.discover", new=AsyncMock(return_value=found)) as mock_discover:
        response = client.post("/api/sources", json={"query": " renewable energy "})

    assert response.status_code == 200
    assert response.json() == {
        "sources": [
            {"url": "https://example.com/a", "text": "Alpha text"},
            {"url": "https://example.org/b", "text": "Beta text"},
        ]
    }
    mock_discover.assert_awaited_once_with("renewable energy")


def test_sources_reports_handler_failure(client):
    with patch(
        "clarity.api.routes.sources.discover",
        new=AsyncMock(side_effect=RuntimeError("boom")),
    ):
        response = client.post("/api/sources", json={"query": "anything"})

    assert response.status_code == 500
    assert response.json() == {"sources": []}


def test_answer_streams_backend_text(client, monkeypatch):
    monkeypatch.setattr(settings, "completions_bearer", "server-key")
    stream = FakeAnswerStream([b"Hydro", b"power ", b"[1]."])

    with patch(
        "clarity.api.routes.answer.open_answer_stream",
        new=AsyncMock(return_value=stream),
    ) as mock_open:
        response = client.post(
            "/api/answer",
            json={"prompt": "What is hydropower?"},
            headers={"X-Session-Id": "sid-42"},
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "Hydropower [1]."
    mock_open.assert_awaited_once_with("What is hydropower?", "sid-42", "server-key")
    assert stream.closed


def test_answer_prefers_client_credential(client, monkeypatch):
    monkeypatch.setattr(settings, "completions_bearer", "server-key")

    with patch(
        "clarity.api.routes.answer.open_answer_stream",
        new=AsyncMock(return_value=FakeAnswerStream([b"ok"])),
    ) as mock_open:
        response = client.post("/api/answer", json={"prompt": "q", "apiKey": "client-key"})

    assert response.status_code == 200
    assert mock_open.await_args.args[2] == "client-key"


def test_answer_upstream_failure_returns_error(client):
    with patch(
        "clarity.api.routes.answer.open_answer_stream",
        new=AsyncMock(side_effect=UpstreamError("Upstream returned status 502", status_code=502)),
    ):
        response = client.post("/api/answer", json={"prompt": "q"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Error"}


def test_answer_rejects_empty_prompt(client):
    with patch("clarity.api.routes.answer.open_answer_stream", new=AsyncMock()) as mock_open:
        response = client.post("/api/answer", json={"prompt": "  "})

    assert response.status_code == 400
    mock_open.assert_not_called()


def test_ask_streams_sources_chunks_and_record(client, fresh_sse_status):
    found = [Source(url="https://www.example.com/a", text="Alpha")]

    with patch(
        "clarity.services.conversation.discover",
        new=AsyncMock(return_value=found),
    ), patch(
        "clarity.services.conversation.open_answer_stream",
        new=AsyncMock(return_value=FakeAnswerStream([b"Alpha ", b"[1]."])),
    ) as mock_open:
        response = client.post(
            "/api/ask",
            json={"query": "What is alpha?"},
            headers={"X-Session-Id": "sid-7"},
        )

    assert response.status_code == 200
    events = EventStreamParser().feed(response.text)
    kinds = [e.event for e in events]
    assert kinds.count("answer_chunk") == 2
    assert kinds.count("sources_found") == 1
    assert kinds[-1] == "answer_complete"

    complete = json.loads(events[-1].data)
    assert complete["record"]["content"] == "Alpha [1]."
    assert complete["record"]["source_links"] == ["https://www.example.com/a"]
    assert complete["markdown"].splitlines()[-1] == "[1] [example.com](https://www.example.com/a)"
    assert mock_open.await_args.args[:2] == ("What is alpha?", "sid-7")
    assert response.headers["x-session-id"] == "sid-7"


def test_ask_returns_generated_session_id(client, fresh_sse_status):
    with patch(
        "clarity.services.conversation.discover",
        new=AsyncMock(return_value=[]),
    ), patch(
        "clarity.services.conversation.open_answer_stream",
        new=AsyncMock(return_value=FakeAnswerStream([b"ok"])),
    ) as mock_open:
        response = client.post("/api/ask", json={"query": "What is beta?"})

    assert response.status_code == 200
    session_id = response.headers["x-session-id"]
    assert session_id
    assert mock_open.await_args.args[1] == session_id


def test_resolve_credential_precedence(monkeypatch):
    monkeypatch.setattr(settings, "completions_bearer", "server-key")

    assert resolve_credential("client-key") == "client-key"
    assert resolve_credential("  ") == "server-key"
    assert resolve_credential(None) == "server-key"
