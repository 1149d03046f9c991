from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from clarity.config import settings
from clarity.models.answer import Source
from clarity.tools import content_extractor

ARTICLE_HTML = "<html><head><title>Article</title></head><body><p>Body</p></body></html>"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_extract_returns_cleaned_snippet(monkeypatch):
    seen_agents: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_agents.append(request.headers.get("user-agent", ""))
        return httpx.Response(200, html=ARTICLE_HTML)

    monkeypatch.setattr(
        content_extractor,
        "_extract_with_trafilatura",
        lambda _html: "Skip to content\n\nSolar output rose 20%   in 2024.\n" * 200,
    )

    async with _client(handler) as client:
        source = await content_extractor.extract("https://example.com/solar", client=client)

    assert isinstance(source, Source)
    assert source.url == "https://example.com/solar"
    assert source.text.startswith("Solar output rose 20% in 2024.")
    assert "Skip to content" not in source.text
    assert len(source.text) <= 1500
    assert seen_agents == [settings.user_agent]


@pytest.mark.asyncio
async def test_extract_returns_none_on_error_status(monkeypatch):
    calls: list[str] = []
    monkeypatch.setattr(
        content_extractor,
        "_extract_with_trafilatura",
        lambda html: calls.append(html) or "never used",
    )

    async with _client(lambda _request: httpx.Response(403, text="forbidden")) as client:
        source = await content_extractor.extract("https://example.com/private", client=client)

    assert source is None
    assert calls == []


@pytest.mark.asyncio
async def test_extract_returns_none_on_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        source = await content_extractor.extract("https://down.example.com", client=client)

    assert source is None


@pytest.mark.asyncio
async def test_extract_returns_none_when_no_content(monkeypatch):
    monkeypatch.setattr(settings, "extractor_fallback", "none")
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda _html: "")

    async with _client(lambda _request: httpx.Response(200, html=ARTICLE_HTML)) as client:
        source = await content_extractor.extract("https://example.com/empty", client=client)

    assert source is None


@pytest.mark.asyncio
async def test_extract_returns_none_when_parser_raises(monkeypatch):
    def broken(_html: str) -> str:
        raise ValueError("unparseable document")

    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", broken)

    async with _client(lambda _request: httpx.Response(200, html=ARTICLE_HTML)) as client:
        source = await content_extractor.extract("https://example.com/broken", client=client)

    assert source is None


def test_extract_main_text_falls_back_to_readabilipy(monkeypatch):
    monkeypatch.setattr(settings, "extractor_fallback", "readabilipy")
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda _html: "")
    monkeypatch.setattr(
        content_extractor,
        "_extract_with_readabilipy",
        lambda _html: "Recovered article body about tidal energy.",
    )

    assert content_extractor.extract_main_text(ARTICLE_HTML) == "Recovered article body about tidal energy."


def test_extract_main_text_prefers_trafilatura(monkeypatch):
    def unexpected(_html: str) -> str:
        raise AssertionError("fallback should not run")

    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda _html: "Primary text")
    monkeypatch.setattr(content_extractor, "_extract_with_readabilipy", unexpected)

    assert content_extractor.extract_main_text(ARTICLE_HTML) == "Primary text"


def test_parse_readabilipy_payload_handles_plain_text_dicts():
    payload = {
        "title": "Readability Title",
        "plain_text": [
            {"text": "Line one"},
            {"text": "Line two"},
        ],
    }

    text = content_extractor._parse_readabilipy_payload(payload)

    assert "Line one" in text
    assert "Line two" in text


def test_parse_readabilipy_payload_reads_html_content():
    payload = {"plain_text": [], "content": "<div><p>First</p><p>Second</p></div>"}

    text = content_extractor._parse_readabilipy_payload(payload)

    assert "First" in text
    assert "Second" in text


@pytest.mark.asyncio
async def test_slow_extraction_does_not_block_event_loop(monkeypatch):
    def slow_extract(_html: str) -> str:
        time.sleep(0.3)
        return "Readable article text"

    monkeypatch.setattr(content_extractor, "extract_main_text", slow_extract)

    ticks = 0
    stop = asyncio.Event()

    async def ticker():
        nonlocal ticks
        while not stop.is_set():
            ticks += 1
            await asyncio.sleep(0.05)

    urls = [f"https://site{i}.example/article" for i in range(4)]
    async with _client(lambda _request: httpx.Response(200, html=ARTICLE_HTML)) as client:
        ticking = asyncio.create_task(ticker())
        started = time.monotonic()
        sources = await asyncio.gather(*(content_extractor.extract(url, client=client) for url in urls))
        elapsed = time.monotonic() - started
        stop.set()
        await ticking

    assert [s.url for s in sources] == urls
    assert elapsed < 0.9
    assert ticks >= 3
