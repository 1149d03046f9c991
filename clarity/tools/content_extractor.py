from __future__ import annotations

import asyncio
import re
import shutil
from functools import lru_cache
from pathlib import Path
from typing import Any

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from clarity.config import settings
from clarity.models.answer import Source
from clarity.tools.text_cleaner import clean


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _join_text_items(items: list[Any]) -> str:
    chunks: list[str] = []
    for item in items:
        if isinstance(item, str):
            chunks.append(item)
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            chunks.append(item["text"])
    return _normalize_text("\n\n".join(chunks))


def _parse_readabilipy_payload(payload: dict[str, Any]) -> str:
    plain_text = payload.get("plain_text")
    if isinstance(plain_text, list):
        joined = _join_text_items(plain_text)
        if joined:
            return joined
    if isinstance(plain_text, str) and plain_text.strip():
        return _normalize_text(plain_text)

    content = payload.get("content")
    if isinstance(content, str):
        soup = BeautifulSoup(content, "html.parser")
        return _normalize_text(soup.get_text("\n"))
    if isinstance(content, list):
        return _join_text_items(content)
    return ""


@lru_cache(maxsize=1)
def _readabilipy_js_ready() -> bool:
    try:
        import readabilipy
    except ImportError:
        return False

    if shutil.which("node") is None:
        return False

    js_dir = Path(readabilipy.__file__).resolve().parent / "javascript"
    return (js_dir / "node_modules").exists()


def _extract_with_readabilipy(raw_html: str) -> str:
    from readabilipy import simple_json_from_html_string

    payload = simple_json_from_html_string(
        raw_html,
        use_readability=_readabilipy_js_ready(),
    )
    if not isinstance(payload, dict):
        return ""
    return _parse_readabilipy_payload(payload)


def extract_main_text(raw_html: str) -> str:
    """Return the main article text of a page, or "" when none is found.

    Trafilatura runs first; readabilipy is the fallback unless
    ``settings.extractor_fallback`` is ``"none"``. Parser errors propagate.
    """
    text = _extract_with_trafilatura(raw_html)
    if text:
        return text
    if settings.extractor_fallback.lower().strip() != "readabilipy":
        return ""
    return _extract_with_readabilipy(raw_html)


async def _fetch_html(client: httpx.AsyncClient, url: str) -> str | None:
    response = await client.get(url, headers={"User-Agent": settings.user_agent})
    if not response.is_success:
        logger.warning(f"Source fetch returned {response.status_code} for {url}")
        return None
    return response.text


async def extract(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    max_chars: int | None = None,
) -> Source | None:
    """Fetch ``url`` and reduce it to a cleaned snippet.

    Every failure (network, status, parse, empty content) yields ``None`` so
    callers can carry on with fewer sources.
    """
    limit = settings.source_max_chars if max_chars is None else max_chars
    try:
        if client is not None:
            html = await _fetch_html(client, url)
        else:
            async with httpx.AsyncClient(
                timeout=settings.fetch_timeout_seconds,
                follow_redirects=True,
            ) as own_client:
                html = await _fetch_html(own_client, url)
        if html is None:
            return None

        text = await asyncio.to_thread(extract_main_text, html)
    except Exception as e:
        logger.warning(f"Failed to parse source {url}: {e}")
        return None

    snippet = clean(text, limit)
    if not snippet:
        logger.debug(f"No readable content recovered from {url}")
        return None
    return Source(url=url, text=snippet)
