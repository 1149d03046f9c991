"""Completions backend client that normalizes every response shape to one byte stream."""
from __future__ import annotations

import codecs
import json
import time
from enum import Enum
from typing import Any, AsyncIterator

import httpx
from loguru import logger

from clarity.config import settings
from clarity.services.event_stream import EventStreamParser
from clarity.services.logger import log_upstream_call

DONE_SENTINEL = "[DONE]"


class UpstreamError(RuntimeError):
    """The completions backend failed or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseShape(str, Enum):
    EVENT_STREAM = "event_stream"
    JSON = "json"
    RAW = "raw"

    @classmethod
    def from_content_type(cls, content_type: str) -> "ResponseShape":
        lowered = (content_type or "").lower()
        if "text/event-stream" in lowered:
            return cls.EVENT_STREAM
        if "application/json" in lowered:
            return cls.JSON
        return cls.RAW


def build_payload(prompt: str) -> dict[str, Any]:
    return {
        "model": settings.completions_model,
        "messages": [
            {"role": "system", "content": settings.system_prompt},
            {"role": "user", "content": prompt},
        ],
        "max_tokens": settings.completions_max_tokens,
        "temperature": settings.completions_temperature,
        "stream": settings.completions_stream,
    }


def build_headers(session_id: str, credential: str) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "X-Session-Id": session_id,
    }
    if credential:
        headers["Authorization"] = f"Bearer {credential}"
    return headers


def _dig(payload: Any, *path: str | int) -> Any:
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
    return current


def content_from_json(payload: Any) -> str:
    """Pull answer text out of a one-shot JSON body.

    Falls back to the serialized payload so the caller always sees something.
    """
    for path in (
        ("choices", 0, "message", "content"),
        ("choices", 0, "delta", "content"),
        ("content",),
    ):
        value = _dig(payload, *path)
        if value is not None:
            return value if isinstance(value, str) else json.dumps(value)
    return json.dumps(payload)


def delta_from_event(data: str) -> str:
    """Text carried by one SSE payload; non-JSON payloads pass through verbatim."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return data
    text = _dig(payload, "choices", 0, "delta", "content")
    return text if isinstance(text, str) else ""


class AnswerStream:
    """Ordered byte chunks of one backend answer, whatever shape it arrived in.

    Iterate it (or ``iter_text()``) exactly once. The HTTP response is
    released when iteration ends, when iteration is abandoned, or on
    ``aclose()``.
    """

    def __init__(
        self,
        response: httpx.Response,
        shape: ResponseShape,
        *,
        owned_client: httpx.AsyncClient | None = None,
    ):
        self.response = response
        self.shape = shape
        self._owned_client = owned_client
        self._closed = False

    async def __aenter__(self) -> "AnswerStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.response.aclose()
        if self._owned_client is not None:
            await self._owned_client.aclose()

    async def iter_text(self) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        async for chunk in self:
            text = decoder.decode(chunk)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        decoders = {
            ResponseShape.EVENT_STREAM: self._iter_event_stream,
            ResponseShape.JSON: self._iter_json,
            ResponseShape.RAW: self._iter_raw,
        }
        try:
            async for chunk in decoders[self.shape]():
                yield chunk
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream read failed: {e}") from e
        finally:
            await self.aclose()

    async def _iter_event_stream(self) -> AsyncIterator[bytes]:
        parser = EventStreamParser()
        async for text in self.response.aiter_text():
            for event in parser.feed(text):
                if event.data == DONE_SENTINEL:
                    return
                delta = delta_from_event(event.data)
                if delta:
                    yield delta.encode("utf-8")

    async def _iter_json(self) -> AsyncIterator[bytes]:
        body = await self.response.aread()
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise UpstreamError("Upstream returned malformed JSON") from e
        yield content_from_json(payload).encode("utf-8")

    async def _iter_raw(self) -> AsyncIterator[bytes]:
        emitted = False
        async for chunk in self.response.aiter_bytes():
            emitted = True
            yield chunk
        if not emitted:
            yield b""


async def open_answer_stream(
    prompt: str,
    session_id: str,
    credential: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> AnswerStream:
    """Send ``prompt`` to the completions backend and wrap its response.

    Raises ``UpstreamError`` when the backend is unreachable or answers with
    a non-success status. Otherwise the returned stream owns the response.
    """
    endpoint = settings.completions_url
    if not endpoint:
        raise UpstreamError("Completions endpoint is not configured")

    owned_client = None
    if client is None:
        owned_client = client = httpx.AsyncClient(
            timeout=settings.completions_timeout_seconds,
        )

    started = time.monotonic()
    try:
        request = client.build_request(
            "POST",
            endpoint,
            json=build_payload(prompt),
            headers=build_headers(session_id, credential),
        )
        response = await client.send(request, stream=True)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        if owned_client is not None:
            await owned_client.aclose()
        log_upstream_call(
            endpoint,
            session_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=str(e),
        )
        raise UpstreamError(f"Upstream request failed: {e}") from e

    duration_ms = int((time.monotonic() - started) * 1000)
    if not response.is_success:
        await response.aclose()
        if owned_client is not None:
            await owned_client.aclose()
        log_upstream_call(
            endpoint,
            session_id,
            status_code=response.status_code,
            duration_ms=duration_ms,
            error=f"HTTP {response.status_code}",
        )
        raise UpstreamError(
            f"Upstream returned status {response.status_code}",
            status_code=response.status_code,
        )

    shape = ResponseShape.from_content_type(response.headers.get("content-type", ""))
    log_upstream_call(
        endpoint,
        session_id,
        shape=shape.value,
        status_code=response.status_code,
        duration_ms=duration_ms,
    )
    logger.debug(f"Normalizing upstream response as {shape.value}")
    return AnswerStream(response, shape, owned_client=owned_client)
