from __future__ import annotations

from typing import Any

from clarity.models.answer import AnswerRecord
from clarity.models.events import EventType, SSEEvent
from clarity.services.accumulator import render_markdown


def sources_found(query: str, source_links: list[str] | tuple[str, ...]) -> SSEEvent:
    """Emit the citation links discovered for the current query."""
    return SSEEvent(
        event=EventType.SOURCES_FOUND,
        data={"query": query, "source_links": list(source_links)},
    )


def answer_chunk(chunk: str) -> SSEEvent:
    return SSEEvent(event=EventType.ANSWER_CHUNK, data={"chunk": chunk})


def answer_complete(record: AnswerRecord | None) -> SSEEvent:
    data: dict[str, Any] = {"record": None, "markdown": ""}
    if record is not None:
        data["record"] = record.to_dict()
        data["markdown"] = render_markdown(record)
    return SSEEvent(event=EventType.ANSWER_COMPLETE, data=data)


def error(message: str, status_code: int | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if status_code is not None:
        data["status_code"] = status_code
    return SSEEvent(event=EventType.ERROR, data=data)
