from __future__ import annotations

import itertools
import re
from dataclasses import replace
from urllib.parse import urlsplit

from clarity.models.answer import AnswerRecord, SearchQuery

ERROR_TEXT = "Error"
STREAMING_ID = "streaming"

_CITATION = re.compile(r"\[(\d+)\]")


def inject_source_links(content: str, source_links: tuple[str, ...] | list[str]) -> str:
    """Turn ``[n]`` markers into markdown links to the n-th source.

    Markers without a matching source are left as they are.
    """

    def _replace(match: re.Match) -> str:
        index = int(match.group(1))
        if 1 <= index <= len(source_links) and source_links[index - 1]:
            return f"[{match.group(1)}]({source_links[index - 1]})"
        return match.group(0)

    return _CITATION.sub(_replace, content)


def format_source_label(url: str) -> str:
    try:
        hostname = urlsplit(url).hostname or ""
    except ValueError:
        return url
    return re.sub(r"^www\.", "", hostname) or url


def render_markdown(record: AnswerRecord) -> str:
    body = inject_source_links(record.content, record.source_links)
    if not record.source_links:
        return body
    lines = [body, "", "Sources:"]
    for index, link in enumerate(record.source_links, 1):
        lines.append(f"[{index}] [{format_source_label(link)}]({link})")
    return "\n".join(lines)


class AnswerAccumulator:
    """Answer history plus the answer currently being streamed.

    The in-progress answer is never stored in history; ``streaming_record``
    derives it from the accumulated text. ``finish()`` commits it at most once
    per distinct content.
    """

    def __init__(self) -> None:
        self._history: list[AnswerRecord] = []
        self._last_committed = ""
        self._ids = itertools.count(1)
        self._search_query = SearchQuery()
        self._answer = ""
        self._done = False

    @property
    def search_query(self) -> SearchQuery:
        return self._search_query

    @property
    def answer(self) -> str:
        return self._answer

    @property
    def done(self) -> bool:
        return self._done

    @property
    def history(self) -> tuple[AnswerRecord, ...]:
        return tuple(self._history)

    @property
    def streaming_record(self) -> AnswerRecord | None:
        trimmed = self._answer.strip()
        if not trimmed or self._done:
            return None
        return AnswerRecord(
            id=STREAMING_ID,
            question=self._search_query.query,
            content=trimmed,
            source_links=self._search_query.source_links,
            is_streaming=True,
        )

    @property
    def entries(self) -> list[AnswerRecord]:
        entries = list(self._history)
        streaming = self.streaming_record
        if streaming is not None:
            entries.append(streaming)
        return entries

    def begin(self, search_query: SearchQuery) -> None:
        self._search_query = search_query
        self._answer = ""
        self._done = False

    def attach_sources(self, source_links: list[str] | tuple[str, ...]) -> None:
        if self._done:
            return
        self._search_query = replace(self._search_query, source_links=tuple(source_links))

    def append(self, chunk: str) -> None:
        if self._done:
            raise RuntimeError("Cannot append to a finished answer")
        self._answer += chunk

    def finish(self) -> AnswerRecord | None:
        """Mark the answer done and commit it to history.

        Returns the new record, or ``None`` when nothing was committed
        (empty answer, or same content as the last committed one).
        """
        self._done = True
        trimmed = self._answer.strip()
        if not trimmed or trimmed == self._last_committed:
            return None

        record = AnswerRecord(
            id=f"answer-{next(self._ids)}",
            question=self._search_query.query,
            content=trimmed,
            source_links=self._search_query.source_links,
        )
        self._history.append(record)
        self._last_committed = trimmed
        return record

    def fail(self, message: str = ERROR_TEXT) -> AnswerRecord | None:
        self._answer = message
        return self.finish()

    def reset(self) -> None:
        self._history = []
        self._last_committed = ""
        self._search_query = SearchQuery()
        self._answer = ""
        self._done = False
