from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Source:
    url: str
    text: str


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """The query being answered and its citation basis.

    Position *i* (1-based) in ``source_links`` is citation marker ``[i]``.
    """

    query: str = ""
    source_links: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    id: str
    question: str
    content: str
    source_links: tuple[str, ...] = ()
    is_streaming: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "content": self.content,
            "source_links": list(self.source_links),
            "is_streaming": self.is_streaming,
        }
