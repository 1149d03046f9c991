from __future__ import annotations

import asyncio
from typing import AsyncGenerator, Awaitable, Callable

from loguru import logger

from clarity.models.answer import AnswerRecord, SearchQuery, Source
from clarity.models.events import SSEEvent
from clarity.services import streaming
from clarity.services.accumulator import ERROR_TEXT, AnswerAccumulator
from clarity.services.session import SessionContext
from clarity.services.upstream import AnswerStream, UpstreamError, open_answer_stream
from clarity.tools.source_discovery import discover

DiscoverFn = Callable[[str], Awaitable[list[Source]]]
OpenStreamFn = Callable[[str, str, str], Awaitable[AnswerStream]]


class Conversation:
    """One browsing session: a question, its follow-ups, and their cited answers."""

    def __init__(
        self,
        *,
        session: SessionContext | None = None,
        credential: str = "",
        discover_fn: DiscoverFn | None = None,
        open_stream_fn: OpenStreamFn | None = None,
    ):
        self.session = session or SessionContext()
        self.credential = credential
        self.accumulator = AnswerAccumulator()
        self.user_messages: list[str] = []
        self.sending = False
        self._discover = discover_fn or discover
        self._open_stream = open_stream_fn or open_answer_stream
        self._generation = 0

    @property
    def entries(self) -> list[AnswerRecord]:
        return self.accumulator.entries

    def reset(self) -> None:
        """Forget history and session identity.

        An answer still streaming keeps its connection but its output is
        ignored from here on.
        """
        self._generation += 1
        self.accumulator.reset()
        self.user_messages = []
        self.sending = False
        self.session.reset()

    async def _discover_links(self, query: str) -> list[str]:
        sources = await self._discover(query)
        return [source.url for source in sources]

    def _links_from(self, task: asyncio.Task) -> list[str]:
        try:
            return task.result()
        except Exception as e:
            logger.warning(f"Source discovery task failed: {e}")
            return []

    async def submit(self, query: str) -> AsyncGenerator[SSEEvent, None]:
        """Answer ``query`` (or a follow-up), yielding progress events.

        History from earlier questions is kept; the session identity is reused.
        """
        prompt = query.strip()
        if not prompt:
            raise ValueError("Query must not be empty")
        if self.sending:
            raise RuntimeError("A question is already being answered")

        self._generation += 1
        generation = self._generation
        self.user_messages.append(prompt)
        self.accumulator.begin(SearchQuery(query=prompt))
        self.sending = True

        discovery = asyncio.create_task(self._discover_links(prompt))
        attached = False
        try:
            try:
                stream = await self._open_stream(prompt, self.session.ensure(), self.credential)
                async with stream:
                    async for text in stream.iter_text():
                        if generation != self._generation:
                            logger.info("Conversation was reset; dropping stale answer stream")
                            return
                        if not attached and discovery.done():
                            attached = True
                            yield self._attach(prompt, self._links_from(discovery))
                        self.accumulator.append(text)
                        yield streaming.answer_chunk(text)
            except UpstreamError as e:
                logger.warning(f"Answer generation failed: {e}")
                if generation != self._generation:
                    return
                discovery.cancel()
                self.accumulator.fail(ERROR_TEXT)
                yield streaming.error(ERROR_TEXT, status_code=e.status_code)
                return

            if generation != self._generation:
                return
            if not attached:
                await asyncio.wait([discovery])
                yield self._attach(prompt, self._links_from(discovery))
            record = self.accumulator.finish()
            yield streaming.answer_complete(record)
        finally:
            if not discovery.done():
                discovery.cancel()
            if generation == self._generation:
                self.sending = False

    def _attach(self, prompt: str, links: list[str]) -> SSEEvent:
        self.accumulator.attach_sources(links)
        return streaming.sources_found(prompt, links)
