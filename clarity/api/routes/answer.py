from __future__ import annotations

import json as _json

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import StreamingResponse
from sse_starlette.sse import EventSourceResponse
from starlette.background import BackgroundTask

from clarity.api.deps import resolve_credential
from clarity.models.schemas import AnswerRequest, AskRequest
from clarity.services import logger as log_service
from clarity.services import streaming
from clarity.services.accumulator import ERROR_TEXT
from clarity.services.conversation import Conversation
from clarity.services.session import SessionContext
from clarity.services.upstream import UpstreamError, open_answer_stream

router = APIRouter(prefix="/api", tags=["answer"])


@router.post("/answer")
async def answer(
    request: AnswerRequest,
    x_session_id: str = Header(default=""),
):
    """Stream the completions backend's answer as plain bytes."""
    prompt = request.prompt.strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Prompt must not be empty")

    try:
        stream = await open_answer_stream(
            prompt,
            x_session_id,
            resolve_credential(request.api_key),
        )
    except UpstreamError as e:
        log_service.log_event(
            event_type="answer_error",
            message="Completions backend failed",
            error=str(e),
            session_id=x_session_id,
        )
        raise HTTPException(status_code=500, detail=ERROR_TEXT)

    return StreamingResponse(
        stream,
        media_type="text/plain; charset=utf-8",
        background=BackgroundTask(stream.aclose),
    )


@router.post("/ask")
async def ask(
    request: AskRequest,
    x_session_id: str = Header(default=""),
):
    """SSE endpoint running one full answer cycle: sources, chunks, final record."""
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query must not be empty")

    conversation = Conversation(
        session=SessionContext(session_id=x_session_id),
        credential=resolve_credential(request.api_key),
    )
    session_id = conversation.session.ensure()

    async def event_generator():
        log_service.log_event(
            event_type="answer_started",
            message="Answer cycle started",
            session_id=session_id,
            query=query[:100],
        )
        try:
            async for event in conversation.submit(query):
                yield {
                    "event": event.event.value,
                    "data": _json.dumps(event.data),
                }
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in answer stream",
                error=str(e),
                session_id=conversation.session.session_id,
            )
            error_event = streaming.error(ERROR_TEXT)
            yield {
                "event": error_event.event.value,
                "data": _json.dumps(error_event.data),
            }

    return EventSourceResponse(event_generator(), headers={"X-Session-Id": session_id})
