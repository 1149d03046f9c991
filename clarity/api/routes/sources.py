from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from clarity.models.schemas import SourceItem, SourcesRequest, SourcesResponse
from clarity.services import logger as log_service
from clarity.tools.source_discovery import discover

router = APIRouter(prefix="/api/sources", tags=["sources"])


@router.post("", response_model=SourcesResponse)
async def find_sources(request: SourcesRequest):
    """Discover and extract the pages that back an answer to ``query``."""
    query = (request.query or "").strip()
    if not query:
        return JSONResponse(status_code=400, content={"sources": []})

    try:
        sources = await discover(query)
    except Exception as e:
        log_service.log_event(
            event_type="sources_error",
            message="Source handler failed",
            error=str(e),
            query=query[:100],
        )
        return JSONResponse(status_code=500, content={"sources": []})

    log_service.log_event(
        event_type="sources_found",
        message="Sources discovered",
        query=query[:100],
        count=len(sources),
    )
    return SourcesResponse(sources=[SourceItem(url=s.url, text=s.text) for s in sources])
