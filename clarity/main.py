from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clarity.api.routes import answer, sources
from clarity.config import settings
from clarity.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_service.log_event(
        event_type="startup",
        message="Clarity API starting",
        completions_configured=bool(settings.completions_url),
    )
    yield


app = FastAPI(
    title="Clarity",
    description="Cited web answers streamed from a completions backend",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(sources.router)
app.include_router(answer.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "clarity"}
