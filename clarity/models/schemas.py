from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# --- Requests ---


class SourcesRequest(BaseModel):
    query: str | None = None


class AnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    api_key: str = Field(default="", alias="apiKey")


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    api_key: str = Field(default="", alias="apiKey")


# --- Responses ---


class SourceItem(BaseModel):
    url: str
    text: str


class SourcesResponse(BaseModel):
    sources: list[SourceItem]
