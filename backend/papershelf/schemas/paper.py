"""Pydantic schemas for Paper endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class PaperSummary(BaseModel):
    id: uuid.UUID
    title: str
    authors: str | None
    file_name: str
    file_size_bytes: int
    uploaded_at: datetime
    tags: list[str]

    model_config = {"from_attributes": True}


class PaperDetail(PaperSummary):
    drive_view_url: str | None
    created_at: datetime
    updated_at: datetime


class SelectionToggleRequest(BaseModel):
    paper_id: str


class SelectionRangeRequest(BaseModel):
    target_id: str
    # The library list as currently filtered and sorted on the client.
    ordered_ids: list[str]


class SelectionResponse(BaseModel):
    selected: list[str]
    anchor: str | None


class BatchTagRequest(BaseModel):
    add: list[str] = Field(default_factory=list)
    remove: list[str] = Field(default_factory=list)


class BatchTagResponse(BaseModel):
    updated: int


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
