"""Pydantic schemas for upload endpoints."""

import uuid

from pydantic import BaseModel, Field


class UploadJobStatus(BaseModel):
    id: str
    display_name: str
    size_bytes: int
    status: str  # pending | active | complete | failed
    progress: int
    failure_kind: str | None
    failure_reason: str | None
    paper_id: uuid.UUID | None

    model_config = {"from_attributes": True}


class QueueStatus(BaseModel):
    processor: str  # idle | draining
    jobs: list[UploadJobStatus]


class DraftResponse(BaseModel):
    id: str
    file_name: str
    size_bytes: int
    suggested_title: str
    suggested_authors: str | None

    model_config = {"from_attributes": True}


class SubmitResponse(BaseModel):
    jobs: list[UploadJobStatus] = Field(default_factory=list)
    draft: DraftResponse | None = None


class DraftCommitRequest(BaseModel):
    title: str | None = None
    authors: str | None = None
    tags: list[str] = Field(default_factory=list)


class DraftCommitResponse(BaseModel):
    paper_id: uuid.UUID
