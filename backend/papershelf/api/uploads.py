"""Upload API router."""

import logging
import shutil
import tempfile
import threading
from typing import BinaryIO

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from papershelf.db import get_session_factory
from papershelf.schemas.upload import (
    DraftCommitRequest,
    DraftCommitResponse,
    DraftResponse,
    QueueStatus,
    SubmitResponse,
    UploadJobStatus,
)
from papershelf.services.ingestion import IngestionController, UploadFailed
from papershelf.services.payload import MAX_UPLOAD_BYTES
from papershelf.services.queue import IngestionQueue, UploadJob, settle_seconds_from_env
from papershelf.services.store import SqlPaperStore
from papershelf.services.types import PDF_CONTENT_TYPE, IncomingFile

logger = logging.getLogger(__name__)

router = APIRouter()

_SPOOL_MAX_MEMORY = 8 * 1024 * 1024

_FAILURE_STATUS = {
    "too_large": 413,
    "invalid_format": 422,
    "server_fault": 502,
    "unknown": 500,
}

# Module-level singleton: one queue per process, created on first request.
_controller: IngestionController | None = None
_controller_lock = threading.Lock()


def get_controller() -> IngestionController:
    global _controller
    with _controller_lock:
        if _controller is None:
            store = SqlPaperStore(get_session_factory())
            queue = IngestionQueue(store, settle_seconds=settle_seconds_from_env())
            _controller = IngestionController(queue, store)
        return _controller


def _declared_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, 2)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _owned_copy(upload: UploadFile) -> BinaryIO:
    """Copy the request file into a handle that outlives the request."""
    spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_MEMORY)
    upload.file.seek(0)
    shutil.copyfileobj(upload.file, spool)
    spool.seek(0)
    return spool  # type: ignore[return-value]


def _to_incoming(upload: UploadFile) -> IncomingFile:
    content_type = upload.content_type or ""
    size = _declared_size(upload)
    # Starlette closes request files once the response is sent; only files
    # that can pass validation are copied, the rest are never read.
    if content_type == PDF_CONTENT_TYPE and size <= MAX_UPLOAD_BYTES:
        source = _owned_copy(upload)
    else:
        source = upload.file
    return IncomingFile(
        name=upload.filename or "upload.pdf", content_type=content_type, size=size, source=source
    )


def _job_status(job: UploadJob) -> UploadJobStatus:
    return UploadJobStatus.model_validate(job)


def _upload_failed(exc: UploadFailed) -> HTTPException:
    return HTTPException(status_code=_FAILURE_STATUS.get(exc.kind, 500), detail=str(exc))


@router.post("", status_code=202)
def submit_uploads(
    response: Response,
    files: list[UploadFile] = File(...),
    controller: IngestionController = Depends(get_controller),
) -> SubmitResponse:
    """Accept dropped or picked files: several PDFs are queued, a single PDF becomes a draft."""
    incoming = [_to_incoming(f) for f in files]
    try:
        result = controller.submit(incoming)
    except UploadFailed as exc:
        raise _upload_failed(exc) from exc

    if result.draft is not None:
        response.status_code = 201
        return SubmitResponse(draft=DraftResponse.model_validate(result.draft))
    return SubmitResponse(jobs=[_job_status(j) for j in result.jobs])


@router.get("/queue")
def queue_status(controller: IngestionController = Depends(get_controller)) -> QueueStatus:
    state = controller.queue.snapshot()
    return QueueStatus(processor=state.processor, jobs=[_job_status(j) for j in state.jobs])


@router.delete("/queue", status_code=204)
def clear_queue(controller: IngestionController = Depends(get_controller)) -> None:
    controller.queue.clear()


@router.get("/drafts/{draft_id}")
def get_draft(
    draft_id: str,
    controller: IngestionController = Depends(get_controller),
) -> DraftResponse:
    return DraftResponse.model_validate(controller.get_draft(draft_id))


@router.post("/drafts/{draft_id}/commit", status_code=201)
def commit_draft(
    draft_id: str,
    body: DraftCommitRequest,
    controller: IngestionController = Depends(get_controller),
) -> DraftCommitResponse:
    try:
        paper_id = controller.commit_draft(draft_id, body.title, body.authors, body.tags)
    except UploadFailed as exc:
        raise _upload_failed(exc) from exc
    return DraftCommitResponse(paper_id=paper_id)


@router.delete("/drafts/{draft_id}", status_code=204)
def discard_draft(
    draft_id: str,
    controller: IngestionController = Depends(get_controller),
) -> None:
    controller.discard_draft(draft_id)
