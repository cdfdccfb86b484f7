"""Paper ingestion service: validates uploads and routes them to the queue or a draft."""

import logging
import threading
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from papershelf.services.metadata import MetadataHeuristic
from papershelf.services.payload import MAX_UPLOAD_BYTES, Payload, PayloadReader
from papershelf.services.queue import FailureKind, IngestionQueue, UploadJob, classify_failure
from papershelf.services.store import PaperStore
from papershelf.services.types import PDF_CONTENT_TYPE, IncomingFile, NewPaper

logger = logging.getLogger(__name__)

# Drafts hold whole PDFs in memory; the oldest are dropped past this many.
MAX_PENDING_DRAFTS = 5


class SubmissionRejected(Exception):
    """Raised when a batch of files fails validation; nothing was queued."""


class DraftNotFound(Exception):
    """Raised when a draft id is unknown or was already committed."""


class UploadFailed(Exception):
    """Raised when a single-file upload cannot be read or stored."""

    def __init__(self, kind: FailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class UploadDraft:
    """A single uploaded file waiting for the user to confirm its title and authors."""

    id: str
    file_name: str
    size_bytes: int
    suggested_title: str
    suggested_authors: str | None
    payload: Payload = field(repr=False, compare=False)


@dataclass(frozen=True)
class SubmitResult:
    jobs: tuple[UploadJob, ...] = ()
    draft: UploadDraft | None = None


def _close_all(files: Iterable[IncomingFile]) -> None:
    for f in files:
        try:
            f.source.close()
        except OSError:
            logger.warning("could not close handle for %s", f.name)


def _size_mb(size: int) -> str:
    return f"{size / (1024 * 1024):.1f}"


class IngestionController:
    """Entry point for uploaded files.

    A batch of several PDFs is queued and committed in the background. A single
    PDF becomes a draft whose guessed title and authors the user reviews
    before ``commit_draft`` stores it. Files handed to ``submit`` belong to the
    pipeline afterwards; their handles are closed once read or rejected.
    """

    def __init__(
        self,
        queue: IngestionQueue,
        store: PaperStore,
        reader: PayloadReader | None = None,
        heuristic: MetadataHeuristic | None = None,
        max_bytes: int = MAX_UPLOAD_BYTES,
        max_drafts: int = MAX_PENDING_DRAFTS,
    ) -> None:
        self._queue = queue
        self._store = store
        self._reader = reader or PayloadReader(max_bytes)
        self._heuristic = heuristic or MetadataHeuristic()
        self._max_bytes = max_bytes
        self._max_drafts = max_drafts
        self._drafts: dict[str, UploadDraft] = {}
        self._drafts_lock = threading.Lock()

    @property
    def queue(self) -> IngestionQueue:
        return self._queue

    def validate(self, files: Sequence[IncomingFile]) -> list[IncomingFile]:
        """Return the PDFs in *files*, or raise SubmissionRejected for the whole batch."""
        pdf_files = [f for f in files if f.content_type == PDF_CONTENT_TYPE]
        if not pdf_files:
            raise SubmissionRejected("Please select valid PDF files.")

        oversized = [f for f in pdf_files if f.size > self._max_bytes]
        if oversized:
            limit_mb = self._max_bytes // (1024 * 1024)
            names = ", ".join(f.name for f in oversized)
            raise SubmissionRejected(
                f"The following file(s) exceed the {limit_mb}MB limit:\n{names}\n\n"
                f"{oversized[0].name} is {_size_mb(oversized[0].size)}MB. "
                "Please compress the PDF or use a smaller file."
            )
        return pdf_files

    def submit(self, files: Sequence[IncomingFile]) -> SubmitResult:
        try:
            accepted = self.validate(files)
        except SubmissionRejected as exc:
            logger.info("rejected upload of %d file(s): %s", len(files), exc)
            _close_all(files)
            raise
        _close_all(f for f in files if f not in accepted)

        if len(accepted) == 1:
            return SubmitResult(draft=self.create_draft(accepted[0]))
        jobs = self._queue.enqueue(accepted)
        return SubmitResult(jobs=tuple(jobs))

    # ── Single-file path ──────────────────────────────────────────────────────

    def create_draft(self, file: IncomingFile) -> UploadDraft:
        try:
            payload = self._reader.read(file)
        except Exception as exc:
            kind, message = classify_failure(exc)
            logger.warning("could not read %s: %s", file.name, exc)
            raise UploadFailed(kind, message) from exc

        guess = self._heuristic.extract(payload.duplicate())
        draft = UploadDraft(
            id=str(uuid.uuid4()),
            file_name=file.name,
            size_bytes=payload.size,
            suggested_title=guess["title"] or file.stem,
            suggested_authors=guess["authors"],
            payload=payload,
        )
        with self._drafts_lock:
            self._drafts[draft.id] = draft
            while len(self._drafts) > self._max_drafts:
                evicted = self._drafts.pop(next(iter(self._drafts)))
                logger.info("dropped unreviewed draft %s (%s)", evicted.id, evicted.file_name)
        logger.info("draft %s created for %s", draft.id, file.name)
        return draft

    def get_draft(self, draft_id: str) -> UploadDraft:
        with self._drafts_lock:
            draft = self._drafts.get(draft_id)
        if draft is None:
            raise DraftNotFound(f"Upload draft {draft_id} not found")
        return draft

    def commit_draft(
        self,
        draft_id: str,
        title: str | None = None,
        authors: str | None = None,
        tags: Iterable[str] = (),
    ) -> uuid.UUID:
        """Store the draft's paper with the reviewed fields and return the new paper id.

        Blank title falls back to the file name without its extension. On
        failure the draft is kept so the user can retry; no partial paper remains.
        """
        draft = self.get_draft(draft_id)
        store_copy = draft.payload.duplicate()
        title = (title or "").strip() or Path(draft.file_name).stem or draft.file_name
        paper_id: uuid.UUID | None = None
        try:
            paper_id = self._store.create(
                NewPaper(
                    title=title,
                    authors=(authors or "").strip() or None,
                    file_name=draft.file_name,
                    file_size_bytes=draft.size_bytes,
                    tags=list(tags),
                )
            )
            self._store.attach_binary(paper_id, store_copy)
        except Exception as exc:
            if paper_id is not None:
                try:
                    self._store.delete(paper_id)
                except Exception:
                    logger.exception("could not remove partial paper %s", paper_id)
            kind, message = classify_failure(exc)
            logger.warning("commit of draft %s failed (%s): %s", draft_id, kind, exc)
            raise UploadFailed(kind, message) from exc

        with self._drafts_lock:
            self._drafts.pop(draft_id, None)
        logger.info("draft %s committed as paper %s", draft_id, paper_id)
        return paper_id

    def discard_draft(self, draft_id: str) -> None:
        with self._drafts_lock:
            if self._drafts.pop(draft_id, None) is None:
                raise DraftNotFound(f"Upload draft {draft_id} not found")
