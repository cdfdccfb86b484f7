"""Single-flight FIFO upload queue.

Queue state is an immutable value. Every change goes through ``reduce``,
which returns a new state and enforces the queue invariants: insertion order
is preserved, at most one job is active, and progress never goes backwards
and only reaches 100 on completion.

``IngestionQueue`` owns the current state and a processor that drains
pending jobs one at a time on a worker thread.
"""

import logging
import os
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Literal

from papershelf.services.metadata import MetadataHeuristic
from papershelf.services.payload import PayloadReader, ReadError
from papershelf.services.store import PaperStore, StoreError
from papershelf.services.types import IncomingFile, NewPaper

logger = logging.getLogger(__name__)

JobStatus = Literal["pending", "active", "complete", "failed"]
FailureKind = Literal["too_large", "invalid_format", "server_fault", "unknown"]
ProcessorState = Literal["idle", "draining"]

DEFAULT_SETTLE_SECONDS = 3.0
MAX_ERROR_MESSAGE_LEN = 50

# Progress checkpoints while a job is active.
PROGRESS_ACTIVATED = 10
PROGRESS_READ = 30
PROGRESS_METADATA = 40
PROGRESS_RECORD = 50
PROGRESS_BINARY = 80
PROGRESS_DONE = 100

_TERMINAL: frozenset[str] = frozenset({"complete", "failed"})


class QueueStateError(Exception):
    """Raised when an event would break a queue invariant."""


@dataclass(frozen=True)
class UploadJob:
    id: str
    source: IncomingFile = field(repr=False, compare=False)
    display_name: str
    size_bytes: int
    status: JobStatus = "pending"
    progress: int = 0
    failure_kind: FailureKind | None = None
    failure_reason: str | None = None
    paper_id: uuid.UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    @classmethod
    def for_file(cls, file: IncomingFile) -> "UploadJob":
        return cls(id=str(uuid.uuid4()), source=file, display_name=file.name, size_bytes=file.size)


@dataclass(frozen=True)
class QueueState:
    jobs: tuple[UploadJob, ...] = ()
    processor: ProcessorState = "idle"

    def get(self, job_id: str) -> UploadJob | None:
        return next((j for j in self.jobs if j.id == job_id), None)

    @property
    def active(self) -> UploadJob | None:
        return next((j for j in self.jobs if j.status == "active"), None)

    @property
    def next_pending(self) -> UploadJob | None:
        return next((j for j in self.jobs if j.status == "pending"), None)

    @property
    def all_terminal(self) -> bool:
        return bool(self.jobs) and all(j.is_terminal for j in self.jobs)


# ── Events ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class JobAdded:
    job: UploadJob


@dataclass(frozen=True)
class DrainStarted:
    pass


@dataclass(frozen=True)
class JobActivated:
    job_id: str


@dataclass(frozen=True)
class JobAdvanced:
    job_id: str
    progress: int


@dataclass(frozen=True)
class JobFailed:
    job_id: str
    kind: FailureKind
    reason: str


@dataclass(frozen=True)
class JobCompleted:
    job_id: str
    paper_id: uuid.UUID


@dataclass(frozen=True)
class DrainFinished:
    pass


@dataclass(frozen=True)
class QueueCleared:
    pass


QueueEvent = (
    JobAdded
    | DrainStarted
    | JobActivated
    | JobAdvanced
    | JobFailed
    | JobCompleted
    | DrainFinished
    | QueueCleared
)


# ── Reducer ───────────────────────────────────────────────────────────────────


def _replace_job(state: QueueState, job: UploadJob) -> QueueState:
    return replace(state, jobs=tuple(job if j.id == job.id else j for j in state.jobs))


def _require_active(job: UploadJob, event: QueueEvent) -> None:
    if job.status != "active":
        raise QueueStateError(
            f"{type(event).__name__} for job {job.id} in state {job.status!r}; job must be active"
        )


def reduce(state: QueueState, event: QueueEvent) -> QueueState:
    """Return the queue state that results from applying *event* to *state*."""
    if isinstance(event, JobAdded):
        if state.get(event.job.id) is not None:
            raise QueueStateError(f"job {event.job.id} already queued")
        if event.job.status != "pending":
            raise QueueStateError(f"new job {event.job.id} must be pending")
        return replace(state, jobs=(*state.jobs, event.job))

    if isinstance(event, DrainStarted):
        # Re-entrancy guard: a second start while draining changes nothing.
        if state.processor == "draining":
            return state
        return replace(state, processor="draining")

    if isinstance(event, DrainFinished):
        if state.active is not None:
            raise QueueStateError("cannot finish draining while a job is active")
        return replace(state, processor="idle")

    if isinstance(event, QueueCleared):
        return replace(state, jobs=tuple(j for j in state.jobs if j.status == "active"))

    job = state.get(event.job_id)
    if job is None:
        # The job was cleared from the list; nothing left to update.
        return state

    if isinstance(event, JobActivated):
        if state.processor != "draining":
            raise QueueStateError("jobs can only be activated while draining")
        if state.active is not None:
            raise QueueStateError(f"job {state.active.id} is already active")
        head = state.next_pending
        if head is None or head.id != job.id:
            raise QueueStateError(f"job {job.id} is not the head of the pending queue")
        return _replace_job(state, replace(job, status="active", progress=PROGRESS_ACTIVATED))

    _require_active(job, event)

    if isinstance(event, JobAdvanced):
        progress = min(max(job.progress, event.progress), PROGRESS_DONE - 1)
        if progress == job.progress:
            return state
        return _replace_job(state, replace(job, progress=progress))

    if isinstance(event, JobFailed):
        return _replace_job(
            state,
            replace(job, status="failed", failure_kind=event.kind, failure_reason=event.reason),
        )

    if isinstance(event, JobCompleted):
        return _replace_job(
            state, replace(job, status="complete", progress=PROGRESS_DONE, paper_id=event.paper_id)
        )

    raise TypeError(f"unknown queue event: {event!r}")


# ── Failure classification ────────────────────────────────────────────────────


def _truncate(message: str) -> str:
    if len(message) > MAX_ERROR_MESSAGE_LEN:
        return message[:MAX_ERROR_MESSAGE_LEN] + "..."
    return message


def classify_failure(exc: BaseException) -> tuple[FailureKind, str]:
    """Map an ingestion exception to a failure kind and a short user-facing message.

    Read errors are classified by type alone: their text carries the user's
    file name, which may contain digits like "500".
    """
    message = str(exc) or type(exc).__name__
    if isinstance(exc, ReadError):
        if exc.too_large:
            return "too_large", "File too large (max 50MB)"
        return "unknown", _truncate(message)

    status = exc.status_code if isinstance(exc, StoreError) else None
    lowered = message.lower()

    if status == 413 or "413" in message or "too large" in lowered or "exceeded" in lowered:
        return "too_large", "File too large (max 50MB)"
    if status == 400 or (status is None and "400" in message):
        return "invalid_format", "Invalid file format"
    if (status is not None and status >= 500) or "500" in message or "internal server error" in lowered:
        return "server_fault", "Server error - please try again"
    return "unknown", _truncate(message)

# ── Processor ─────────────────────────────────────────────────────────────────


def _spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True, name="ingestion-queue").start()


def settle_seconds_from_env() -> float:
    raw = os.environ.get("UPLOAD_SETTLE_SECONDS", "").strip()
    return float(raw) if raw else DEFAULT_SETTLE_SECONDS


Listener = Callable[[QueueState, QueueEvent], None]


class IngestionQueue:
    """Owns the upload queue state and drains it one job at a time."""

    def __init__(
        self,
        store: PaperStore,
        reader: PayloadReader | None = None,
        heuristic: MetadataHeuristic | None = None,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        spawn: Callable[[Callable[[], None]], None] = _spawn_thread,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = threading.Timer,
    ) -> None:
        self._store = store
        self._reader = reader or PayloadReader()
        self._heuristic = heuristic or MetadataHeuristic()
        self._settle_seconds = settle_seconds
        self._spawn = spawn
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._state = QueueState()
        self._listeners: list[Listener] = []
        self._clear_timer: threading.Timer | None = None
        self._idle = threading.Event()
        self._idle.set()

    # State access

    def snapshot(self) -> QueueState:
        with self._lock:
            return self._state

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _dispatch_locked(self, event: QueueEvent) -> QueueState:
        self._state = reduce(self._state, event)
        for listener in self._listeners:
            try:
                listener(self._state, event)
            except Exception:
                logger.exception("queue listener failed on %s", type(event).__name__)
        return self._state

    def _dispatch(self, event: QueueEvent) -> QueueState:
        with self._lock:
            return self._dispatch_locked(event)

    # Public operations

    def enqueue(self, files: Iterable[IncomingFile]) -> list[UploadJob]:
        """Append one pending job per file, in order, and make sure the queue is draining."""
        jobs = [UploadJob.for_file(f) for f in files]
        with self._lock:
            self._cancel_clear_timer_locked()
            for job in jobs:
                self._dispatch_locked(JobAdded(job))
        logger.info("queued %d upload(s)", len(jobs))
        if jobs:
            self.start()
        return jobs

    def start(self) -> bool:
        """Begin draining pending jobs. Returns False if a drain is already running."""
        with self._lock:
            before = self._state
            after = self._dispatch_locked(DrainStarted())
            if after is before:
                return False
            self._idle.clear()
        self._spawn(self._drain)
        return True

    def clear(self) -> None:
        """Drop every pending and finished job. An active job is left to finish."""
        with self._lock:
            self._cancel_clear_timer_locked()
            dropped = [j for j in self._state.jobs if j.status == "pending"]
            self._dispatch_locked(QueueCleared())
        for job in dropped:
            job.source.source.close()
        logger.info("upload queue cleared (%d pending dropped)", len(dropped))

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    # Drain loop

    def _drain(self) -> None:
        try:
            while True:
                with self._lock:
                    head = self._state.next_pending
                    if head is None:
                        self._dispatch_locked(DrainFinished())
                        if self._state.all_terminal:
                            self._arm_clear_timer_locked()
                        return
                    self._dispatch_locked(JobActivated(head.id))
                self._run_job(head)
        except Exception:
            logger.exception("upload queue worker stopped unexpectedly")
            with self._lock:
                active = self._state.active
                if active is not None:
                    self._dispatch_locked(JobFailed(active.id, "unknown", "Upload failed"))
                self._dispatch_locked(DrainFinished())
        finally:
            self._idle.set()

    def _run_job(self, job: UploadJob) -> None:
        created: uuid.UUID | None = None
        try:
            self._dispatch(JobAdvanced(job.id, PROGRESS_READ))
            payload = self._reader.read(job.source)
            # The store's copy is taken before anything else reads the payload.
            store_copy = payload.duplicate()

            self._dispatch(JobAdvanced(job.id, PROGRESS_METADATA))
            guess = self._heuristic.extract(payload.duplicate())

            self._dispatch(JobAdvanced(job.id, PROGRESS_RECORD))
            paper_id = self._store.create(
                NewPaper(
                    title=guess["title"] or job.source.stem,
                    authors=guess["authors"],
                    file_name=job.display_name,
                    file_size_bytes=payload.size,
                    tags=[],
                )
            )
            created = paper_id

            self._dispatch(JobAdvanced(job.id, PROGRESS_BINARY))
            self._store.attach_binary(paper_id, store_copy)
        except Exception as exc:
            if created is not None:
                self._discard_paper(created)
            kind, reason = classify_failure(exc)
            logger.warning("upload %s failed (%s): %s", job.display_name, kind, exc)
            self._dispatch(JobFailed(job.id, kind, reason))
        else:
            logger.info("upload %s complete as paper %s", job.display_name, paper_id)
            self._dispatch(JobCompleted(job.id, paper_id))

    def _discard_paper(self, paper_id: uuid.UUID) -> None:
        try:
            self._store.delete(paper_id)
        except Exception:
            logger.exception("could not remove partial paper %s", paper_id)

    # Auto-clear

    def _arm_clear_timer_locked(self) -> None:
        self._cancel_clear_timer_locked()
        timer = self._timer_factory(self._settle_seconds, self._auto_clear)
        timer.daemon = True
        self._clear_timer = timer
        timer.start()

    def _cancel_clear_timer_locked(self) -> None:
        if self._clear_timer is not None:
            self._clear_timer.cancel()
            self._clear_timer = None

    def _auto_clear(self) -> None:
        with self._lock:
            self._clear_timer = None
            if not self._state.all_terminal:
                return
            self._dispatch_locked(QueueCleared())
        logger.info("upload queue settled and cleared")
