"""Shared pytest fixtures."""

import io
import uuid
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from papershelf.services.types import IncomingFile

PDF_BYTES = b"%PDF-1.4 fake content"


class FakeTimer:
    """Stands in for threading.Timer; tests fire it explicitly."""

    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


def _make_file(
    name: str = "paper.pdf",
    data: bytes = PDF_BYTES,
    content_type: str = "application/pdf",
    size: int | None = None,
) -> IncomingFile:
    return IncomingFile(
        name=name,
        content_type=content_type,
        size=len(data) if size is None else size,
        source=io.BytesIO(data),
    )


@pytest.fixture()
def make_file() -> Callable[..., IncomingFile]:
    """Factory for in-memory IncomingFile objects."""
    return _make_file


@pytest.fixture()
def db_session() -> MagicMock:
    """Mock database session for unit tests."""
    return MagicMock()


@pytest.fixture()
def mock_store() -> MagicMock:
    """Mock PaperStore whose create() hands out fresh ids and records uploaded bytes."""
    store = MagicMock()
    store.create.side_effect = lambda paper: uuid.uuid4()
    store.attached = {}

    def _attach(paper_id: uuid.UUID, stream: io.BytesIO) -> None:
        store.attached[paper_id] = stream.read()
        # Uploading consumes the stream, like a real transfer would.
        stream.close()

    store.attach_binary.side_effect = _attach
    return store


@pytest.fixture()
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture()
def timer_factory(timers: list[FakeTimer]) -> Callable[[float, Callable[[], None]], FakeTimer]:
    def _factory(interval: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        timers.append(timer)
        return timer

    return _factory
