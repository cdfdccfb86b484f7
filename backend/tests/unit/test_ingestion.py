"""Unit tests for IngestionController."""

import uuid
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from papershelf.services.ingestion import (
    DraftNotFound,
    IngestionController,
    SubmissionRejected,
    UploadFailed,
)
from papershelf.services.metadata import MetadataHeuristic
from papershelf.services.queue import IngestionQueue
from papershelf.services.store import StoreError
from papershelf.services.types import IncomingFile

_MB = 1024 * 1024


def _make_controller(
    store: MagicMock,
    queue: MagicMock | None = None,
    title: str | None = None,
    authors: str | None = None,
) -> IngestionController:
    heuristic = MagicMock(spec=MetadataHeuristic)
    heuristic.extract.return_value = {"title": title, "authors": authors}
    if queue is None:
        queue = MagicMock(spec=IngestionQueue)
        queue.enqueue.side_effect = lambda files: [MagicMock(display_name=f.name) for f in files]
    return IngestionController(queue, store, heuristic=heuristic)


class TestValidate:
    def test_rejects_batch_with_no_pdfs(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)

        with pytest.raises(SubmissionRejected, match="Please select valid PDF files."):
            controller.validate([make_file("notes.txt", content_type="text/plain")])

    def test_filters_out_non_pdf_files(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        pdf = make_file("a.pdf")

        accepted = controller.validate([make_file("cover.png", content_type="image/png"), pdf])

        assert accepted == [pdf]

    def test_single_oversized_file_names_the_file_and_its_size(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)

        with pytest.raises(SubmissionRejected) as exc_info:
            controller.validate([make_file("huge.pdf", size=60 * _MB)])

        message = str(exc_info.value)
        assert "exceed the 50MB limit" in message
        assert "huge.pdf is 60.0MB" in message
        assert "Please compress the PDF or use a smaller file." in message

    def test_any_oversized_file_rejects_the_whole_batch(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        files = [
            make_file("ok.pdf"),
            make_file("big1.pdf", size=51 * _MB),
            make_file("big2.pdf", size=70 * _MB),
        ]

        with pytest.raises(SubmissionRejected) as exc_info:
            controller.validate(files)

        assert "big1.pdf, big2.pdf" in str(exc_info.value)
        assert "ok.pdf" not in str(exc_info.value)

    def test_file_exactly_at_limit_is_accepted(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        file = make_file("edge.pdf", size=50 * _MB)

        assert controller.validate([file]) == [file]


class TestSubmit:
    def test_rejected_batch_queues_nothing_and_closes_handles(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        queue = MagicMock(spec=IngestionQueue)
        controller = _make_controller(mock_store, queue=queue)
        files = [make_file("a.pdf"), make_file("big.pdf", size=60 * _MB)]

        with pytest.raises(SubmissionRejected):
            controller.submit(files)

        queue.enqueue.assert_not_called()
        assert all(f.source.closed for f in files)

    def test_single_oversized_file_creates_no_job_or_draft(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        queue = MagicMock(spec=IngestionQueue)
        controller = _make_controller(mock_store, queue=queue)

        with pytest.raises(SubmissionRejected, match="huge.pdf"):
            controller.submit([make_file("huge.pdf", size=60 * _MB)])

        queue.enqueue.assert_not_called()
        mock_store.create.assert_not_called()

    def test_multiple_pdfs_are_queued_in_order(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        queue = MagicMock(spec=IngestionQueue)
        queue.enqueue.side_effect = lambda files: [MagicMock(display_name=f.name) for f in files]
        controller = _make_controller(mock_store, queue=queue)
        files = [make_file("a.pdf"), make_file("b.pdf"), make_file("c.pdf")]

        result = controller.submit(files)

        assert result.draft is None
        assert [j.display_name for j in result.jobs] == ["a.pdf", "b.pdf", "c.pdf"]
        assert queue.enqueue.call_args.args[0] == files

    def test_non_pdfs_are_dropped_and_closed(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        stray = make_file("notes.txt", content_type="text/plain")

        result = controller.submit([make_file("a.pdf"), stray, make_file("b.pdf")])

        assert len(result.jobs) == 2
        assert stray.source.closed

    def test_single_pdf_becomes_a_draft(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        queue = MagicMock(spec=IngestionQueue)
        controller = _make_controller(mock_store, queue=queue, authors="Jane Doe")

        result = controller.submit([make_file("widgets-2024.pdf")])

        assert result.jobs == ()
        assert result.draft is not None
        assert result.draft.suggested_title == "widgets-2024"
        assert result.draft.suggested_authors == "Jane Doe"
        queue.enqueue.assert_not_called()
        mock_store.create.assert_not_called()

    def test_single_pdf_and_non_pdf_still_takes_draft_path(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)

        result = controller.submit(
            [make_file("readme.md", content_type="text/markdown"), make_file("a.pdf")]
        )

        assert result.draft is not None
        assert result.draft.file_name == "a.pdf"


class TestDrafts:
    def test_draft_uses_guessed_title(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store, title="Neural Widgets at Scale for Everyone")

        draft = controller.create_draft(make_file("a.pdf"))

        assert draft.suggested_title == "Neural Widgets at Scale for Everyone"
        assert controller.get_draft(draft.id) is draft

    def test_unreadable_file_raises_upload_failed(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        file = make_file("a.pdf", data=b"")

        with pytest.raises(UploadFailed) as exc_info:
            controller.create_draft(file)

        assert exc_info.value.kind == "unknown"

    def test_commit_stores_reviewed_fields_and_bytes(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("a.pdf", data=b"%PDF-draft"))

        paper_id = controller.commit_draft(
            draft.id, title="  Edited Title  ", authors="Ann Lee", tags=["ml", "widgets"]
        )

        paper = mock_store.create.call_args.args[0]
        assert paper["title"] == "Edited Title"
        assert paper["authors"] == "Ann Lee"
        assert paper["tags"] == ["ml", "widgets"]
        assert paper["file_size_bytes"] == len(b"%PDF-draft")
        assert mock_store.attached[paper_id] == b"%PDF-draft"

    def test_blank_title_falls_back_to_file_stem(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("my-paper.final.pdf"))

        controller.commit_draft(draft.id, title="   ", authors="")

        paper = mock_store.create.call_args.args[0]
        assert paper["title"] == "my-paper.final"
        assert paper["authors"] is None

    def test_committed_draft_is_forgotten(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("a.pdf"))
        controller.commit_draft(draft.id, title="A Title")

        with pytest.raises(DraftNotFound):
            controller.commit_draft(draft.id, title="A Title")

    def test_failed_attach_removes_paper_and_keeps_draft(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        paper_id = uuid.uuid4()
        mock_store.create.side_effect = None
        mock_store.create.return_value = paper_id
        mock_store.attach_binary.side_effect = StoreError("Internal Server Error", status_code=500)
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("a.pdf"))

        with pytest.raises(UploadFailed) as exc_info:
            controller.commit_draft(draft.id, title="A Title")

        assert exc_info.value.kind == "server_fault"
        assert str(exc_info.value) == "Server error - please try again"
        mock_store.delete.assert_called_once_with(paper_id)
        assert controller.get_draft(draft.id) is draft

    def test_retry_after_failure_uploads_full_bytes(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        attach = mock_store.attach_binary.side_effect
        mock_store.attach_binary.side_effect = [StoreError("bad", status_code=400), None]
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("a.pdf", data=b"%PDF-retry"))

        with pytest.raises(UploadFailed):
            controller.commit_draft(draft.id, title="A Title")
        mock_store.attach_binary.side_effect = attach
        paper_id = controller.commit_draft(draft.id, title="A Title")

        assert mock_store.attached[paper_id] == b"%PDF-retry"

    def test_failed_create_does_not_call_delete(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        mock_store.create.side_effect = StoreError("duplicate key", status_code=400)
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("a.pdf"))

        with pytest.raises(UploadFailed) as exc_info:
            controller.commit_draft(draft.id, title="A Title")

        assert exc_info.value.kind == "invalid_format"
        mock_store.delete.assert_not_called()

    def test_discard_draft(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)
        draft = controller.create_draft(make_file("a.pdf"))

        controller.discard_draft(draft.id)

        with pytest.raises(DraftNotFound):
            controller.get_draft(draft.id)
        with pytest.raises(DraftNotFound):
            controller.discard_draft(draft.id)

    def test_oldest_drafts_are_evicted_past_the_limit(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        heuristic = MagicMock(spec=MetadataHeuristic)
        heuristic.extract.return_value = {"title": None, "authors": None}
        controller = IngestionController(
            MagicMock(spec=IngestionQueue), mock_store, heuristic=heuristic, max_drafts=2
        )
        first, second, third = (controller.create_draft(make_file(f"{n}.pdf")) for n in "abc")

        with pytest.raises(DraftNotFound):
            controller.get_draft(first.id)
        assert controller.get_draft(second.id) is second
        assert controller.get_draft(third.id) is third

    def test_unreadable_file_named_like_status_is_unknown(
        self, mock_store: MagicMock, make_file: Callable[..., IncomingFile]
    ) -> None:
        controller = _make_controller(mock_store)

        with pytest.raises(UploadFailed) as exc_info:
            controller.create_draft(make_file("smith2500.pdf", data=b""))

        assert exc_info.value.kind == "unknown"
