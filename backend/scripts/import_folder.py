"""Bulk-import every PDF under a directory into PaperShelf.

Usage:
    uv run python scripts/import_folder.py PATH [--dry-run]

Walks PATH recursively, submits every *.pdf through the same ingestion
pipeline the upload endpoint uses, and waits until the queue has drained.
A single PDF is committed straight away with its guessed title and authors.

Requires DATABASE_URL and Google OAuth credentials to be configured.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Allow running from backend/ directory without installing the package.
_BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

# Load .env from project root (parent of backend/).
load_dotenv(_BACKEND_DIR.parent / ".env")

from papershelf.db import create_tables, get_session_factory  # noqa: E402
from papershelf.services.ingestion import (  # noqa: E402
    IngestionController,
    SubmissionRejected,
    UploadFailed,
)
from papershelf.services.queue import (  # noqa: E402
    IngestionQueue,
    JobCompleted,
    JobFailed,
    QueueState,
    UploadJob,
)
from papershelf.services.store import SqlPaperStore  # noqa: E402
from papershelf.services.types import IncomingFile  # noqa: E402


def _collect_pdfs(folder: Path) -> list[Path]:
    return sorted(p for p in folder.rglob("*") if p.is_file() and p.suffix.lower() == ".pdf")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("folder", type=Path)
    parser.add_argument("--dry-run", action="store_true", help="list the PDFs that would be imported")
    args = parser.parse_args()

    if not args.folder.is_dir():
        parser.error(f"{args.folder} is not a directory")

    pdfs = _collect_pdfs(args.folder)
    print(f"Found {len(pdfs)} PDF(s) under {args.folder}")
    if args.dry_run or not pdfs:
        for path in pdfs:
            print(f"  {path}")
        return 0

    create_tables()
    store = SqlPaperStore(get_session_factory())
    queue = IngestionQueue(store)
    controller = IngestionController(queue, store)
    finished: dict[str, UploadJob] = {}

    def _record(state: QueueState, event: object) -> None:
        if isinstance(event, (JobCompleted, JobFailed)):
            job = state.get(event.job_id)
            if job is not None:
                finished[job.id] = job

    queue.subscribe(_record)

    try:
        result = controller.submit([IncomingFile.from_path(p) for p in pdfs])
    except SubmissionRejected as exc:
        print(f"Rejected: {exc}")
        return 1
    except UploadFailed as exc:
        print(f"Failed: {exc}")
        return 1

    if result.draft is not None:
        draft = result.draft
        try:
            paper_id = controller.commit_draft(draft.id, draft.suggested_title, draft.suggested_authors)
        except UploadFailed as exc:
            print(f"Failed: {draft.file_name}: {exc}")
            return 1
        print(f"Imported {draft.file_name} as {paper_id}")
        return 0

    queue.wait_idle()
    failed = [j for j in finished.values() if j.status == "failed"]
    for job in failed:
        print(f"  FAILED {job.display_name}: {job.failure_reason}")
    print(f"Imported {len(finished) - len(failed)}/{len(result.jobs)} paper(s)")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
