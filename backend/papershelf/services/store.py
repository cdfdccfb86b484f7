"""Paper persistence: database rows plus the stored PDF bytes."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, BinaryIO, Protocol

from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from papershelf.models.paper import Paper
from papershelf.models.tag import Tag, normalise_tag_names
from papershelf.services.types import NewPaper

if TYPE_CHECKING:
    from papershelf.services.drive import DriveService

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backend rejects a paper record or its PDF bytes.

    *status_code* follows HTTP conventions (400 malformed, 413 too large,
    5xx backend fault) and is None when the failure carries no status.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PaperStore(Protocol):
    def create(self, paper: NewPaper) -> uuid.UUID: ...

    def attach_binary(self, paper_id: uuid.UUID, stream: BinaryIO) -> None: ...

    def delete(self, paper_id: uuid.UUID) -> None: ...

    def add_tags(self, paper_ids: Iterable[uuid.UUID], tags: Iterable[str]) -> int: ...

    def remove_tags(self, paper_ids: Iterable[uuid.UUID], tags: Iterable[str]) -> int: ...


def _store_error(exc: SQLAlchemyError) -> StoreError:
    status = 400 if isinstance(exc, (IntegrityError, DataError)) else 500
    return StoreError(str(exc.orig if getattr(exc, "orig", None) else exc), status_code=status)


def _resolve_tags(names: Iterable[str], db: Session) -> list[Tag]:
    """Look up tags by name, creating any that do not exist yet."""
    resolved: list[Tag] = []
    for name in normalise_tag_names(names):
        tag = db.query(Tag).filter(Tag.name == name).first()
        if tag is None:
            tag = Tag(name=name)
            db.add(tag)
            db.flush()
        resolved.append(tag)
    return resolved


class SqlPaperStore:
    """PaperStore backed by SQLAlchemy for records and Google Drive for PDFs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        drive: DriveService | None = None,
    ) -> None:
        if drive is None:
            from papershelf.services.drive import DriveService

            drive = DriveService()
        self._session_factory = session_factory
        self._drive = drive

    def create(self, paper: NewPaper) -> uuid.UUID:
        paper_id = uuid.uuid4()
        db = self._session_factory()
        try:
            row = Paper(
                id=paper_id,
                title=paper["title"],
                authors=paper["authors"],
                file_name=paper["file_name"],
                file_size_bytes=paper["file_size_bytes"],
            )
            row.tags = _resolve_tags(paper["tags"], db)
            db.add(row)
            db.commit()
            logger.info("created paper %s (%s)", paper_id, paper["title"][:60])
            return paper_id
        except SQLAlchemyError as exc:
            db.rollback()
            raise _store_error(exc) from exc
        finally:
            db.close()

    def attach_binary(self, paper_id: uuid.UUID, stream: BinaryIO) -> None:
        """Upload *stream* as the paper's PDF and record where it lives."""
        result = self._drive.upload(stream, filename=f"{paper_id}.pdf")
        db = self._session_factory()
        try:
            row = db.query(Paper).filter(Paper.id == paper_id).first()
            if row is None:
                raise StoreError(f"Paper {paper_id} not found", status_code=404)
            row.drive_file_id = result["file_id"]
            row.drive_view_url = result["view_url"]
            db.commit()
        except (SQLAlchemyError, StoreError) as exc:
            db.rollback()
            self._drive.delete(result["file_id"])
            if isinstance(exc, StoreError):
                raise
            raise _store_error(exc) from exc
        finally:
            db.close()

    def delete(self, paper_id: uuid.UUID) -> None:
        db = self._session_factory()
        try:
            row = db.query(Paper).filter(Paper.id == paper_id).first()
            if row is None:
                return
            drive_file_id = row.drive_file_id
            db.delete(row)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise _store_error(exc) from exc
        finally:
            db.close()
        if drive_file_id:
            self._drive.delete(drive_file_id)
        logger.info("deleted paper %s", paper_id)

    def add_tags(self, paper_ids: Iterable[uuid.UUID], tags: Iterable[str]) -> int:
        """Add *tags* to every paper in *paper_ids*. Returns the number of papers changed."""
        db = self._session_factory()
        try:
            resolved = _resolve_tags(tags, db)
            changed = 0
            for row in db.query(Paper).filter(Paper.id.in_(list(paper_ids))).all():
                missing = [t for t in resolved if t not in row.tags]
                if missing:
                    row.tags = [*row.tags, *missing]
                    changed += 1
            db.commit()
            return changed
        except SQLAlchemyError as exc:
            db.rollback()
            raise _store_error(exc) from exc
        finally:
            db.close()

    def remove_tags(self, paper_ids: Iterable[uuid.UUID], tags: Iterable[str]) -> int:
        names = set(normalise_tag_names(tags))
        db = self._session_factory()
        try:
            changed = 0
            for row in db.query(Paper).filter(Paper.id.in_(list(paper_ids))).all():
                kept = [t for t in row.tags if t.name not in names]
                if len(kept) != len(row.tags):
                    row.tags = kept
                    changed += 1
            db.commit()
            return changed
        except SQLAlchemyError as exc:
            db.rollback()
            raise _store_error(exc) from exc
        finally:
            db.close()
