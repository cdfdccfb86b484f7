"""Shared typed return types for backend services."""

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, TypedDict

PDF_CONTENT_TYPE = "application/pdf"


class MetadataGuess(TypedDict):
    title: str | None
    authors: str | None


class NewPaper(TypedDict):
    title: str
    authors: str | None
    file_name: str
    file_size_bytes: int
    tags: list[str]


class DriveUploadResult(TypedDict):
    file_id: str
    view_url: str


@dataclass(frozen=True)
class IncomingFile:
    """A file handed to the ingestion pipeline by an upload form or a local import."""

    name: str
    content_type: str
    size: int
    source: BinaryIO

    @property
    def stem(self) -> str:
        return Path(self.name).stem or self.name

    @classmethod
    def from_path(cls, path: Path) -> "IncomingFile":
        content_type = PDF_CONTENT_TYPE if path.suffix.lower() == ".pdf" else "application/octet-stream"
        return cls(
            name=path.name,
            content_type=content_type,
            size=path.stat().st_size,
            source=path.open("rb"),
        )
