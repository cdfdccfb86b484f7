"""Best-effort title/author guessing from raw PDF content."""

import logging
import re
from typing import BinaryIO

import pdfplumber

from papershelf.services.types import MetadataGuess

logger = logging.getLogger(__name__)

_TITLE_SCAN_LINES = 3
_AUTHOR_SCAN_END = 6
_TITLE_MIN_LEN = 20
_TITLE_MAX_LEN = 200

# "First Last" with optional middle initials: "Jane Doe", "John A. Smith".
_NAME = r"[A-Z][a-z]+(?:\s+[A-Z]\.?)*\s+[A-Z][a-z]+"

_AUTHOR_LIST_TITLE_RE = re.compile(r"^[A-Z][a-z]+\s+[A-Z]\.\s*[A-Z][a-z]+\s*,\s*[A-Z][a-z]+")
_SECTION_HEADER_RE = re.compile(r"^(abstract|introduction|keywords|doi|accepted|published)", re.IGNORECASE)
_COMMA_LIST_RE = re.compile(rf"{_NAME}(?:\s*,\s*{_NAME})+")
_AND_PAIR_RE = re.compile(rf"^{_NAME}\s+(?:(?i:and)|&)\s+{_NAME}")
_ET_AL_RE = re.compile(r"[A-Z][a-z]+\s+(?i:et\s+al)\.?")
_CAPITALISED_RE = re.compile(r"[A-Z][a-z]+")
_AUTHOR_CUT_RE = re.compile(r"[@()\[\]0-9]")


def split_lines(text: str) -> list[str]:
    return [stripped for line in text.splitlines() if (stripped := line.strip())]


def _clean_author_line(line: str) -> str | None:
    """Cut an author line at the first email, affiliation marker or digit."""
    cleaned = _AUTHOR_CUT_RE.split(line, maxsplit=1)[0].strip()
    return cleaned or None


def guess_title(lines: list[str]) -> str | None:
    for line in lines[:_TITLE_SCAN_LINES]:
        if not _TITLE_MIN_LEN < len(line) < _TITLE_MAX_LEN:
            continue
        if _AUTHOR_LIST_TITLE_RE.match(line):
            continue
        return line
    return None


def guess_authors(lines: list[str]) -> str | None:
    """Return the author line found between the title and the first section header.

    Lines 2 to 6 are scanned; patterns are tried in order of reliability and
    the first non-empty match wins. Returns None rather than a doubtful guess.
    """
    for i in range(1, min(_AUTHOR_SCAN_END, len(lines))):
        line = lines[i]
        if _SECTION_HEADER_RE.match(line):
            break

        if _COMMA_LIST_RE.search(line) or _AND_PAIR_RE.match(line) or _ET_AL_RE.search(line):
            authors = _clean_author_line(line)
            if authors:
                return authors

        if "@" in line:
            if i > 1 and _CAPITALISED_RE.search(lines[i - 1]):
                authors = _clean_author_line(lines[i - 1])
            else:
                before_email = _clean_author_line(line.split("@", 1)[0])
                authors = before_email if before_email and 5 < len(before_email) < 150 else None
            if authors:
                return authors
    return None


class MetadataHeuristic:
    """Guess a paper's title and authors from its PDF bytes.

    Embedded document info wins; first-page text fills whatever is missing.
    Never raises: any parsing failure is logged and yields an empty guess.
    """

    def extract(self, stream: BinaryIO) -> MetadataGuess:
        try:
            return self._extract(stream)
        except Exception:
            logger.warning("metadata extraction failed; continuing without a guess", exc_info=True)
            return MetadataGuess(title=None, authors=None)

    def _extract(self, stream: BinaryIO) -> MetadataGuess:
        with pdfplumber.open(stream) as pdf:
            info: dict[str, object] = pdf.metadata or {}
            title = _info_field(info, "Title")
            authors = _info_field(info, "Author") or _info_field(info, "Creator")
            if title and authors:
                return MetadataGuess(title=title, authors=authors)

            first_page_text = ""
            if pdf.pages:
                try:
                    first_page_text = pdf.pages[0].extract_text() or ""
                except Exception:
                    logger.warning("could not read first page text", exc_info=True)

        lines = split_lines(first_page_text)
        if not title:
            title = guess_title(lines)
        if not authors and len(lines) > 1:
            authors = guess_authors(lines)
        return MetadataGuess(title=title, authors=authors)


def _info_field(info: dict[str, object], key: str) -> str | None:
    value = info.get(key) or info.get(key.lower())
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return None
    return value.strip() or None
