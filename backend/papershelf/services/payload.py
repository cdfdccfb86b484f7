"""Read uploaded files into memory once and hand out independent copies."""

import hashlib
import io
import logging

from papershelf.services.types import IncomingFile

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class ReadError(Exception):
    """Raised when an uploaded file cannot be read into memory.

    *too_large* is set when the file is over the size ceiling.
    """

    def __init__(self, message: str, too_large: bool = False) -> None:
        super().__init__(message)
        self.too_large = too_large


class Payload:
    """The canonical bytes of one uploaded file.

    The bytes themselves are never exposed. Every consumer that reads, streams
    or uploads the data asks for its own ``duplicate()``; closing or draining a
    duplicate leaves the payload and all other duplicates untouched.
    """

    __slots__ = ("_data",)

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self._data).hexdigest()

    def duplicate(self) -> io.BytesIO:
        return io.BytesIO(self._data)

    def __repr__(self) -> str:
        return f"Payload(size={self.size})"


class PayloadReader:
    def __init__(self, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
        self._max_bytes = max_bytes

    def read(self, file: IncomingFile) -> Payload:
        """Materialise *file* into a Payload and close its handle.

        Raises ReadError if the file is empty, unreadable, or larger than the
        configured ceiling. The declared size is checked before any byte is read.
        """
        if file.size > self._max_bytes:
            raise ReadError(
                f"{file.name} is too large ({file.size / (1024 * 1024):.1f}MB, "
                f"limit {self._max_bytes // (1024 * 1024)}MB)",
                too_large=True,
            )
        try:
            data = file.source.read(self._max_bytes + 1)
        except (OSError, ValueError) as exc:
            raise ReadError(f"Could not read {file.name}: {exc}") from exc
        finally:
            try:
                file.source.close()
            except OSError:
                logger.warning("could not close handle for %s", file.name)

        if len(data) > self._max_bytes:
            raise ReadError(
                f"{file.name} is too large (limit {self._max_bytes // (1024 * 1024)}MB)", too_large=True
            )
        if not data:
            raise ReadError(f"Cannot upload empty PDF file {file.name}")
        logger.info("read %s (%d bytes)", file.name, len(data))
        return Payload(data)

    @staticmethod
    def duplicate(payload: Payload) -> io.BytesIO:
        return payload.duplicate()
