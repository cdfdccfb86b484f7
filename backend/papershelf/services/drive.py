"""Google Drive storage for paper PDFs."""

import logging
import os
from typing import Any, BinaryIO

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from papershelf.services.store import StoreError
from papershelf.services.types import DriveUploadResult

logger = logging.getLogger(__name__)


class DriveUploadError(StoreError):
    """Raised when a Drive upload fails."""


def _http_status(exc: Exception) -> int | None:
    if isinstance(exc, HttpError):
        status = getattr(exc, "status_code", None) or getattr(exc.resp, "status", None)
        return int(status) if status is not None else None
    return None


class DriveService:
    """Stores PDFs in Google Drive using the authenticated user's account."""

    def __init__(self) -> None:
        self._service: Any = None

    def _get_service(self) -> Any:
        if self._service is None:
            token_path = os.environ.get("GOOGLE_TOKEN_PATH", "token.json")
            if not os.path.exists(token_path):
                raise DriveUploadError(
                    f"Google OAuth token not found at {token_path}. "
                    "Complete the OAuth flow first."
                )
            creds = Credentials.from_authorized_user_file(token_path)  # type: ignore[no-untyped-call]
            self._service = build("drive", "v3", credentials=creds)
        return self._service

    def upload(self, stream: BinaryIO, filename: str) -> DriveUploadResult:
        """Upload the PDF read from *stream* to Drive as *filename*.

        The stream is consumed by the transfer; pass a copy you own.
        Raises DriveUploadError, carrying the HTTP status when Drive returned one.
        """
        try:
            service = self._get_service()
            media = MediaIoBaseUpload(stream, mimetype="application/pdf", resumable=False)
            folder_id = os.environ.get("DRIVE_FOLDER_ID", "").strip()
            file_metadata: dict[str, object] = {
                "name": filename,
                "mimeType": "application/pdf",
            }
            if folder_id:
                file_metadata["parents"] = [folder_id]
            created = (
                service.files()
                .create(
                    body=file_metadata,
                    media_body=media,
                    fields="id,webViewLink",
                    supportsAllDrives=True,
                )
                .execute()
            )
            file_id: str = created["id"]
            logger.info("uploaded %s to Drive as %s", filename, file_id)
            # /preview embeds cleanly in iframes, unlike /view.
            return DriveUploadResult(
                file_id=file_id, view_url=f"https://drive.google.com/file/d/{file_id}/preview"
            )
        except DriveUploadError:
            raise
        except Exception as exc:
            raise DriveUploadError(str(exc), status_code=_http_status(exc)) from exc

    def delete(self, file_id: str) -> None:
        """Delete *file_id* from Drive. Failures are logged, not raised (best-effort)."""
        try:
            service = self._get_service()
            service.files().delete(fileId=file_id, supportsAllDrives=True).execute()
        except Exception:
            logger.warning("could not delete Drive file %s", file_id, exc_info=True)
