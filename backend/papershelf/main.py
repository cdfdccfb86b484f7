"""FastAPI application entry point."""

import logging
import pathlib

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT, datefmt="%H:%M:%S")

# Apply the same format to Uvicorn's loggers so they also show timestamps.
for _uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    _log = logging.getLogger(_uvicorn_logger)
    _log.handlers.clear()
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%H:%M:%S"))
    _log.addHandler(_handler)
    _log.propagate = False

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from papershelf.db import create_tables
from papershelf.schemas.paper import ErrorResponse
from papershelf.services.ingestion import DraftNotFound, SubmissionRejected
from papershelf.services.store import StoreError

logger = logging.getLogger(__name__)

app = FastAPI(title="PaperShelf")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tightened in production; prototype uses wildcard.
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup() -> None:
    create_tables()


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


@app.exception_handler(SubmissionRejected)
async def _rejected_handler(request: Request, exc: SubmissionRejected) -> JSONResponse:
    return _error(422, "rejected", exc)


@app.exception_handler(DraftNotFound)
async def _draft_not_found_handler(request: Request, exc: DraftNotFound) -> JSONResponse:
    return _error(404, "not_found", exc)


@app.exception_handler(StoreError)
async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    return _error(502, "store_error", exc)


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", exc)


# Import and register routers after app is defined to avoid circular imports.
from papershelf.api import papers, tags, uploads  # noqa: E402

app.include_router(uploads.router, prefix="/uploads", tags=["uploads"])
app.include_router(papers.router, prefix="/papers", tags=["papers"])
app.include_router(tags.router, prefix="/tags", tags=["tags"])

# Serve the frontend if it exists.
_frontend_dir = pathlib.Path(__file__).parent.parent.parent / "frontend"
if _frontend_dir.is_dir():
    app.mount("/", StaticFiles(directory=str(_frontend_dir), html=True), name="frontend")
