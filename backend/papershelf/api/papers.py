"""Papers API router."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from papershelf.db import get_session, get_session_factory
from papershelf.models.paper import Paper
from papershelf.schemas.paper import (
    BatchTagRequest,
    BatchTagResponse,
    PaperDetail,
    PaperSummary,
    SelectionRangeRequest,
    SelectionResponse,
    SelectionToggleRequest,
)
from papershelf.services.selection import SelectionModel
from papershelf.services.store import PaperStore, SqlPaperStore, StoreError

logger = logging.getLogger(__name__)

router = APIRouter()

PAGE_SIZE = 50

# Single-user app: one selection per process.
_selection = SelectionModel()


def get_selection() -> SelectionModel:
    return _selection


def get_store() -> PaperStore:
    return SqlPaperStore(get_session_factory())


def _tag_names(paper: Paper) -> list[str]:
    return [t.name for t in (paper.tags or [])]


def _to_summary(paper: Paper) -> PaperSummary:
    return PaperSummary(
        id=paper.id,
        title=paper.title,
        authors=paper.authors,
        file_name=paper.file_name,
        file_size_bytes=paper.file_size_bytes,
        uploaded_at=paper.uploaded_at,
        tags=_tag_names(paper),
    )


def _to_detail(paper: Paper) -> PaperDetail:
    return PaperDetail(
        **_to_summary(paper).model_dump(),
        drive_view_url=paper.drive_view_url,
        created_at=paper.created_at,
        updated_at=paper.updated_at,
    )


def _selection_response(selection: SelectionModel) -> SelectionResponse:
    return SelectionResponse(selected=sorted(selection.selected), anchor=selection.anchor)


@router.get("", response_model=None)
def list_papers(
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_session),
) -> dict[str, list[PaperSummary] | int]:
    base = db.query(Paper).order_by(Paper.uploaded_at.desc())
    total: int = base.count()
    papers = base.offset((page - 1) * PAGE_SIZE).limit(PAGE_SIZE).all()
    return {"papers": [_to_summary(p) for p in papers], "total": total}


@router.get("/selection")
def get_current_selection(selection: SelectionModel = Depends(get_selection)) -> SelectionResponse:
    return _selection_response(selection)


@router.post("/selection/toggle")
def toggle_selection(
    body: SelectionToggleRequest,
    selection: SelectionModel = Depends(get_selection),
) -> SelectionResponse:
    selection.toggle(body.paper_id)
    return _selection_response(selection)


@router.post("/selection/range")
def select_range(
    body: SelectionRangeRequest,
    selection: SelectionModel = Depends(get_selection),
) -> SelectionResponse:
    selection.select_range(selection.anchor, body.target_id, body.ordered_ids)
    return _selection_response(selection)


@router.delete("/selection")
def clear_selection(selection: SelectionModel = Depends(get_selection)) -> SelectionResponse:
    selection.clear()
    return _selection_response(selection)


@router.post("/tags/batch")
def batch_tags(
    body: BatchTagRequest,
    selection: SelectionModel = Depends(get_selection),
    store: PaperStore = Depends(get_store),
) -> BatchTagResponse:
    """Add and/or remove tags on every selected paper."""
    try:
        ids = [uuid.UUID(pid) for pid in selection.selected]
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid paper id in selection: {exc}") from exc
    if not ids:
        raise HTTPException(status_code=422, detail="No papers selected")
    try:
        updated = 0
        if body.add:
            updated += store.add_tags(ids, body.add)
        if body.remove:
            updated += store.remove_tags(ids, body.remove)
    except StoreError as exc:
        raise HTTPException(status_code=exc.status_code or 500, detail=str(exc)) from exc
    logger.info("batch tags on %d paper(s): +%s -%s", len(ids), body.add, body.remove)
    return BatchTagResponse(updated=updated)


@router.get("/{paper_id}")
def get_paper(
    paper_id: uuid.UUID,
    db: Session = Depends(get_session),
) -> dict[str, PaperDetail]:
    paper = db.query(Paper).filter(Paper.id == paper_id).first()
    if paper is None:
        raise HTTPException(status_code=404, detail="Paper not found")
    return {"paper": _to_detail(paper)}


@router.delete("/{paper_id}", status_code=204)
def delete_paper(
    paper_id: uuid.UUID,
    store: PaperStore = Depends(get_store),
    selection: SelectionModel = Depends(get_selection),
) -> None:
    try:
        store.delete(paper_id)
    except StoreError as exc:
        raise HTTPException(status_code=exc.status_code or 500, detail=str(exc)) from exc
    selection.discard(str(paper_id))
