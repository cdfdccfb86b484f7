"""Tags API router."""

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from papershelf.db import get_session
from papershelf.models.tag import Tag, paper_tags

router = APIRouter()


@router.get("")
def list_tags(db: Session = Depends(get_session)) -> dict[str, list[dict[str, int | str]]]:
    """Return every tag with its paper count, most used first."""
    rows = (
        db.query(Tag.name, func.count(paper_tags.c.paper_id).label("n"))
        .outerjoin(paper_tags, Tag.id == paper_tags.c.tag_id)
        .group_by(Tag.name)
        .order_by(func.count(paper_tags.c.paper_id).desc(), Tag.name.asc())
        .all()
    )
    return {"tags": [{"name": row.name, "count": row.n} for row in rows]}
