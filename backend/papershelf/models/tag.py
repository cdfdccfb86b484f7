"""Tag ORM model and the paper_tags association table."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, Table, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from papershelf.db import Base

if TYPE_CHECKING:
    from papershelf.models.paper import Paper

paper_tags = Table(
    "paper_tags",
    Base.metadata,
    Column(
        "paper_id", UUID(as_uuid=True), ForeignKey("papers.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id", UUID(as_uuid=True), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    ),
)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    papers: Mapped[list[Paper]] = relationship(
        "Paper", secondary=paper_tags, back_populates="tags"
    )


def normalise_tag_names(names: Iterable[str]) -> list[str]:
    """Strip, drop blanks and de-duplicate tag names, keeping first-seen order."""
    seen: dict[str, None] = {}
    for name in names:
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)
