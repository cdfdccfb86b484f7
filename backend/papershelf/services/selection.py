"""Multi-select state for batch operations on the library list."""

from collections.abc import Sequence


class SelectionModel:
    """Tracks selected paper ids and the anchor for shift-click range selection.

    The ordering used for ranges is always supplied by the caller (the list as
    currently filtered and sorted); the model never stores it.
    """

    def __init__(self) -> None:
        self._selected: set[str] = set()
        self._anchor: str | None = None

    @property
    def selected(self) -> frozenset[str]:
        return frozenset(self._selected)

    @property
    def anchor(self) -> str | None:
        return self._anchor

    def toggle(self, paper_id: str) -> None:
        if paper_id in self._selected:
            self._selected.discard(paper_id)
        else:
            self._selected.add(paper_id)
        self._anchor = paper_id

    def select_range(self, anchor_id: str | None, target_id: str, ordered_ids: Sequence[str]) -> None:
        """Add every id between *anchor_id* and *target_id* (inclusive) in *ordered_ids*.

        With no anchor this just selects the target. If either id is not in the
        visible ordering the selection is left unchanged.
        """
        if anchor_id is None:
            self._selected.add(target_id)
            self._anchor = target_id
            return
        try:
            start = ordered_ids.index(anchor_id)
            end = ordered_ids.index(target_id)
        except ValueError:
            return
        if start > end:
            start, end = end, start
        self._selected.update(ordered_ids[start : end + 1])
        self._anchor = target_id

    def discard(self, paper_id: str) -> None:
        """Forget *paper_id*, e.g. after the paper was deleted."""
        self._selected.discard(paper_id)
        if self._anchor == paper_id:
            self._anchor = None

    def clear(self) -> None:
        self._selected.clear()
        self._anchor = None
