"""Pick the best attribution among candidates."""

from __future__ import annotations

from typing import Iterable, Optional

from .models import Attribution


def select(candidates: Iterable[Optional[Attribution]]) -> Optional[Attribution]:
    """Return the highest-confidence candidate with the rest attached as alternatives.

    Ordering is a stable sort on confidence alone: among equal confidences the
    candidate produced first wins, so producer order only ever breaks ties.
    ``None`` entries are ignored; an empty input yields ``None``.
    """
    ranked = sorted(
        (c for c in candidates if c is not None),
        key=lambda c: c.confidence,
        reverse=True,
    )
    if not ranked:
        return None
    best, rest = ranked[0], ranked[1:]
    return best.with_alternatives(rest)
