"""Curated fallback content selection.

Entries live in (theme, kind) buckets. A selection walks a short ladder and
stops at the first non-empty result:

  1. the exact (theme, kind) bucket
  2. the generic bucket for the same kind
  3. nothing — the caller gets None and must degrade further

Within a bucket, entries served recently in the same session are skipped,
entries whose tag requirements reject the context are skipped, and the
remaining entries are ranked by how many tags they share with the context.
Ties go to the entry that comes first in the bucket, so selection is
deterministic.

Theme names are matched case-insensitively, and common spellings of the same
theme (scifi, sci_fi, science-fiction) resolve to one key.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from rpg_narrator.models import FallbackContentEntry, SegmentKind

logger = logging.getLogger(__name__)

GENERIC_THEME = "generic"
DEFAULT_HISTORY_SIZE = 5

_THEME_ALIASES = {
    "scifi": "sci-fi",
    "sci_fi": "sci-fi",
    "sci fi": "sci-fi",
    "science-fiction": "sci-fi",
    "science fiction": "sci-fi",
    "science_fiction": "sci-fi",
}


def normalize_theme(theme: str | None) -> str:
    """Canonical bucket key for a theme name; empty means generic."""
    key = (theme or "").strip().lower()
    if not key:
        return GENERIC_THEME
    return _THEME_ALIASES.get(key, key)


class FallbackContentSelector:
    """Owns the curated buckets and the per-session usage history.

    Args:
        entries:      Curated entries; bucket order follows iteration order.
        history_size: How many recently served ids are avoided per session.
    """

    def __init__(
        self,
        entries: Iterable[FallbackContentEntry] = (),
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        if history_size <= 0:
            raise ValueError(f"history_size must be positive, got {history_size}")
        self._history_size = history_size
        self._buckets: dict[tuple[str, SegmentKind], list[FallbackContentEntry]] = {}
        self._ids: set[str] = set()
        self._history: dict[str | None, deque[str]] = {}
        for entry in entries:
            self._add(entry)

    def _add(self, entry: FallbackContentEntry) -> None:
        if entry.id in self._ids:
            raise ValueError(f"Duplicate fallback entry id {entry.id!r}")
        self._ids.add(entry.id)
        key = (normalize_theme(entry.theme), entry.kind)
        self._buckets.setdefault(key, []).append(entry)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(
        self,
        theme: str,
        kind: SegmentKind,
        tags: Iterable[str] = (),
        session_id: str | None = None,
    ) -> FallbackContentEntry | None:
        """Pick the best unused entry for the context, or None if there is none."""
        context_tags = {t.lower() for t in tags}
        recent = set(self._history.get(session_id, ()))
        theme = normalize_theme(theme)

        ladder = [theme] if theme == GENERIC_THEME else [theme, GENERIC_THEME]
        for bucket_theme in ladder:
            entry = self._best(self._buckets.get((bucket_theme, kind), []), context_tags, recent)
            if entry is not None:
                if bucket_theme != theme:
                    logger.info(
                        "no %s/%s fallback available, using generic entry %s",
                        theme, kind.value, entry.id,
                    )
                self._remember(session_id, entry.id)
                return entry

        logger.warning("no fallback content available for %s/%s", theme, kind.value)
        return None

    def _best(
        self,
        bucket: list[FallbackContentEntry],
        context_tags: set[str],
        recent: set[str],
    ) -> FallbackContentEntry | None:
        best: FallbackContentEntry | None = None
        best_score = -1
        for entry in bucket:
            if entry.id in recent or not _meets_requirements(entry, context_tags):
                continue
            score = sum(1 for t in entry.tags if t.lower() in context_tags)
            if score > best_score:
                best, best_score = entry, score
        return best

    def _remember(self, session_id: str | None, entry_id: str) -> None:
        history = self._history.get(session_id)
        if history is None:
            history = self._history[session_id] = deque(maxlen=self._history_size)
        history.appendleft(entry_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_content(self, theme: str) -> bool:
        theme = normalize_theme(theme)
        return any(t == theme and bucket for (t, _), bucket in self._buckets.items())

    def content_count(self, theme: str, kind: SegmentKind) -> int:
        return len(self._buckets.get((normalize_theme(theme), kind), []))

    def themes(self) -> list[str]:
        return sorted({t for t, _ in self._buckets})

    def usage_history(self, session_id: str | None = None) -> list[str]:
        """Ids served to `session_id`, most recent first."""
        return list(self._history.get(session_id, ()))

    def clear_usage_history(self, session_id: str | None = None) -> None:
        """Forget served ids for one session, or for all sessions when None."""
        if session_id is None:
            self._history.clear()
        else:
            self._history.pop(session_id, None)


def _meets_requirements(entry: FallbackContentEntry, context_tags: set[str]) -> bool:
    if any(t.lower() not in context_tags for t in entry.requires_tags):
        return False
    if any(t.lower() in context_tags for t in entry.excludes_tags):
        return False
    return True
