"""JSON file storage for game-state snapshots.

A plain persistence sink for the SaveCoordinator: each save is one JSON file
under a configurable base directory. There is no database — reads and writes
go through helper methods that dump and validate pydantic models.

Directory layout:

    {base}/
      saves/
        {session_id}/
          auto-save-20260101T120000123456.json   ← one GameStateSnapshot
          ...                                     ← newest `keep` files only
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from rpg_narrator.models import GameStateSnapshot

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 10

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class SnapshotStore:
    """Writes snapshots to disk. Usable directly as a SaveCoordinator sink."""

    def __init__(self, base_path: Path, keep: int = DEFAULT_KEEP) -> None:
        if keep <= 0:
            raise ValueError(f"keep must be positive, got {keep}")
        self._base = base_path
        self._saves_root = base_path / "saves"
        self._saves_root.mkdir(parents=True, exist_ok=True)
        self._keep = keep

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _session_dir(self, session_id: str) -> Path:
        safe = _UNSAFE.sub("-", session_id).strip("-.") or "unknown"
        return self._saves_root / safe

    def _save_file(self, snapshot: GameStateSnapshot) -> Path:
        stamp = snapshot.captured_at.strftime("%Y%m%dT%H%M%S%f")
        return self._session_dir(snapshot.session.id) / f"auto-save-{stamp}.json"

    # ------------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------------

    def __call__(self, snapshot: GameStateSnapshot) -> Path:
        return self.save(snapshot)

    def save(self, snapshot: GameStateSnapshot) -> Path:
        path = self._save_file(snapshot)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(snapshot.model_dump_json(indent=2))
        tmp.replace(path)
        logger.debug("wrote snapshot %s", path)
        self._prune(path.parent)
        return path

    def _prune(self, session_dir: Path) -> None:
        saves = sorted(session_dir.glob("auto-save-*.json"))
        for old in saves[:-self._keep]:
            old.unlink()

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def list_saves(self, session_id: str) -> list[Path]:
        """Save files for a session, oldest first."""
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return []
        return sorted(session_dir.glob("auto-save-*.json"))

    def latest(self, session_id: str) -> GameStateSnapshot | None:
        saves = self.list_saves(session_id)
        if not saves:
            return None
        return GameStateSnapshot.model_validate_json(saves[-1].read_text())
