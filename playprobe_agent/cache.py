"""Bounded in-memory store of actions that produced favorable outcomes."""
from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from playprobe_runtime.capture import Frame
from playprobe_runtime.errors import PersistenceError

Logger = logging.Logger


@dataclass(frozen=True, slots=True)
class CachedOutcome:
    """One recorded action and what it led to."""

    game_id: str
    start_cell: str
    end_cell: Optional[str] = None
    keys: Tuple[str, ...] = ()
    outcome: str = "unknown"
    captured_at: datetime = field(default_factory=datetime.now)
    snapshot: Optional[str] = None  # base64 PNG of the resulting frame

    def describe(self) -> str:
        if self.keys:
            action = f"keys {'+'.join(self.keys)}"
        elif self.end_cell:
            action = f"drag {self.start_cell} -> {self.end_cell}"
        else:
            action = f"click {self.start_cell}"
        return f"{action}: {self.outcome}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "start_cell": self.start_cell,
            "end_cell": self.end_cell,
            "keys": list(self.keys),
            "outcome": self.outcome,
            "captured_at": self.captured_at.isoformat(),
            "snapshot": self.snapshot,
        }


class ActionCache:
    """FIFO-bounded cache of outcomes, keyed by game on lookup.

    A single controller owns each cache and is its only writer; no locking is
    done here.
    """

    def __init__(
        self,
        max_entries: int = 50,
        snapshot_limit_bytes: int = 500_000,
        logger: Optional[Logger] = None,
    ) -> None:
        """Initialize the cache.

        Args:
            max_entries: Upper bound on stored entries; the oldest is evicted first
            snapshot_limit_bytes: Frames larger than this are recorded without a snapshot
            logger: Optional logger instance
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._max_entries = max_entries
        self._snapshot_limit = snapshot_limit_bytes
        self._logger = logger or logging.getLogger(__name__)
        self._entries: Deque[CachedOutcome] = deque(maxlen=max_entries)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def record(
        self,
        game_id: str,
        start_cell: str,
        end_cell: Optional[str] = None,
        outcome: str = "unknown",
        frame: Optional[Frame] = None,
        keys: Sequence[str] = (),
    ) -> CachedOutcome:
        """Append an outcome, evicting the oldest entry once over the bound.

        Args:
            game_id: Identifier of the game the action was taken in
            start_cell: Cell label (or pixel description) where the action began
            end_cell: Drag end cell, if any
            outcome: Classifier label for what happened
            frame: Resulting frame; stored as a snapshot when small enough
            keys: Key names for keyboard actions

        Returns:
            The stored entry
        """
        snapshot = None
        if frame is not None and len(frame.data) <= self._snapshot_limit:
            snapshot = frame.to_base64()

        entry = CachedOutcome(
            game_id=game_id,
            start_cell=start_cell,
            end_cell=end_cell,
            keys=tuple(keys),
            outcome=outcome,
            snapshot=snapshot,
        )
        if len(self._entries) == self._max_entries:
            evicted = self._entries[0]
            self._logger.debug("Evicting cached outcome for %s (%s)", evicted.game_id, evicted.describe())
        self._entries.append(entry)
        self._logger.info("Cached outcome for %s: %s", game_id, entry.describe())
        return entry

    def lookup(self, game_id: str) -> List[CachedOutcome]:
        """Entries recorded for ``game_id``, oldest first."""

        return [entry for entry in self._entries if entry.game_id == game_id]

    def entries(self) -> List[CachedOutcome]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def export(self, path: Path) -> Path:
        """Write all entries as JSON.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        payload = [entry.to_dict() for entry in self._entries]
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"cannot export action cache to {path}", cause=exc) from exc
        self._logger.info("Exported %d cached outcome(s) to %s", len(payload), path)
        return path


__all__ = ["ActionCache", "CachedOutcome"]
