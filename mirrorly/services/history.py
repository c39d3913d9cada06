"""Bounded local log of successful try-ons."""

import logging
import time
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ..models import Garment, HistoryItem

logger = logging.getLogger(__name__)

_history_list = TypeAdapter(list[HistoryItem])


class HistoryRecorder:
    """Most-recent-first history capped at `limit` entries.

    Persists to a JSON file when a path is given, otherwise keeps entries in
    memory only.
    """

    def __init__(self, path: Path | None = None, limit: int = 20):
        self.path = path
        self.limit = limit
        self._memory: list[HistoryItem] = []

    def items(self) -> list[HistoryItem]:
        """All entries, newest first. An unreadable log reads as empty."""
        if self.path is None:
            return list(self._memory)
        if not self.path.exists():
            return []
        try:
            return _history_list.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable history %s: %s", self.path, e)
            return []

    def _write(self, items: list[HistoryItem]):
        if self.path is None:
            self._memory = items
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(_history_list.dump_json(items, indent=2))

    def append(self, garment: Garment, result_image_url: str) -> HistoryItem:
        """Record a successful try-on; the oldest entries beyond the cap are dropped."""
        existing = self.items()
        now_ms = int(time.time() * 1000)

        # Ids derive from the timestamp; disambiguate same-millisecond entries
        taken = {entry.id for entry in existing}
        item_id, n = str(now_ms), 1
        while item_id in taken:
            item_id, n = f"{now_ms}-{n}", n + 1

        item = HistoryItem(
            id=item_id,
            timestamp=now_ms,
            garment=garment.model_copy(deep=True),
            result_image_url=result_image_url,
        )
        self._write([item, *existing][: self.limit])
        return item

    def clear(self):
        if self.path is None:
            self._memory = []
        elif self.path.exists():
            self.path.unlink()
