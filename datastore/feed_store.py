from __future__ import annotations
import json
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from app.schemas import FeedSnapshot


class FeedStore:
    """Keeps the most recent feed snapshots, optionally mirrored to a JSON file.

    Snapshots are kept in insertion order; the oldest are evicted once
    ``max_items`` is exceeded.
    """

    def __init__(
        self,
        name: str = "feed",
        persistence_path: Optional[Path] = None,
        max_items: int = 20,
    ) -> None:
        self.name = name
        self.max_items = max(1, max_items)
        self._items: Dict[str, FeedSnapshot] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put(self, snapshot: FeedSnapshot) -> None:
        with self._lock:
            self._items.pop(snapshot.snapshot_id, None)
            self._items[snapshot.snapshot_id] = snapshot.model_copy(deep=True)
            while len(self._items) > self.max_items:
                oldest = next(iter(self._items))
                del self._items[oldest]
            self._persist()

    def latest(self) -> Optional[FeedSnapshot]:
        with self._lock:
            if not self._items:
                return None
            last_id = next(reversed(self._items))
            return self._items[last_id].model_copy(deep=True)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = [item.model_dump(mode="json") for item in self._items.values()]
        self.persistence_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text(encoding="utf-8") or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = []

        if not isinstance(data, list):
            data = []

        for payload in data[-self.max_items:]:
            snapshot = FeedSnapshot.model_validate(payload)
            self._items[snapshot.snapshot_id] = snapshot
