"""
In-memory load lists ("Ladelisten") shared with drivers.

A load list is a frozen snapshot of a commission's open pallets at the moment
it was created. The office sends its link or QR code to the driver, who sees
the same order even if pallets get closed afterwards. Lists live in memory
only and are gone after a restart.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from completion_store import format_completed_at
from exceptions import NotFoundError
from list_sorter import sort_tasks
from logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoadListItem:
    content: str
    priority: int
    url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "priority": self.priority, "url": self.url}


@dataclass(frozen=True)
class LoadList:
    id: str
    created_at: str
    label: str
    items: Tuple[LoadListItem, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "label": self.label,
            "items": [item.to_dict() for item in self.items],
        }


class LoadListStore:
    """Thread-safe id -> LoadList mapping."""

    def __init__(self):
        self._lists: Dict[str, LoadList] = {}
        self._lock = threading.Lock()

    def create(self, label: str, tasks: Iterable[Any],
               created_at: Optional[datetime] = None) -> LoadList:
        """Sort ``tasks`` and store them as a new snapshot under a fresh UUID."""
        items = tuple(
            LoadListItem(content=t.content, priority=t.priority, url=t.url)
            for t in sort_tasks(tasks)
        )
        snapshot = LoadList(
            id=str(uuid.uuid4()),
            created_at=format_completed_at(created_at or datetime.now(timezone.utc)),
            label=label,
            items=items,
        )

        with self._lock:
            self._lists[snapshot.id] = snapshot

        logger.info(f"Load list {snapshot.id} created for {label} with {len(items)} pallet(s)")
        return snapshot

    def get(self, list_id: str) -> LoadList:
        with self._lock:
            snapshot = self._lists.get(list_id)
        if snapshot is None:
            raise NotFoundError("Liste nicht gefunden")
        return snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._lists)
