"""In-memory task store - single source of truth for task state."""
from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterable, List, Optional

from ..models import Classification, FileRef, UploadStatus, UploadTask
from ..utils.events import EventEmitter

logger = logging.getLogger(__name__)

TASK_CHANGED = "task_changed"
TASK_REMOVED = "task_removed"

_MUTABLE_FIELDS = frozenset(
    name for name in UploadTask.__dataclass_fields__ if name not in ("id", "file", "classification")
)


class TaskStore:
    """
    Ordered mapping of task id to UploadTask.

    All access happens on the event loop thread, so no locking is needed.
    Every mutation emits ``task_changed`` with a snapshot of the task.
    """

    def __init__(self, events: Optional[EventEmitter] = None):
        self._tasks: Dict[str, UploadTask] = {}
        self._events = events or EventEmitter()

    @property
    def events(self) -> EventEmitter:
        return self._events

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def create(self, file: FileRef, classification: Classification) -> UploadTask:
        task = UploadTask(id=uuid.uuid4().hex, file=file, classification=classification)
        self._tasks[task.id] = task
        logger.debug("Created task %s for %s", task.id, file.name)
        self._events.emit(TASK_CHANGED, task.snapshot())
        return task.snapshot()

    def get(self, task_id: str) -> Optional[UploadTask]:
        """Live record, for orchestrator use only."""
        return self._tasks.get(task_id)

    def list(self) -> List[UploadTask]:
        return [task.snapshot() for task in self._tasks.values()]

    def mutate(self, task_id: str, **changes) -> Optional[UploadTask]:
        """Merge changes into a task and notify listeners."""
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("Ignoring update for unknown task %s: %s", task_id, sorted(changes))
            return None

        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise AttributeError(f"Cannot update task fields: {', '.join(sorted(unknown))}")

        # Progress only lives in UPLOADING; UPLOADED carries the final 100
        new_status = changes.get("status")
        if (
            new_status is not None
            and new_status not in (UploadStatus.UPLOADING, UploadStatus.UPLOADED)
            and "transfer_progress" not in changes
        ):
            changes["transfer_progress"] = None

        for name, value in changes.items():
            setattr(task, name, value)

        self._events.emit(TASK_CHANGED, task.snapshot())
        return task

    def remove(self, task_id: str) -> Optional[UploadTask]:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return None
        self._events.emit(TASK_REMOVED, task.snapshot())
        return task

    def first_ready(self, exclude: Iterable[str] = ()) -> Optional[str]:
        """First-created READY task id, skipping ids in ``exclude``."""
        skip = set(exclude)
        for task in self._tasks.values():
            if task.status == UploadStatus.READY and task.id not in skip:
                return task.id
        return None

    def clear(self) -> None:
        self._tasks.clear()
