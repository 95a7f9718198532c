"""Admission control - bounds the number of simultaneously running uploads."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from .store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3


class AdmissionController:
    """
    Gate and scheduler for upload slots.

    At most ``ceiling`` task ids are running at once. A denied task stays
    READY and is only reconsidered when a slot is released: ``release``
    admits the first-created READY task before returning.
    """

    def __init__(
        self,
        store: TaskStore,
        ceiling: int = DEFAULT_MAX_CONCURRENT,
        on_admit: Optional[Callable[[str], None]] = None,
    ):
        if ceiling < 1:
            raise ValueError("ceiling must be at least 1")
        self._store = store
        self._ceiling = ceiling
        self._on_admit = on_admit
        # Insertion-ordered set
        self._running: dict = {}
        # Tasks publishing the end of their attempt
        self._ending: set = set()

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def running(self) -> List[str]:
        return list(self._running)

    @property
    def available(self) -> int:
        return self._ceiling - len(self._running)

    def holds(self, task_id: str) -> bool:
        return task_id in self._running

    def try_admit(self, task_id: str) -> bool:
        if task_id in self._ending:
            logger.debug(f"Task {task_id} is finishing its attempt, queuing it behind waiting tasks")
            return False
        if task_id in self._running:
            return True
        if len(self._running) >= self._ceiling:
            logger.info(
                f"Max concurrent uploads reached ({self._ceiling}), queuing task {task_id}"
            )
            return False
        self._running[task_id] = None
        logger.debug(f"Admitted task {task_id} ({len(self._running)}/{self._ceiling} slots)")
        return True

    def release(self, task_id: str) -> Optional[str]:
        """
        Return a slot and admit the next queued task.

        Returns the id of the newly admitted task, if any. Releasing a task
        that holds no slot does nothing.
        """
        if task_id not in self._running:
            logger.debug(f"Task {task_id} holds no slot, nothing to release")
            return None
        del self._running[task_id]
        logger.debug(f"Released slot of task {task_id}")
        return self.admit_next()

    def admit_next(self) -> Optional[str]:
        """Admit the first-created READY task if a slot is free."""
        if len(self._running) >= self._ceiling:
            return None
        next_id = self._store.first_ready(exclude=self._running)
        if next_id is None or not self.try_admit(next_id):
            return None
        if self._on_admit:
            self._on_admit(next_id)
        return next_id

    @contextmanager
    def finishing(self, task_id: str) -> Iterator[None]:
        """
        Scope in which a running task publishes the end of its attempt.

        The task keeps its slot until the block exits and cannot be admitted
        again inside it, so a retry issued from a listener queues behind
        tasks that were already waiting. The slot is released on exit.
        """
        self._ending.add(task_id)
        try:
            yield
        finally:
            self._ending.discard(task_id)
            self.release(task_id)

    def clear(self) -> None:
        self._running.clear()
        self._ending.clear()
