"""
Poll Scheduler - tracks backend processing after a successful transfer.

One asyncio task per upload task. The first query runs after
``initial_poll_delay``; later queries back off based on the time elapsed
since the first query, and polling gives up (without failing the task)
once ``poll_timeout`` is reached.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import nullcontext
from enum import Enum
from typing import Any, Awaitable, Callable, ContextManager, Dict, Optional, Tuple

from ..models import FailureReason, StatusReport, UploadConfig, UploadStatus
from ..protocols import ITransferClient
from .store import TaskStore

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"CANONICAL_READY", "COMPLETED", "READY"})
FAILURE_STATUSES = frozenset({"FAILED"})
PROCESSING_STATUSES = frozenset({"PROCESSING"})
PENDING_STATUSES = frozenset({"UPLOADED", "PENDING_UPLOAD", "RECEIVED"})

TIMEOUT_ADVISORY = "Still processing in backend, please check later"


class PollOutcome(Enum):
    """How a polling cycle ended."""
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


FinishHook = Callable[[str, int, PollOutcome], ContextManager]


def map_backend_status(report: StatusReport) -> Tuple[Dict[str, Any], Optional[PollOutcome]]:
    """
    Translate a status report into task changes.

    Returns (changes, outcome); outcome is None while processing continues.
    Unknown backend statuses only update ``backend_status``.
    """
    changes: Dict[str, Any] = {"backend_status": report.status}
    if report.final_location is not None:
        changes["final_location"] = report.final_location

    status = report.status.strip().upper()
    if status in SUCCESS_STATUSES:
        changes["status"] = UploadStatus.DONE
        return changes, PollOutcome.DONE
    if status in FAILURE_STATUSES:
        changes["status"] = UploadStatus.FAILED
        changes["failure_reason"] = FailureReason.BACKEND_FAILED
        changes["error_message"] = (
            report.error_message or report.error_code or "Backend processing failed"
        )
        return changes, PollOutcome.FAILED
    if status in PROCESSING_STATUSES:
        changes["status"] = UploadStatus.PROCESSING
    elif status in PENDING_STATUSES:
        changes["status"] = UploadStatus.UPLOADED
    else:
        logger.warning(f"Unknown backend status '{report.status}', keeping current status")
    return changes, None


class PollScheduler:
    """
    Per-task status polling with elapsed-time backoff.

    The last change of a cycle is written inside ``finishing(task_id,
    attempt, outcome)``, a context manager supplied by the owner; the
    orchestrator uses it to hand the slot over once the final state is out.
    """

    def __init__(
        self,
        store: TaskStore,
        client: ITransferClient,
        config: Optional[UploadConfig] = None,
        finishing: Optional[FinishHook] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._store = store
        self._client = client
        self._config = config or UploadConfig()
        self._finishing = finishing
        self._clock = clock
        self._sleep = sleep
        self._polls: Dict[str, asyncio.Task] = {}

    def is_polling(self, task_id: str) -> bool:
        poll = self._polls.get(task_id)
        return poll is not None and not poll.done()

    @property
    def active(self) -> int:
        return sum(1 for poll in self._polls.values() if not poll.done())

    def start(self, task_id: str, remote_id: str, attempt: int) -> asyncio.Task:
        """Start a polling cycle, replacing any cycle already running."""
        self.cancel(task_id)
        logger.debug(f"Scheduling initial poll for task {task_id} in {self._config.initial_poll_delay}s")
        poll = asyncio.create_task(
            self._poll_loop(task_id, remote_id, attempt), name=f"poll-{task_id}"
        )
        self._polls[task_id] = poll
        poll.add_done_callback(lambda done: self._forget(task_id, done))
        return poll

    def cancel(self, task_id: str) -> bool:
        """Cancel the pending cycle for a task. Safe to call repeatedly."""
        poll = self._polls.pop(task_id, None)
        if poll is None or poll.done():
            return False
        poll.cancel()
        logger.debug(f"Cancelled polling for task {task_id}")
        return True

    def cancel_all(self) -> None:
        for task_id in list(self._polls):
            self.cancel(task_id)

    async def join(self) -> None:
        """Wait until every active cycle has finished."""
        while True:
            pending = [poll for poll in self._polls.values() if not poll.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        polls = list(self._polls.values())
        self.cancel_all()
        if polls:
            await asyncio.gather(*polls, return_exceptions=True)

    def _forget(self, task_id: str, poll: asyncio.Task) -> None:
        if self._polls.get(task_id) is poll:
            del self._polls[task_id]

    def _is_current(self, task_id: str, attempt: int) -> bool:
        task = self._store.get(task_id)
        return task is not None and task.attempt == attempt

    async def _poll_loop(self, task_id: str, remote_id: str, attempt: int) -> None:
        await self._sleep(self._config.initial_poll_delay)
        started_at: Optional[float] = None

        while True:
            if not self._is_current(task_id, attempt):
                logger.info(f"Task {task_id} removed, stopping polling")
                return

            if started_at is None:
                started_at = self._clock()

            try:
                logger.debug(f"Polling status for remote file {remote_id}")
                report = await self._client.query_status(remote_id)
            except Exception as e:
                if not self._is_current(task_id, attempt):
                    return
                message = str(e) or type(e).__name__
                logger.error(f"Polling error for task {task_id}: {message}")
                self._finish(
                    task_id,
                    attempt,
                    PollOutcome.FAILED,
                    status=UploadStatus.FAILED,
                    failure_reason=FailureReason.BACKEND_FAILED,
                    error_message=message,
                )
                return

            if not self._is_current(task_id, attempt):
                return

            changes, outcome = map_backend_status(report)
            if outcome is not None:
                logger.info(f"Task {task_id} finished polling: {outcome.value}")
                self._finish(task_id, attempt, outcome, **changes)
                return
            self._store.mutate(task_id, **changes)

            elapsed = self._clock() - started_at
            interval = self._config.poll_interval(elapsed)
            if interval is None:
                logger.info(
                    f"Polling timeout ({self._config.poll_timeout:.0f}s) for task {task_id}, stopping"
                )
                self._finish(
                    task_id, attempt, PollOutcome.TIMED_OUT, advisory_message=TIMEOUT_ADVISORY
                )
                return

            logger.debug(f"Scheduling next poll for task {task_id} in {interval}s")
            await self._sleep(interval)

    def _finish(self, task_id: str, attempt: int, outcome: PollOutcome, **changes) -> None:
        """Write the final changes of a cycle inside the owner's finishing scope."""
        scope = self._finishing(task_id, attempt, outcome) if self._finishing else nullcontext()
        with scope:
            self._store.mutate(task_id, **changes)
