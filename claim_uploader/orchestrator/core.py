"""Core orchestrator - drives every task through the upload state machine."""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import nullcontext
from typing import Any, Awaitable, Callable, ContextManager, Dict, List, Optional

from ..models import (
    Classification,
    FailureReason,
    FileRef,
    UploadConfig,
    UploadStatus,
    UploadTask,
)
from ..protocols import ITransferClient
from ..services.transfer_client import LocationRequest
from ..utils.events import EventEmitter
from ..validation import ValidationError
from .admission import AdmissionController
from .polling import PollOutcome, PollScheduler
from .store import TASK_CHANGED, TASK_REMOVED, TaskStore

logger = logging.getLogger(__name__)

TaskListener = Callable[[UploadTask], None]


def _describe_exception(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"


class UploadOrchestrator:
    """
    Orchestrates claim file uploads using an injected transfer client.

    Owns the task store, admission controller and poll scheduler; callers
    only see task snapshots. All methods must be called from the event
    loop that runs the orchestrator.

    Usage:
        async with HTTPTransferClient(api_url) as client:
            async with UploadOrchestrator(client) as orchestrator:
                unsubscribe = orchestrator.subscribe(print)
                task = orchestrator.create_task(file_ref, classification)
                orchestrator.start_upload(task.id)
                await orchestrator.join()
    """

    def __init__(
        self,
        client: ITransferClient,
        config: Optional[UploadConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            client: Transfer client for the three remote steps
            config: Upload configuration (ceiling and polling tunables)
            clock: Monotonic clock used for polling backoff
            sleep: Coroutine used to wait between polls
        """
        self._client = client
        self._config = config or UploadConfig()
        self._events = EventEmitter()
        self._store = TaskStore(self._events)
        self._admission = AdmissionController(
            self._store,
            ceiling=self._config.max_concurrent_uploads,
            on_admit=self._begin_attempt,
        )
        self._poller = PollScheduler(
            self._store,
            client,
            self._config,
            finishing=self._finishing_poll,
            clock=clock,
            sleep=sleep,
        )
        self._attempts: Dict[str, asyncio.Task] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def config(self) -> UploadConfig:
        return self._config

    # Subscriptions
    def subscribe(self, callback: TaskListener) -> Callable[[], None]:
        """Called with a task snapshot after every mutation. Returns an unsubscribe function."""
        return self._events.on(TASK_CHANGED, callback)

    def on_task_removed(self, callback: TaskListener) -> Callable[[], None]:
        """Called with the last snapshot of a removed task."""
        return self._events.on(TASK_REMOVED, callback)

    # Queries
    def get_task(self, task_id: str) -> Optional[UploadTask]:
        task = self._store.get(task_id)
        return task.snapshot() if task else None

    def list_tasks(self) -> List[UploadTask]:
        return self._store.list()

    @property
    def running(self) -> List[str]:
        """Ids of tasks currently holding an admission slot."""
        return self._admission.running

    # Commands
    def create_task(self, file: FileRef, classification: Classification) -> UploadTask:
        """Register a new READY task. Does not start it."""
        errors = {}
        if file is None:
            errors["file"] = "Please select a file"
        if classification is None:
            errors["classification"] = "Classification is required"
        else:
            if not classification.source_system:
                errors["source_system"] = "Please select source system"
            if classification.transaction_type is None:
                errors["transaction_type"] = "Please select transaction type"
            if not classification.business_date:
                errors["business_date"] = "Please select business date"
        if errors:
            raise ValidationError(errors)
        return self._store.create(file, classification)

    def start_upload(self, task_id: str) -> bool:
        """
        Request a slot for a READY task.

        Returns True if the task started now. A task that is not admitted
        stays READY and starts when another task frees its slot.
        """
        task = self._store.get(task_id)
        if task is None:
            logger.warning(f"Task not found for start_upload: {task_id}")
            return False
        if task.status != UploadStatus.READY:
            logger.warning(f"Task {task_id} not in READY state: {task.status.value}")
            return False
        if not self._admission.try_admit(task_id):
            return False
        self._begin_attempt(task_id)
        return True

    def retry_upload(self, task_id: str) -> bool:
        """Reset a FAILED task to READY and start it again."""
        task = self._store.get(task_id)
        if task is None:
            logger.warning(f"Task not found for retry_upload: {task_id}")
            return False
        if task.status != UploadStatus.FAILED:
            logger.warning(f"Task {task_id} cannot be retried from {task.status.value}")
            return False

        self._poller.cancel(task_id)
        self._store.mutate(
            task_id,
            status=UploadStatus.READY,
            failure_reason=None,
            error_message=None,
            advisory_message=None,
            transfer_progress=None,
            remote_id=None,
            write_target=None,
            backend_status=None,
            final_location=None,
        )
        logger.info(f"Retrying task {task_id}")
        self.start_upload(task_id)
        return True

    def resume_polling(self, task_id: str) -> bool:
        """Check again on a task whose polling timed out."""
        task = self._store.get(task_id)
        if task is None:
            logger.warning(f"Task not found for resume_polling: {task_id}")
            return False
        if (
            task.remote_id is None
            or task.status not in (UploadStatus.UPLOADED, UploadStatus.PROCESSING)
            or self._poller.is_polling(task_id)
            or self._admission.holds(task_id)
        ):
            logger.warning(f"Task {task_id} has no timed-out polling to resume ({task.status.value})")
            return False

        self._store.mutate(task_id, advisory_message=None)
        self._poller.start(task_id, task.remote_id, task.attempt)
        return True

    def remove_task(self, task_id: str) -> bool:
        """Drop a task; pending polling stops and a held slot is released."""
        if task_id not in self._store:
            logger.warning(f"Task not found for remove_task: {task_id}")
            return False
        self._poller.cancel(task_id)
        # An in-flight remote call keeps running; its result finds no task
        self._store.remove(task_id)
        self._admission.release(task_id)
        logger.info(f"Removed task {task_id}")
        return True

    def clear_all(self) -> None:
        """Stop all polling and running attempts and drop every task."""
        self._poller.cancel_all()
        for attempt in self._attempts.values():
            attempt.cancel()
        self._attempts.clear()
        self._admission.clear()
        self._store.clear()

    async def join(self) -> None:
        """Wait until no attempt is running and no task is being polled."""
        while True:
            pending = [attempt for attempt in self._attempts.values() if not attempt.done()]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                continue
            await self._poller.join()
            if not any(not attempt.done() for attempt in self._attempts.values()):
                return

    async def close(self) -> None:
        """Cancel outstanding attempts and polling."""
        attempts = list(self._attempts.values())
        for attempt in attempts:
            attempt.cancel()
        self._attempts.clear()
        await self._poller.close()
        if attempts:
            await asyncio.gather(*attempts, return_exceptions=True)

    # State machine
    def _begin_attempt(self, task_id: str) -> None:
        """READY -> REQUESTING_URL, then run the remote steps in the background."""
        task = self._store.mutate(
            task_id,
            status=UploadStatus.REQUESTING_URL,
            attempt=self._store.get(task_id).attempt + 1,
        )
        logger.info(f"Starting upload of {task.file_name} (task {task_id}, attempt {task.attempt})")
        attempt = asyncio.create_task(
            self._run_attempt(task_id, task.attempt), name=f"upload-{task_id}"
        )
        self._attempts[task_id] = attempt
        attempt.add_done_callback(lambda done: self._forget_attempt(task_id, done))

    def _forget_attempt(self, task_id: str, attempt: asyncio.Task) -> None:
        if self._attempts.get(task_id) is attempt:
            del self._attempts[task_id]

    def _current(self, task_id: str, attempt: int) -> Optional[UploadTask]:
        task = self._store.get(task_id)
        if task is None or task.attempt != attempt:
            return None
        return task

    async def _run_attempt(self, task_id: str, attempt: int) -> None:
        task = self._current(task_id, attempt)
        if task is None:
            return

        # Step 1: location
        logger.debug(f"Step 1: requesting write location for task {task_id}")
        try:
            location = await self._client.request_write_location(
                LocationRequest(file=task.file, classification=task.classification)
            )
        except Exception as exc:
            self._fail(task_id, attempt, FailureReason.REQUESTING_URL_FAILED, exc)
            return

        if self._current(task_id, attempt) is None:
            logger.info(f"Task {task_id} removed while requesting location, discarding result")
            return

        self._store.mutate(
            task_id,
            status=UploadStatus.URL_READY,
            remote_id=location.remote_id,
            write_target=location.target,
        )
        self._store.mutate(task_id, status=UploadStatus.UPLOADING, transfer_progress=0)

        # Step 2: transfer
        logger.debug(f"Step 2: uploading {task.file_name} for task {task_id}")
        try:
            await self._client.transfer_bytes(
                task.file,
                location.target,
                lambda percent: self._on_progress(task_id, attempt, percent),
            )
        except Exception as exc:
            self._fail(task_id, attempt, FailureReason.UPLOAD_ERROR, exc)
            return

        if self._current(task_id, attempt) is None:
            logger.info(f"Task {task_id} removed during upload, discarding result")
            return

        self._store.mutate(task_id, status=UploadStatus.UPLOADED, transfer_progress=100)

        # Step 3: hand over to polling; the slot is released when it ends
        self._poller.start(task_id, location.remote_id, attempt)

    def _on_progress(self, task_id: str, attempt: int, percent: int) -> None:
        task = self._current(task_id, attempt)
        if task is None or task.status != UploadStatus.UPLOADING:
            return
        percent = max(0, min(100, int(percent)))
        if task.transfer_progress is not None and percent <= task.transfer_progress:
            return
        self._store.mutate(task_id, transfer_progress=percent)

    def _fail(self, task_id: str, attempt: int, reason: FailureReason, exc: Exception) -> None:
        if self._current(task_id, attempt) is None:
            logger.info(f"Task {task_id} removed, ignoring failure: {exc}")
            return
        message = _describe_exception(exc)
        logger.error(f"Upload task {task_id} failed ({reason.value}): {message}")
        with self._admission.finishing(task_id):
            self._store.mutate(
                task_id,
                status=UploadStatus.FAILED,
                failure_reason=reason,
                error_message=message,
            )

    def _finishing_poll(self, task_id: str, attempt: int, outcome: PollOutcome) -> ContextManager:
        """Return the slot once the final poll result is published."""
        if self._current(task_id, attempt) is None:
            return nullcontext()
        return self._admission.finishing(task_id)
