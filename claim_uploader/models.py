"""
Models for claim uploader.

Value objects are immutable dataclasses; UploadTask is the only mutable
record and is owned by the task store.
"""
from __future__ import annotations

import copy
import mimetypes
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


class UploadStatus(Enum):
    """Lifecycle status of an upload task."""
    READY = "READY"
    REQUESTING_URL = "REQUESTING_URL"
    URL_READY = "URL_READY"
    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.DONE, UploadStatus.FAILED)


class FailureReason(Enum):
    """Why a task ended up FAILED."""
    REQUESTING_URL_FAILED = "REQUESTING_URL_FAILED"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    BACKEND_FAILED = "BACKEND_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class FileType(Enum):
    X12 = "X12"
    CSV = "CSV"


class TransactionType(Enum):
    ENROLLMENT = "834"
    REMITTANCE = "835"
    CLAIM = "837"


# Size limits per file type (bytes)
FILE_SIZE_LIMITS = {
    FileType.X12: 200 * 1024 * 1024,
    FileType.CSV: 2 * 1024 * 1024 * 1024,
}

FILE_EXTENSIONS = {
    FileType.X12: (".x12", ".edi", ".txt"),
    FileType.CSV: (".csv",),
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def infer_file_type(name: str) -> Optional[FileType]:
    """Infer file type from the file extension."""
    suffix = Path(name).suffix.lower()
    for file_type, extensions in FILE_EXTENSIONS.items():
        if suffix in extensions:
            return file_type
    return None


@dataclass(frozen=True)
class FileRef:
    """Handle to the bytes to transfer plus their metadata."""
    path: Path
    name: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    file_type: Optional[FileType] = None

    @classmethod
    def from_path(cls, path: Path, file_type: Optional[FileType] = None) -> "FileRef":
        file_path = Path(path)
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            path=file_path,
            name=file_path.name,
            size=file_path.stat().st_size,
            content_type=guessed or DEFAULT_CONTENT_TYPE,
            file_type=file_type or infer_file_type(file_path.name),
        )


@dataclass(frozen=True)
class Classification:
    """Caller-supplied classification, forwarded verbatim to the backend."""
    source_system: str
    transaction_type: TransactionType
    business_date: str  # YYYY-MM-DD
    batch_name: Optional[str] = None

    @property
    def tags(self) -> Optional[Dict[str, str]]:
        if self.batch_name:
            return {"batchName": self.batch_name}
        return None


@dataclass(frozen=True)
class WriteTarget:
    """Where and how to send the bytes."""
    url: str
    method: str = "PUT"
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WriteLocation:
    """Result of a location request."""
    remote_id: str
    target: WriteTarget


@dataclass(frozen=True)
class FinalLocation:
    """Storage coordinates of an ingested file."""
    bucket: str
    keys: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> Optional["FinalLocation"]:
        if not payload:
            return None
        if not isinstance(payload, dict):
            raise TypeError(f"final location must be an object, got {type(payload).__name__}")
        return cls(bucket=payload.get("bucket", ""), keys=tuple(payload.get("keys") or ()))


@dataclass(frozen=True)
class StatusReport:
    """Backend processing status for one remote file."""
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    final_location: Optional[FinalLocation] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StatusReport":
        return cls(
            status=str(payload["status"]),
            error_code=payload.get("error_code"),
            error_message=payload.get("error_message"),
            final_location=FinalLocation.from_payload(payload.get("canonical_location")),
        )


@dataclass
class UploadTask:
    """One file's journey through the upload/ingestion workflow."""
    id: str
    file: FileRef
    classification: Classification
    status: UploadStatus = UploadStatus.READY
    failure_reason: Optional[FailureReason] = None
    error_message: Optional[str] = None
    advisory_message: Optional[str] = None
    # After location request
    remote_id: Optional[str] = None
    write_target: Optional[WriteTarget] = None
    # 0-100, only while UPLOADING (100 on UPLOADED)
    transfer_progress: Optional[int] = None
    # Backend status
    backend_status: Optional[str] = None
    final_location: Optional[FinalLocation] = None
    attempt: int = 0
    created_at: float = field(default_factory=time.time)

    @property
    def file_name(self) -> str:
        return self.file.name

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "UploadTask":
        """Detached copy handed to subscribers."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class UploadConfig:
    """Immutable tunables for the orchestrator and transfer client."""
    api_base_url: str = "http://localhost:8000"
    request_timeout: float = 60.0
    chunk_size: int = 1024 * 1024
    max_concurrent_uploads: int = 3
    initial_poll_delay: float = 1.0
    fast_poll_interval: float = 5.0
    slow_poll_interval: float = 30.0
    fast_poll_window: float = 60.0      # poll fast for the first minute
    poll_timeout: float = 10 * 60.0     # give up after 10 minutes

    def __post_init__(self):
        if self.max_concurrent_uploads < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        for name in ("initial_poll_delay", "fast_poll_interval", "slow_poll_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 0 < self.fast_poll_window <= self.poll_timeout:
            raise ValueError("fast_poll_window must be positive and not exceed poll_timeout")

    def poll_interval(self, elapsed: float) -> Optional[float]:
        """Delay before the next status query, or None once polling should stop."""
        if elapsed < self.fast_poll_window:
            return self.fast_poll_interval
        if elapsed < self.poll_timeout:
            return self.slow_poll_interval
        return None

    @classmethod
    def from_env(cls, **overrides) -> "UploadConfig":
        """Build config from environment variables; keyword overrides win."""
        values: Dict[str, Any] = {}
        base_url = os.getenv("CLAIMS_API_BASE_URL")
        if base_url:
            values["api_base_url"] = base_url
        max_parallel = os.getenv("UPLOADER_MAX_CONCURRENT")
        if max_parallel:
            values["max_concurrent_uploads"] = int(max_parallel)
        timeout = os.getenv("UPLOADER_REQUEST_TIMEOUT")
        if timeout:
            values["request_timeout"] = float(timeout)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
