"""
Claim uploader - upload orchestration for the claims ingestion pipeline.

Each file goes through three remote steps: request a write location,
transfer the bytes to blob storage, then poll backend processing until the
file is ingested or rejected. At most ``max_concurrent_uploads`` files run
at once; the rest wait in creation order.

Usage:
    from claim_uploader import (
        Classification, FileRef, HTTPTransferClient, TransactionType,
        UploadConfig, UploadOrchestrator,
    )

    config = UploadConfig.from_env()
    async with HTTPTransferClient.from_config(config) as client:
        async with UploadOrchestrator(client, config) as orchestrator:
            orchestrator.subscribe(lambda task: print(task.status, task.transfer_progress))

            task = orchestrator.create_task(
                FileRef.from_path(Path("claims_837.x12")),
                Classification(
                    source_system="Hospital_A",
                    transaction_type=TransactionType.CLAIM,
                    business_date="2026-10-19",
                ),
            )
            orchestrator.start_upload(task.id)
            await orchestrator.join()
"""
from .orchestrator import UploadOrchestrator
from .models import (
    Classification,
    FailureReason,
    FileRef,
    FileType,
    StatusReport,
    TransactionType,
    UploadConfig,
    UploadStatus,
    UploadTask,
)
from .services import (
    HTTPTransferClient,
    LocationRequestError,
    StatusQueryError,
    TransferError,
)
from .validation import ValidationError

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    # Models
    "Classification",
    "FailureReason",
    "FileRef",
    "FileType",
    "StatusReport",
    "TransactionType",
    "UploadConfig",
    "UploadStatus",
    "UploadTask",
    # Services
    "HTTPTransferClient",
    "LocationRequestError",
    "StatusQueryError",
    "TransferError",
    "ValidationError",
]
