"""Shared fakes for orchestrator tests."""
import asyncio
from pathlib import Path
from typing import Callable, List, Optional
from unittest.mock import AsyncMock

import pytest

from claim_uploader.models import (
    Classification,
    FileRef,
    FileType,
    StatusReport,
    TransactionType,
    UploadConfig,
    WriteLocation,
    WriteTarget,
)

MB = 1024 * 1024


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class FakeTransferClient:
    """Transfer client double; gates let tests hold a step open."""

    def __init__(self):
        self.location_gate: Optional[asyncio.Event] = None
        self.transfer_gate: Optional[asyncio.Event] = None
        self.progress_steps = [0, 25, 50, 100]
        self._issued = 0
        self.request_write_location = AsyncMock(side_effect=self._location)
        self.transfer_bytes = AsyncMock(side_effect=self._transfer)
        self.query_status = AsyncMock(return_value=StatusReport(status="COMPLETED"))

    async def _location(self, request):
        if self.location_gate is not None:
            await self.location_gate.wait()
        self._issued += 1
        return WriteLocation(
            remote_id=f"file-{self._issued}",
            target=WriteTarget(
                url=f"https://storage.test/blob-{self._issued}",
                method="PUT",
                headers={"x-amz-server-side-encryption": "AES256"},
            ),
        )

    async def _transfer(self, file, target, on_progress=None):
        if self.transfer_gate is not None:
            await self.transfer_gate.wait()
        for percent in self.progress_steps:
            if on_progress:
                on_progress(percent)
            await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], rounds: int = 500) -> None:
    """Let the event loop spin until predicate holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    assert predicate(), "condition not reached"


def make_file(name: str = "claims_837.x12", size: int = 10 * MB) -> FileRef:
    return FileRef(
        path=Path(name),
        name=name,
        size=size,
        content_type="application/octet-stream",
        file_type=FileType.X12,
    )


def make_classification(batch_name: Optional[str] = None) -> Classification:
    return Classification(
        source_system="Hospital_A",
        transaction_type=TransactionType.CLAIM,
        business_date="2026-10-19",
        batch_name=batch_name,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeTransferClient()


@pytest.fixture
def config():
    return UploadConfig(max_concurrent_uploads=3)
