"""
Protocols (Interfaces) for Dependency Inversion.

The orchestrator depends on these, never on httpx directly.
"""
from typing import Callable, Optional, Protocol, runtime_checkable, TYPE_CHECKING

from .models import FileRef, StatusReport, WriteLocation, WriteTarget

if TYPE_CHECKING:
    from .services.transfer_client import LocationRequest


@runtime_checkable
class ITransferClient(Protocol):
    """Interface for the three-step upload protocol."""

    async def request_write_location(self, request: "LocationRequest") -> WriteLocation:
        """Obtain a one-time write destination. Raises LocationRequestError."""
        ...

    async def transfer_bytes(
        self,
        file: FileRef,
        target: WriteTarget,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> None:
        """Send the file bytes to the destination. Raises TransferError."""
        ...

    async def query_status(self, remote_id: str) -> StatusReport:
        """Fetch backend processing status. Raises StatusQueryError."""
        ...
