"""Services for claim uploader."""
from .errors import (
    FaultKind,
    LocationRequestError,
    RemoteCallError,
    StatusQueryError,
    TransferError,
)
from .transfer_client import HTTPTransferClient, LocationRequest

__all__ = [
    "HTTPTransferClient",
    "LocationRequest",
    "FaultKind",
    "RemoteCallError",
    "LocationRequestError",
    "TransferError",
    "StatusQueryError",
]
