"""Remote call failures raised by the transfer client."""
from __future__ import annotations

from enum import Enum
from typing import Optional

import httpx


class FaultKind(Enum):
    """Coarse classification used to render actionable diagnostics."""
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


def _describe_response(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or None
    if isinstance(payload, dict):
        return payload.get("message") or payload.get("detail")
    return None


class RemoteCallError(Exception):
    """Base class for one failed remote step."""

    step = "remote call"

    def __init__(
        self,
        message: str,
        kind: FaultKind = FaultKind.UNKNOWN,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.url = url

    @property
    def is_connectivity(self) -> bool:
        """True when the endpoint could not be reached at all."""
        return self.kind in (FaultKind.CONNECTION, FaultKind.TIMEOUT)

    @classmethod
    def from_transport(cls, exc: Exception, url: str) -> "RemoteCallError":
        if isinstance(exc, httpx.TimeoutException):
            return cls(
                f"Timeout error: {cls.step} to {url} did not complete in time.",
                FaultKind.TIMEOUT,
                url=url,
            )
        if isinstance(exc, httpx.TransportError):
            return cls(
                f"Network error: Cannot reach {url}. "
                "Please check your network connection and API endpoint configuration.",
                FaultKind.CONNECTION,
                url=url,
            )
        return cls(str(exc) or type(exc).__name__, FaultKind.UNKNOWN, url=url)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RemoteCallError":
        status = response.status_code
        detail = _describe_response(response)
        reason = f"{status} {response.reason_phrase}".strip()
        if status >= 500:
            kind = FaultKind.SERVER
            message = detail or f"Server error: {reason}"
        else:
            kind = FaultKind.CLIENT
            message = detail or f"{cls.step.capitalize()} rejected: {reason}"
        return cls(message, kind, status_code=status, url=str(response.request.url))


class LocationRequestError(RemoteCallError):
    step = "location request"


class TransferError(RemoteCallError):
    step = "upload"


class StatusQueryError(RemoteCallError):
    step = "status query"
