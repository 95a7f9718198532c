"""HTTP adapter for the three-step upload protocol."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx

from ..models import (
    Classification,
    FileRef,
    StatusReport,
    UploadConfig,
    WriteLocation,
    WriteTarget,
)
from .errors import FaultKind, LocationRequestError, StatusQueryError, TransferError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

PRESIGN_ENDPOINT = "/v1/uploads/presign"
STATUS_ENDPOINT = "/v1/uploads/{remote_id}"


@dataclass(frozen=True)
class LocationRequest:
    """Body of a location request."""
    file: FileRef
    classification: Classification

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "file_name": self.file.name,
            "file_type": self.file.file_type.value if self.file.file_type else None,
            "content_type": self.file.content_type,
            "approx_size_bytes": self.file.size,
            "transaction_type": self.classification.transaction_type.value,
            "source_system": self.classification.source_system,
            "business_date": self.classification.business_date,
        }
        if self.classification.tags:
            payload["tags"] = self.classification.tags
        return payload


class HTTPTransferClient:
    """
    HTTP client for location requests, byte transfer and status queries.

    Implements ITransferClient protocol. Each call is a single attempt;
    retry policy belongs to the orchestrator's caller.

    Usage:
        async with HTTPTransferClient(api_url) as client:
            location = await client.request_write_location(request)
            await client.transfer_bytes(file_ref, location.target, on_progress)
            report = await client.query_status(location.remote_id)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60,
        chunk_size: int = 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._transport = transport
        self._api: Optional[httpx.AsyncClient] = None
        self._storage: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config: UploadConfig, **kwargs) -> "HTTPTransferClient":
        return cls(
            config.api_base_url,
            timeout=config.request_timeout,
            chunk_size=config.chunk_size,
            **kwargs,
        )

    async def __aenter__(self):
        self._api = httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )
        # Storage URLs are absolute and must not inherit API defaults
        self._storage = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, *args):
        if self._api:
            await self._api.aclose()
        if self._storage:
            await self._storage.aclose()

    def _require(self, client: Optional[httpx.AsyncClient]) -> httpx.AsyncClient:
        if client is None:
            raise RuntimeError("HTTPTransferClient not initialized. Use 'async with' context.")
        return client

    async def request_write_location(self, request: LocationRequest) -> WriteLocation:
        api = self._require(self._api)
        url = f"{self._base_url.rstrip('/')}{PRESIGN_ENDPOINT}"
        logger.debug("Requesting write location for %s", request.file.name)

        try:
            response = await api.post(PRESIGN_ENDPOINT, json=request.to_payload())
        except httpx.HTTPError as exc:
            raise LocationRequestError.from_transport(exc, url) from exc

        if not response.is_success:
            raise LocationRequestError.from_response(response)

        try:
            data = response.json()
            return WriteLocation(
                remote_id=str(data["file_id"]),
                target=WriteTarget(
                    url=data["upload_url"],
                    method=(data.get("http_method") or "PUT").upper(),
                    headers=dict(data.get("headers") or {}),
                ),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise LocationRequestError(
                f"Malformed location response: {exc}", status_code=response.status_code, url=url
            ) from exc

    async def transfer_bytes(
        self,
        file: FileRef,
        target: WriteTarget,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        storage = self._require(self._storage)
        headers = dict(target.headers)
        if not any(key.lower() == "content-length" for key in headers):
            headers["Content-Length"] = str(file.size)

        logger.debug("Uploading %s (%d bytes) via %s", file.name, file.size, target.method)

        try:
            response = await storage.request(
                target.method,
                target.url,
                headers=headers,
                content=self._read_chunks(file, on_progress),
            )
        except httpx.HTTPError as exc:
            raise TransferError.from_transport(exc, target.url) from exc
        except OSError as exc:
            raise TransferError(f"Cannot read {file.path}: {exc}", url=target.url) from exc

        if not response.is_success:
            raise TransferError(
                f"Upload failed: {response.status_code} {response.reason_phrase}".strip(),
                FaultKind.SERVER if response.status_code >= 500 else FaultKind.CLIENT,
                status_code=response.status_code,
                url=target.url,
            )

    async def _read_chunks(
        self, file: FileRef, on_progress: Optional[ProgressCallback]
    ) -> AsyncIterator[bytes]:
        sent = 0
        last_percent = -1
        with open(file.path, "rb") as handle:
            while True:
                chunk = await asyncio.to_thread(handle.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
                sent += len(chunk)
                if on_progress and file.size > 0:
                    percent = min(100, int(sent * 100 / file.size))
                    if percent > last_percent:
                        last_percent = percent
                        on_progress(percent)

    async def query_status(self, remote_id: str) -> StatusReport:
        api = self._require(self._api)
        endpoint = STATUS_ENDPOINT.format(remote_id=remote_id)
        url = f"{self._base_url.rstrip('/')}{endpoint}"

        try:
            response = await api.get(endpoint)
        except httpx.HTTPError as exc:
            raise StatusQueryError.from_transport(exc, url) from exc

        if not response.is_success:
            raise StatusQueryError.from_response(response)

        try:
            return StatusReport.from_payload(response.json())
        except (ValueError, KeyError, TypeError) as exc:
            raise StatusQueryError(
                f"Malformed status response: {exc}", status_code=response.status_code, url=url
            ) from exc
