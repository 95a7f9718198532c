"""Tests for the HTTP transfer client."""
import json
from pathlib import Path

import httpx
import pytest

from claim_uploader.models import FileRef, FileType, WriteTarget
from claim_uploader.services.errors import (
    FaultKind,
    LocationRequestError,
    StatusQueryError,
    TransferError,
)
from claim_uploader.services.transfer_client import HTTPTransferClient, LocationRequest

from conftest import make_classification

API_URL = "http://claims-api.test"


def _client(handler, chunk_size=1024):
    return HTTPTransferClient(API_URL, chunk_size=chunk_size, transport=httpx.MockTransport(handler))


def _location_request(name="claims_837.x12", size=2048, batch_name="batch-7"):
    file = FileRef(path=Path(name), name=name, size=size, file_type=FileType.X12)
    return LocationRequest(file=file, classification=make_classification(batch_name))


class TestRequestWriteLocation:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "file_id": "f-123",
                    "upload_url": "https://blob.test/f-123?sig=abc",
                    "http_method": "put",
                    "headers": {"Content-Type": "application/octet-stream"},
                },
            )

        async with _client(handler) as client:
            location = await client.request_write_location(_location_request())

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/uploads/presign"
        assert seen["body"] == {
            "file_name": "claims_837.x12",
            "file_type": "X12",
            "content_type": "application/octet-stream",
            "approx_size_bytes": 2048,
            "transaction_type": "837",
            "source_system": "Hospital_A",
            "business_date": "2026-10-19",
            "tags": {"batchName": "batch-7"},
        }
        assert location.remote_id == "f-123"
        assert location.target.url == "https://blob.test/f-123?sig=abc"
        assert location.target.method == "PUT"
        assert location.target.headers == {"Content-Type": "application/octet-stream"}

    @pytest.mark.asyncio
    async def test_tags_omitted_without_batch_name(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"file_id": "f", "upload_url": "https://blob.test/f"})

        async with _client(handler) as client:
            location = await client.request_write_location(_location_request(batch_name=None))

        assert "tags" not in bodies[0]
        assert location.target.method == "PUT"
        assert location.target.headers == {}

    @pytest.mark.asyncio
    async def test_server_error(self):
        def handler(request):
            return httpx.Response(500, json={"message": "presign backend unavailable"})

        async with _client(handler) as client:
            with pytest.raises(LocationRequestError) as excinfo:
                await client.request_write_location(_location_request())

        error = excinfo.value
        assert error.status_code == 500
        assert error.kind == FaultKind.SERVER
        assert error.is_connectivity is False
        assert str(error) == "presign backend unavailable"

    @pytest.mark.asyncio
    async def test_client_error_without_body(self):
        def handler(request):
            return httpx.Response(422)

        async with _client(handler) as client:
            with pytest.raises(LocationRequestError) as excinfo:
                await client.request_write_location(_location_request())

        assert excinfo.value.kind == FaultKind.CLIENT
        assert "422" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(LocationRequestError) as excinfo:
                await client.request_write_location(_location_request())

        assert excinfo.value.kind == FaultKind.CONNECTION
        assert excinfo.value.is_connectivity is True
        assert "Cannot reach" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        def handler(request):
            return httpx.Response(200, json={"upload_url": "https://blob.test/x"})

        async with _client(handler) as client:
            with pytest.raises(LocationRequestError, match="Malformed"):
                await client.request_write_location(_location_request())

    @pytest.mark.asyncio
    async def test_requires_context(self):
        client = HTTPTransferClient(API_URL)
        with pytest.raises(RuntimeError, match="not initialized"):
            await client.request_write_location(_location_request())


class TestTransferBytes:
    @pytest.mark.asyncio
    async def test_streams_file_with_headers_and_progress(self, tmp_path):
        payload = b"ISA*00*" + b"x" * 2993
        path = tmp_path / "claims.x12"
        path.write_bytes(payload)
        file = FileRef.from_path(path)
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(200)

        target = WriteTarget(
            url="https://blob.test/f-1?sig=abc",
            method="PUT",
            headers={"x-amz-server-side-encryption": "AES256"},
        )
        progress = []
        async with _client(handler, chunk_size=1000) as client:
            await client.transfer_bytes(file, target, progress.append)

        assert seen["method"] == "PUT"
        assert seen["url"] == "https://blob.test/f-1?sig=abc"
        assert seen["headers"]["x-amz-server-side-encryption"] == "AES256"
        assert seen["headers"]["content-length"] == "3000"
        assert "transfer-encoding" not in seen["headers"]
        assert seen["body"] == payload
        assert progress == [33, 66, 100]

    @pytest.mark.asyncio
    async def test_empty_file_reports_no_progress(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_bytes(b"")

        progress = []
        async with _client(lambda request: httpx.Response(201)) as client:
            await client.transfer_bytes(
                FileRef.from_path(path), WriteTarget(url="https://blob.test/e"), progress.append
            )

        assert progress == []

    @pytest.mark.asyncio
    async def test_rejected_upload(self, tmp_path):
        path = tmp_path / "claims.csv"
        path.write_bytes(b"a,b\n1,2\n")

        async with _client(lambda request: httpx.Response(403)) as client:
            with pytest.raises(TransferError) as excinfo:
                await client.transfer_bytes(
                    FileRef.from_path(path), WriteTarget(url="https://blob.test/f")
                )

        assert excinfo.value.status_code == 403
        assert excinfo.value.kind == FaultKind.CLIENT
        assert str(excinfo.value) == "Upload failed: 403 Forbidden"

    @pytest.mark.asyncio
    async def test_network_failure(self, tmp_path):
        path = tmp_path / "claims.csv"
        path.write_bytes(b"a,b\n")

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransferError) as excinfo:
                await client.transfer_bytes(
                    FileRef.from_path(path), WriteTarget(url="https://blob.test/f")
                )

        assert excinfo.value.kind == FaultKind.TIMEOUT
        assert excinfo.value.is_connectivity is True


class TestQueryStatus:
    @pytest.mark.asyncio
    async def test_parses_report(self):
        def handler(request):
            assert request.url.path == "/v1/uploads/f-9"
            return httpx.Response(
                200,
                json={
                    "file_id": "f-9",
                    "status": "CANONICAL_READY",
                    "canonical_location": {"bucket": "canonical", "keys": ["837/f-9.parquet"]},
                },
            )

        async with _client(handler) as client:
            report = await client.query_status("f-9")

        assert report.status == "CANONICAL_READY"
        assert report.final_location.bucket == "canonical"
        assert report.final_location.keys == ("837/f-9.parquet",)
        assert report.error_code is None

    @pytest.mark.asyncio
    async def test_malformed_final_location(self):
        def handler(request):
            return httpx.Response(
                200, json={"file_id": "f-9", "status": "COMPLETED", "canonical_location": "s3://x"}
            )

        async with _client(handler) as client:
            with pytest.raises(StatusQueryError, match="Malformed status response") as excinfo:
                await client.query_status("f-9")

        assert excinfo.value.status_code == 200
        assert isinstance(excinfo.value.__cause__, TypeError)

    @pytest.mark.asyncio
    async def test_server_error(self):
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(StatusQueryError) as excinfo:
                await client.query_status("f-9")

        assert excinfo.value.kind == FaultKind.SERVER
        assert excinfo.value.status_code == 503
