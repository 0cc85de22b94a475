import asyncio
import base64
from collections.abc import Awaitable, Callable
from dataclasses import replace
import hashlib
import json
import socket

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer
from google.api_core.exceptions import BadRequest
import google_crc32c
import pytest

from reportloader.config import Settings


RUNNING = {"report_status": "RUNNING"}


class FakeReportService:
    """In-process stand-in for the partner reporting API."""

    def __init__(self) -> None:
        self.create_status = 200
        self.create_payload: object = {"report_id": "abc123"}
        self.status_responses: list[tuple[int, object, dict[str, str]]] = []
        self.default_status: tuple[int, object, dict[str, str]] = (200, RUNNING, {})
        self.content = b""
        self.content_status = 200
        self.requests: list[tuple[str, str, dict[str, str]]] = []

    def queue_status(self, payload: object, status: int = 200, headers: dict[str, str] | None = None) -> None:
        self.status_responses.append((status, payload, headers or {}))

    def calls(self, kind: str) -> list[tuple[str, str, dict[str, str]]]:
        return [call for call in self.requests if call[0] == kind]

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/partner/v1/report", self._create)
        app.router.add_get("/partner/v1/report/{report_id}/status", self._status)
        app.router.add_get("/download/{report_id}", self._download)
        app.router.add_get("/redirect/{report_id}", self._redirect)
        return app

    async def _create(self, request: web.Request) -> web.Response:
        self.requests.append(("create", request.path, dict(request.query)))
        return web.json_response(self.create_payload, status=self.create_status)

    async def _status(self, request: web.Request) -> web.Response:
        self.requests.append(("status", request.match_info["report_id"], dict(request.query)))
        status, payload, headers = self.status_responses.pop(0) if self.status_responses else self.default_status
        if isinstance(payload, str):
            return web.Response(text=payload, status=status, headers=headers)
        return web.json_response(payload, status=status, headers=headers)

    async def _download(self, request: web.Request) -> web.Response:
        self.requests.append(("download", request.match_info["report_id"], dict(request.query)))
        if self.content_status != 200:
            return web.Response(status=self.content_status)
        return web.Response(body=self.content, content_type="application/gzip")

    async def _redirect(self, request: web.Request) -> web.Response:
        raise web.HTTPFound(f"/download/{request.match_info['report_id']}?{request.query_string}")


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeBlob:
    def __init__(self, client: "FakeStorageClient", bucket: str, name: str, chunk_size: int | None = None) -> None:
        self.client = client
        self.bucket = bucket
        self.name = name
        self.chunk_size = chunk_size

    def upload_from_file(self, file_obj, rewind: bool = False, content_type: str | None = None) -> None:
        if self.client.upload_error is not None:
            raise self.client.upload_error
        data = bytearray()
        while True:
            chunk = file_obj.read(4)
            if not chunk:
                break
            data.extend(chunk)
        self.client.objects[(self.bucket, self.name)] = bytes(data)
        self.client.content_types[(self.bucket, self.name)] = content_type


class FakeBucket:
    def __init__(self, client: "FakeStorageClient", name: str) -> None:
        self.client = client
        self.name = name

    def blob(self, blob_name: str, chunk_size: int | None = None) -> FakeBlob:
        return FakeBlob(self.client, self.name, blob_name, chunk_size=chunk_size)


class FakeStorageClient:
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str | None] = {}
        self.upload_error: Exception | None = None

    def bucket(self, bucket_name: str) -> FakeBucket:
        return FakeBucket(self, bucket_name)


class FakeLoadJob:
    def __init__(self, job_id: str, output_rows: int | None, error_result: dict[str, object] | None) -> None:
        self.job_id = job_id
        self.output_rows = output_rows
        self.error_result = error_result
        self.errors = [error_result] if error_result else None

    def result(self) -> "FakeLoadJob":
        if self.error_result:
            raise BadRequest(str(self.error_result.get("message", "load failed")))
        return self


class FakeBigQueryClient:
    def __init__(self) -> None:
        self.output_rows: int | None = 0
        self.error_result: dict[str, object] | None = None
        self.submit_error: Exception | None = None
        self.loads: list[dict[str, object]] = []

    def load_table_from_uri(self, source_uris, destination, job_config=None, location=None) -> FakeLoadJob:
        if self.submit_error is not None:
            raise self.submit_error
        self.loads.append(
            {"source_uris": source_uris, "destination": destination, "job_config": job_config, "location": location}
        )
        return FakeLoadJob(f"job-{len(self.loads)}", self.output_rows, self.error_result)


class FakeGcsServer:
    """Local endpoint speaking the JSON API resumable upload protocol."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_ranges: list[str] = []
        self.content_types: list[str] = []
        self._sessions: dict[str, dict[str, object]] = {}
        self._server: TestServer | None = None

    async def start(self) -> str:
        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_post("/upload/storage/v1/b/{bucket}/o", self._initiate)
        app.router.add_put("/upload/session/{session_id}", self._put_chunk)
        self._server = TestServer(app)
        await self._server.start_server()
        return str(self._server.make_url("/")).rstrip("/")

    async def close(self) -> None:
        if self._server is not None:
            await self._server.close()

    async def _initiate(self, request: web.Request) -> web.Response:
        metadata = await request.json()
        session_id = str(len(self._sessions) + 1)
        self._sessions[session_id] = {
            "bucket": request.match_info["bucket"],
            "name": metadata["name"],
            "data": bytearray(),
        }
        self.content_types.append(metadata.get("contentType") or request.headers.get("X-Upload-Content-Type", ""))
        location = f"{request.scheme}://{request.host}/upload/session/{session_id}"
        return web.Response(status=200, headers={"Location": location})

    async def _put_chunk(self, request: web.Request) -> web.Response:
        upload = self._sessions[request.match_info["session_id"]]
        content_range = request.headers.get("Content-Range", "")
        self.content_ranges.append(content_range)
        upload["data"].extend(await request.read())

        if content_range.endswith("/*"):
            return web.Response(status=308, headers={"Range": f"bytes=0-{len(upload['data']) - 1}"})

        data = bytes(upload["data"])
        self.objects[(upload["bucket"], upload["name"])] = data
        resource = {
            "bucket": upload["bucket"],
            "name": upload["name"],
            "size": str(len(data)),
            "crc32c": base64.b64encode(google_crc32c.Checksum(data).digest()).decode("ascii"),
            "md5Hash": base64.b64encode(hashlib.md5(data).digest()).decode("ascii"),
        }
        return web.Response(status=200, text=json.dumps(resource), content_type="application/json")


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        app_name="reportloader",
        log_level="INFO",
        report_host="http://reports.invalid",
        report_type="rsoc",
        days=1,
        report_date="",
        auth_key="test-key",
        site_name="acme",
        gcs_bucket="test-bucket",
        gcs_prefix="s1",
        bq_project="test-project",
        bq_dataset="rsoc_clicks",
        bq_table="s1_ad_widget_daily",
        bq_location="US",
        target_date_policy="today",
        poll_max_attempts=5,
        poll_interval_seconds=30,
        rate_limit_default_seconds=30,
        http_timeout_seconds=5,
        schedule_hour_utc=6,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def report_service() -> FakeReportService:
    return FakeReportService()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def storage_client() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture()
def bq_client() -> FakeBigQueryClient:
    return FakeBigQueryClient()


@pytest.fixture()
def serve(report_service: FakeReportService, test_settings: Settings):
    """Run a coroutine against the fake service with settings pointing at it."""

    def _serve(fn: Callable[[aiohttp.ClientSession, Settings], Awaitable[object]]) -> object:
        async def _main() -> object:
            server = TestServer(report_service.build_app())
            await server.start_server()
            try:
                settings = replace(test_settings, report_host=str(server.make_url("/")).rstrip("/"))
                async with aiohttp.ClientSession() as session:
                    return await fn(session, settings)
            finally:
                await server.close()

        return asyncio.run(_main())

    return _serve


@pytest.fixture()
def gcs_server() -> FakeGcsServer:
    return FakeGcsServer()


@pytest.fixture()
def closed_port_settings(test_settings: Settings) -> Settings:
    """Settings whose reporting host refuses connections."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return replace(test_settings, report_host=f"http://127.0.0.1:{port}")
