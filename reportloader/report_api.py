import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import date
import json
import logging
import re
from urllib.parse import quote

import aiohttp

from reportloader.config import Settings
from reportloader.errors import (
    DownloadError,
    PollTimeoutError,
    RateLimited,
    ReportFailedError,
    RequestError,
    StatusRequestError,
    UnexpectedStatusError,
)
from reportloader.schemas import ReportJob, ReportStatus


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
_AUTH_KEY_RE = re.compile(r"(auth_key=)[^&]*")

Sleep = Callable[[float], Awaitable[object]]
# Connection failures, resets and socket timeouts.
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def redact_url(url: str) -> str:
    return _AUTH_KEY_RE.sub(r"\1***", url)


def retry_after_delay(header: str | None, default_seconds: float) -> float:
    """Seconds to wait after a 429: the advertised Retry-After plus one."""
    try:
        seconds = float(header) if header is not None else default_seconds
    except ValueError:
        seconds = default_seconds
    return max(seconds, 0.0) + 1


def resolve_content_url(content_url: str, *, host: str, auth_key: str) -> str:
    if "auth_key=" not in content_url:
        separator = "&" if "?" in content_url else "?"
        content_url = f"{content_url}{separator}auth_key={quote(auth_key, safe='')}"
    if not content_url.startswith("http"):
        content_url = f"{host}/{content_url.lstrip('/')}"
    return content_url


async def request_report(session: aiohttp.ClientSession, settings: Settings, report_date: date | None = None) -> str:
    params = {
        "report_type": settings.report_type,
        "days": str(settings.days),
        "auth_key": settings.auth_key,
    }
    # Without a date the reporting service picks the current period itself.
    if report_date is not None:
        params["date"] = report_date.isoformat()

    url = f"{settings.report_host}/partner/v1/report"
    try:
        async with session.post(url, params=params) as response:
            status = response.status
            body = await response.text()
    except TRANSPORT_ERRORS as exc:
        raise RequestError(f"report request failed: {exc!r}") from exc

    if not _is_success(status):
        raise RequestError(f"report request failed {status}", status=status, body=body)

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise RequestError("report request returned invalid JSON", status=status, body=body) from exc

    report_id = payload.get("report_id") if isinstance(payload, dict) else None
    if not report_id:
        raise RequestError("no report_id in response", status=status, body=body)

    logger.info(
        "report requested",
        extra={"report_id": report_id, "report_type": settings.report_type, "report_date": params.get("date")},
    )
    return str(report_id)


async def _query_status(session: aiohttp.ClientSession, url: str, settings: Settings) -> dict[str, object]:
    try:
        async with session.get(url, params={"auth_key": settings.auth_key}) as response:
            status = response.status
            retry_after = response.headers.get("Retry-After")
            body = await response.text()
    except TRANSPORT_ERRORS as exc:
        raise StatusRequestError(None, message=f"status request failed: {exc!r}") from exc

    if status == 429:
        raise RateLimited(retry_after_delay(retry_after, settings.rate_limit_default_seconds))
    if not _is_success(status):
        raise StatusRequestError(status, body)

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise UnexpectedStatusError(body) from exc
    if not isinstance(payload, dict):
        raise UnexpectedStatusError(payload)
    return payload


async def poll_status(
    session: aiohttp.ClientSession,
    job: ReportJob,
    settings: Settings,
    *,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Poll until the report succeeds and return its authorized content URL.

    Rate-limited responses wait and re-query without consuming an attempt;
    RUNNING responses consume one attempt each.
    """
    url = f"{settings.report_host}/partner/v1/report/{quote(job.report_id, safe='')}/status"

    while job.attempts < settings.poll_max_attempts:
        try:
            payload = await _query_status(session, url, settings)
        except RateLimited as exc:
            job.rate_limited += 1
            logger.warning(
                "status query rate limited",
                extra={"report_id": job.report_id, "delay_seconds": exc.delay_seconds, "attempt": job.attempts},
            )
            await sleep(exc.delay_seconds)
            continue

        job.status = ReportStatus.parse(payload.get("report_status"))
        content_url = payload.get("content_url")

        if job.status is ReportStatus.SUCCESS and content_url:
            resolved = resolve_content_url(str(content_url), host=settings.report_host, auth_key=settings.auth_key)
            job.mark_succeeded(resolved)
            logger.info(
                "report ready",
                extra={"report_id": job.report_id, "attempts": job.attempts, "content_url": redact_url(resolved)},
            )
            return resolved

        if job.status is ReportStatus.FAILED:
            raise ReportFailedError(job.report_id, payload)

        if job.status is ReportStatus.RUNNING:
            logger.debug("report still running", extra={"report_id": job.report_id, "attempt": job.attempts})
            await sleep(settings.poll_interval_seconds)
            job.attempts += 1
            continue

        raise UnexpectedStatusError(payload)

    raise PollTimeoutError(job.report_id, job.attempts)


@asynccontextmanager
async def fetch_content(
    session: aiohttp.ClientSession, content_url: str, *, chunk_size: int = CHUNK_SIZE
) -> AsyncIterator[AsyncIterator[bytes]]:
    try:
        response = await session.get(content_url, allow_redirects=True)
    except TRANSPORT_ERRORS as exc:
        raise DownloadError(None, message=f"download failed: {exc!r}") from exc

    async with response:
        if not _is_success(response.status):
            raise DownloadError(response.status)
        logger.info(
            "downloading report content",
            extra={"content_url": redact_url(str(response.url)), "content_length": response.content_length},
        )
        yield response.content.iter_chunked(chunk_size)
