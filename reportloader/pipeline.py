import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
import logging

import aiohttp
from google.cloud import bigquery, storage

from reportloader.clients import build_bigquery_client, build_http_session, build_storage_client
from reportloader.config import Settings, validate_settings
from reportloader.report_api import Sleep, fetch_content, poll_status, redact_url, request_report
from reportloader.schemas import PipelineResult, ReportJob, StoredArtifact
from reportloader.storage import build_object_path, write_stream
from reportloader.warehouse import load_from_storage


logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(UTC).date()


def resolve_target_date(settings: Settings, override: date | None, today: date) -> tuple[date, date | None]:
    """Return the day the run is for and the date to send with the report request.

    An explicit date wins. Otherwise TARGET_DATE_POLICY decides: "today" leaves
    the date off the request so the service reports its current period, while
    "yesterday" names the previous day explicitly.
    """
    explicit = override or settings.explicit_date
    if explicit is not None:
        return explicit, explicit
    if settings.target_date_policy == "yesterday":
        day = today - timedelta(days=1)
        return day, day
    return today, None


class PipelineRunner:
    def __init__(
        self,
        settings: Settings,
        *,
        storage_client: storage.Client | None = None,
        bq_client: bigquery.Client | None = None,
        session_factory: Callable[[], aiohttp.ClientSession] | None = None,
        sleep: Sleep = asyncio.sleep,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.settings = settings
        self.storage_client = storage_client
        self.bq_client = bq_client
        self.session_factory = session_factory or (lambda: build_http_session(settings))
        self.sleep = sleep
        self.today = today

    async def run(self, target_date: date | None = None) -> PipelineResult:
        settings = self.settings
        day = target_date
        report_id: str | None = None
        content_url: str | None = None
        artifact: StoredArtifact | None = None
        bytes_written = 0

        try:
            validate_settings(settings)
            day, request_date = resolve_target_date(settings, target_date, self.today())
            artifact = StoredArtifact(
                bucket=settings.gcs_bucket,
                path=build_object_path(settings.gcs_prefix, settings.report_type, settings.site_name, day),
            )
            logger.info(
                "starting report pull",
                extra={"report_type": settings.report_type, "target_date": day.isoformat(), "uri": artifact.uri},
            )

            async with self.session_factory() as session:
                report_id = await request_report(session, settings, request_date)
                job = ReportJob(
                    report_id=report_id,
                    report_type=settings.report_type,
                    days=settings.days,
                    report_date=request_date,
                )
                content_url = await poll_status(session, job, settings, sleep=self.sleep)

                async with fetch_content(session, content_url) as chunks:
                    bytes_written = await write_stream(self._storage(), chunks, artifact)

            load = await load_from_storage(self._bigquery(), artifact, settings)
        except Exception as exc:
            logger.exception(
                "report pull failed",
                extra={"report_id": report_id, "target_date": day.isoformat() if day else None},
            )
            return PipelineResult(
                target_date=day,
                status="failed",
                report_id=report_id,
                content_url=redact_url(content_url) if content_url else None,
                artifact_uri=artifact.uri if artifact else None,
                bytes_written=bytes_written,
                error=f"{type(exc).__name__}: {exc}",
            )

        logger.info(
            "report pull completed",
            extra={"report_id": report_id, "destination": load.destination_table, "row_count": load.row_count},
        )
        return PipelineResult(
            target_date=day,
            status="succeeded",
            report_id=report_id,
            content_url=redact_url(content_url),
            artifact_uri=artifact.uri,
            bytes_written=bytes_written,
            row_count=load.row_count,
        )

    def _storage(self) -> storage.Client:
        if self.storage_client is None:
            self.storage_client = build_storage_client(self.settings)
        return self.storage_client

    def _bigquery(self) -> bigquery.Client:
        if self.bq_client is None:
            self.bq_client = build_bigquery_client(self.settings)
        return self.bq_client


def run_once(settings: Settings, target_date: date | None = None) -> PipelineResult:
    return asyncio.run(PipelineRunner(settings).run(target_date))
