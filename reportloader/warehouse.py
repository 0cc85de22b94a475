import asyncio
import logging

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import bigquery

from reportloader.config import Settings
from reportloader.errors import LoadJobError, LoadSubmissionError
from reportloader.schemas import LoadResult, StoredArtifact


logger = logging.getLogger(__name__)


def build_load_job_config() -> bigquery.LoadJobConfig:
    # Gzip compression is detected by BigQuery from the object itself.
    return bigquery.LoadJobConfig(
        source_format=bigquery.SourceFormat.CSV,
        field_delimiter=",",
        skip_leading_rows=1,
        autodetect=True,
        write_disposition=bigquery.WriteDisposition.WRITE_APPEND,
    )


async def load_from_storage(
    bq_client: bigquery.Client,
    artifact: StoredArtifact,
    settings: Settings,
) -> LoadResult:
    """Append the stored CSV to the destination table with a server-side load job.

    Re-running for the same date appends the same rows a second time.
    """
    destination = settings.destination_table
    try:
        job = await asyncio.to_thread(
            bq_client.load_table_from_uri,
            artifact.uri,
            destination,
            job_config=build_load_job_config(),
            location=settings.bq_location,
        )
    except (GoogleAPIError, GoogleAuthError) as exc:
        raise LoadSubmissionError(f"failed to submit load job for {artifact.uri}: {exc}") from exc

    logger.info("load job submitted", extra={"job_id": job.job_id, "source": artifact.uri, "destination": destination})

    try:
        await asyncio.to_thread(job.result)
    except (GoogleAPIError, GoogleAuthError) as exc:
        if job.error_result:
            raise LoadJobError(job.error_result, job.errors) from exc
        raise LoadSubmissionError(f"load job {job.job_id} could not be completed: {exc}") from exc

    if job.error_result:
        raise LoadJobError(job.error_result, job.errors)

    row_count = int(job.output_rows or 0)
    logger.info("load job finished", extra={"job_id": job.job_id, "destination": destination, "row_count": row_count})
    return LoadResult(destination_table=destination, job_id=job.job_id, row_count=row_count)
