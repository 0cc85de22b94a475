import aiohttp
from google.cloud import bigquery, storage

from reportloader.config import Settings


def build_storage_client(settings: Settings) -> storage.Client:
    return storage.Client(project=settings.bq_project or None)


def build_bigquery_client(settings: Settings) -> bigquery.Client:
    return bigquery.Client(project=settings.bq_project, location=settings.bq_location)


def build_http_session(settings: Settings) -> aiohttp.ClientSession:
    # Reads are bounded per socket operation; whole downloads are not.
    timeout = aiohttp.ClientTimeout(total=None, sock_connect=settings.http_timeout_seconds, sock_read=settings.http_timeout_seconds)
    return aiohttp.ClientSession(timeout=timeout, raise_for_status=False)
