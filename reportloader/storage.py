import asyncio
from collections.abc import AsyncIterator
from datetime import date
import io
import logging

from google.cloud import storage

from reportloader.errors import StorageWriteError
from reportloader.schemas import StoredArtifact


logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/gzip"
# Upload chunk size for streams of unknown length; must be a multiple of 256 KiB.
UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024


def build_object_path(prefix: str, report_type: str, site_label: str, day: date) -> str:
    return f"{prefix}/{report_type}/{site_label}/{day.isoformat()}.csv.gz"


async def _pull(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class _AsyncChunkReader(io.RawIOBase):
    """Blocking reader over an async chunk iterator owned by another thread's loop."""

    def __init__(self, chunks: AsyncIterator[bytes], loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._chunks = chunks
        self._loop = loop
        self._pending = b""
        self._eof = False
        self.position = 0

    def readable(self) -> bool:
        return True

    def tell(self) -> int:
        return self.position

    def readinto(self, buffer: bytearray | memoryview) -> int:
        while not self._pending and not self._eof:
            chunk = asyncio.run_coroutine_threadsafe(_pull(self._chunks), self._loop).result()
            if chunk is None:
                self._eof = True
            else:
                self._pending = chunk

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        self.position += size
        return size


async def write_stream(
    storage_client: storage.Client,
    chunks: AsyncIterator[bytes],
    artifact: StoredArtifact,
) -> int:
    """Stream chunks into the artifact's object and return the number of bytes written.

    The payload is never held in memory as a whole and never touches local disk.
    A failure leaves whatever the storage service kept for the object.
    """
    loop = asyncio.get_running_loop()
    raw = _AsyncChunkReader(chunks, loop)
    reader = io.BufferedReader(raw, buffer_size=UPLOAD_CHUNK_SIZE)

    blob = storage_client.bucket(artifact.bucket).blob(artifact.path, chunk_size=UPLOAD_CHUNK_SIZE)
    logger.info("writing report to object storage", extra={"uri": artifact.uri})
    try:
        await asyncio.to_thread(blob.upload_from_file, reader, rewind=False, content_type=CONTENT_TYPE)
    except Exception as exc:
        raise StorageWriteError(artifact.uri, exc) from exc
    finally:
        reader.close()

    logger.info("report stored", extra={"uri": artifact.uri, "bytes_written": raw.position})
    return raw.position
