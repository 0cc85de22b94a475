from dataclasses import dataclass
from datetime import date
from enum import Enum


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: object) -> "ReportStatus":
        value = str(raw or "").strip().upper()
        try:
            status = cls(value)
        except ValueError:
            return cls.UNKNOWN
        return status


@dataclass
class ReportJob:
    report_id: str
    report_type: str
    days: int
    report_date: date | None = None
    status: ReportStatus = ReportStatus.PENDING
    content_url: str | None = None
    attempts: int = 0
    rate_limited: int = 0

    def mark_succeeded(self, content_url: str) -> None:
        if self.content_url is not None and self.content_url != content_url:
            raise ValueError(f"content_url already set for report {self.report_id}")
        self.status = ReportStatus.SUCCESS
        self.content_url = content_url


@dataclass(frozen=True)
class StoredArtifact:
    bucket: str
    path: str

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}/{self.path}"


@dataclass(frozen=True)
class LoadResult:
    destination_table: str
    job_id: str | None
    row_count: int | None = None
    error_result: dict[str, object] | None = None
    write_disposition: str = "WRITE_APPEND"

    @property
    def succeeded(self) -> bool:
        return self.error_result is None


@dataclass(frozen=True)
class PipelineResult:
    target_date: date | None
    status: str
    report_id: str | None = None
    content_url: str | None = None
    artifact_uri: str | None = None
    bytes_written: int = 0
    row_count: int | None = None
    error: str | None = None
