class ReportLoaderError(RuntimeError):
    pass


class ConfigurationError(ReportLoaderError):
    def __init__(self, missing: list[str] | None = None, message: str | None = None) -> None:
        self.missing = list(missing or [])
        if message is None:
            message = f"missing required configuration: {', '.join(self.missing)}"
        super().__init__(message)


class RequestError(ReportLoaderError):
    def __init__(self, message: str, *, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class StatusRequestError(ReportLoaderError):
    def __init__(self, status: int | None, body: str | None = None, *, message: str | None = None) -> None:
        super().__init__(message or f"status request failed with HTTP {status}")
        self.status = status
        self.body = body


class RateLimited(ReportLoaderError):
    """Raised for HTTP 429 on a status query; absorbed by the poller."""

    def __init__(self, delay_seconds: float) -> None:
        super().__init__(f"rate limited, retry in {delay_seconds}s")
        self.delay_seconds = delay_seconds


class UnexpectedStatusError(ReportLoaderError):
    def __init__(self, payload: object) -> None:
        super().__init__(f"unexpected report status: {payload!r}")
        self.payload = payload


class ReportFailedError(ReportLoaderError):
    def __init__(self, report_id: str, payload: object = None) -> None:
        super().__init__(f"report {report_id} FAILED")
        self.report_id = report_id
        self.payload = payload


class PollTimeoutError(ReportLoaderError):
    def __init__(self, report_id: str, attempts: int) -> None:
        super().__init__(f"timed out waiting for report {report_id} after {attempts} attempts")
        self.report_id = report_id
        self.attempts = attempts


class DownloadError(ReportLoaderError):
    def __init__(self, status: int | None, *, message: str | None = None) -> None:
        super().__init__(message or f"download failed with HTTP {status}")
        self.status = status


class StorageWriteError(ReportLoaderError):
    def __init__(self, uri: str, cause: BaseException) -> None:
        super().__init__(f"failed writing {uri}: {cause}")
        self.uri = uri


class LoadSubmissionError(ReportLoaderError):
    pass


class LoadJobError(ReportLoaderError):
    def __init__(self, error_result: dict[str, object], errors: list[dict[str, object]] | None = None) -> None:
        super().__init__(f"load job error: {error_result}")
        self.error_result = error_result
        self.errors = list(errors or [])
