from dataclasses import dataclass
from datetime import date
import os

from dotenv import load_dotenv

from reportloader.errors import ConfigurationError


load_dotenv()

DATE_POLICIES = ("today", "yesterday")


@dataclass(frozen=True)
class Settings:
    app_name: str
    log_level: str
    report_host: str
    report_type: str
    days: int
    report_date: str
    auth_key: str
    site_name: str
    gcs_bucket: str
    gcs_prefix: str
    bq_project: str
    bq_dataset: str
    bq_table: str
    bq_location: str
    target_date_policy: str
    poll_max_attempts: int
    poll_interval_seconds: float
    rate_limit_default_seconds: float
    http_timeout_seconds: float
    schedule_hour_utc: int
    schedule_minute_utc: int

    @property
    def destination_table(self) -> str:
        return f"{self.bq_project}.{self.bq_dataset}.{self.bq_table}"

    @property
    def explicit_date(self) -> date | None:
        if not self.report_date:
            return None
        return date.fromisoformat(self.report_date)


def _bucket_name(raw: str) -> str:
    # Accept "gs://bucket" as well as the bare bucket name.
    return raw.strip().removeprefix("gs://").rstrip("/")


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(message=f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(message=f"{name} must be a number, got {raw!r}") from exc


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "reportloader"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        report_host=os.getenv("S1_HOST", "https://reports.system1.com").rstrip("/"),
        report_type=os.getenv("S1_REPORT_TYPE", "syndication_rsoc_online_ad_widget_daily"),
        days=_int_env("S1_DAYS", "1"),
        report_date=os.getenv("S1_DATE", "").strip(),
        auth_key=os.getenv("S1_AUTH_KEY", ""),
        site_name=os.getenv("SITE_NAME", "site"),
        gcs_bucket=_bucket_name(os.getenv("GCS_BUCKET") or os.getenv("GCS_BUCKET_NAME") or ""),
        gcs_prefix=os.getenv("GCS_PREFIX", "s1").strip("/"),
        bq_project=os.getenv("BQ_PROJECT", ""),
        bq_dataset=os.getenv("BQ_DATASET", "rsoc_clicks"),
        bq_table=os.getenv("BQ_TABLE", "s1_ad_widget_daily"),
        bq_location=os.getenv("BQ_LOCATION", "US"),
        target_date_policy=os.getenv("TARGET_DATE_POLICY", "today").strip().lower(),
        poll_max_attempts=_int_env("POLL_MAX_ATTEMPTS", "60"),
        poll_interval_seconds=_float_env("POLL_INTERVAL_SECONDS", "30"),
        rate_limit_default_seconds=_float_env("RATE_LIMIT_DEFAULT_SECONDS", "30"),
        http_timeout_seconds=_float_env("HTTP_TIMEOUT_SECONDS", "60"),
        schedule_hour_utc=_int_env("SCHEDULE_HOUR_UTC", "6"),
        schedule_minute_utc=_int_env("SCHEDULE_MINUTE_UTC", "0"),
    )


def validate_settings(settings: Settings) -> None:
    """Fail before any network call when required values are missing or malformed."""
    required = [
        ("S1_AUTH_KEY", settings.auth_key),
        ("BQ_PROJECT", settings.bq_project),
        ("BQ_DATASET", settings.bq_dataset),
        ("BQ_TABLE", settings.bq_table),
        ("GCS_BUCKET/GCS_BUCKET_NAME", settings.gcs_bucket),
    ]
    missing = [name for name, value in required if not value]
    if missing:
        raise ConfigurationError(missing)

    if settings.report_date:
        try:
            date.fromisoformat(settings.report_date)
        except ValueError as exc:
            raise ConfigurationError(message=f"S1_DATE must be YYYY-MM-DD, got {settings.report_date!r}") from exc

    if settings.target_date_policy not in DATE_POLICIES:
        raise ConfigurationError(
            message=f"TARGET_DATE_POLICY must be one of {', '.join(DATE_POLICIES)}, got {settings.target_date_policy!r}"
        )

    if settings.poll_max_attempts < 1:
        raise ConfigurationError(message="POLL_MAX_ATTEMPTS must be at least 1")
