import argparse
from datetime import date
import logging

from reportloader.config import get_settings
from reportloader.errors import ConfigurationError
from reportloader.pipeline import run_once
from reportloader.scheduler import start_scheduler


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pull a partner report into object storage and the warehouse")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run one report cycle")
    run_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        required=False,
        help="Target date in YYYY-MM-DD format (overrides S1_DATE and TARGET_DATE_POLICY)",
    )

    schedule_parser = subparsers.add_parser("schedule", help="start daily scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        print(f"status=failed error={type(exc).__name__}: {exc}")
        raise SystemExit(1) from exc

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "schedule":
        start_scheduler(settings, run_now=args.run_now)
        return

    result = run_once(settings, args.date)

    print(
        "status={status} date={date} report_id={report_id} uri={uri} bytes={bytes} rows={rows} error={error}".format(
            status=result.status,
            date=result.target_date.isoformat() if result.target_date else None,
            report_id=result.report_id,
            uri=result.artifact_uri,
            bytes=result.bytes_written,
            rows=result.row_count,
            error=result.error,
        )
    )
    if result.status == "failed":
        raise SystemExit(1)


if __name__ == "__main__":
    main()
