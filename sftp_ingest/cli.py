"""
Command-line interface for sftp-ingest.

    sftp-ingest run [--dry-run] [--json] [--request-id ID] [--metrics-file PATH]
    sftp-ingest show-config

Structured logs go to stderr so stdout carries only the summary.
"""

import argparse
import json
import sys
from dataclasses import asdict
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

from sftp_ingest.ingestion.service import run_once
from sftp_ingest.shared.config import get_run_config, reload_config
from sftp_ingest.shared.errors import ConfigurationError, IngestError
from sftp_ingest.shared.observability import get_logger, setup_logging, write_metrics

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


def cmd_run(args: argparse.Namespace) -> int:
    run_config = get_run_config()
    setup_logging(args.log_level or run_config.log_level, stream=sys.stderr)

    try:
        summary = run_once(run_config, run_id=args.request_id, dry_run=args.dry_run)
    finally:
        if args.metrics_file:
            write_metrics(args.metrics_file)

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        print(summary.to_message())
        for failure in summary.failures:
            print(f"  FAILED {failure.path} [{failure.error_kind}] {failure.message}")
        for path in summary.planned:
            print(f"  WOULD COPY {path}")
    return EXIT_OK


def redact_uri(uri: Optional[str]) -> Optional[str]:
    """Replace the password in a URI's userinfo with ***"""
    if not uri:
        return uri
    parts = urlsplit(uri)
    if parts.password is None:
        return uri
    userinfo = f"{parts.username or ''}:***"
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{host}"))


def cmd_show_config(args: argparse.Namespace) -> int:
    run_config = get_run_config()
    payload = asdict(run_config)
    payload["redis_uri"] = redact_uri(run_config.redis_uri)
    payload["strategy"] = run_config.strategy.value
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sftp-ingest",
        description="Replicate files from an SFTP endpoint into S3",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute one ingestion run")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List and filter only; report files that would be copied",
    )
    run_parser.add_argument("--json", action="store_true", help="Print summary as JSON")
    run_parser.add_argument("--request-id", default=None, help="Correlation ID for the run")
    run_parser.add_argument(
        "--metrics-file",
        default=None,
        help="Write Prometheus metrics to this file after the run (textfile collector)",
    )
    run_parser.set_defaults(func=cmd_run)

    show_parser = subparsers.add_parser(
        "show-config", help="Print the resolved run configuration"
    )
    show_parser.set_defaults(func=cmd_show_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        reload_config()
        return args.func(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except IngestError as e:
        print(f"Error transferring files: {e}", file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
