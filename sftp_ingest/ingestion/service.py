"""
Wiring for scheduled ingestion runs.

Builds the orchestrator and its collaborators from a RunConfig and exposes
handler(event, context) for a scheduler invocation. A fatal error is logged
and re-raised so the scheduler can route it to its dead-letter target.
"""

from typing import Any, Dict, Optional

from sftp_ingest.connectors.base import ObjectSink
from sftp_ingest.connectors.s3 import S3Sink
from sftp_ingest.connectors.secrets import SecretsManagerCredentialProvider
from sftp_ingest.connectors.sftp import SftpTransport
from sftp_ingest.shared.config import DedupStrategy, RunConfig, get_run_config
from sftp_ingest.shared.errors import IngestError, error_kind
from sftp_ingest.shared.observability import get_logger, setup_logging

from .ledger import (
    DedupLedger,
    DynamoLedgerStore,
    ExactLedger,
    NullLedger,
    RedisLedgerStore,
    WatermarkLedger,
)
from .orchestrator import IngestionOrchestrator
from .run_stats import RunSummary

logger = get_logger(__name__)


def build_ledger(run_config: RunConfig, sink: ObjectSink) -> DedupLedger:
    """Ledger for the configured (already resolved) dedup strategy"""
    if run_config.strategy == DedupStrategy.EXACT:
        if run_config.ledger_table:
            store = DynamoLedgerStore(run_config.ledger_table, region=run_config.region)
        else:
            store = RedisLedgerStore.from_url(
                run_config.redis_uri, namespace=run_config.redis_namespace
            )
        return ExactLedger(store, retention_days=run_config.retention_days)
    if run_config.strategy == DedupStrategy.WATERMARK:
        return WatermarkLedger(
            sink, prefix=run_config.prefix, pattern=run_config.timestamp_pattern
        )
    return NullLedger()


def build_orchestrator(run_config: RunConfig) -> IngestionOrchestrator:
    sink = S3Sink(
        run_config.bucket,
        region=run_config.region,
        multipart_threshold=run_config.multipart_threshold_bytes,
    )
    return IngestionOrchestrator(
        credentials=SecretsManagerCredentialProvider(
            run_config.secret_name, region=run_config.region
        ),
        transport=SftpTransport(connect_timeout=run_config.connect_timeout_seconds),
        sink=sink,
        ledger=build_ledger(run_config, sink),
        remote_dir=run_config.remote_dir,
        prefix=run_config.prefix,
        lookback_minutes=run_config.lookback_minutes,
        use_time_window=run_config.uses_time_window,
        max_workers=run_config.max_workers,
        run_timeout_seconds=run_config.run_timeout_seconds,
    )


def run_once(
    run_config: Optional[RunConfig] = None,
    run_id: Optional[str] = None,
    dry_run: bool = False,
    orchestrator: Optional[IngestionOrchestrator] = None,
) -> RunSummary:
    """Resolve configuration (if needed) and execute a single run"""
    if orchestrator is None:
        orchestrator = build_orchestrator(run_config or get_run_config())
    return orchestrator.run(run_id=run_id, dry_run=dry_run)


def handler(
    event: Optional[Dict[str, Any]] = None,
    context: Any = None,
    orchestrator: Optional[IngestionOrchestrator] = None,
) -> str:
    """
    Scheduled-event entry point.

    Returns:
        Human-readable summary string

    Raises:
        IngestError: "Error transferring files: ..." on any fatal error
    """
    event = event or {}
    run_id = event.get("requestId") or getattr(context, "aws_request_id", None)
    try:
        if orchestrator is None:
            run_config = get_run_config()
            setup_logging(run_config.log_level)
            orchestrator = build_orchestrator(run_config)
        summary = orchestrator.run(run_id=run_id)
    except Exception as e:
        logger.error(
            "error_transferring_files",
            run_id=run_id,
            error_kind=error_kind(e).value,
            error=str(e),
        )
        raise IngestError(
            f"Error transferring files: {e}", kind=error_kind(e)
        ) from e

    return summary.to_message()
