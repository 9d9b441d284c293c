"""
Ingestion run statistics accumulator.

Collects per-file outcomes across one run and produces the RunSummary that is
logged and returned to the caller.

Counting rule: every listed file ends up either processed or skipped, where
skipped covers files outside the window, duplicates, unrecognized names,
failures, and files never attempted (dry run, run timeout). So

    files_considered == files_processed + files_skipped
"""

import time
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from sftp_ingest.connectors.base import RemoteFileHandle
from sftp_ingest.shared.errors import error_kind
from sftp_ingest.shared.observability.metrics import ingest_files_total

logger = structlog.get_logger(__name__)


class SkipReason(str, Enum):
    OUTSIDE_WINDOW = "outside_window"
    DUPLICATE = "duplicate"
    UNRECOGNIZED = "unrecognized"
    DRY_RUN = "dry_run"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class FileOutcome:
    """Result of processing one file"""

    path: str
    status: str  # "processed" | "failed"
    object_key: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "processed"

    @classmethod
    def processed(
        cls, handle: RemoteFileHandle, object_key: str, duration_ms: int = 0
    ) -> "FileOutcome":
        return cls(
            path=handle.path,
            status="processed",
            object_key=object_key,
            duration_ms=duration_ms,
        )

    @classmethod
    def failed(
        cls, handle: RemoteFileHandle, exc: BaseException, duration_ms: int = 0
    ) -> "FileOutcome":
        return cls(
            path=handle.path,
            status="failed",
            error_kind=error_kind(exc).value,
            message=str(exc) or type(exc).__name__,
            duration_ms=duration_ms,
        )


@dataclass(frozen=True)
class FailedFile:
    path: str
    error_kind: str
    message: str


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    files_considered: int
    files_processed: int
    files_skipped: int
    duration_ms: int
    files_failed: int = 0
    files_duplicate: int = 0
    files_unrecognized: int = 0
    files_outside_window: int = 0
    files_not_attempted: int = 0
    failures: Tuple[FailedFile, ...] = ()
    planned: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_message(self) -> str:
        return (
            f"Files processed successfully. Considered: {self.files_considered}, "
            f"Processed: {self.files_processed}, Skipped: {self.files_skipped}"
        )


@dataclass
class IngestionRunStats:
    """Accumulates file outcomes for a single run."""

    run_id: str
    start_time: float
    files_considered: int = 0
    files_processed: int = 0
    skipped: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    failures: List[FailedFile] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)

    @classmethod
    def start_new(cls, run_id: Optional[str] = None) -> "IngestionRunStats":
        """Create a new run stats tracker, generating a run_id if none is given."""
        if not run_id:
            run_id = f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        return cls(run_id=run_id, start_time=time.monotonic())

    def record_listed(self, count: int) -> None:
        self.files_considered += count

    def record_skip(self, handle: RemoteFileHandle, reason: SkipReason) -> None:
        self.skipped[reason.value] += 1
        ingest_files_total.labels(outcome=reason.value).inc()
        if reason == SkipReason.DRY_RUN:
            self.planned.append(handle.path)

    def record_outcome(self, outcome: FileOutcome) -> None:
        if outcome.succeeded:
            self.files_processed += 1
            ingest_files_total.labels(outcome="processed").inc()
            return
        self.failures.append(
            FailedFile(
                path=outcome.path,
                error_kind=outcome.error_kind or "unexpected",
                message=outcome.message or "",
            )
        )
        ingest_files_total.labels(outcome="failed").inc()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)

    def finalize(self) -> RunSummary:
        skipped_total = sum(self.skipped.values()) + len(self.failures)
        return RunSummary(
            run_id=self.run_id,
            files_considered=self.files_considered,
            files_processed=self.files_processed,
            files_skipped=skipped_total,
            duration_ms=self.elapsed_ms,
            files_failed=len(self.failures),
            files_duplicate=self.skipped.get(SkipReason.DUPLICATE.value, 0),
            files_unrecognized=self.skipped.get(SkipReason.UNRECOGNIZED.value, 0),
            files_outside_window=self.skipped.get(SkipReason.OUTSIDE_WINDOW.value, 0),
            files_not_attempted=self.skipped.get(SkipReason.DRY_RUN.value, 0)
            + self.skipped.get(SkipReason.TIMEOUT.value, 0),
            failures=tuple(self.failures),
            planned=tuple(self.planned),
        )

    def emit_summary(self) -> RunSummary:
        """
        Emit the run summary as a structured log event.

        Returns:
            The summary that was logged
        """
        summary = self.finalize()

        logger.info(
            "ingest_run_summary",
            run_id=summary.run_id,
            duration_ms=summary.duration_ms,
            files_considered=summary.files_considered,
            files_processed=summary.files_processed,
            files_skipped=summary.files_skipped,
            files_failed=summary.files_failed,
            files_duplicate=summary.files_duplicate,
            files_unrecognized=summary.files_unrecognized,
            files_outside_window=summary.files_outside_window,
            files_not_attempted=summary.files_not_attempted,
        )

        if summary.files_failed > 0:
            logger.warning(
                "ingest_run_had_failures",
                run_id=summary.run_id,
                failed_count=summary.files_failed,
                failures=[asdict(f) for f in summary.failures],
            )

        return summary
