"""
Orchestrator for one ingestion run.

Drives a single run through its phases:

    INIT -> AUTHENTICATED -> LISTED -> FILTERING -> TRANSFERRING -> SUMMARIZED

Failures before the file list is known (credentials, connect, listing) are
fatal and re-raised. After that, every file is processed in isolation:
fetch -> normalize -> write -> commit, and an exception in one file is logged
and recorded without touching the others. The remote session is closed on
every exit path.
"""

import contextvars
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from enum import Enum
from threading import Event, Lock
from typing import Any, Callable, Dict, List, Optional

from sftp_ingest.connectors.base import (
    CredentialProvider,
    ObjectSink,
    RemoteFileHandle,
    RemoteTransport,
)
from sftp_ingest.shared.errors import error_kind
from sftp_ingest.shared.observability import get_logger, set_correlation_id
from sftp_ingest.shared.observability.metrics import (
    ingest_run_duration_seconds,
    ingest_runs_total,
)

from .keys import IngestionWindow, derive_object_key
from .ledger import DedupLedger, DedupVerdict
from .normalize import normalize
from .run_stats import FileOutcome, IngestionRunStats, RunSummary, SkipReason

logger = get_logger(__name__)


class RunPhase(str, Enum):
    INIT = "init"
    AUTHENTICATED = "authenticated"
    LISTED = "listed"
    FILTERING = "filtering"
    TRANSFERRING = "transferring"
    SUMMARIZED = "summarized"


class IngestionOrchestrator:
    """
    Replicates remote files into the sink, once per (path, mtime).

    Features:
    - Strategy-agnostic: depends only on the DedupLedger contract
    - Isolated: one failing file never aborts the batch
    - Bounded: per-file work runs on at most max_workers threads, with
      session I/O serialized
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        transport: RemoteTransport,
        sink: ObjectSink,
        ledger: DedupLedger,
        remote_dir: str,
        prefix: str = "",
        lookback_minutes: int = 15,
        use_time_window: bool = True,
        max_workers: int = 4,
        run_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize orchestrator.

        Args:
            credentials: Resolves connection secrets once per run
            transport: Remote lister/fetcher
            sink: Durable object store
            ledger: Dedup strategy
            remote_dir: Root directory to enumerate
            prefix: Destination key prefix
            lookback_minutes: Size of the ingestion window
            use_time_window: Discard files older than the window before dedup
            max_workers: Upper bound on concurrently processed files
            run_timeout_seconds: Stop waiting for files after this long
            clock: Source of epoch seconds
        """
        self.credentials = credentials
        self.transport = transport
        self.sink = sink
        self.ledger = ledger
        self.remote_dir = remote_dir
        self.prefix = prefix
        self.lookback_minutes = lookback_minutes
        self.use_time_window = use_time_window
        self.max_workers = max_workers
        self.run_timeout_seconds = run_timeout_seconds
        self.clock = clock

        self.phase = RunPhase.INIT
        self._session_lock = Lock()

    def _enter(self, phase: RunPhase, **fields: Any) -> None:
        self.phase = phase
        logger.info("ingest_phase", phase=phase.value, **fields)

    def run(self, run_id: Optional[str] = None, dry_run: bool = False) -> RunSummary:
        """
        Execute one ingestion run.

        Args:
            run_id: Correlation ID for the run (generated if omitted)
            dry_run: List and filter only; report candidates without transferring

        Returns:
            RunSummary for the run

        Raises:
            IngestError: If credentials, connect or listing fail
        """
        stats = IngestionRunStats.start_new(run_id)
        set_correlation_id(stats.run_id)
        self.phase = RunPhase.INIT

        window = None
        if self.use_time_window:
            window = IngestionWindow.ending_at(int(self.clock()), self.lookback_minutes)

        logger.info(
            "ingest_started",
            run_id=stats.run_id,
            remote_dir=self.remote_dir,
            window_start=window.start if window else None,
            dry_run=dry_run,
        )

        session = None
        try:
            credentials = self.credentials.get_credentials()
            session = self.transport.connect(credentials)
            self._enter(RunPhase.AUTHENTICATED, host=credentials.host)

            root = credentials.remote_dir or self.remote_dir
            with self._session_lock:
                handles = self.transport.list_recursive(session, root)
            stats.record_listed(len(handles))
            self._enter(RunPhase.LISTED, root=root, total_files=len(handles))

            self._enter(RunPhase.FILTERING)
            candidates = self.select_candidates(handles, stats, window)

            if dry_run:
                for handle in candidates:
                    stats.record_skip(handle, SkipReason.DRY_RUN)
            else:
                self._enter(RunPhase.TRANSFERRING, candidates=len(candidates))
                self._transfer_all(session, root, candidates, stats)

            summary = stats.emit_summary()
            self._enter(RunPhase.SUMMARIZED)
            ingest_runs_total.labels(status="success").inc()
            ingest_run_duration_seconds.observe(summary.duration_ms / 1000.0)
            return summary

        except Exception as e:
            ingest_runs_total.labels(status="fatal").inc()
            logger.error(
                "ingest_fatal",
                run_id=stats.run_id,
                phase=self.phase.value,
                error_kind=error_kind(e).value,
                error=str(e),
                exc_info=True,
            )
            raise
        finally:
            if session is not None:
                self.transport.close(session)

    def select_candidates(
        self,
        handles: List[RemoteFileHandle],
        stats: IngestionRunStats,
        window: Optional[IngestionWindow] = None,
    ) -> List[RemoteFileHandle]:
        """Apply the time window, then the dedup ledger"""
        if not handles:
            return []

        self.ledger.prepare()

        candidates = []
        for handle in handles:
            if window is not None and not window.contains(handle):
                stats.record_skip(handle, SkipReason.OUTSIDE_WINDOW)
                continue

            verdict = self.ledger.classify(handle)
            if verdict is DedupVerdict.DUPLICATE:
                stats.record_skip(handle, SkipReason.DUPLICATE)
                logger.info(
                    "file_skipped",
                    path=handle.path,
                    mtime=handle.modified_at,
                    reason=SkipReason.DUPLICATE.value,
                )
            elif verdict is DedupVerdict.UNRECOGNIZED:
                stats.record_skip(handle, SkipReason.UNRECOGNIZED)
                logger.info(
                    "file_skipped",
                    path=handle.path,
                    reason=SkipReason.UNRECOGNIZED.value,
                )
            else:
                candidates.append(handle)

        logger.info(
            "files_selected",
            total_files=len(handles),
            candidates=len(candidates),
        )
        return candidates

    def _transfer_all(
        self,
        session: Any,
        root: str,
        candidates: List[RemoteFileHandle],
        stats: IngestionRunStats,
    ) -> None:
        if not candidates:
            return

        deadline = Event()
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(candidates)),
            thread_name_prefix="ingest",
        )
        # Copy context so worker log lines carry the run's correlation ID
        futures: Dict[Any, RemoteFileHandle] = {
            executor.submit(
                contextvars.copy_context().run,
                self._process_file,
                session,
                root,
                handle,
                deadline,
            ): handle
            for handle in candidates
        }
        recorded = set()
        try:
            for future in as_completed(futures, timeout=self.run_timeout_seconds):
                self._record(stats, futures[future], future.result())
                recorded.add(future)
        except FuturesTimeoutError:
            deadline.set()
            running = []
            cancelled = 0
            for future, handle in futures.items():
                if future in recorded:
                    continue
                if future.cancel():
                    stats.record_skip(handle, SkipReason.TIMEOUT)
                    cancelled += 1
                else:
                    running.append(future)
            logger.warning(
                "ingest_run_timeout",
                timeout_seconds=self.run_timeout_seconds,
                cancelled=cancelled,
                in_flight=len(running),
            )
            # In-flight workers still use the session; the caller closes it after this returns
            for future in running:
                self._record(stats, futures[future], future.result())
        finally:
            executor.shutdown(wait=True)

    @staticmethod
    def _record(
        stats: IngestionRunStats,
        handle: RemoteFileHandle,
        outcome: Optional[FileOutcome],
    ) -> None:
        if outcome is None:
            stats.record_skip(handle, SkipReason.TIMEOUT)
        else:
            stats.record_outcome(outcome)

    def _process_file(
        self,
        session: Any,
        root: str,
        handle: RemoteFileHandle,
        deadline: Optional[Event] = None,
    ) -> Optional[FileOutcome]:
        """
        Fetch, normalize, write and commit one file; never raises.

        Returns None when the run deadline passed before the file reached the
        sink, in which case nothing was written or committed.
        """
        started = time.monotonic()
        try:
            if deadline is not None and deadline.is_set():
                return None
            with self._session_lock:
                raw = self.transport.fetch(session, handle.path)
            normalized = normalize(raw, handle.name)
            if deadline is not None and deadline.is_set():
                logger.warning("file_abandoned_after_timeout", path=handle.path)
                return None
            key = derive_object_key(handle.path, root, self.prefix, name=normalized.name)
            self.sink.write(key, normalized.content, size_hint=len(normalized.content))
            self.ledger.commit(handle)
        except Exception as e:
            outcome = FileOutcome.failed(
                handle, e, duration_ms=int((time.monotonic() - started) * 1000)
            )
            logger.error(
                "file_processing_failed",
                path=handle.path,
                mtime=handle.modified_at,
                error_kind=outcome.error_kind,
                error=outcome.message,
                exc_info=True,
            )
            return outcome

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "file_processed",
            path=handle.path,
            object_key=key,
            size_bytes=handle.size_bytes,
            stored_bytes=len(normalized.content),
            duration_ms=duration_ms,
        )
        return FileOutcome.processed(handle, key, duration_ms=duration_ms)
