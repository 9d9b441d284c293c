# Prometheus metrics for SFTP ingestion runs

from prometheus_client import REGISTRY, Counter, Histogram, write_to_textfile

# ===== Per-file outcomes =====
ingest_files_total = Counter(
    "ingest_files_total",
    "Remote files seen by ingestion runs, by outcome",
    ["outcome"],  # processed, failed, duplicate, unrecognized, outside_window, ...
)

# ===== Dedup ledger =====
ingest_ledger_errors_total = Counter(
    "ingest_ledger_errors_total",
    "Dedup ledger failures tolerated by fail-open handling",
    ["operation"],  # lookup, commit, prepare
)

# ===== Runs =====
ingest_runs_total = Counter(
    "ingest_runs_total",
    "Ingestion runs, by terminal status",
    ["status"],  # success, fatal
)

ingest_run_duration_seconds = Histogram(
    "ingest_run_duration_seconds",
    "Wall-clock duration of an ingestion run",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 900.0),
)


def write_metrics(path: str) -> None:
    """Write all registered metrics to path in Prometheus text format (atomic replace)"""
    write_to_textfile(path, REGISTRY)
