"""
Ingestion engine: dedup ledger, decompression, key derivation and the run
orchestrator.
"""

from .ledger import (
    DedupLedger,
    DedupRecord,
    DedupVerdict,
    ExactLedger,
    NullLedger,
    WatermarkLedger,
)
from .normalize import NormalizedFile, normalize
from .orchestrator import IngestionOrchestrator, RunPhase
from .run_stats import FileOutcome, RunSummary

__all__ = [
    "DedupLedger",
    "DedupRecord",
    "DedupVerdict",
    "ExactLedger",
    "FileOutcome",
    "IngestionOrchestrator",
    "NormalizedFile",
    "NullLedger",
    "RunPhase",
    "RunSummary",
    "WatermarkLedger",
    "normalize",
]
