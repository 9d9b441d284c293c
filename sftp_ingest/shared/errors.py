"""
Error taxonomy for the ingestion engine.

Every failure the engine raises carries an ErrorKind so callers can decide on
propagation without matching on class names:

- configuration: missing/invalid secret or environment (fatal)
- transport: connect/list/fetch failures (fatal before listing, per-file after)
- compression: malformed compressed content (per-file)
- sink: object store write failure (per-file)
- ledger: dedup lookup/commit failure (never fatal)
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    COMPRESSION = "compression"
    SINK = "sink"
    LEDGER = "ledger"
    UNEXPECTED = "unexpected"


class IngestError(Exception):
    """Base error carrying a kind, a message and the offending path (if any)."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        if kind is not None:
            self.kind = kind

    def __str__(self) -> str:
        return self.message


class ConfigurationError(IngestError):
    kind = ErrorKind.CONFIGURATION


class TransportError(IngestError):
    kind = ErrorKind.TRANSPORT


class CompressionError(IngestError):
    kind = ErrorKind.COMPRESSION


class SinkError(IngestError):
    kind = ErrorKind.SINK


class LedgerError(IngestError):
    kind = ErrorKind.LEDGER


def error_kind(exc: BaseException) -> ErrorKind:
    """Classify any exception, falling back to UNEXPECTED for foreign errors."""
    if isinstance(exc, IngestError):
        return exc.kind
    return ErrorKind.UNEXPECTED
