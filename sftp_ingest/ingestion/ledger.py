"""
Dedup ledger: records and queries "already ingested" facts.

All strategies share one contract (prepare / classify / is_duplicate / commit)
so the orchestrator never knows which one it is driving:

- ExactLedger: one DedupRecord per (path, mtime), kept for the retention
  window in DynamoDB or Redis. Lookup and commit failures are logged and
  swallowed; a failed lookup means "not a duplicate".
- WatermarkLedger: the greatest timestamp token already present in the sink.
  Recomputed from sink state on every run, so it has nothing to commit.
- NullLedger: no dedup at all; duplicates may recur.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Pattern, Protocol, Union

import boto3
import redis
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from sftp_ingest.connectors.base import ObjectSink, RemoteFileHandle
from sftp_ingest.shared.config import DEFAULT_RETENTION_DAYS, DEFAULT_TIMESTAMP_PATTERN
from sftp_ingest.shared.errors import LedgerError
from sftp_ingest.shared.observability import get_logger
from sftp_ingest.shared.observability.metrics import ingest_ledger_errors_total

from .keys import compile_token_pattern, extract_timestamp, key_prefix

logger = get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class DedupVerdict(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class DedupRecord:
    path: str
    mtime: int
    processed_at: int
    expires_at: int

    def to_item(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "mtime": self.mtime,
            "processedAt": self.processed_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "DedupRecord":
        return cls(
            path=item["path"],
            mtime=int(item["mtime"]),
            processed_at=int(item.get("processedAt", 0)),
            expires_at=int(item.get("expiresAt", 0)),
        )


class DedupLedger(Protocol):
    def prepare(self) -> None:
        ...

    def classify(self, handle: RemoteFileHandle) -> DedupVerdict:
        ...

    def is_duplicate(self, handle: RemoteFileHandle) -> bool:
        ...

    def commit(self, handle: RemoteFileHandle) -> None:
        ...


class LedgerStore(Protocol):
    def get(self, path: str, mtime: int) -> Optional[DedupRecord]:
        ...

    def put(self, record: DedupRecord) -> None:
        ...


# -------- Stores --------------------------------------------------------------


class DynamoLedgerStore:
    """DynamoDB table keyed by (path, mtime) with expiresAt as TTL attribute"""

    def __init__(self, table: str, client=None, region: Optional[str] = None):
        self.table = table
        self.client = client or boto3.client("dynamodb", region_name=region)
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def _marshall(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in values.items()}

    def get(self, path: str, mtime: int) -> Optional[DedupRecord]:
        try:
            response = self.client.get_item(
                TableName=self.table,
                Key=self._marshall({"path": path, "mtime": mtime}),
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as e:
            raise LedgerError(f"Ledger lookup failed for {path}: {e}", path=path) from e

        item = response.get("Item")
        if not item:
            return None
        return DedupRecord.from_item(
            {k: self._deserializer.deserialize(v) for k, v in item.items()}
        )

    def put(self, record: DedupRecord) -> None:
        try:
            self.client.put_item(TableName=self.table, Item=self._marshall(record.to_item()))
        except (BotoCoreError, ClientError) as e:
            raise LedgerError(
                f"Ledger commit failed for {record.path}: {e}", path=record.path
            ) from e


class RedisLedgerStore:
    """Redis keys <ns>:ledger:<path>:<mtime> holding the JSON record, expired by TTL"""

    def __init__(self, client: redis.Redis, namespace: str = "ingest"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, uri: str, namespace: str = "ingest") -> "RedisLedgerStore":
        return cls(redis.Redis.from_url(uri, decode_responses=True), namespace=namespace)

    def _key(self, path: str, mtime: int) -> str:
        return f"{self.namespace}:ledger:{path}:{mtime}"

    def get(self, path: str, mtime: int) -> Optional[DedupRecord]:
        try:
            raw = self.client.get(self._key(path, mtime))
        except redis.RedisError as e:
            raise LedgerError(f"Ledger lookup failed for {path}: {e}", path=path) from e
        if raw is None:
            return None
        return DedupRecord.from_item(json.loads(raw))

    def put(self, record: DedupRecord) -> None:
        ttl = max(1, record.expires_at - record.processed_at)
        try:
            self.client.set(
                self._key(record.path, record.mtime),
                json.dumps(record.to_item()),
                ex=ttl,
            )
        except redis.RedisError as e:
            raise LedgerError(
                f"Ledger commit failed for {record.path}: {e}", path=record.path
            ) from e


# -------- Strategies ----------------------------------------------------------


class ExactLedger:
    """Point lookups per (path, mtime); fails open"""

    def __init__(
        self,
        store: LedgerStore,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.retention_seconds = retention_days * SECONDS_PER_DAY
        self.clock = clock

    def prepare(self) -> None:
        return None

    def classify(self, handle: RemoteFileHandle) -> DedupVerdict:
        try:
            record = self.store.get(handle.path, handle.modified_at)
        except Exception as e:
            ingest_ledger_errors_total.labels(operation="lookup").inc()
            logger.warning(
                "ledger_lookup_failed",
                path=handle.path,
                mtime=handle.modified_at,
                error=str(e),
            )
            return DedupVerdict.NEW
        return DedupVerdict.DUPLICATE if record is not None else DedupVerdict.NEW

    def is_duplicate(self, handle: RemoteFileHandle) -> bool:
        return self.classify(handle) is DedupVerdict.DUPLICATE

    def commit(self, handle: RemoteFileHandle) -> None:
        now = int(self.clock())
        record = DedupRecord(
            path=handle.path,
            mtime=handle.modified_at,
            processed_at=now,
            expires_at=now + self.retention_seconds,
        )
        try:
            self.store.put(record)
        except Exception as e:
            # A lost commit only means the file is copied again next run
            ingest_ledger_errors_total.labels(operation="commit").inc()
            logger.warning(
                "ledger_commit_failed",
                path=handle.path,
                mtime=handle.modified_at,
                error=str(e),
            )


class WatermarkLedger:
    """Global high-water mark over timestamp tokens already in the sink"""

    def __init__(
        self,
        sink: ObjectSink,
        prefix: str = "",
        pattern: Union[str, Pattern[str]] = DEFAULT_TIMESTAMP_PATTERN,
    ):
        self.sink = sink
        self.prefix = prefix
        # Keys are written under exactly this form by derive_object_key
        self.scan_prefix = key_prefix(prefix)
        self.pattern = compile_token_pattern(pattern)
        self.watermark: Optional[str] = None

    def prepare(self) -> None:
        try:
            tokens = [
                token
                for token in (
                    extract_timestamp(key, self.pattern)
                    for key in self.sink.list_keys(self.scan_prefix)
                )
                if token is not None
            ]
        except Exception as e:
            self.watermark = None
            ingest_ledger_errors_total.labels(operation="prepare").inc()
            logger.warning("watermark_scan_failed", prefix=self.scan_prefix, error=str(e))
            return

        self.watermark = max(tokens, default=None)
        logger.info(
            "watermark_computed",
            prefix=self.scan_prefix,
            watermark=self.watermark,
            keys_matched=len(tokens),
        )

    def classify(self, handle: RemoteFileHandle) -> DedupVerdict:
        token = extract_timestamp(handle.name, self.pattern)
        if token is None:
            return DedupVerdict.UNRECOGNIZED
        # Tokens are fixed-width zero-padded digits: string order is numeric order
        if self.watermark is not None and token <= self.watermark:
            return DedupVerdict.DUPLICATE
        return DedupVerdict.NEW

    def is_duplicate(self, handle: RemoteFileHandle) -> bool:
        return self.classify(handle) is DedupVerdict.DUPLICATE

    def commit(self, handle: RemoteFileHandle) -> None:
        return None


class NullLedger:
    """No dedup; every file is new"""

    def prepare(self) -> None:
        logger.warning(
            "dedup_disabled",
            reason="no ledger store configured; files inside the window may be copied again",
        )

    def classify(self, handle: RemoteFileHandle) -> DedupVerdict:
        return DedupVerdict.NEW

    def is_duplicate(self, handle: RemoteFileHandle) -> bool:
        return False

    def commit(self, handle: RemoteFileHandle) -> None:
        return None
