# Test fixtures: in-memory collaborators for the ingestion engine
# Transport, sink and ledger store fakes stand in for SFTP, S3 and DynamoDB/Redis

import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sftp_ingest.connectors.base import RemoteFileHandle, SftpCredentials  # noqa: E402
from sftp_ingest.ingestion.ledger import DedupRecord, ExactLedger  # noqa: E402
from sftp_ingest.ingestion.orchestrator import IngestionOrchestrator  # noqa: E402
from sftp_ingest.shared.errors import SinkError, TransportError  # noqa: E402

NOW = 1_700_000_000
ROOT = "/data/inbound"

SETTINGS_ENV_VARS = (
    "ENV",
    "CONFIG_PATH",
    "SECRET_NAME",
    "SFTP_SECRET_NAME",
    "AWS_REGION",
    "REMOTE_DIR",
    "TARGET_BUCKET",
    "S3_BUCKET",
    "TARGET_PREFIX",
    "DEDUP_STRATEGY",
    "LOOKBACK_MINUTES",
    "DDB_TABLE",
    "REDIS_URI",
    "MAX_WORKERS",
    "RUN_TIMEOUT_SECONDS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    """Keep deployment env vars from leaking into config tests"""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


class FakeCredentialProvider:
    def __init__(self, credentials: Optional[SftpCredentials] = None, error=None):
        self.credentials = credentials
        self.error = error
        self.calls = 0

    def get_credentials(self) -> SftpCredentials:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.credentials


class FakeTransport:
    """Remote tree held in memory: path -> (content, mtime)"""

    def __init__(self, files: Optional[Dict[str, Tuple[bytes, int]]] = None):
        self.files = dict(files or {})
        self.fail_fetch: Dict[str, Exception] = {}
        self.connect_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.fetched: List[str] = []
        self.connected = 0
        self.closed = 0
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def connect(self, credentials):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected += 1
        return {"host": credentials.host}

    def list_recursive(self, session, root_dir):
        if self.list_error is not None:
            raise self.list_error
        return [
            RemoteFileHandle(path=path, size_bytes=len(content), modified_at=mtime)
            for path, (content, mtime) in sorted(self.files.items())
            if path.startswith(root_dir.rstrip("/") + "/")
        ]

    def fetch(self, session, path):
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self.fetched.append(path)
            if path in self.fail_fetch:
                raise self.fail_fetch[path]
            return self.files[path][0]
        finally:
            with self._lock:
                self._active -= 1

    def close(self, session):
        self.closed += 1


class FakeSink:
    def __init__(self, keys: Optional[List[str]] = None):
        self.objects: Dict[str, bytes] = {key: b"" for key in keys or []}
        self.fail_keys: Dict[str, Exception] = {}
        self.writes: List[str] = []
        self.list_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def write(self, key, content, size_hint=None):
        if key in self.fail_keys:
            raise self.fail_keys[key]
        with self._lock:
            self.writes.append(key)
            self.objects[key] = content

    def list_keys(self, prefix=""):
        if self.list_error is not None:
            raise self.list_error
        return [key for key in sorted(self.objects) if key.startswith(prefix)]


class InMemoryLedgerStore:
    def __init__(self):
        self.records: Dict[Tuple[str, int], DedupRecord] = {}
        self.get_error: Optional[Exception] = None
        self.put_error: Optional[Exception] = None
        self.lookups = 0

    def get(self, path, mtime):
        self.lookups += 1
        if self.get_error is not None:
            raise self.get_error
        return self.records.get((path, mtime))

    def put(self, record):
        if self.put_error is not None:
            raise self.put_error
        self.records[(record.path, record.mtime)] = record


@pytest.fixture
def credentials() -> SftpCredentials:
    return SftpCredentials.model_validate(
        {
            "host": "sftp.example.com",
            "username": "ingest",
            "auth": {"type": "password", "fallbackPassword": "s3cret"},
        }
    )


@pytest.fixture
def credential_provider(credentials):
    return FakeCredentialProvider(credentials)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def ledger_store():
    return InMemoryLedgerStore()


@pytest.fixture
def exact_ledger(ledger_store):
    return ExactLedger(ledger_store, clock=lambda: NOW)


@pytest.fixture
def make_orchestrator(credential_provider, transport, sink, exact_ledger):
    """Factory building an orchestrator over the fakes, with overrides"""

    def _make(**overrides):
        kwargs = dict(
            credentials=credential_provider,
            transport=transport,
            sink=sink,
            ledger=exact_ledger,
            remote_dir=ROOT,
            prefix="landing",
            lookback_minutes=15,
            use_time_window=True,
            max_workers=4,
            clock=lambda: NOW,
        )
        kwargs.update(overrides)
        return IngestionOrchestrator(**kwargs)

    return _make


def transport_error(path: str) -> TransportError:
    return TransportError(f"Failed to download file {path}: connection reset", path=path)


def sink_error(key: str) -> SinkError:
    return SinkError(f"Failed to upload file {key}: AccessDenied", path=key)
