"""
Contracts for the external collaborators the ingestion engine consumes.

The engine never talks to paramiko or boto3 directly. It is handed objects
satisfying these protocols, so tests can substitute in-memory fakes.
"""

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Protocol

from pydantic import Field, validator

from sftp_ingest.shared.models import IngestBaseModel


@dataclass(frozen=True)
class RemoteFileHandle:
    """One regular file on the remote endpoint, as seen at listing time."""

    path: str
    size_bytes: int
    modified_at: int  # epoch seconds

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)


class AuthType(str, Enum):
    PRIVATE_KEY = "privateKey"
    PASSWORD = "password"


class SftpAuth(IngestBaseModel):
    type: AuthType
    private_key: Optional[str] = Field(default=None, alias="privateKey")
    passphrase: Optional[str] = None
    fallback_password: Optional[str] = Field(default=None, alias="fallbackPassword")


class SftpCredentials(IngestBaseModel):
    """Connection secret for the remote endpoint"""

    host: str
    port: int = 22
    username: str
    auth: SftpAuth
    known_hosts: Optional[str] = Field(default=None, alias="knownHosts")
    # Only set by legacy secrets that carry their own root directory
    remote_dir: Optional[str] = None

    @validator("host", "username")
    def _not_blank(cls, value: str):
        if not value or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @validator("port", pre=True)
    def _default_port(cls, value):
        return value or 22

    @validator("auth")
    def _auth_material_present(cls, value: SftpAuth):
        if value.type == AuthType.PRIVATE_KEY and not value.private_key:
            raise ValueError("privateKey auth requires a privateKey")
        if value.type == AuthType.PASSWORD and not value.fallback_password:
            raise ValueError("password auth requires a fallbackPassword")
        return value


class CredentialProvider(Protocol):
    def get_credentials(self) -> SftpCredentials:
        ...


class RemoteTransport(Protocol):
    """Remote lister/fetcher. Sessions are opaque to the engine."""

    def connect(self, credentials: SftpCredentials) -> Any:
        ...

    def list_recursive(self, session: Any, root_dir: str) -> List[RemoteFileHandle]:
        ...

    def fetch(self, session: Any, path: str) -> bytes:
        ...

    def close(self, session: Any) -> None:
        ...


class ObjectSink(Protocol):
    """Durable object store."""

    def write(self, key: str, content: bytes, size_hint: Optional[int] = None) -> None:
        ...

    def list_keys(self, prefix: str = "") -> Iterable[str]:
        ...
