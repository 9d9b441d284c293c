"""
SFTP remote lister/fetcher built on paramiko.

A session wraps one SSH connection and one SFTP channel. The SFTP channel is
not safe for concurrent requests, so every call against a session holds the
session lock.
"""

import io
import stat
import threading
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

import paramiko

from sftp_ingest.connectors.base import AuthType, RemoteFileHandle, SftpCredentials
from sftp_ingest.shared.errors import ConfigurationError, TransportError
from sftp_ingest.shared.observability import get_logger

logger = get_logger(__name__)

# Tried in order when parsing a PEM/OpenSSH private key from the secret
PRIVATE_KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


@dataclass
class SftpSession:
    client: paramiko.SSHClient
    sftp: paramiko.SFTPClient
    host: str
    lock: threading.Lock = field(default_factory=threading.Lock)


def load_private_key(pem: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """
    Parse a private key from its text form.

    Raises:
        ConfigurationError: If no supported key type can parse it
    """
    errors = []
    for key_cls in PRIVATE_KEY_TYPES:
        try:
            return key_cls.from_private_key(io.StringIO(pem), password=passphrase)
        except (paramiko.SSHException, ValueError) as e:
            errors.append(f"{key_cls.__name__}: {e}")
    raise ConfigurationError(f"Unable to parse SFTP private key ({'; '.join(errors)})")


def load_known_hosts(client: paramiko.SSHClient, known_hosts: str) -> int:
    """
    Add known_hosts lines to the client's host keys.

    Returns:
        Number of host keys added
    """
    host_keys = client.get_host_keys()
    added = 0
    for line in known_hosts.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            entry = paramiko.hostkeys.HostKeyEntry.from_line(line)
        except paramiko.SSHException as e:
            raise ConfigurationError(f"Invalid knownHosts entry: {e}") from e
        if entry is None or entry.key is None:
            logger.warning("known_hosts_line_ignored", line=line[:40])
            continue
        for hostname in entry.hostnames:
            host_keys.add(hostname, entry.key.get_name(), entry.key)
            added += 1
    return added


class SftpTransport:
    """Remote transport over SFTP"""

    def __init__(self, connect_timeout: float = 30.0, client_factory=paramiko.SSHClient):
        self.connect_timeout = connect_timeout
        self.client_factory = client_factory

    def _configure_host_keys(
        self, client: paramiko.SSHClient, credentials: SftpCredentials
    ) -> None:
        if credentials.known_hosts:
            added = load_known_hosts(client, credentials.known_hosts)
            if added == 0:
                raise ConfigurationError("knownHosts is set but contains no host keys")
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            logger.warning("host_key_verification_disabled", host=credentials.host)
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    def connect(self, credentials: SftpCredentials) -> SftpSession:
        client = self.client_factory()
        self._configure_host_keys(client, credentials)

        auth = credentials.auth
        connect_kwargs = {
            "hostname": credentials.host,
            "port": credentials.port,
            "username": credentials.username,
            "timeout": self.connect_timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if auth.type == AuthType.PRIVATE_KEY:
            connect_kwargs["pkey"] = load_private_key(auth.private_key, auth.passphrase)
        if auth.fallback_password:
            connect_kwargs["password"] = auth.fallback_password

        try:
            client.connect(**connect_kwargs)
            sftp = client.open_sftp()
            # Bounds every read so a stalled transfer surfaces as a TransportError
            sftp.get_channel().settimeout(self.connect_timeout)
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise TransportError(
                f"Failed to connect to SFTP {credentials.host}:{credentials.port}: {e}"
            ) from e

        logger.info("sftp_connected", host=credentials.host, port=credentials.port)
        return SftpSession(client=client, sftp=sftp, host=credentials.host)

    def _walk(self, sftp: paramiko.SFTPClient, directory: str) -> Iterator[RemoteFileHandle]:
        try:
            entries = sftp.listdir_attr(directory)
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(
                f"Failed to list files in {directory}: {e}", path=directory
            ) from e

        base = directory.rstrip("/")
        for attr in entries:
            full_path = f"{base}/{attr.filename}"
            mode = attr.st_mode or 0
            if stat.S_ISDIR(mode):
                yield from self._walk(sftp, full_path)
            elif stat.S_ISREG(mode):
                yield RemoteFileHandle(
                    path=full_path,
                    size_bytes=int(attr.st_size or 0),
                    modified_at=int(attr.st_mtime or 0),
                )
            else:
                logger.debug("remote_entry_skipped", path=full_path, mode=oct(mode))

    def list_recursive(self, session: SftpSession, root_dir: str) -> List[RemoteFileHandle]:
        root = root_dir.rstrip("/") or "/"
        with session.lock:
            return list(self._walk(session.sftp, root))

    def fetch(self, session: SftpSession, path: str) -> bytes:
        buffer = io.BytesIO()
        with session.lock:
            try:
                session.sftp.getfo(path, buffer)
            except (paramiko.SSHException, OSError) as e:
                raise TransportError(f"Failed to download file {path}: {e}", path=path) from e
        return buffer.getvalue()

    def close(self, session: SftpSession) -> None:
        try:
            session.sftp.close()
            session.client.close()
        except Exception as e:
            logger.warning("sftp_disconnect_failed", host=session.host, error=str(e))
        else:
            logger.info("sftp_disconnected", host=session.host)
