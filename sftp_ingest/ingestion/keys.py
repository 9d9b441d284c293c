"""
Filtering and key-derivation helpers.
"""

import posixpath
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Union

from sftp_ingest.connectors.base import RemoteFileHandle


@dataclass(frozen=True)
class IngestionWindow:
    start: int
    now: int

    @classmethod
    def ending_at(cls, now: int, lookback_minutes: int) -> "IngestionWindow":
        return cls(start=now - lookback_minutes * 60, now=now)

    def contains(self, handle: RemoteFileHandle) -> bool:
        return handle.modified_at >= self.start


def relative_path(path: str, root_dir: str) -> str:
    """Path below root_dir, without leading slashes"""
    root = root_dir.rstrip("/")
    if root and (path == root or path.startswith(root + "/")):
        path = path[len(root):]
    return path.lstrip("/")


def key_prefix(prefix: str) -> str:
    """Prefix as it appears in object keys: one trailing slash, empty when unset"""
    prefix = prefix.strip("/")
    return f"{prefix}/" if prefix else ""


def derive_object_key(
    path: str,
    root_dir: str,
    prefix: str = "",
    name: Optional[str] = None,
) -> str:
    """
    Object key for a remote path.

    The root directory is stripped and the destination prefix prepended, so the
    relative directory layout is preserved. When name is given it replaces the
    basename (e.g. after decompression renamed the file).

    Args:
        path: Absolute remote path
        root_dir: Configured remote root
        prefix: Destination key prefix
        name: Optional replacement basename

    Returns:
        Key that never starts with "/"
    """
    rel = relative_path(path, root_dir)
    if name is not None:
        rel = posixpath.join(posixpath.dirname(rel), name)

    return (key_prefix(prefix) + rel).lstrip("/")


def compile_token_pattern(pattern: Union[str, Pattern[str]]) -> Pattern[str]:
    return re.compile(pattern) if isinstance(pattern, str) else pattern


def extract_timestamp(filename: str, pattern: Pattern[str]) -> Optional[str]:
    """Fixed-width timestamp token embedded in filename, or None"""
    match = pattern.search(filename)
    return match.group(1) if match else None
