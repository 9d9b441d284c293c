"""
Decompression normalizer.

Files named *.gz are decompressed before they reach the sink. Some upstream
producers write ZIP archives under a .gz name, so a .gz file without the gzip
magic header is opened as a ZIP container and its first file entry is used.
"""

import gzip
import io
import zipfile
import zlib
from dataclasses import dataclass

from sftp_ingest.shared.errors import CompressionError

COMPRESSED_SUFFIX = ".gz"
GZIP_MAGIC_HEADER = b"\x1f\x8b"


@dataclass(frozen=True)
class NormalizedFile:
    content: bytes
    name: str


def has_gzip_magic_header(buffer: bytes) -> bool:
    return len(buffer) >= 2 and buffer[:2] == GZIP_MAGIC_HEADER


def remove_suffix(filename: str, suffix: str = COMPRESSED_SUFFIX) -> str:
    return filename[: -len(suffix)] if suffix and filename.endswith(suffix) else filename


def _first_zip_file_entry(buffer: bytes, filename: str) -> bytes:
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            for info in archive.infolist():
                if not info.is_dir():
                    return archive.read(info)
    except (
        zipfile.BadZipFile,
        zlib.error,
        EOFError,
        OSError,
        NotImplementedError,
        RuntimeError,
        ValueError,
    ) as e:
        raise CompressionError(
            f"ZIP decompression failed for {filename}: {e}", path=filename
        ) from e
    raise CompressionError(f"No file entries found in ZIP for {filename}", path=filename)


def normalize(raw: bytes, filename: str) -> NormalizedFile:
    """
    Canonicalize fetched bytes.

    Args:
        raw: Bytes as fetched from the remote endpoint
        filename: Remote file name (basename)

    Returns:
        NormalizedFile with decompressed content and the suffix-stripped name,
        or the input unchanged when the name carries no compressed suffix

    Raises:
        CompressionError: If the content cannot be decompressed
    """
    if not filename.endswith(COMPRESSED_SUFFIX):
        return NormalizedFile(content=raw, name=filename)

    target_name = remove_suffix(filename)

    if has_gzip_magic_header(raw):
        try:
            content = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            raise CompressionError(
                f"Gzip decompression failed for {filename}: {e}", path=filename
            ) from e
        return NormalizedFile(content=content, name=target_name)

    # Legacy producers: ZIP archive mislabeled as .gz
    return NormalizedFile(content=_first_zip_file_entry(raw, filename), name=target_name)
