import gzip
import io
import zipfile

import pytest

from sftp_ingest.ingestion.normalize import (
    NormalizedFile,
    has_gzip_magic_header,
    normalize,
    remove_suffix,
)
from sftp_ingest.shared.errors import CompressionError, ErrorKind


def _zip_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries:
            if name.endswith("/"):
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, content)
    return buffer.getvalue()


class TestNormalize:
    def test_uncompressed_name_passes_through(self):
        raw = b"a,b,c\n1,2,3\n"
        result = normalize(raw, "UsageAcct202401010000.csv")
        assert result == NormalizedFile(content=raw, name="UsageAcct202401010000.csv")

    def test_uncompressed_name_is_not_inspected(self):
        # gzip bytes under a plain name are stored as-is
        raw = gzip.compress(b"payload")
        assert normalize(raw, "data.bin").content == raw

    @pytest.mark.parametrize(
        "content",
        [b"", b"x", b"line one\nline two\n", bytes(range(256)) * 64],
    )
    def test_gzip_round_trip(self, content):
        result = normalize(gzip.compress(content), "f.gz")
        assert result.content == content
        assert result.name == "f"

    def test_gzip_strips_only_final_suffix(self):
        result = normalize(gzip.compress(b"x"), "report.csv.gz")
        assert result.name == "report.csv"

    def test_zip_mislabeled_as_gzip_uses_first_file_entry(self):
        raw = _zip_bytes([("nested/", b""), ("first.csv", b"one"), ("second.csv", b"two")])
        result = normalize(raw, "legacy.csv.gz")
        assert result.content == b"one"
        assert result.name == "legacy.csv"

    def test_zip_without_file_entries_raises(self):
        raw = _zip_bytes([("only-a-dir/", b"")])
        with pytest.raises(CompressionError) as exc_info:
            normalize(raw, "empty.gz")
        assert "empty.gz" in str(exc_info.value)
        assert exc_info.value.kind == ErrorKind.COMPRESSION

    def test_encrypted_zip_entry_raises_compression_error(self):
        info = zipfile.ZipInfo("a.csv")
        info.flag_bits |= 0x1  # entry marked as password-protected
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr(info, b"secret rows")

        with pytest.raises(CompressionError) as exc_info:
            normalize(buffer.getvalue(), "a.csv.gz")
        assert exc_info.value.kind == ErrorKind.COMPRESSION
        assert "ZIP decompression failed for a.csv.gz" in str(exc_info.value)

    def test_plain_bytes_with_gz_name_raise(self):
        with pytest.raises(CompressionError) as exc_info:
            normalize(b"definitely not compressed", "f.gz")
        assert exc_info.value.path == "f.gz"

    def test_corrupt_gzip_stream_raises(self):
        corrupt = gzip.compress(b"hello world" * 100)[:20]
        with pytest.raises(CompressionError) as exc_info:
            normalize(corrupt, "broken.gz")
        assert "Gzip decompression failed for broken.gz" in str(exc_info.value)


def test_gzip_magic_header_detection():
    assert has_gzip_magic_header(b"\x1f\x8b\x08")
    assert not has_gzip_magic_header(b"\x1f")
    assert not has_gzip_magic_header(b"PK\x03\x04")


def test_remove_suffix():
    assert remove_suffix("a.csv.gz") == "a.csv"
    assert remove_suffix("a.csv") == "a.csv"
    assert remove_suffix("a.zip", ".zip") == "a"
