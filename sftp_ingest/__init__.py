"""
sftp-ingest: replicate files from an SFTP endpoint into S3, once per
(path, mtime).
"""

__version__ = "0.1.0"
