"""
External collaborators: credential source, SFTP transport and S3 sink.
"""

from .base import (
    CredentialProvider,
    ObjectSink,
    RemoteFileHandle,
    RemoteTransport,
    SftpCredentials,
)

__all__ = [
    "CredentialProvider",
    "ObjectSink",
    "RemoteFileHandle",
    "RemoteTransport",
    "SftpCredentials",
]
