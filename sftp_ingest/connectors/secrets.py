"""
Credential provider backed by AWS Secrets Manager.

Two secret shapes are accepted:

- current: {"host", "port", "username", "auth": {...}, "knownHosts"}
- legacy:  {"SFTP_HOST", "SFTP_USER", "SFTP_PASSPHRASE", "SFTP_DIR"}

The legacy shape maps to password auth on port 22 and carries its own remote
root directory.
"""

import json
from typing import Any, Dict, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from sftp_ingest.connectors.base import SftpCredentials
from sftp_ingest.shared.errors import ConfigurationError
from sftp_ingest.shared.observability import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS = ("host", "username", "auth")
LEGACY_FIELDS = ("SFTP_HOST", "SFTP_USER", "SFTP_PASSPHRASE", "SFTP_DIR")


def _is_legacy(doc: Dict[str, Any]) -> bool:
    return "SFTP_HOST" in doc and "host" not in doc


def _from_legacy(doc: Dict[str, Any]) -> Dict[str, Any]:
    bad = [k for k in LEGACY_FIELDS if not isinstance(doc.get(k), str)]
    if bad:
        raise ConfigurationError(
            f"Invalid secret structure: missing or non-string fields {', '.join(bad)}"
        )
    return {
        "host": doc["SFTP_HOST"],
        "port": 22,
        "username": doc["SFTP_USER"],
        "auth": {"type": "password", "fallbackPassword": doc["SFTP_PASSPHRASE"]},
        "remote_dir": doc["SFTP_DIR"],
    }


def parse_credentials(raw: Union[str, Dict[str, Any]]) -> SftpCredentials:
    """
    Parse and validate a credentials document.

    Args:
        raw: JSON string or already-decoded mapping

    Returns:
        Validated SftpCredentials (port defaults to 22)

    Raises:
        ConfigurationError: If the document is malformed or incomplete
    """
    if isinstance(raw, str):
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Secret is not valid JSON: {e}") from e
    else:
        doc = raw

    if not isinstance(doc, dict):
        raise ConfigurationError("Invalid secret format: expected a JSON object")

    if _is_legacy(doc):
        doc = _from_legacy(doc)

    missing = [f for f in REQUIRED_FIELDS if not doc.get(f)]
    if missing:
        raise ConfigurationError(
            f"Invalid secret format: missing required fields: {', '.join(missing)}"
        )

    try:
        return SftpCredentials.model_validate(doc)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid secret format: {e}") from e


class SecretsManagerCredentialProvider:
    """Resolves SFTP credentials once per call from Secrets Manager"""

    def __init__(
        self,
        secret_name: str,
        region: Optional[str] = None,
        client=None,
    ):
        if not secret_name:
            raise ConfigurationError("SECRET_NAME environment variable is required")
        self.secret_name = secret_name
        self.client = client or boto3.client("secretsmanager", region_name=region)

    def get_credentials(self) -> SftpCredentials:
        try:
            response = self.client.get_secret_value(
                SecretId=self.secret_name, VersionStage="AWSCURRENT"
            )
        except (BotoCoreError, ClientError) as e:
            raise ConfigurationError(
                f"Failed to retrieve secret {self.secret_name}: {e}"
            ) from e

        secret_string = response.get("SecretString")
        if not secret_string:
            raise ConfigurationError("Secret value is empty")

        credentials = parse_credentials(secret_string)
        logger.info(
            "credentials_resolved",
            secret_name=self.secret_name,
            host=credentials.host,
            port=credentials.port,
            auth_type=credentials.auth.type.value,
            host_key_pinned=bool(credentials.known_hosts),
        )
        return credentials
