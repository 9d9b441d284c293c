"""
S3 sink writer.

Writes are not retried here. When a write fails, any multipart upload left
behind for the key is aborted before the original error is raised; failures
during that cleanup are logged only.
"""

import io
from typing import Iterator, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from sftp_ingest.shared.errors import SinkError
from sftp_ingest.shared.observability import get_logger

logger = get_logger(__name__)

DEFAULT_MULTIPART_THRESHOLD = 8 * 1024 * 1024


class S3Sink:
    """Object sink for a single bucket"""

    def __init__(
        self,
        bucket: str,
        client=None,
        region: Optional[str] = None,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
    ):
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)
        self.multipart_threshold = multipart_threshold
        self.transfer_config = TransferConfig(multipart_threshold=multipart_threshold)

    def write(self, key: str, content: bytes, size_hint: Optional[int] = None) -> None:
        """
        Write one object.

        Args:
            key: Object key
            content: Object body
            size_hint: Expected size, used to choose single-part vs multipart

        Raises:
            SinkError: If the write fails (after best-effort cleanup)
        """
        size = size_hint if size_hint is not None else len(content)
        try:
            if size < self.multipart_threshold:
                self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=content,
                    ContentLength=len(content),
                )
            else:
                self.client.upload_fileobj(
                    io.BytesIO(content), self.bucket, key, Config=self.transfer_config
                )
        except (BotoCoreError, ClientError, S3UploadFailedError) as e:
            self._abort_multipart_uploads(key)
            raise SinkError(f"Failed to upload file {key}: {e}", path=key) from e

        logger.debug("object_written", bucket=self.bucket, key=key, size=len(content))

    def _abort_multipart_uploads(self, key: str) -> None:
        try:
            response = self.client.list_multipart_uploads(Bucket=self.bucket, Prefix=key)
            for upload in response.get("Uploads", []):
                if upload.get("Key") != key:
                    continue
                self.client.abort_multipart_upload(
                    Bucket=self.bucket, Key=key, UploadId=upload["UploadId"]
                )
                logger.info(
                    "multipart_upload_aborted",
                    bucket=self.bucket,
                    key=key,
                    upload_id=upload["UploadId"],
                )
        except Exception as e:
            logger.error(
                "multipart_abort_failed", bucket=self.bucket, key=key, error=str(e)
            )

    def list_keys(self, prefix: str = "") -> Iterator[str]:
        """Yield every object key in the bucket under prefix"""
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    if item.get("Key"):
                        yield item["Key"]
        except (BotoCoreError, ClientError) as e:
            raise SinkError(f"Failed to list objects in {self.bucket}: {e}") from e
