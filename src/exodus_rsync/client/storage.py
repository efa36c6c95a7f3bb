"""Blob storage client for exodus-gw.

exodus-gw exposes an S3-compatible upload endpoint at `<gwurl>/upload`,
with one bucket per environment. Blobs are keyed by the SHA-256 of their
content, so a blob that exists never needs to be written again.

This module provides:
- BlobStore: existence checks and uploads for one environment
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, BinaryIO

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from exodus_rsync.client.api import DEFAULT_TIMEOUT, load_client_context
from exodus_rsync.client.types import CancelScope, TransportError, UploadError

if TYPE_CHECKING:
    from exodus_rsync.core.config import Environment

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NotFound", "NoSuchKey"})


class _CancellableReader:
    """File wrapper checking the cancel scope before every read."""

    def __init__(self, file: BinaryIO, scope: CancelScope) -> None:
        self._file = file
        self._scope = scope

    def read(self, size: int = -1) -> bytes:
        self._scope.check()
        return self._file.read(size)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._file, name)


class BlobStore:
    """Content-addressed blob store of one exodus-gw environment."""

    def __init__(
        self,
        env: Environment,
        scope: CancelScope | None = None,
        client: Any = None,
    ) -> None:
        """Initialize the blob store.

        Args:
            env: Environment whose bucket is used.
            scope: Cancellation scope observed by every request.
            client: Preconfigured boto3 S3 client; built from env if None.

        Raises:
            ClientInitError: If the client cert/key can't be loaded.
        """
        self._env = env
        self._bucket = env.gwenv
        self._endpoint_url = env.gw_url + "/upload"
        self._scope = scope or CancelScope()

        if client is None:
            # Fail now rather than on the first request
            load_client_context(env.gw_cert, env.gw_key)
            client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                region_name="us-east-1",
                config=Config(
                    signature_version=UNSIGNED,
                    s3={"addressing_style": "path"},
                    client_cert=(env.gw_cert, env.gw_key),
                    connect_timeout=DEFAULT_TIMEOUT,
                    read_timeout=DEFAULT_TIMEOUT,
                    retries={"total_max_attempts": 1},
                ),
            )
        self._client: Any = client
        self._transfer_config = TransferConfig(use_threads=False)

    @property
    def location(self) -> str:
        """Return the bucket location."""
        return f"{self._endpoint_url}/{self._bucket}"

    def exists(self, key: str, scope: CancelScope | None = None) -> bool:
        """Check if a blob exists.

        Args:
            key: Blob object key.
            scope: Scope to observe instead of the store's own.

        Returns:
            True if the blob exists, False if it doesn't.

        Raises:
            TransportError: On any failure other than "not found".
        """
        (scope or self._scope).check()

        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                logger.debug(f"Blob {key} is not present")
                return False
            logger.warning(f"S3 HEAD unexpected error for {key}: {e}")
            raise TransportError(f"checking for presence of {key}: {e}") from e
        except BotoCoreError as e:
            logger.warning(f"S3 HEAD unexpected error for {key}: {e}")
            raise TransportError(f"checking for presence of {key}: {e}") from e

        logger.debug(f"Blob {key} is present")
        return True

    def upload(
        self, key: str, src_path: str, scope: CancelScope | None = None
    ) -> str:
        """Upload a local file as a blob.

        Args:
            key: Blob object key.
            src_path: Local file to read.
            scope: Scope to observe instead of the store's own; every read
                of the file checks it.

        Returns:
            Location of the uploaded blob.

        Raises:
            OSError: If the local file can't be opened.
            UploadError: If the remote write fails.
        """
        scope = scope or self._scope
        scope.check()

        logger.debug(f"Uploading {src_path} as {key}")
        with open(src_path, "rb") as f:
            try:
                self._client.upload_fileobj(
                    _CancellableReader(f, scope),
                    self._bucket,
                    key,
                    Config=self._transfer_config,
                )
            except (BotoCoreError, ClientError, S3UploadFailedError) as e:
                raise UploadError(f"upload (s3) {src_path}: {e}") from e

        location = f"{self.location}/{key}"
        logger.debug(f"Uploaded blob {location}")
        return location
