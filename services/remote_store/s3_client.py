"""AWS S3 client for the remote journal tree.

boto3 is blocking, so every client call runs in a worker thread and the event
loop stays free while a request is in flight.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from shared.exceptions import ObjectNotFoundError, RemoteStoreError
from services.remote_store.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)

FOLDER_CONTENT_TYPE = "application/x-directory"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
ALREADY_EXISTS_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}


def error_code(error: ClientError) -> str:
    """Extract the S3 error code from a ClientError."""
    return str(error.response.get("Error", {}).get("Code", ""))


def folder_key(prefix: str) -> str:
    """Key of the zero-byte marker object representing a folder."""
    return prefix if prefix.endswith("/") else f"{prefix}/"


class S3Client:
    """Handles S3 operations for the journal folder tree."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0
    ):
        """
        Initialize S3 client.

        Args:
            bucket_name: S3 bucket name
            region: AWS region
            access_key_id: AWS access key ID (optional, uses default credentials if not provided)
            secret_access_key: AWS secret access key (optional)
            endpoint_url: Custom endpoint for S3-compatible stores (optional)
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url

        # Retries are handled by retry_with_exponential_backoff, not botocore
        client_kwargs: Dict[str, Any] = {
            "region_name": region,
            "config": Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        }
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url

        if access_key_id and secret_access_key:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                **client_kwargs
            )
        else:
            # Use default credentials (from environment or IAM role)
            self.s3_client = boto3.client('s3', **client_kwargs)

    def object_url(self, key: str) -> str:
        """URL at which an object of this bucket is addressed."""
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    @retry_with_exponential_backoff(max_retries=3, initial_delay=0.5)
    async def _call(self, operation: str, **kwargs) -> Any:
        """Invoke an idempotent S3 operation, retrying transient transport errors."""
        return await asyncio.to_thread(
            getattr(self.s3_client, operation), Bucket=self.bucket_name, **kwargs
        )

    @retry_with_exponential_backoff(max_retries=3, initial_delay=0.5)
    async def _collect_keys(self, prefix: str, delimiter: Optional[str]) -> List[str]:
        return await asyncio.to_thread(self._paginate_keys, prefix, delimiter)

    def _paginate_keys(self, prefix: str, delimiter: Optional[str]) -> List[str]:
        paginator = self.s3_client.get_paginator('list_objects_v2')
        params = {"Bucket": self.bucket_name, "Prefix": prefix}
        if delimiter:
            params["Delimiter"] = delimiter

        keys = []
        for page in paginator.paginate(**params):
            for item in page.get("Contents", []):
                keys.append(item["Key"])
        return keys

    async def object_exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Args:
            key: S3 object key

        Returns:
            True if the object exists

        Raises:
            RemoteStoreError: On any failure other than not-found
        """
        try:
            await self._call('head_object', Key=key)
            return True
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                return False
            logger.error(f"Failed to check S3 object {key}: {e}")
            raise RemoteStoreError(f"Failed to check {key}: {e}") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed to check {key}: {e}") from e

    async def folder_exists(self, prefix: str) -> bool:
        return await self.object_exists(folder_key(prefix))

    async def create_folder(self, prefix: str) -> bool:
        """
        Create a folder marker unless one already exists.

        Two writers racing to create the same folder both succeed: the loser's
        conditional put is rejected and reported as "already there".

        Args:
            prefix: Folder path

        Returns:
            True if the marker was created, False if it already existed
        """
        key = folder_key(prefix)
        try:
            await self._call(
                'put_object',
                Key=key,
                Body=b"",
                ContentType=FOLDER_CONTENT_TYPE,
                IfNoneMatch="*"
            )
            logger.info(f"Created S3 folder {key}")
            return True
        except ClientError as e:
            if error_code(e) in ALREADY_EXISTS_CODES:
                logger.debug(f"S3 folder {key} already exists")
                return False
            logger.error(f"Failed to create S3 folder {key}: {e}")
            raise RemoteStoreError(f"Failed to create folder {key}: {e}") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed to create folder {key}: {e}") from e

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream"
    ) -> str:
        """
        Upload an object, overwriting any object with the same key.

        Args:
            key: S3 object key (path)
            body: Object bytes
            content_type: MIME type of the object

        Returns:
            URL of the uploaded object
        """
        try:
            await self._call('put_object', Key=key, Body=body, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload object to S3: {e}", exc_info=True)
            raise RemoteStoreError(f"Failed to upload {key}: {e}") from e

        url = self.object_url(key)
        logger.info(f"Successfully uploaded object to S3: {url}")
        return url

    async def get_object(self, key: str) -> bytes:
        """
        Read an object fully into memory.

        Raises:
            ObjectNotFoundError: If the key does not exist
            RemoteStoreError: On any other failure
        """
        try:
            response = await self._call('get_object', Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            raise RemoteStoreError(f"Failed to read {key}: {e}") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed to read {key}: {e}") from e

    async def open_object(self, key: str) -> Dict[str, Any]:
        """
        Open an object for streaming.

        Returns:
            Dictionary with ``body`` (a botocore StreamingBody),
            ``content_type`` and ``content_length``
        """
        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object, Bucket=self.bucket_name, Key=key
            )
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            raise RemoteStoreError(f"Failed to open {key}: {e}") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed to open {key}: {e}") from e

        return {
            "body": response["Body"],
            "content_type": response.get("ContentType"),
            "content_length": response.get("ContentLength"),
        }

    async def list_keys(self, prefix: str, recursive: bool = False) -> List[str]:
        """
        List object keys under a prefix.

        Args:
            prefix: Key prefix
            recursive: If False only direct children of the folder are listed

        Returns:
            List of keys, folder markers excluded
        """
        try:
            keys = await self._collect_keys(prefix, None if recursive else "/")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list S3 prefix {prefix}: {e}")
            raise RemoteStoreError(f"Failed to list {prefix}: {e}") from e
        return [key for key in keys if not key.endswith("/")]

    async def move_object(self, key: str, destination_key: str) -> None:
        """
        Move an object by copy-then-delete. Not retried.

        Raises:
            ObjectNotFoundError: If the source key does not exist
            RemoteStoreError: On any other failure
        """
        try:
            await asyncio.to_thread(
                self.s3_client.copy_object,
                Bucket=self.bucket_name,
                Key=destination_key,
                CopySource={"Bucket": self.bucket_name, "Key": key}
            )
            await asyncio.to_thread(
                self.s3_client.delete_object, Bucket=self.bucket_name, Key=key
            )
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            logger.error(f"Failed to move S3 object {key}: {e}", exc_info=True)
            raise RemoteStoreError(f"Failed to move {key}: {e}") from e
        except BotoCoreError as e:
            raise RemoteStoreError(f"Failed to move {key}: {e}") from e

        logger.info(f"Moved S3 object {key} to {destination_key}")

