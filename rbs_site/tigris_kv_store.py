"""
Tigris/S3-compatible storage implementation of key-value storage.

Stores each key as one object in an S3-compatible object storage service,
so every server instance shares the same articles and lesson status.
Default object key: state/kv/<key>
"""
import os
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rbs_site.errors import StorageError
from rbs_site.kv_store import KVStore


class TigrisKVStore(KVStore):
    """Key-value store backed by Tigris/S3-compatible object storage."""

    def __init__(
        self,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        bucket_name: Optional[str] = None,
        region: Optional[str] = None,
        key_prefix: Optional[str] = None
    ):
        """
        Initialize Tigris storage.

        Args:
            access_key_id: AWS access key ID (defaults to AWS_ACCESS_KEY_ID env var)
            secret_access_key: AWS secret access key (defaults to AWS_SECRET_ACCESS_KEY env var)
            endpoint_url: S3 endpoint URL (defaults to AWS_ENDPOINT_URL_S3 or
                         https://fly.storage.tigris.dev)
            bucket_name: S3 bucket name (defaults to TIGRIS_BUCKET_NAME env var)
            region: AWS region (defaults to AWS_REGION or 'auto')
            key_prefix: Prefix for every object key (defaults to TIGRIS_KEY_PREFIX
                        or 'state/kv/')
        """
        # Get credentials from parameters or environment variables
        self.access_key_id = access_key_id or os.getenv('AWS_ACCESS_KEY_ID')
        self.secret_access_key = secret_access_key or os.getenv('AWS_SECRET_ACCESS_KEY')
        self.endpoint_url = (
            endpoint_url or
            os.getenv('AWS_ENDPOINT_URL_S3', 'https://fly.storage.tigris.dev')
        )
        self.bucket_name = bucket_name or os.getenv('TIGRIS_BUCKET_NAME')
        self.region = region or os.getenv('AWS_REGION', 'auto')
        self.key_prefix = key_prefix or os.getenv('TIGRIS_KEY_PREFIX', 'state/kv/')

        if not self.access_key_id or not self.secret_access_key:
            raise ValueError(
                "AWS credentials are required. Set AWS_ACCESS_KEY_ID and "
                "AWS_SECRET_ACCESS_KEY environment variables or pass them as parameters."
            )

        if not self.bucket_name:
            raise ValueError(
                "Bucket name is required. Set TIGRIS_BUCKET_NAME environment variable "
                "or pass it as a parameter."
            )

        # Initialize S3 client
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            endpoint_url=self.endpoint_url,
            region_name=self.region
        )

    def _get_object_key(self, key: str) -> str:
        """Get the S3 object key for a storage key."""
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        """
        Get a value from S3.

        Args:
            key: Storage key.

        Returns:
            Object body as text, or None if the object doesn't exist
        """
        try:
            response = self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=self._get_object_key(key)
            )
            return response['Body'].read().decode('utf-8')
        except ClientError as e:
            if e.response['Error']['Code'] == 'NoSuchKey':
                return None
            raise StorageError(f"Failed to read key {key}", details=str(e)) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read key {key}", details=str(e)) from e

    def put(self, key: str, value: str) -> None:
        """
        Save a value to S3.

        Args:
            key: Storage key.
            value: String value to store.
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self._get_object_key(key),
                Body=value.encode('utf-8'),
                ContentType='text/plain; charset=utf-8',
                CacheControl='no-cache, no-store, must-revalidate'
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to write key {key}", details=str(e)) from e

    def delete(self, key: str) -> None:
        """
        Delete an object from S3. S3 treats deleting a missing object as success.

        Args:
            key: Storage key.
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=self._get_object_key(key)
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete key {key}", details=str(e)) from e

    def list_keys(self, prefix: str = "") -> List[str]:
        """
        List keys stored in S3.

        Args:
            prefix: Only return keys starting with this prefix.

        Returns:
            Sorted list of matching keys (without the object key prefix).
        """
        keys = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(
                Bucket=self.bucket_name,
                Prefix=self._get_object_key(prefix)
            ):
                for obj in page.get('Contents', []):
                    keys.append(obj['Key'][len(self.key_prefix):])
        except (ClientError, BotoCoreError) as e:
            raise StorageError("Failed to list keys", details=str(e)) from e
        return sorted(keys)
