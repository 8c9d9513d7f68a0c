"""Blob store protocol and implementations for spilled feature payloads.

Feature payloads too large to store inline in a record are written to an
object store and referenced from the record by ``s3url``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

from featurestore.db import aws

if TYPE_CHECKING:
    from featurestore.core import config


class BlobStoreProtocol(Protocol):
    """Protocol interface for writing payload objects by key."""

    async def put_object(self, key: str, body: bytes) -> None: ...


class InMemoryBlobStore(BlobStoreProtocol):
    """Dictionary-backed blob store for tests and local development."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def put_object(self, key: str, body: bytes) -> None:
        await asyncio.sleep(0)
        self.objects[key] = body


class S3BlobStore(BlobStoreProtocol):
    """S3-backed blob store writing into the configured bucket."""

    def __init__(self, settings: config.Settings) -> None:
        """Initialize the S3 client.

        Args:
            settings: Application settings naming the bucket and AWS options.
        """
        self.settings = settings
        self._client = aws.create_session(settings).client(
            "s3",
            endpoint_url=settings.endpoint_url,
            config=aws.client_config(settings),
        )

    async def put_object(self, key: str, body: bytes) -> None:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self.settings.bucket,
            Key=key,
            Body=body,
        )


def get_blob_store(settings: config.Settings) -> BlobStoreProtocol:
    """Factory function to create a blob store.

    Args:
        settings: Application settings for the S3 bucket.

    Returns:
        S3BlobStore instance for production use.
    """
    return S3BlobStore(settings)
