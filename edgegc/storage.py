# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Storage Reclaimer - Retried deletion of remote build artifacts.

Repositories are deleted as every object under a key prefix, tarballs
and ISO installers as single objects. Each call is retried a fixed
number of times with a fixed delay; only the last attempt's error is
raised, earlier ones are logged.
"""

import asyncio
from typing import Any, Awaitable, Callable, List
from urllib.parse import urlparse

import structlog
from botocore.exceptions import ClientError

from edgegc.exceptions import StorageError

logger = structlog.get_logger()

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_OBJECTS_BATCH_SIZE = 1000


def get_path_from_url(url: str) -> str:
    """
    Extract the object path of an artifact URL.

    Args:
        url: Artifact URL (https://bucket.s3.amazonaws.com/org/images/1/repo)

    Returns:
        The URL path, including its leading separator

    Raises:
        StorageError: If the URL cannot be parsed
    """
    try:
        return urlparse(url).path
    except ValueError as e:
        raise StorageError(
            f"Failed to parse artifact URL: {url}",
            details={"url": url},
        ) from e


def _error_code(error: BaseException) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


class StorageReclaimer:
    """
    Deletes objects from one bucket with a bounded retry policy.

    The client is an aiobotocore S3 client (or anything with the same
    delete_object / delete_objects / get_paginator coroutines).
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        attempts: int = 10,
        retry_delay: float = 5,
        delay_unit: float = 1.0,
    ):
        if attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {attempts}")
        self.client = client
        self.bucket = bucket
        self.attempts = attempts
        self.retry_delay = retry_delay
        self.delay_unit = delay_unit

    @property
    def delay_seconds(self) -> float:
        return self.retry_delay * self.delay_unit

    async def delete_object(self, key: str) -> None:
        """
        Delete a single object, retrying on failure.

        Raises:
            StorageError: If every attempt failed
        """
        key = key.lstrip("/")

        async def _delete() -> None:
            await self.client.delete_object(Bucket=self.bucket, Key=key)

        await self._with_retry("file", key, _delete)

    async def delete_prefix(self, prefix: str) -> None:
        """
        Delete every object under a path prefix, retrying on failure.

        A leading path separator is stripped before calling the service.
        An empty prefix would name the whole bucket and is refused.

        Raises:
            StorageError: If the prefix is empty or every attempt failed
        """
        prefix = prefix.lstrip("/")
        if not prefix.strip(" /"):
            logger.error("storage_empty_prefix_refused", bucket=self.bucket)
            raise StorageError(
                "Refusing to delete an empty prefix",
                details={"bucket": self.bucket, "prefix": prefix},
            )

        async def _delete() -> None:
            await self._delete_all_under(prefix)

        await self._with_retry("folder", prefix, _delete)

    async def _delete_all_under(self, prefix: str) -> None:
        keys: List[str] = []
        paginator = self.client.get_paginator("list_objects_v2")

        async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])

        for start in range(0, len(keys), DELETE_OBJECTS_BATCH_SIZE):
            batch = keys[start : start + DELETE_OBJECTS_BATCH_SIZE]
            response = await self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
            failed = response.get("Errors", []) if response else []
            if failed:
                raise StorageError(
                    f"Failed to delete {len(failed)} objects under {prefix}",
                    details={"prefix": prefix, "errors": failed[:10]},
                )

    async def _with_retry(
        self, kind: str, key: str, operation: Callable[[], Awaitable[None]]
    ) -> None:
        last_error: BaseException | None = None

        for attempt in range(1, self.attempts + 1):
            try:
                await operation()
            except Exception as e:
                last_error = e
                logger.error(
                    "storage_delete_failed",
                    kind=kind,
                    key=key,
                    attempt=attempt,
                    error=str(e),
                    error_code=_error_code(e),
                )
                if attempt < self.attempts:
                    await asyncio.sleep(self.delay_seconds)
                continue

            logger.info("storage_deleted", kind=kind, key=key, attempt=attempt)
            return

        raise StorageError(
            f"Failed to delete {kind} {key} after {self.attempts} attempts",
            details={"bucket": self.bucket, "key": key, "attempts": self.attempts},
        ) from last_error
