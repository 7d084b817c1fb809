"""
Blob store boundary.

The engine consumes object storage through this interface only. All calls
are awaited one at a time by callers; implementations need not be safe for
unbounded fan-out.

Failure contract:
- missing object      -> BlobNotFoundError
- any other failure   -> BlobStoreError (``transient`` set when retryable)
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Protocol

from bundler.app.core.errors import BlobStoreError

logger = logging.getLogger("bundler.storage")

_ALREADY_EXISTS_RE = re.compile(r"already exists", re.IGNORECASE)
_BUCKET_NOT_FOUND_RE = re.compile(r"bucket not found", re.IGNORECASE)


class BlobStore(Protocol):
    async def download(self, bucket: str, key: str) -> bytes:
        ...

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        ...

    async def get_bucket(self, name: str) -> Optional[Dict[str, Any]]:
        ...

    async def create_bucket(self, name: str, *, public: bool = False) -> None:
        ...


def is_already_exists(exc: BlobStoreError) -> bool:
    return exc.status_code == 409 or bool(_ALREADY_EXISTS_RE.search(exc.message))


def is_bucket_not_found(exc: BlobStoreError) -> bool:
    return bool(_BUCKET_NOT_FOUND_RE.search(exc.message))


class BucketGuard:
    """
    One-time, race-free "bucket exists" initialization.

    Concurrent first callers serialize on a lock; only one of them talks to
    the store. An "already exists" answer from the store counts as success.
    ``reset()`` forces the next caller to re-check (used when an upload
    reports the bucket missing after all).
    """

    def __init__(
        self,
        store: BlobStore,
        bucket: str,
        *,
        public: bool = False,
    ) -> None:
        self._store = store
        self._bucket = bucket
        self._public = public
        self._ensured = False
        self._lock = asyncio.Lock()

    @property
    def bucket(self) -> str:
        return self._bucket

    async def ensure(self) -> None:
        if self._ensured:
            return

        async with self._lock:
            if self._ensured:
                return

            existing = await self._store.get_bucket(self._bucket)
            if existing is None:
                try:
                    await self._store.create_bucket(
                        self._bucket, public=self._public
                    )
                    logger.info(
                        "bucket_created",
                        extra={"bucket": self._bucket, "public": self._public},
                    )
                except BlobStoreError as exc:
                    if not is_already_exists(exc):
                        raise
                    logger.info(
                        "bucket_create_race_tolerated",
                        extra={"bucket": self._bucket},
                    )

            self._ensured = True

    def reset(self) -> None:
        self._ensured = False
