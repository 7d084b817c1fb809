"""
Tests for the one-time assets bucket initialization.

Concurrent first callers must result in a single create call; a store that
answers "already exists" (another process won the race) counts as success.
"""

import anyio
import pytest

from bundler.app.core.errors import BlobStoreError
from bundler.app.storage.blob_store import (
    BucketGuard,
    is_already_exists,
    is_bucket_not_found,
)
from bundler.tests.fixtures.memory_store import InMemoryBlobStore

pytestmark = pytest.mark.anyio


class _CountingStore(InMemoryBlobStore):
    def __init__(self, *, create_error=None):
        super().__init__()
        self.lookups = 0
        self.creates = 0
        self._create_error = create_error

    async def get_bucket(self, name):
        self.lookups += 1
        # Yield so concurrent callers really interleave.
        await anyio.sleep(0)
        return await super().get_bucket(name)

    async def create_bucket(self, name, *, public=False):
        self.creates += 1
        if self._create_error is not None:
            raise self._create_error
        await super().create_bucket(name, public=public)


async def test_concurrent_ensure_creates_bucket_once():
    store = _CountingStore()
    guard = BucketGuard(store, "assets")

    async with anyio.create_task_group() as tg:
        for _ in range(10):
            tg.start_soon(guard.ensure)

    assert store.creates == 1
    assert store.lookups == 1
    assert await store.get_bucket("assets") is not None


async def test_existing_bucket_is_not_recreated():
    store = _CountingStore()
    store.put("assets", "seed", b"x")

    await BucketGuard(store, "assets").ensure()

    assert store.creates == 0


async def test_already_exists_race_is_tolerated():
    store = _CountingStore(
        create_error=BlobStoreError("The resource already exists", status_code=409)
    )
    guard = BucketGuard(store, "assets")

    await guard.ensure()
    await guard.ensure()

    assert store.creates == 1


async def test_other_create_failures_propagate_and_are_retried_later():
    store = _CountingStore(
        create_error=BlobStoreError("permission denied", status_code=403)
    )
    guard = BucketGuard(store, "assets")

    with pytest.raises(BlobStoreError):
        await guard.ensure()
    with pytest.raises(BlobStoreError):
        await guard.ensure()

    assert store.creates == 2


async def test_reset_forces_a_new_check():
    store = _CountingStore()
    guard = BucketGuard(store, "assets")

    await guard.ensure()
    guard.reset()
    await guard.ensure()

    assert store.lookups == 2
    assert store.creates == 1


async def test_memory_store_mirrors_remote_upload_errors():
    store = InMemoryBlobStore()

    with pytest.raises(BlobStoreError) as missing_bucket:
        await store.upload("assets", "k", b"x", content_type="image/png")
    assert is_bucket_not_found(missing_bucket.value)

    await store.create_bucket("assets")
    await store.upload("assets", "k", b"x", content_type="image/png")
    with pytest.raises(BlobStoreError) as duplicate:
        await store.upload("assets", "k", b"y", content_type="image/png")
    assert is_already_exists(duplicate.value)

    await store.upload("assets", "k", b"y", content_type="image/png", upsert=True)
    assert await store.download("assets", "k") == b"y"
