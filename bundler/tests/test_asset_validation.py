"""
Tests for asset validation and collection.

Coverage matrix:

  All present              → ok, one PackageFile per key
  x present, y missing     → one diagnostic for y only, no files
  Foreign key              → ownership_mismatch, never downloaded
  Path-like key            → invalid_key, never downloaded
  Empty payload            → empty_payload
  Storage failure          → download_failed carrying the store's reason
"""

import logging

import pytest

from bundler.app.checks.asset_validation import validate_assets
from bundler.app.schemas.package import MissingAssetKind
from bundler.tests.fixtures.memory_store import InMemoryBlobStore
from bundler.tests.fixtures.bundles import (
    BUCKET,
    DOC_ID,
    OTHER_DOC_ID,
    asset_key,
    seed_asset,
)

pytestmark = pytest.mark.anyio


def _figure(key):
    return f"\\includegraphics[width=\\linewidth]{{\\detokenize{{assets/{key}}}}}\n"


async def test_collects_every_referenced_asset():
    store = InMemoryBlobStore()
    seed_asset(store, asset_key("a.png"), b"A")
    seed_asset(store, asset_key("b.png"), b"B")

    result = await validate_assets(
        _figure(asset_key("a.png")) + _figure(asset_key("b.png")),
        DOC_ID,
        store,
        BUCKET,
    )

    assert result.ok
    assert result.missing == []
    assert [(f.rel_path, f.data) for f in result.extra_files] == [
        (f"assets/{asset_key('a.png')}", b"A"),
        (f"assets/{asset_key('b.png')}", b"B"),
    ]


async def test_only_the_missing_asset_is_reported():
    store = InMemoryBlobStore()
    x, y = asset_key("x.png"), asset_key("y.png")
    seed_asset(store, x)

    result = await validate_assets(_figure(x) + _figure(y), DOC_ID, store, BUCKET)

    assert not result.ok
    assert result.extra_files == []
    assert [m.key for m in result.missing] == [y]
    assert result.missing[0].kind == MissingAssetKind.DOWNLOAD_FAILED


async def test_foreign_key_is_rejected_without_download(caplog):
    store = InMemoryBlobStore()
    foreign = asset_key("a.png", doc_id=OTHER_DOC_ID)
    seed_asset(store, foreign)

    with caplog.at_level(logging.WARNING, logger="bundler.security"):
        result = await validate_assets(_figure(foreign), DOC_ID, store, BUCKET)

    assert not result.ok
    assert result.missing[0].kind == MissingAssetKind.OWNERSHIP_MISMATCH
    assert store.downloads == []
    assert any(
        r.name == "bundler.security" and r.getMessage() == "asset_ownership_violation"
        for r in caplog.records
    )


async def test_foreign_key_never_reaches_a_result_alongside_valid_assets():
    store = InMemoryBlobStore()
    own = asset_key("own.png")
    foreign = "shared-library-figure.png"
    seed_asset(store, own)
    seed_asset(store, foreign)

    result = await validate_assets(
        _figure(own) + f"\\includegraphics{{assets/{foreign}}}",
        DOC_ID,
        store,
        BUCKET,
    )

    assert not result.ok
    assert [m.key for m in result.missing] == [foreign]
    assert result.extra_files == []


async def test_path_like_key_is_rejected_without_download():
    store = InMemoryBlobStore()
    sneaky = f"{DOC_ID}__../../secrets.png"

    result = await validate_assets(
        f"\\includegraphics{{assets/{sneaky}}}", DOC_ID, store, BUCKET
    )

    assert result.missing[0].kind == MissingAssetKind.INVALID_KEY
    assert store.downloads == []


async def test_empty_payload_is_reported():
    store = InMemoryBlobStore()
    key = asset_key("blank.png")
    seed_asset(store, key, b"")

    result = await validate_assets(_figure(key), DOC_ID, store, BUCKET)

    assert result.missing[0].kind == MissingAssetKind.EMPTY_PAYLOAD


async def test_storage_failure_carries_reason():
    store = InMemoryBlobStore()
    key = asset_key("flaky.png")
    seed_asset(store, key)
    store.fail(BUCKET, f"assets/{key}", "upstream timeout")

    result = await validate_assets(_figure(key), DOC_ID, store, BUCKET)

    assert result.missing[0].kind == MissingAssetKind.DOWNLOAD_FAILED
    assert result.missing[0].reason == "upstream timeout"


async def test_diagnostics_follow_extraction_order():
    store = InMemoryBlobStore()
    keys = [asset_key("c.png"), asset_key("a.png"), asset_key("b.png")]

    result = await validate_assets(
        "".join(_figure(k) for k in keys), DOC_ID, store, BUCKET
    )

    assert [m.key for m in result.missing] == keys
    assert store.downloads == [(BUCKET, f"assets/{k}") for k in keys]


async def test_no_references_is_ok():
    result = await validate_assets("plain text", DOC_ID, InMemoryBlobStore(), BUCKET)

    assert result.ok
    assert result.extra_files == []


async def test_commented_out_foreign_figure_is_not_validated():
    store = InMemoryBlobStore()
    key = asset_key("a.png")
    seed_asset(store, key, b"A")
    foreign = asset_key("z.png", doc_id=OTHER_DOC_ID)

    result = await validate_assets(
        _figure(key) + f"% {_figure(foreign)}", DOC_ID, store, BUCKET
    )

    assert result.ok
    assert [f.rel_path for f in result.extra_files] == [f"assets/{key}"]
    assert store.downloads == [(BUCKET, f"assets/{key}")]
