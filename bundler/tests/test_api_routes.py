"""
HTTP surface tests.

Error contract:
  validation class  → 400 {"detail": {"code", "message", "details"}}
  not-found class   → 404
  anything else     → 500, generic message
"""

import base64
import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from bundler.app.core.config import Settings
from bundler.app.main import create_app
from bundler.tests.fixtures.memory_store import (
    InMemoryBlobStore,
    InMemoryDocumentStore,
)
from bundler.tests.fixtures.bundles import (
    BUCKET,
    DOC_ID,
    OTHER_DOC_ID,
    asset_key,
    make_document,
    seed_asset,
    seed_bundle,
)

REFS = "@article{doe2020, title={A Study}, author={Doe, J.}, year={2020}}"


class _BrokenStore(InMemoryBlobStore):
    async def download(self, bucket, key):
        raise RuntimeError("driver bug")


def _client(store, *documents, **settings):
    app = create_app(
        document_store=InMemoryDocumentStore({d.id: d for d in documents}),
        blob_store=store,
        settings=Settings(**settings),
    )
    return TestClient(app)


@pytest.fixture
def bundle():
    store = InMemoryBlobStore()
    key = asset_key("fig.png")
    manifest = seed_bundle(
        store,
        {
            "main.tex": f"\\input{{chapter1}}\n\\includegraphics{{assets/{key}}}",
            "chapter1.tex": "As in \\cite{doe2020}.",
            "refs.bib": REFS,
            "Figures/foo.pdf": b"%PDF-1.7",
        },
    )
    seed_asset(store, key, b"FIG")
    return store, make_document(manifest), key


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

def test_healthz():
    with _client(InMemoryBlobStore()) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Preview / package / files
# ---------------------------------------------------------------------------

def test_preview(bundle):
    store, document, _ = bundle

    with _client(store, document) as client:
        response = client.get(f"/documents/{DOC_ID}/latex/preview")

    assert response.status_code == 200
    body = response.json()
    assert "As in \\cite{doe2020}." in body["latex"]
    assert body["references"]["title"] == "References"
    assert body["references"]["children"][0]["items"] == [
        "[doe2020] A Study — Doe, J. — 2020"
    ]


def test_package_zip(bundle):
    store, document, key = bundle

    with _client(store, document) as client:
        response = client.get(f"/documents/{DOC_ID}/latex/package")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    names = zipfile.ZipFile(io.BytesIO(response.content)).namelist()
    assert names == ["main.tex", f"assets/{key}", "refs.bib", "Figures/foo.pdf"]


def test_package_lists_every_missing_asset():
    store = InMemoryBlobStore()
    x, y = asset_key("x.png"), asset_key("y.png")
    document = make_document(
        latex=f"\\includegraphics{{assets/{x}}}\\includegraphics{{assets/{y}}}"
    )

    with _client(store, document) as client:
        response = client.get(f"/documents/{DOC_ID}/latex/package")

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "MISSING_ASSETS"
    assert [d["key"] for d in detail["details"]] == [x, y]


def test_bundle_file(bundle):
    store, document, _ = bundle

    with _client(store, document) as client:
        response = client.get(f"/documents/{DOC_ID}/latex/files/figures/foo")

    assert response.status_code == 200
    assert response.content == b"%PDF-1.7"
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["x-resolved-path"] == "Figures/foo.pdf"


def test_bundle_file_traversal(bundle):
    store, document, _ = bundle

    with _client(store, document) as client:
        response = client.get(f"/documents/{DOC_ID}/latex/files/..%5Csecret.tex")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "PATH_TRAVERSAL"


def test_unknown_document():
    with _client(InMemoryBlobStore()) as client:
        response = client.get("/documents/nope/latex/preview")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_unexpected_failure_is_a_generic_500(bundle):
    _, document, _ = bundle

    with _client(_BrokenStore(), document) as client:
        response = client.get(f"/documents/{DOC_ID}/latex/preview")

    assert response.status_code == 500
    assert response.json()["detail"] == "LaTeX bundle processing failed."
    assert "x-correlation-id" in response.headers


# ---------------------------------------------------------------------------
# Asset upload
# ---------------------------------------------------------------------------

def _upload_body(data: bytes, mime="image/png", document_id=DOC_ID):
    return {
        "documentId": document_id,
        "b64": base64.b64encode(data).decode("ascii"),
        "mimeType": mime,
    }


def test_upload_asset():
    store = InMemoryBlobStore()

    with _client(store, make_document(latex="x")) as client:
        response = client.post("/assets/upload", json=_upload_body(b"PNG"))

    assert response.status_code == 200
    body = response.json()
    assert body["key"].startswith(f"{DOC_ID}__")
    assert body["path"] == f"assets/{body['key']}"
    assert store.contains("assets", body["path"])


def test_upload_rejects_invalid_base64():
    with _client(InMemoryBlobStore(), make_document(latex="x")) as client:
        response = client.post(
            "/assets/upload",
            json={"documentId": DOC_ID, "b64": "not base64!", "mimeType": "image/png"},
        )

    assert response.status_code == 422


def test_upload_rejects_oversized_asset():
    payload = b"x" * (1024 * 1024 + 1)

    with _client(InMemoryBlobStore(), make_document(latex="x"), max_asset_mb=1) as client:
        response = client.post("/assets/upload", json=_upload_body(payload))

    assert response.status_code == 413


def test_upload_for_unknown_document():
    with _client(InMemoryBlobStore()) as client:
        response = client.post(
            "/assets/upload", json=_upload_body(b"PNG", document_id="nope")
        )

    assert response.status_code == 404


def test_uploaded_asset_round_trips_into_a_package():
    store = InMemoryBlobStore()
    documents = InMemoryDocumentStore({DOC_ID: make_document(latex="x")})
    app = create_app(document_store=documents, blob_store=store, settings=Settings())

    with TestClient(app) as client:
        key = client.post("/assets/upload", json=_upload_body(b"PNG")).json()["key"]
        documents.add(make_document(latex=f"\\includegraphics{{assets/{key}}}"))
        response = client.get(f"/documents/{DOC_ID}/latex/package")

    archive = zipfile.ZipFile(io.BytesIO(response.content))
    assert archive.read(f"assets/{key}") == b"PNG"


def test_uploaded_asset_round_trips_into_a_bundle_package():
    store = InMemoryBlobStore()
    manifest = seed_bundle(store, {"main.tex": "placeholder", "refs.bib": REFS})
    documents = InMemoryDocumentStore({DOC_ID: make_document(manifest)})
    app = create_app(document_store=documents, blob_store=store, settings=Settings())

    with TestClient(app) as client:
        body = client.post("/assets/upload", json=_upload_body(b"PNG")).json()
        store.put(
            BUCKET,
            manifest.storage_key("main.tex"),
            f"\\includegraphics{{{body['path']}}}".encode("utf-8"),
        )
        response = client.get(f"/documents/{DOC_ID}/latex/package")

    assert response.status_code == 200
    archive = zipfile.ZipFile(io.BytesIO(response.content))
    assert archive.namelist() == ["main.tex", body["path"], "refs.bib"]
    assert archive.read(body["path"]) == b"PNG"


# ---------------------------------------------------------------------------
# Asset download
# ---------------------------------------------------------------------------

def test_read_asset(bundle):
    store, document, key = bundle

    with _client(store, document) as client:
        response = client.get(f"/assets/{key}")

    assert response.status_code == 200
    assert response.content == b"FIG"
    assert response.headers["content-type"] == "image/png"


def test_read_asset_with_non_uuid_prefix():
    with _client(InMemoryBlobStore(), make_document(latex="x")) as client:
        response = client.get("/assets/doc1__a.png")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_ASSET_KEY"


def test_read_asset_for_unknown_document():
    with _client(InMemoryBlobStore(), make_document(latex="x")) as client:
        response = client.get(f"/assets/{asset_key('a.png', doc_id=OTHER_DOC_ID)}")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_read_missing_asset(bundle):
    store, document, _ = bundle

    with _client(store, document) as client:
        response = client.get(f"/assets/{asset_key('gone.png')}")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"
