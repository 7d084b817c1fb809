import sys
import logging
from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from bundler.app.api.routes import router as bundle_router
from bundler.app.core.config import Settings
from bundler.app.services.bundle_service import LatexBundleService
from bundler.app.storage.blob_store import BlobStore
from bundler.app.storage.documents import DocumentStore
from bundler.app.storage.supabase import SupabaseStorageClient

logger = logging.getLogger("bundler.main")


def get_app_version() -> str:
    """Falls back to the source-tree version when not installed."""
    try:
        return version("latex-bundler")
    except PackageNotFoundError:
        return "0.1.0"


def create_app(
    *,
    document_store: DocumentStore,
    blob_store: Optional[BlobStore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Application factory for the LaTeX bundle service.

    ``document_store`` is the host application's document source.
    ``blob_store`` defaults to a Supabase Storage client built during the
    lifespan; tests pass an in-memory store instead.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Guarantees:
        - Fail-fast startup if configuration is invalid
        - One shared HTTP transport per process
        - One bundle service (and assets bucket guard) per process
        """
        logger.info(
            "bundler_startup_begin",
            extra={"service": "bundler", "version": get_app_version()},
        )

        # --------------------------------------------------------------
        # Load and validate configuration (FAIL FAST)
        # --------------------------------------------------------------
        try:
            app_settings = settings if settings is not None else Settings()
        except Exception:
            logger.exception("invalid_bundler_configuration")
            raise

        app.state.settings = app_settings

        # --------------------------------------------------------------
        # Blob store
        # --------------------------------------------------------------
        http_client: Optional[httpx.AsyncClient] = None
        store = blob_store
        if store is None:
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    timeout=app_settings.http_timeout_seconds,
                    connect=10.0,
                ),
                limits=httpx.Limits(
                    max_keepalive_connections=20,
                    max_connections=50,
                ),
                headers={"User-Agent": f"latex-bundler/{get_app_version()}"},
            )
            store = SupabaseStorageClient(
                settings=app_settings,
                http_client=http_client,
            )

        app.state.http_client = http_client
        app.state.bundle_service = LatexBundleService(
            blob_store=store,
            document_store=document_store,
            settings=app_settings,
        )

        try:
            yield
        finally:
            logger.info("bundler_shutdown_begin")
            if http_client is not None:
                await http_client.aclose()

    app = FastAPI(
        title="LaTeX Bundler",
        description=(
            "Resolves multi-file LaTeX bundles into merged sources, "
            "reference sections and self-contained packages."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.include_router(bundle_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness check",
    )
    async def health_check():
        """Does NOT touch the blob store or the document store."""
        return ORJSONResponse(
            content={
                "status": "ok",
                "service": "bundler",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
            }
        )

    return app
