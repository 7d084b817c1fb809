import base64
import binascii
import logging
import uuid
from typing import Annotated, Optional

from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    Request,
    status,
)
from fastapi.responses import ORJSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from bundler.app.core.config import Settings
from bundler.app.core.errors import BundleError, BundleNotFoundError
from bundler.app.services.bundle_service import LatexBundleService

logger = logging.getLogger("bundler.api")

router = APIRouter(tags=["LaTeX Bundles"])


# =============================================================================
# Request / response bodies
# =============================================================================

class AssetUploadRequest(BaseModel):
    document_id: str = Field(alias="documentId", min_length=1)
    b64: str = Field(min_length=1, description="Base64-encoded asset bytes")
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class AssetUploadResponse(BaseModel):
    key: str
    path: str = Field(description="Path to reference from \\includegraphics")


# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Request trace ID"),
    ] = None,
) -> str:
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_bundle_service(request: Request) -> LatexBundleService:
    service = getattr(request.app.state, "bundle_service", None)
    if service is None:
        raise RuntimeError("bundle service not initialized")
    return service


# =============================================================================
# Error mapping
# =============================================================================

def _bundle_http_error(exc: BundleError, correlation_id: str) -> HTTPException:
    """
    Validation-class errors -> 400, not-found-class errors -> 404.

    The body carries the stable error code and, for batch failures, every
    collected diagnostic.
    """
    status_code = (
        status.HTTP_404_NOT_FOUND
        if isinstance(exc, BundleNotFoundError)
        else status.HTTP_400_BAD_REQUEST
    )
    return HTTPException(
        status_code=status_code,
        detail={
            "code": exc.code,
            "message": exc.message,
            "details": exc.details(),
        },
        headers={"X-Correlation-ID": correlation_id},
    )


def _internal_error(
    exc: Exception, *, event: str, correlation_id: str, document_id: str
) -> HTTPException:
    logger.exception(
        event,
        extra={
            "trace_id": correlation_id,
            "document_id": document_id,
            "error_type": type(exc).__name__,
        },
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="LaTeX bundle processing failed.",
        headers={"X-Correlation-ID": correlation_id},
    )


# =============================================================================
# GET /documents/{document_id}/latex/preview
# =============================================================================

@router.get(
    "/documents/{document_id}/latex/preview",
    summary="Merged LaTeX source and synthesized References section",
)
async def latex_preview(
    document_id: str,
    service: Annotated[LatexBundleService, Depends(get_bundle_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> ORJSONResponse:
    try:
        preview = await service.build_preview(document_id)
    except BundleError as exc:
        raise _bundle_http_error(exc, correlation_id) from exc
    except Exception as exc:
        raise _internal_error(
            exc,
            event="latex_preview_failure",
            correlation_id=correlation_id,
            document_id=document_id,
        ) from exc

    references = preview.references
    return ORJSONResponse(
        content={
            "documentId": document_id,
            "latex": preview.merged_latex,
            "references": (
                references.model_dump(mode="json") if references else None
            ),
        },
        headers={"X-Correlation-ID": correlation_id},
    )


# =============================================================================
# GET /documents/{document_id}/latex/package
# =============================================================================

@router.get(
    "/documents/{document_id}/latex/package",
    summary="Self-contained LaTeX package as a zip archive",
    response_class=Response,
    responses={
        200: {
            "content": {"application/zip": {}},
            "description": "main.tex plus every referenced file",
        },
        400: {"description": "Missing or foreign assets (all listed)"},
        404: {"description": "Document or entry file not found"},
    },
)
async def latex_package(
    document_id: str,
    service: Annotated[LatexBundleService, Depends(get_bundle_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> Response:
    try:
        archive = await service.build_package_archive(document_id)
    except BundleError as exc:
        raise _bundle_http_error(exc, correlation_id) from exc
    except Exception as exc:
        raise _internal_error(
            exc,
            event="latex_package_failure",
            correlation_id=correlation_id,
            document_id=document_id,
        ) from exc

    logger.info(
        "latex_package_served",
        extra={
            "trace_id": correlation_id,
            "document_id": document_id,
            "bytes": len(archive),
        },
    )
    return Response(
        content=archive,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{document_id}.zip"',
            "X-Correlation-ID": correlation_id,
        },
    )


# =============================================================================
# GET /documents/{document_id}/latex/files/{path}
# =============================================================================

@router.get(
    "/documents/{document_id}/latex/files/{requested_path:path}",
    summary="Single bundle file, resolved against the manifest",
    response_class=Response,
)
async def latex_bundle_file(
    document_id: str,
    requested_path: str,
    service: Annotated[LatexBundleService, Depends(get_bundle_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> Response:
    try:
        content = await service.read_bundle_file(document_id, requested_path)
    except BundleError as exc:
        raise _bundle_http_error(exc, correlation_id) from exc
    except Exception as exc:
        raise _internal_error(
            exc,
            event="latex_file_failure",
            correlation_id=correlation_id,
            document_id=document_id,
        ) from exc

    return Response(
        content=content.data,
        media_type=content.content_type,
        headers={
            "X-Resolved-Path": content.resolved.resolved_path,
            "X-Correlation-ID": correlation_id,
        },
    )


# =============================================================================
# POST /assets/upload
# =============================================================================

@router.post(
    "/assets/upload",
    summary="Upload a document-scoped asset",
    responses={
        413: {"description": "Payload too large"},
        422: {"description": "Invalid base64 payload"},
    },
)
async def upload_asset(
    body: AssetUploadRequest,
    request: Request,
    service: Annotated[LatexBundleService, Depends(get_bundle_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> AssetUploadResponse:
    settings: Settings = request.app.state.settings
    max_bytes = settings.max_asset_mb * 1024 * 1024

    try:
        data = base64.b64decode(body.b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(
            status_code=422,
            detail="Asset payload is not valid base64.",
            headers={"X-Correlation-ID": correlation_id},
        ) from exc

    if len(data) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Asset exceeds the {settings.max_asset_mb}MB limit.",
            headers={"X-Correlation-ID": correlation_id},
        )

    try:
        ref = await service.upload_asset(body.document_id, data, body.mime_type)
    except BundleError as exc:
        raise _bundle_http_error(exc, correlation_id) from exc
    except Exception as exc:
        raise _internal_error(
            exc,
            event="asset_upload_failure",
            correlation_id=correlation_id,
            document_id=body.document_id,
        ) from exc

    return AssetUploadResponse(key=ref.key, path=ref.rel_path)


# =============================================================================
# GET /assets/{key}
# =============================================================================

@router.get(
    "/assets/{key}",
    summary="Download a document-scoped asset",
    response_class=Response,
    responses={
        400: {"description": "Key is not scoped to a document"},
        404: {"description": "Owning document or asset not found"},
    },
)
async def read_asset(
    key: str,
    service: Annotated[LatexBundleService, Depends(get_bundle_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> Response:
    try:
        content = await service.read_asset(key)
    except BundleError as exc:
        raise _bundle_http_error(exc, correlation_id) from exc
    except Exception as exc:
        raise _internal_error(
            exc,
            event="asset_read_failure",
            correlation_id=correlation_id,
            document_id=key.split("__", 1)[0],
        ) from exc

    return Response(
        content=content.data,
        media_type=content.content_type,
        headers={"X-Correlation-ID": correlation_id},
    )
