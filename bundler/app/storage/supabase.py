"""
Async client for a Supabase Storage compatible REST API.

Endpoints used:

    GET  /storage/v1/object/{bucket}/{key}     download
    POST /storage/v1/object/{bucket}/{key}     upload (x-upsert header)
    GET  /storage/v1/bucket/{name}             bucket lookup
    POST /storage/v1/bucket                    bucket creation

Transport errors and 5xx responses are retried with exponential backoff;
everything else is reported immediately as a BlobStoreError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from bundler.app.core.config import Settings
from bundler.app.core.errors import BlobNotFoundError, BlobStoreError

logger = logging.getLogger("bundler.storage")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, BlobStoreError) and exc.transient


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for field in ("message", "error", "msg"):
            if body.get(field):
                return str(body[field])
    return response.text or response.reason_phrase


class SupabaseStorageClient:
    """
    BlobStore implementation over Supabase Storage.

    The HTTP client is owned by the caller (application lifespan) and
    shared across requests.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self.client = http_client
        self.base_url = str(settings.storage_url).rstrip("/") + "/storage/v1"
        self._service_key = settings.storage_service_key.get_secret_value()
        self._attempts = settings.download_retries
        self._timeout = settings.http_timeout_seconds
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.2, max=2)

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {}
        if self._service_key:
            headers["Authorization"] = f"Bearer {self._service_key}"
            headers["apikey"] = self._service_key
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _object_path(bucket: str, key: str) -> str:
        return f"/object/{quote(bucket, safe='')}/{quote(key, safe='/')}"

    async def _send_once(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(
                method,
                f"{self.base_url}{path}",
                timeout=self._timeout,
                **kwargs,
            )
        except httpx.TransportError as exc:
            raise BlobStoreError(
                f"Storage transport error: {exc}",
                transient=True,
            ) from exc

        if response.status_code >= 500:
            raise BlobStoreError(
                _error_message(response),
                status_code=response.status_code,
                transient=True,
            )
        return response

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                return await self._send_once(method, path, **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    # BlobStore
    # ------------------------------------------------------------------

    async def download(self, bucket: str, key: str) -> bytes:
        response = await self._send(
            "GET",
            self._object_path(bucket, key),
            headers=self._headers(),
        )

        if response.status_code == 200:
            return response.content

        message = _error_message(response)
        # Storage reports missing objects as 404, or 400 with a not-found body.
        if response.status_code == 404 or "not found" in message.lower():
            raise BlobNotFoundError(bucket, key)

        logger.warning(
            "storage_download_failed",
            extra={
                "bucket": bucket,
                "key": key,
                "status_code": response.status_code,
            },
        )
        raise BlobStoreError(message, status_code=response.status_code)

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        response = await self._send(
            "POST",
            self._object_path(bucket, key),
            content=data,
            headers=self._headers(
                {
                    "Content-Type": content_type,
                    "x-upsert": "true" if upsert else "false",
                }
            ),
        )
        if response.status_code not in (200, 201):
            raise BlobStoreError(
                _error_message(response),
                status_code=response.status_code,
            )

    async def get_bucket(self, name: str) -> Optional[Dict[str, Any]]:
        response = await self._send(
            "GET",
            f"/bucket/{quote(name, safe='')}",
            headers=self._headers(),
        )
        if response.status_code == 200:
            return response.json()
        if response.status_code in (400, 404):
            return None
        raise BlobStoreError(
            _error_message(response),
            status_code=response.status_code,
        )

    async def create_bucket(self, name: str, *, public: bool = False) -> None:
        response = await self._send(
            "POST",
            "/bucket",
            json={"id": name, "name": name, "public": public},
            headers=self._headers(),
        )
        if response.status_code not in (200, 201):
            raise BlobStoreError(
                _error_message(response),
                status_code=response.status_code,
            )
