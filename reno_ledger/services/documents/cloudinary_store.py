"""
Invoice Document Store using Cloudinary

DESIGN DECISION: Invoices are uploaded as PRIVATE raw assets. Nothing is
publicly addressable; the browser only ever receives signed, expiring
download URLs. Raw resource type keeps PDFs and images byte-identical
(no transformations are applied to accounting documents).

The Cloudinary SDK is synchronous, so calls run in a worker thread to
keep the event loop free during bulk uploads.
"""

import asyncio
import time
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from reno_ledger.config import CloudinarySettings, get_settings
from reno_ledger.services.documents.interface import (
    DocumentNotFoundError,
    DocumentStoreInterface,
    DocumentUploadError,
)


RESOURCE_TYPE = "raw"
DELIVERY_TYPE = "private"


class CloudinaryDocumentStore(DocumentStoreInterface):
    """
    Document store backed by Cloudinary private raw assets.

    The storage key is the Cloudinary public_id.
    """

    def __init__(self, settings: Optional[CloudinarySettings] = None):
        self._settings = settings or get_settings().cloudinary
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _signed_url(self, key: str, ttl_seconds: int) -> str:
        self._configure()
        return cloudinary.utils.private_download_url(
            key,
            "",
            resource_type=RESOURCE_TYPE,
            type=DELIVERY_TYPE,
            expires_at=int(time.time()) + ttl_seconds,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(DocumentUploadError),
        reraise=True,
    )
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """
        Upload a document under `key`.

        Raises:
            DocumentUploadError: If Cloudinary rejects the upload
        """
        self._configure()
        try:
            result = await asyncio.to_thread(
                cloudinary.uploader.upload,
                data,
                public_id=key,
                resource_type=RESOURCE_TYPE,
                type=DELIVERY_TYPE,
                overwrite=False,
                context={"content_type": content_type},
            )
        except cloudinary.exceptions.Error as e:
            raise DocumentUploadError(f"Cloudinary error: {e}")

        public_id = result.get("public_id")
        if not public_id:
            raise DocumentUploadError("No public_id returned from Cloudinary")
        return public_id

    async def get(self, key: str) -> bytes:
        url = self._signed_url(key, ttl_seconds=60)
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.get(url)
        if response.status_code == 404:
            raise DocumentNotFoundError(f"Document not found: {key}")
        response.raise_for_status()
        return response.content

    async def delete(self, key: str) -> None:
        self._configure()
        try:
            result = await asyncio.to_thread(
                cloudinary.uploader.destroy,
                key,
                resource_type=RESOURCE_TYPE,
                type=DELIVERY_TYPE,
                invalidate=True,
            )
        except cloudinary.exceptions.Error as e:
            raise DocumentUploadError(f"Cloudinary delete failed: {e}")
        if result.get("result") == "not found":
            raise DocumentNotFoundError(f"Document not found: {key}")

    async def signed_download_url(self, key: str, ttl_seconds: int) -> str:
        return self._signed_url(key, ttl_seconds)
