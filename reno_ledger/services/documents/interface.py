"""
Document Store Interface

Invoice files live outside the relational store. The store and the
database are NOT updated atomically: a failed row insert after a
successful upload leaves an orphan document, which callers clean up on
a best-effort basis.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from uuid import uuid4


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def make_storage_key(file_name: str, prefix: str = "invoices") -> str:
    """
    Build a unique key for a new document.

    Format: {prefix}/{random}_{name_hash}_{sanitized_name}
    """
    name_hash = hashlib.md5(file_name.encode()).hexdigest()[:8]
    safe_name = _UNSAFE_CHARS.sub("_", file_name).strip("_")[:80] or "document"
    return f"{prefix}/{uuid4().hex}_{name_hash}_{safe_name}"


class DocumentStoreInterface(ABC):
    """Opaque blob storage for invoice documents."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """
        Store a document.

        Returns:
            The key the document can be retrieved with

        Raises:
            DocumentUploadError: If the upload fails
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """
        Raises:
            DocumentNotFoundError: If no document exists under key
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def signed_download_url(self, key: str, ttl_seconds: int) -> str:
        """Time-limited URL the browser can download the document from."""
        pass


class DocumentStoreError(Exception):
    """Base exception for document store errors."""
    pass


class DocumentUploadError(DocumentStoreError):
    """Failed to upload a document."""
    pass


class DocumentNotFoundError(DocumentStoreError):
    """No document stored under the requested key."""
    pass
