"""Invoice document storage."""

from reno_ledger.services.documents.interface import (
    DocumentNotFoundError,
    DocumentStoreError,
    DocumentStoreInterface,
    DocumentUploadError,
    make_storage_key,
)
from reno_ledger.services.documents.cloudinary_store import CloudinaryDocumentStore

__all__ = [
    "CloudinaryDocumentStore",
    "DocumentNotFoundError",
    "DocumentStoreError",
    "DocumentStoreInterface",
    "DocumentUploadError",
    "make_storage_key",
]
