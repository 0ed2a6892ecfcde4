"""Upload ingestion module for the HRMS backend.

This module accepts uploaded files, validates them and writes them to disk.
Files are stored under the uploads root, one directory per category.

Accepted file types (declared MIME type, exact match):
- Documents: pdf, doc, docx
- Images: png, jpeg
- At most 10MB per file

Metadata is not persisted here; callers record the returned descriptors.
"""

from .exceptions import StorageUnavailable, UploadError
from .schemas import (
    PayloadTooLarge,
    RejectionReason,
    StoredFileDescriptor,
    UnsupportedMediaType,
    UploadCategory,
    UploadOutcome,
    is_rejection,
)
from .service import (
    DestinationResolver,
    PartWriter,
    UploadIngestor,
    discard_stored,
    extract_extension,
    generate_stored_name,
    get_ingestor,
    set_ingestor,
)
from .form import MalformedForm, MultipartUploadReader, UploadForm

__all__ = [
    "DestinationResolver",
    "MalformedForm",
    "MultipartUploadReader",
    "PartWriter",
    "PayloadTooLarge",
    "RejectionReason",
    "StorageUnavailable",
    "StoredFileDescriptor",
    "UnsupportedMediaType",
    "UploadCategory",
    "UploadError",
    "UploadForm",
    "UploadIngestor",
    "UploadOutcome",
    "discard_stored",
    "extract_extension",
    "generate_stored_name",
    "get_ingestor",
    "is_rejection",
    "set_ingestor",
]
