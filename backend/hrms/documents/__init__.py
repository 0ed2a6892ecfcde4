"""Employee document module.

Stores uploaded employee documents (ID proofs, offer letters, certificates)
through the upload ingestion pipeline and tracks them in DuckDB.
"""

from .schemas import (
    DocumentListResponse,
    DocumentResponse,
    DocumentUploadResponse,
    EmployeeDocument,
    RejectedFile,
)
from .service import EmployeeDocumentService
from .router import router

__all__ = [
    "DocumentListResponse",
    "DocumentResponse",
    "DocumentUploadResponse",
    "EmployeeDocument",
    "EmployeeDocumentService",
    "RejectedFile",
    "router",
]
