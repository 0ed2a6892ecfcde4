"""Pydantic schemas for employee documents.

This module defines the data models for the employee document endpoints:
- EmployeeDocument: Complete record stored in DuckDB
- DocumentResponse: A record as returned to clients, with its download URL
- RejectedFile: An uploaded part that was not stored, with a display message
- DocumentUploadResponse: Result of a (possibly multi-file) upload
- DocumentListResponse: An employee's documents

Documents are stored through the upload ingestion pipeline under
uploads/documents/ with generated filenames; the original filename is only
kept here, for display and for the download's Content-Disposition.
"""
import time
import uuid
from typing import List

from pydantic import BaseModel, Field

from ..uploads.schemas import PayloadTooLarge, RejectionReason

INVALID_FILE_TYPE_MESSAGE = "Invalid file type. Only PDF, PNG, JPG, and DOC files are allowed."


class EmployeeDocument(BaseModel):
    """A stored document attached to an employee.

    ``file_path`` is the absolute location on disk and is never sent to
    clients.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique document ID")
    employee_id: str = Field(..., description="Employee the document belongs to")
    document_type: str = Field(..., description="Kind of document, e.g. offer_letter")
    original_filename: str = Field(..., description="Original filename")
    stored_filename: str = Field(..., description="Filename on disk (generated)")
    file_path: str = Field(..., description="Absolute path of the stored file")
    mime_type: str = Field(..., description="Declared MIME type of the file")
    size_bytes: int = Field(..., description="File size in bytes")
    uploaded_at: float = Field(default_factory=time.time, description="Upload timestamp")


class DocumentResponse(BaseModel):
    """A document record as returned by the API."""
    id: str = Field(..., description="Document ID")
    employee_id: str = Field(..., description="Employee ID")
    document_type: str = Field(..., description="Kind of document")
    original_filename: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="MIME type")
    size_bytes: int = Field(..., description="File size in bytes")
    uploaded_at: float = Field(..., description="Upload timestamp")
    download_url: str = Field(..., description="URL to download the file")


class RejectedFile(BaseModel):
    """An uploaded part that was refused, with the structured reason."""
    original_filename: str = Field(..., description="Filename declared by the client")
    reason: RejectionReason = Field(..., discriminator="kind", description="Why it was refused")
    message: str = Field(..., description="Human-readable explanation")


class DocumentUploadResponse(BaseModel):
    documents: List[DocumentResponse] = Field(default_factory=list, description="Stored documents")
    rejections: List[RejectedFile] = Field(default_factory=list, description="Refused files")


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse] = Field(..., description="Documents, newest first")
    count: int = Field(..., description="Number of documents")


def rejection_message(reason: RejectionReason) -> str:
    """Client-facing text for a rejection reason."""
    if isinstance(reason, PayloadTooLarge):
        limit_mb = reason.limit_bytes // (1024 * 1024)
        return f"File size exceeds limit of {limit_mb}MB"
    return INVALID_FILE_TYPE_MESSAGE
