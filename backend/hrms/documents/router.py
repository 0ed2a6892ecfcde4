"""FastAPI router for employee document endpoints.

Endpoints:
    POST   /employees/{employee_id}/documents        — Upload one or more files
    GET    /employees/{employee_id}/documents        — List an employee's documents
    GET    /employees/documents/{document_id}        — Fetch one document record
    GET    /employees/documents/{document_id}/download — Download the stored file
    DELETE /employees/documents/{document_id}        — Delete record and file
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse
from starlette.requests import ClientDisconnect

from .schemas import (
    DocumentListResponse,
    DocumentResponse,
    DocumentUploadResponse,
    EmployeeDocument,
    RejectedFile,
    rejection_message,
)
from .service import EmployeeDocumentService
from ..uploads import (
    MalformedForm,
    MultipartUploadReader,
    PayloadTooLarge,
    StorageUnavailable,
    StoredFileDescriptor,
    discard_stored,
    get_ingestor,
    is_rejection,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/employees", tags=["documents"])

# The body is parsed by hand, so describe it for the OpenAPI docs
UPLOAD_REQUEST_BODY = {
    "required": True,
    "content": {
        "multipart/form-data": {
            "schema": {
                "type": "object",
                "required": ["file", "documentType"],
                "properties": {
                    "file": {"type": "array", "items": {"type": "string", "format": "binary"}},
                    "documentType": {"type": "string"},
                },
            }
        }
    },
}


def get_download_url(request: Request, document_id: str) -> str:
    """Generate download URL for a document."""
    base_url = str(request.base_url).rstrip("/")
    return f"{base_url}/employees/documents/{document_id}/download"


def to_response(request: Request, document: EmployeeDocument) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        employee_id=document.employee_id,
        document_type=document.document_type,
        original_filename=document.original_filename,
        mime_type=document.mime_type,
        size_bytes=document.size_bytes,
        uploaded_at=document.uploaded_at,
        download_url=get_download_url(request, document.id),
    )


def upload_status_code(
    documents: List[DocumentResponse], rejections: List[RejectedFile]
) -> int:
    """Pick the HTTP status for an upload that may have partially succeeded.

    201 when everything was stored, 413 when a file was too large, 207 when
    some files were stored and 400 when none were.
    """
    if not rejections:
        return 201
    if any(isinstance(r.reason, PayloadTooLarge) for r in rejections):
        return 413
    if documents:
        return 207
    return 400


def _roll_back(
    service: EmployeeDocumentService,
    recorded: List[EmployeeDocument],
    stored: List[StoredFileDescriptor],
) -> None:
    """Undo a partially recorded upload: remove its files and registry rows."""
    discard_stored(stored)
    for document in recorded:
        try:
            service.delete_document(document.id)
        except Exception as e:
            logger.error(f"Could not remove record {document.id} during rollback: {e}")


@router.post(
    "/{employee_id}/documents",
    response_model=DocumentUploadResponse,
    status_code=201,
    openapi_extra={"requestBody": UPLOAD_REQUEST_BODY},
)
async def upload_documents(request: Request, employee_id: str):
    """Upload one or more documents for an employee.

    Form fields: ``file`` (repeatable) and ``documentType``.

    Accepted file types: PDF, PNG, JPEG, DOC and DOCX, up to 10MB each.
    A file of the wrong type is refused on its own and valid siblings are
    still stored. A file over the size limit ends the request: the body is
    not read any further and nothing from the request is kept.

    Args:
        employee_id: Employee the documents belong to

    Returns:
        DocumentUploadResponse listing stored documents and refused files

    Raises:
        HTTPException 400: If the body is not a valid multipart form
        HTTPException 422: If no file or no documentType was sent
        HTTPException 500: If storage is unavailable or recording fails
    """
    reader = MultipartUploadReader(get_ingestor())
    try:
        form = await reader.read(request.headers.get("content-type", ""), request.stream())
    except StorageUnavailable as e:
        logger.error(f"Document upload failed for employee {employee_id}: {e}")
        raise HTTPException(status_code=500, detail="Upload storage unavailable")
    except MalformedForm as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ClientDisconnect:
        logger.info(f"Client disconnected during upload for employee {employee_id}")
        raise HTTPException(status_code=400, detail="Client disconnected")

    rejections = [
        RejectedFile(original_filename=name, reason=outcome, message=rejection_message(outcome))
        for name, outcome in form.files
        if is_rejection(outcome)
    ]
    stored = [outcome for outcome in form.outcomes if not is_rejection(outcome)]

    if form.truncated:
        discard_stored(stored)
        logger.info(f"Document upload for employee {employee_id} cut short: file too large")
        body = DocumentUploadResponse(documents=[], rejections=rejections)
        return JSONResponse(
            status_code=upload_status_code([], rejections),
            content=body.model_dump(mode="json"),
        )

    document_type = form.fields.get("documentType", "").strip()
    if not document_type or not form.files:
        discard_stored(stored)
        raise HTTPException(status_code=422, detail="Both file and documentType are required")

    service = EmployeeDocumentService.get_instance()
    recorded: List[EmployeeDocument] = []
    try:
        for outcome in stored:
            recorded.append(service.record(employee_id, document_type, outcome))
    except Exception as e:
        logger.error(f"Recording documents for employee {employee_id} failed: {e}")
        _roll_back(service, recorded, stored)
        raise HTTPException(status_code=500, detail=f"Upload failed: {str(e)}")

    documents = [to_response(request, d) for d in recorded]
    logger.info(
        f"Document upload for employee {employee_id}: "
        f"{len(documents)} stored, {len(rejections)} rejected"
    )

    body = DocumentUploadResponse(documents=documents, rejections=rejections)
    return JSONResponse(
        status_code=upload_status_code(documents, rejections),
        content=body.model_dump(mode="json"),
    )


@router.get("/{employee_id}/documents", response_model=DocumentListResponse)
async def list_documents(request: Request, employee_id: str):
    """List an employee's documents, newest first."""
    service = EmployeeDocumentService.get_instance()
    documents = [to_response(request, d) for d in service.list_documents(employee_id)]
    return DocumentListResponse(documents=documents, count=len(documents))


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(request: Request, document_id: str):
    """Get a single document record.

    Raises:
        HTTPException 404: If document not found
    """
    service = EmployeeDocumentService.get_instance()
    document = service.get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return to_response(request, document)


@router.get("/documents/{document_id}/download")
async def download_document(document_id: str):
    """Download a stored document by ID.

    Raises:
        HTTPException 404: If document or its file is missing
    """
    service = EmployeeDocumentService.get_instance()

    document = service.get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    file_path = service.get_file_path(document_id)
    if not file_path:
        raise HTTPException(status_code=404, detail="Document not found on disk")

    return FileResponse(
        path=file_path,
        filename=document.original_filename,
        media_type=document.mime_type,
    )


@router.delete("/documents/{document_id}")
async def delete_document(document_id: str):
    """Delete a document record together with its stored file.

    Raises:
        HTTPException 404: If document not found
    """
    service = EmployeeDocumentService.get_instance()
    if not service.delete_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {"deleted": True, "id": document_id}
