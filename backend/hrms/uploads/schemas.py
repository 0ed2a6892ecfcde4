"""Pydantic schemas for upload ingestion.

This module defines the data shapes produced by the ingestion pipeline:
- UploadCategory: Enum of destination namespaces (currently only documents)
- StoredFileDescriptor: An accepted file, already committed to disk
- UnsupportedMediaType / PayloadTooLarge: Rejection reasons, tagged by ``kind``
- UploadOutcome: Either a descriptor or a rejection, one per uploaded part

Outcomes are returned as values so the calling handler decides how a mix of
accepted and rejected parts maps onto an HTTP response.
"""
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class UploadCategory(str, Enum):
    """Destination namespaces under the uploads root.

    Only members of this enum are ever turned into directory names, so a
    category can never carry a path segment supplied by a client.
    """
    DOCUMENTS = "documents"


class StoredFileDescriptor(BaseModel):
    """An uploaded file that has been fully written under its stored name.

    ``original_name`` and ``declared_media_type`` are copied verbatim from
    the client and must be treated as untrusted.
    """
    model_config = ConfigDict(frozen=True)

    stored_name: str = Field(..., description="Generated filename on disk")
    original_name: str = Field(..., description="Filename declared by the client")
    extension: str = Field(..., description="Extension of original_name, case preserved")
    absolute_path: str = Field(..., description="Destination directory joined with stored_name")
    declared_media_type: str = Field(..., description="MIME type asserted by the client")
    size_bytes: int = Field(..., description="Bytes written to disk")


class UnsupportedMediaType(BaseModel):
    """The declared MIME type is not on the allow-list."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["unsupported_media_type"] = "unsupported_media_type"
    declared_media_type: str = Field(..., description="The rejected MIME type")


class PayloadTooLarge(BaseModel):
    """The stream crossed the per-file byte budget and was aborted."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["payload_too_large"] = "payload_too_large"
    limit_bytes: int = Field(..., description="Per-file byte budget")
    actual_bytes_at_abort: int = Field(..., description="Bytes received when the stream was cut")


RejectionReason = Union[UnsupportedMediaType, PayloadTooLarge]

UploadOutcome = Union[StoredFileDescriptor, UnsupportedMediaType, PayloadTooLarge]


def is_rejection(outcome: UploadOutcome) -> bool:
    """True when *outcome* is a rejection rather than a stored file."""
    return isinstance(outcome, (UnsupportedMediaType, PayloadTooLarge))
