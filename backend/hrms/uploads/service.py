"""Upload ingestion pipeline.

Accepts untrusted uploaded parts, validates them and commits them to disk:

    uploads/{category}/{uuid4}-{epoch_ms}{ext}

Each part goes through the same stages, in order:
    1. Content check: the declared MIME type must be on the allow-list.
       Nothing touches the destination for a rejected type.
    2. Stored name: a fresh UUID plus a millisecond timestamp, keeping only
       the extension of the client's filename.
    3. Streaming: chunks are copied into a hidden ``.part`` file next to the
       final name and the running total is checked after every chunk. Going
       over the limit discards the staged file.
    4. Commit: the staged file is renamed onto its stored name.

The declared MIME type is trusted as-is; file contents are never sniffed.
A client can therefore store e.g. an executable labelled ``image/png``.

Usage:
    ingestor = UploadIngestor(uploads_root="/srv/hrms/uploads")
    outcomes = await ingestor.ingest([upload_file_a, upload_file_b])

HTTP requests are read part by part with ``hrms.uploads.form``, which feeds
the body straight into ``open_part`` / ``PartWriter`` as it arrives.
"""
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Protocol, Sequence, Union

from fastapi.concurrency import run_in_threadpool

from .exceptions import StorageUnavailable
from .schemas import (
    PayloadTooLarge,
    StoredFileDescriptor,
    UnsupportedMediaType,
    UploadCategory,
    UploadOutcome,
)
from ..config import DEFAULT_ALLOWED_MIME_TYPES, UploadsConfig, get_config

logger = logging.getLogger(__name__)

# File size limit: 10MB
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024

# Read size when copying a part to disk
CHUNK_SIZE_BYTES = 1024 * 1024

ALLOWED_MIME_TYPES = frozenset(DEFAULT_ALLOWED_MIME_TYPES)

_PATH_SEPARATORS = re.compile(r"[\\/]")


class IncomingFile(Protocol):
    """One uploaded part as handed over by the transport.

    Starlette's ``UploadFile`` satisfies this protocol.
    """

    filename: Optional[str]
    content_type: Optional[str]

    async def read(self, size: int = -1) -> bytes:
        ...


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def extract_extension(original_name: str) -> str:
    """Return the extension of a client filename, dot included, case preserved.

    Directory components (either separator) are ignored. A name whose only
    dot is the leading one has no extension.

    Examples:
        >>> extract_extension("photo.PNG")
        '.PNG'
        >>> extract_extension("archive.tar.gz")
        '.gz'
        >>> extract_extension("README")
        ''
    """
    basename = _PATH_SEPARATORS.split(original_name)[-1]
    return os.path.splitext(basename)[1]


def generate_stored_name(original_name: str) -> str:
    """Build ``{uuid4}-{epoch_ms}{ext}`` for a newly uploaded file."""
    timestamp_ms = int(time.time() * 1000)
    return f"{uuid.uuid4()}-{timestamp_ms}{extract_extension(original_name)}"


# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------


class DestinationResolver:
    """Maps an upload category to a directory under the uploads root."""

    def __init__(self, uploads_root: Union[str, Path]) -> None:
        self._uploads_root = Path(uploads_root)

    @property
    def uploads_root(self) -> Path:
        return self._uploads_root

    def resolve(self, category: UploadCategory) -> Path:
        """Return the category directory, creating it and its parents if needed.

        Raises:
            StorageUnavailable: If the directory cannot be created.
        """
        directory = (self._uploads_root / UploadCategory(category).value).absolute()
        if directory.is_dir():
            return directory
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create upload directory %s: %s", directory, exc)
            raise StorageUnavailable(directory, exc) from exc
        logger.info("Created upload directory: %s", directory)
        return directory


# ---------------------------------------------------------------------------
# Staged writes
# ---------------------------------------------------------------------------


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.error("Could not remove upload file %s: %s", path, exc)
        return
    logger.debug("Removed upload file: %s", path)


def discard_stored(outcomes: Iterable[UploadOutcome]) -> None:
    """Delete the files behind every stored descriptor in *outcomes*."""
    for outcome in outcomes:
        if isinstance(outcome, StoredFileDescriptor):
            _remove(Path(outcome.absolute_path))


class PartWriter:
    """Stages one accepted part on disk and enforces the per-file size limit.

    Chunks go to ``.{stored_name}.part`` next to the final name; ``commit``
    renames the staged file onto the stored name. ``discard`` may be called
    at any point and leaves nothing behind.

    File I/O runs in the threadpool so large parts never block the event loop.
    """

    def __init__(
        self,
        destination: Path,
        original_name: str,
        declared_media_type: str,
        max_file_size_bytes: int,
    ) -> None:
        self.original_name = original_name
        self.declared_media_type = declared_media_type
        self.stored_name = generate_stored_name(original_name)
        self.final_path = destination / self.stored_name
        self.staging_path = destination / f".{self.stored_name}.part"
        self.size_bytes = 0
        self._destination = destination
        self._max_file_size_bytes = max_file_size_bytes
        self._out: Optional[BinaryIO] = None

    async def open(self) -> None:
        try:
            self._out = await run_in_threadpool(self.staging_path.open, "wb")
        except OSError as exc:
            raise self._storage_failure(exc) from exc

    async def write(self, chunk: bytes) -> Optional[PayloadTooLarge]:
        """Append *chunk*, or return the rejection once the limit is crossed.

        After a rejection the staged file is already gone and the writer
        must not be used again.
        """
        self.size_bytes += len(chunk)
        if self.size_bytes > self._max_file_size_bytes:
            self.discard()
            logger.warning(
                "Rejected upload %r: exceeded %d bytes (aborted at %d)",
                self.original_name,
                self._max_file_size_bytes,
                self.size_bytes,
            )
            return PayloadTooLarge(
                limit_bytes=self._max_file_size_bytes,
                actual_bytes_at_abort=self.size_bytes,
            )
        try:
            await run_in_threadpool(self._out.write, chunk)
        except OSError as exc:
            raise self._storage_failure(exc) from exc
        return None

    async def commit(self) -> StoredFileDescriptor:
        """Close the staged file and move it onto its stored name."""
        try:
            await run_in_threadpool(self._finish)
        except OSError as exc:
            raise self._storage_failure(exc) from exc

        logger.info(
            "Stored upload: %s (%d bytes, %s)",
            self.final_path,
            self.size_bytes,
            self.declared_media_type,
        )
        return StoredFileDescriptor(
            stored_name=self.stored_name,
            original_name=self.original_name,
            extension=extract_extension(self.original_name),
            absolute_path=str(self.final_path),
            declared_media_type=self.declared_media_type,
            size_bytes=self.size_bytes,
        )

    def discard(self) -> None:
        """Close and delete the staged file, if any."""
        if self._out is not None:
            out, self._out = self._out, None
            try:
                out.close()
            except OSError as exc:
                logger.error("Could not close partial upload %s: %s", self.staging_path, exc)
        _remove(self.staging_path)

    def _finish(self) -> None:
        out, self._out = self._out, None
        out.close()
        os.replace(self.staging_path, self.final_path)

    def _storage_failure(self, exc: OSError) -> StorageUnavailable:
        self.discard()
        logger.error("Failed writing upload %s: %s", self.staging_path, exc)
        return StorageUnavailable(self._destination, exc)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class UploadIngestor:
    """Validates uploaded parts and streams the accepted ones to disk."""

    def __init__(
        self,
        uploads_root: Union[str, Path],
        max_file_size_bytes: int = MAX_FILE_SIZE_BYTES,
        allowed_mime_types: Iterable[str] = ALLOWED_MIME_TYPES,
        chunk_size_bytes: int = CHUNK_SIZE_BYTES,
    ) -> None:
        self._resolver = DestinationResolver(uploads_root)
        self._max_file_size_bytes = max_file_size_bytes
        self._allowed_mime_types = frozenset(allowed_mime_types)
        self._chunk_size_bytes = chunk_size_bytes

    @classmethod
    def from_config(cls, config: UploadsConfig) -> "UploadIngestor":
        return cls(
            uploads_root=config.root_dir,
            max_file_size_bytes=config.max_file_size_bytes,
            allowed_mime_types=config.allowed_mime_types,
            chunk_size_bytes=config.chunk_size_bytes,
        )

    @property
    def resolver(self) -> DestinationResolver:
        return self._resolver

    @property
    def max_file_size_bytes(self) -> int:
        return self._max_file_size_bytes

    def is_allowed(self, declared_media_type: Optional[str]) -> bool:
        """Exact, case-sensitive allow-list check on the declared MIME type."""
        return (declared_media_type or "") in self._allowed_mime_types

    def check_media_type(
        self, original_name: str, declared_media_type: str
    ) -> Optional[UnsupportedMediaType]:
        """Return the rejection for a disallowed type, or None to accept."""
        if self.is_allowed(declared_media_type):
            return None
        logger.warning(
            "Rejected upload %r: unsupported media type %r", original_name, declared_media_type
        )
        return UnsupportedMediaType(declared_media_type=declared_media_type)

    async def open_part(
        self, destination: Path, original_name: str, declared_media_type: str
    ) -> PartWriter:
        """Start staging an accepted part in *destination*.

        Raises:
            StorageUnavailable: If the staged file cannot be created.
        """
        writer = PartWriter(
            destination, original_name, declared_media_type, self._max_file_size_bytes
        )
        await writer.open()
        return writer

    async def ingest(
        self,
        parts: Sequence[IncomingFile],
        category: UploadCategory = UploadCategory.DOCUMENTS,
    ) -> List[UploadOutcome]:
        """Process every part of one request, returning one outcome per part.

        Rejections are returned, not raised, so one bad part never affects
        its siblings. If anything is raised instead, files already stored
        for this batch are deleted before it propagates.

        Raises:
            StorageUnavailable: If the destination cannot be created or written.
        """
        destination = self._resolver.resolve(category)
        outcomes: List[UploadOutcome] = []
        try:
            for part in parts:
                outcomes.append(await self.ingest_one(part, destination))
        except BaseException:
            discard_stored(outcomes)
            raise
        return outcomes

    async def ingest_one(self, part: IncomingFile, destination: Path) -> UploadOutcome:
        """Validate one part and, if accepted, stream it into *destination*."""
        declared = part.content_type or ""
        original_name = part.filename or ""

        rejection = self.check_media_type(original_name, declared)
        if rejection is not None:
            return rejection

        writer = await self.open_part(destination, original_name, declared)
        try:
            while True:
                chunk = await part.read(self._chunk_size_bytes)
                if not chunk:
                    return await writer.commit()
                too_large = await writer.write(chunk)
                if too_large is not None:
                    return too_large
        except BaseException:
            # Cancellation (client went away) or any other failure mid-stream
            writer.discard()
            raise


# ---------------------------------------------------------------------------
# Singleton ingestor management
# ---------------------------------------------------------------------------

_ingestor: Optional[UploadIngestor] = None


def get_ingestor() -> UploadIngestor:
    """Return the global UploadIngestor, building it from config on first use."""
    global _ingestor
    if _ingestor is None:
        _ingestor = UploadIngestor.from_config(get_config().uploads)
    return _ingestor


def set_ingestor(ingestor: Optional[UploadIngestor]) -> None:
    """Set (or clear) the global UploadIngestor."""
    global _ingestor
    _ingestor = ingestor
