"""Streaming multipart reader for upload requests.

Parses a ``multipart/form-data`` body as it arrives from the client and hands
every file part straight to the ingestion pipeline, so the size limit applies
while the body is being received rather than after it has been buffered.

When a file part crosses the limit the reader stops consuming the body. Parts
that come after it are never read, so a request with an oversized file is
cut short at that point; the caller decides what to do with files stored
before it.

Usage:
    reader = MultipartUploadReader(ingestor)
    form = await reader.read(request.headers["content-type"], request.stream())
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

from python_multipart.exceptions import FormParserError, MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from .exceptions import UploadError
from .schemas import UploadCategory, UploadOutcome
from .service import PartWriter, UploadIngestor, discard_stored

logger = logging.getLogger(__name__)

# Non-file fields (e.g. documentType) are small labels
MAX_FIELD_SIZE_BYTES = 64 * 1024


class MalformedForm(UploadError):
    """Raised when the request body is not a usable multipart form."""


@dataclass
class UploadForm:
    """What was read from one multipart request.

    ``files`` holds ``(original filename, outcome)`` pairs in part order.
    ``truncated`` is set when a file crossed the size limit and the rest of
    the body was left unread.
    """
    fields: Dict[str, str] = field(default_factory=dict)
    files: List[Tuple[str, UploadOutcome]] = field(default_factory=list)
    truncated: bool = False

    @property
    def outcomes(self) -> List[UploadOutcome]:
        return [outcome for _, outcome in self.files]


class _PartEvents:
    """Collects python-multipart callbacks into a list of events.

    The parser calls back synchronously; the events are then drained by the
    async reader after every ``write``.
    """

    def __init__(self) -> None:
        self.events: List[Tuple[str, object]] = []
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
        }

    def on_part_begin(self) -> None:
        self._headers = {}

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        self.events.append(("headers", self._headers))

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        self.events.append(("data", data[start:end]))

    def on_part_end(self) -> None:
        self.events.append(("end", None))

    def drain(self) -> List[Tuple[str, object]]:
        events, self.events = self.events, []
        return events


class MultipartUploadReader:
    """Reads one upload request, streaming its file parts into the ingestor."""

    def __init__(
        self,
        ingestor: UploadIngestor,
        file_field: str = "file",
        category: UploadCategory = UploadCategory.DOCUMENTS,
        max_field_size_bytes: int = MAX_FIELD_SIZE_BYTES,
    ) -> None:
        self._ingestor = ingestor
        self._file_field = file_field
        self._category = category
        self._max_field_size_bytes = max_field_size_bytes

    async def read(self, content_type: str, stream: AsyncIterator[bytes]) -> UploadForm:
        """Consume *stream* until the form ends or a file trips the size limit.

        Raises:
            MalformedForm: If the body is not valid multipart/form-data.
            StorageUnavailable: If the destination cannot be created or written.
        """
        boundary, charset = self._parse_content_type(content_type)
        destination = self._ingestor.resolver.resolve(self._category)

        events = _PartEvents()
        try:
            parser = MultipartParser(boundary, events.callbacks())
        except FormParserError as exc:
            raise MalformedForm(f"Unusable multipart boundary: {exc}") from exc
        state = _ReadState(destination, charset)
        try:
            async for chunk in stream:
                try:
                    parser.write(chunk)
                except MultipartParseError as exc:
                    raise MalformedForm(f"Malformed multipart body: {exc}") from exc
                if await self._handle(events.drain(), state):
                    state.form.truncated = True
                    return state.form
            parser.finalize()
            await self._handle(events.drain(), state)
            if state.writer is not None or state.field_name is not None:
                raise MalformedForm("Multipart body ended inside a part")
        except BaseException:
            if state.writer is not None:
                state.writer.discard()
            discard_stored(state.form.outcomes)
            raise
        return state.form

    @staticmethod
    def _parse_content_type(content_type: str) -> Tuple[bytes, str]:
        media_type, params = parse_options_header(content_type or "")
        if media_type != b"multipart/form-data":
            raise MalformedForm("Expected a multipart/form-data body")
        boundary = params.get(b"boundary")
        if not boundary:
            raise MalformedForm("Missing multipart boundary")
        charset = params.get(b"charset", b"utf-8").decode("latin-1")
        return boundary, charset

    async def _handle(self, events: List[Tuple[str, object]], state: "_ReadState") -> bool:
        """Apply parser events; True means a file tripped the size limit."""
        for kind, payload in events:
            if kind == "headers":
                await self._start_part(payload, state)
            elif kind == "data":
                if state.writer is not None:
                    too_large = await state.writer.write(payload)
                    if too_large is not None:
                        state.form.files.append((state.writer.original_name, too_large))
                        state.writer = None
                        return True
                elif state.field_name is not None:
                    state.field_value += payload
                    if len(state.field_value) > self._max_field_size_bytes:
                        raise MalformedForm(f"Form field {state.field_name!r} is too large")
            elif kind == "end":
                if state.writer is not None:
                    stored = await state.writer.commit()
                    state.form.files.append((stored.original_name, stored))
                    state.writer = None
                elif state.field_name is not None:
                    state.form.fields[state.field_name] = state.field_value.decode(
                        state.charset, errors="replace"
                    )
                    state.field_name = None
                    state.field_value = b""
        return False

    async def _start_part(self, headers: Dict[bytes, bytes], state: "_ReadState") -> None:
        _, options = parse_options_header(headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode(state.charset, errors="replace")
        raw_filename = options.get(b"filename")

        if raw_filename is None:
            state.field_name = name
            state.field_value = b""
            return

        filename = raw_filename.decode(state.charset, errors="replace")
        if name != self._file_field:
            logger.warning("Ignoring unexpected file field %r (%r)", name, filename)
            return

        declared = headers.get(b"content-type", b"").decode("latin-1").strip()
        rejection = self._ingestor.check_media_type(filename, declared)
        if rejection is not None:
            # Data for this part is dropped as it arrives
            state.form.files.append((filename, rejection))
            return
        state.writer = await self._ingestor.open_part(state.destination, filename, declared)


class _ReadState:
    """Per-request parsing state."""

    def __init__(self, destination: Path, charset: str) -> None:
        self.destination = destination
        self.charset = charset
        self.form = UploadForm()
        self.writer: Optional[PartWriter] = None
        self.field_name: Optional[str] = None
        self.field_value = b""
