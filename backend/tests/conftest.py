"""Shared test fixtures and configuration for backend tests."""
import asyncio
import json
from pathlib import Path
from typing import AsyncIterator, Iterable, Iterator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from hrms.documents.service import EmployeeDocumentService
from hrms.main import app
from hrms.uploads import UploadIngestor, set_ingestor

MiB = 1024 * 1024


class FakePart:
    """In-memory stand-in for an uploaded multipart part.

    ``fail_after`` makes the part raise after that many chunks, which is how
    the tests simulate a client that disconnects mid-stream.
    """

    def __init__(
        self,
        filename: Optional[str],
        content_type: Optional[str],
        data: bytes = b"",
        fail_after: Optional[int] = None,
        error: BaseException = None,
    ):
        self.filename = filename
        self.content_type = content_type
        self._data = memoryview(data)
        self._offset = 0
        self._reads = 0
        self._fail_after = fail_after
        self._error = error or asyncio.CancelledError()
        self.read_sizes: List[int] = []

    async def read(self, size: int = -1) -> bytes:
        if self._fail_after is not None and self._reads >= self._fail_after:
            raise self._error
        self._reads += 1
        self.read_sizes.append(size)
        if size < 0:
            size = len(self._data) - self._offset
        chunk = bytes(self._data[self._offset:self._offset + size])
        self._offset += len(chunk)
        return chunk


def all_files(root: Path) -> List[Path]:
    """Every regular file below *root*, hidden ones included."""
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())


MULTIPART_BOUNDARY = "hrms-test-boundary"
MULTIPART_CONTENT_TYPE = f"multipart/form-data; boundary={MULTIPART_BOUNDARY}"


def part_header(name: str, filename: Optional[str] = None, content_type: Optional[str] = None) -> bytes:
    """Opening boundary and headers of one multipart part."""
    disposition = f'form-data; name="{name}"'
    if filename is not None:
        disposition += f'; filename="{filename}"'
    lines = [f"--{MULTIPART_BOUNDARY}", f"Content-Disposition: {disposition}"]
    if content_type:
        lines.append(f"Content-Type: {content_type}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode()


def multipart_body(parts: List[Tuple[str, Optional[str], Optional[str], bytes]]) -> bytes:
    """Encode ``(name, filename, content_type, data)`` parts as a form body."""
    body = b"".join(part_header(name, filename, ctype) + data + b"\r\n" for name, filename, ctype, data in parts)
    return body + f"--{MULTIPART_BOUNDARY}--\r\n".encode()


async def chunked(data: bytes, size: int) -> AsyncIterator[bytes]:
    for offset in range(0, len(data), size):
        yield data[offset:offset + size]


class AsgiUpload:
    """Drive an ASGI app with a request body delivered message by message.

    ``bytes_received`` counts the body bytes the app actually pulled.
    ``disconnect_after`` sends ``http.disconnect`` once that many body
    messages have been delivered.
    """

    def __init__(self, messages: Iterable[bytes], disconnect_after: Optional[int] = None):
        self._messages = iter(messages)
        self._disconnect_after = disconnect_after
        self._delivered = 0
        self._finished = False
        self.bytes_received = 0
        self.status: Optional[int] = None
        self.body = b""

    async def receive(self) -> dict:
        if self._finished or self._delivered == self._disconnect_after:
            return {"type": "http.disconnect"}
        chunk = next(self._messages, None)
        if chunk is None:
            self._finished = True
            return {"type": "http.request", "body": b"", "more_body": False}
        self._delivered += 1
        self.bytes_received += len(chunk)
        return {"type": "http.request", "body": chunk, "more_body": True}

    async def send(self, message: dict) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
        elif message["type"] == "http.response.body":
            self.body += message.get("body", b"")

    def post(self, app, path: str, content_type: str = MULTIPART_CONTENT_TYPE) -> "AsgiUpload":
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "POST",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [
                (b"host", b"testserver"),
                (b"content-type", content_type.encode()),
            ],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }
        asyncio.run(app(scope, self.receive, self.send))
        return self

    def json(self):
        return json.loads(self.body)


@pytest.fixture
def uploads_root(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def ingestor(uploads_root: Path) -> UploadIngestor:
    """Ingestor with the default 10MB limit and small chunks."""
    return UploadIngestor(uploads_root=uploads_root, chunk_size_bytes=256 * 1024)


@pytest.fixture
def document_service(tmp_path: Path) -> Iterator[EmployeeDocumentService]:
    """Install a document registry backed by a temp DuckDB file."""
    EmployeeDocumentService.reset_instance()
    service = EmployeeDocumentService.get_instance(db_path=str(tmp_path / "documents.duckdb"))
    yield service
    EmployeeDocumentService.reset_instance()


@pytest.fixture
def api_client(ingestor: UploadIngestor, document_service: EmployeeDocumentService) -> Iterator[TestClient]:
    """Provide a TestClient wired to temp storage.

    The lifespan is not entered, so the ingestor installed here is the one
    the endpoints use.
    """
    set_ingestor(ingestor)
    yield TestClient(app)
    set_ingestor(None)
