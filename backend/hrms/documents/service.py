"""Employee document registry.

Records stored uploads against employees in DuckDB. The files themselves
are written by the upload ingestion pipeline; this service only keeps track
of them and removes them when a document is deleted.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import duckdb

from .schemas import EmployeeDocument
from ..config import get_config
from ..uploads.schemas import StoredFileDescriptor

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, employee_id, document_type, original_filename, stored_filename,
    file_path, mime_type, size_bytes, uploaded_at
"""


class EmployeeDocumentService:
    """Service for recording and retrieving employee documents."""

    _instance: Optional["EmployeeDocumentService"] = None
    _db_path: str = "employee_documents.duckdb"

    def __init__(self, db_path: Optional[str] = None):
        """Initialize the document registry."""
        if db_path:
            self._db_path = db_path

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "EmployeeDocumentService":
        """Get or create the singleton instance.

        Without an explicit path the configured ``documents.db_path`` is used.
        """
        if cls._instance is None:
            cls._instance = cls(db_path or get_config().documents.db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection."""
        if self._connection is None:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS employee_documents (
                id VARCHAR PRIMARY KEY,
                employee_id VARCHAR NOT NULL,
                document_type VARCHAR NOT NULL,
                original_filename VARCHAR NOT NULL,
                stored_filename VARCHAR NOT NULL,
                file_path VARCHAR NOT NULL,
                mime_type VARCHAR NOT NULL,
                size_bytes BIGINT NOT NULL,
                uploaded_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_employee_id
            ON employee_documents(employee_id)
        """)

    @staticmethod
    def _from_row(row) -> EmployeeDocument:
        return EmployeeDocument(
            id=row[0],
            employee_id=row[1],
            document_type=row[2],
            original_filename=row[3],
            stored_filename=row[4],
            file_path=row[5],
            mime_type=row[6],
            size_bytes=row[7],
            uploaded_at=row[8].timestamp() if row[8] else 0,
        )

    def record(
        self,
        employee_id: str,
        document_type: str,
        stored: StoredFileDescriptor,
    ) -> EmployeeDocument:
        """Record a freshly stored upload as one of the employee's documents.

        Args:
            employee_id: Employee the document belongs to
            document_type: Kind of document as chosen by the uploader
            stored: Descriptor returned by the ingestion pipeline

        Returns:
            The persisted EmployeeDocument
        """
        document = EmployeeDocument(
            employee_id=employee_id,
            document_type=document_type,
            original_filename=stored.original_name,
            stored_filename=stored.stored_name,
            file_path=stored.absolute_path,
            mime_type=stored.declared_media_type,
            size_bytes=stored.size_bytes,
        )

        conn = self._get_connection()
        conn.execute(
            f"""
            INSERT INTO employee_documents ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                document.id,
                document.employee_id,
                document.document_type,
                document.original_filename,
                document.stored_filename,
                document.file_path,
                document.mime_type,
                document.size_bytes,
                datetime.fromtimestamp(document.uploaded_at),
            ]
        )

        logger.info(
            f"Recorded document {document.id} ({document.document_type}) "
            f"for employee {employee_id}"
        )
        return document

    def get_document(self, document_id: str) -> Optional[EmployeeDocument]:
        """Get document record by ID."""
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM employee_documents WHERE id = ?",
            [document_id]
        ).fetchone()

        if not row:
            return None
        return self._from_row(row)

    def get_file_path(self, document_id: str) -> Optional[Path]:
        """Get the file path on disk for a document, if the file still exists."""
        document = self.get_document(document_id)
        if not document:
            return None

        file_path = Path(document.file_path)
        if not file_path.exists():
            return None

        return file_path

    def list_documents(self, employee_id: str) -> List[EmployeeDocument]:
        """Get all documents for an employee, newest first."""
        conn = self._get_connection()
        rows = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM employee_documents
            WHERE employee_id = ?
            ORDER BY uploaded_at DESC
            """,
            [employee_id]
        ).fetchall()

        return [self._from_row(r) for r in rows]

    def delete_document(self, document_id: str) -> bool:
        """Delete a document record and its stored file.

        Returns:
            False if no such document exists
        """
        document = self.get_document(document_id)
        if not document:
            return False

        Path(document.file_path).unlink(missing_ok=True)

        conn = self._get_connection()
        conn.execute("DELETE FROM employee_documents WHERE id = ?", [document_id])

        logger.info(f"Deleted document {document_id} for employee {document.employee_id}")
        return True
