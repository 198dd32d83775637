"""
In-process storage backend.

Implements the Persistence, TenantDirectory and SequenceStore interfaces
on plain dictionaries guarded by locks. Used by the CLI and tests; a host
application supplies its own database-backed implementation.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

from gst_engine.collaborators import BatchLogEntry
from gst_engine.documents import Document, DocumentKind, SourceRecord, TenantSettings
from gst_engine.sequence import InMemorySequenceStore


class DuplicateDocumentNumber(Exception):
    """(tenant, kind, number) uniqueness violated."""


class InMemoryStore:
    """Tenant-isolated record, document, sequence and batch log storage."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], SourceRecord] = {}
        self._documents: dict[str, Document] = {}
        self._numbers: set[tuple[str, str, str]] = set()
        self._tenants: dict[str, TenantSettings] = {}
        self._logs: list[BatchLogEntry] = []
        self.sequences = InMemorySequenceStore()

    # -- loading ------------------------------------------------------------

    def add_tenant(self, settings: TenantSettings) -> None:
        with self._lock:
            self._tenants[settings.tenant_id] = settings

    def add_records(self, records: Iterable[SourceRecord]) -> None:
        with self._lock:
            for record in records:
                self._records[(record.tenant_id, record.id)] = record

    # -- TenantDirectory ----------------------------------------------------

    def get_tenant_settings(self, tenant_id: str) -> Optional[TenantSettings]:
        with self._lock:
            return self._tenants.get(tenant_id)

    # -- Persistence --------------------------------------------------------

    def get_source_record(
        self, tenant_id: str, record_id: str
    ) -> Optional[SourceRecord]:
        with self._lock:
            return self._records.get((tenant_id, record_id))

    def save_document(self, document: Document) -> None:
        key = (document.tenant_id, document.kind.value, document.number)
        with self._lock:
            if key in self._numbers:
                raise DuplicateDocumentNumber(
                    f"{document.number} already exists for tenant {document.tenant_id}"
                )
            if document.id in self._documents:
                raise DuplicateDocumentNumber(f"Document id {document.id} already stored")
            self._numbers.add(key)
            self._documents[document.id] = document

    def get_document(self, tenant_id: str, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
        if document is None or document.tenant_id != tenant_id:
            return None
        return document

    def list_documents(
        self, tenant_id: str, kind: Optional[DocumentKind] = None
    ) -> list[Document]:
        """Documents for a tenant, newest first."""
        with self._lock:
            documents = [
                d
                for d in self._documents.values()
                if d.tenant_id == tenant_id and (kind is None or d.kind is kind)
            ]
        return sorted(documents, key=lambda d: (d.created_at, d.sequence), reverse=True)

    def get_and_increment_sequence(self, tenant_id: str, kind: str, start: int) -> int:
        return self.sequences.get_and_increment(tenant_id, kind, start)

    # SequenceStore
    get_and_increment = get_and_increment_sequence

    def append_batch_log(self, entry: BatchLogEntry) -> None:
        with self._lock:
            self._logs.append(entry)

    def list_batch_logs(self, tenant_id: Optional[str] = None) -> list[BatchLogEntry]:
        with self._lock:
            return [e for e in self._logs if tenant_id is None or e.tenant_id == tenant_id]
