"""
Interfaces the engine consumes from its host application.

Storage, PDF rendering, notification delivery and tenant configuration
all live outside the engine; these protocols define the only operations
it relies on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from gst_engine.documents import Document, SourceRecord, TenantSettings


@dataclass(frozen=True)
class BatchLogEntry:
    """Historical record of one batch invocation."""

    tenant_id: str
    operation: str
    kind: str
    total_requested: int
    success_count: int
    failure_count: int
    started_at: datetime
    completed_at: datetime
    options: Optional[dict[str, Any]] = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class ChannelResult:
    """Delivery outcome for one notification channel."""

    channel: str
    delivered: bool
    detail: str = ""


class Persistence(Protocol):
    def get_source_record(
        self, tenant_id: str, record_id: str
    ) -> Optional["SourceRecord"]: ...

    def save_document(self, document: "Document") -> None: ...

    def get_document(
        self, tenant_id: str, document_id: str
    ) -> Optional["Document"]: ...

    def get_and_increment_sequence(
        self, tenant_id: str, kind: str, start: int
    ) -> int: ...

    def append_batch_log(self, entry: BatchLogEntry) -> None: ...

    def list_batch_logs(
        self, tenant_id: Optional[str] = None
    ) -> list[BatchLogEntry]: ...


class Renderer(Protocol):
    def render_document(self, document: "Document") -> bytes: ...


class Notifier(Protocol):
    def notify(
        self, document: "Document", channels: Sequence[str]
    ) -> dict[str, ChannelResult]: ...


class TenantDirectory(Protocol):
    def get_tenant_settings(
        self, tenant_id: str
    ) -> Optional["TenantSettings"]: ...


class PersistenceSequenceStore:
    """Adapts a Persistence collaborator to the SequenceStore protocol."""

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def get_and_increment(self, tenant_id: str, kind: str, start: int) -> int:
        return self.persistence.get_and_increment_sequence(tenant_id, kind, start)
