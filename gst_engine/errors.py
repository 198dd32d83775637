"""
Error taxonomy for document generation and batch processing.

Each error class carries an ``error_kind`` that is reported verbatim in
batch failure entries and import error rows.
"""

from __future__ import annotations

from typing import Optional


class DocumentEngineError(Exception):
    """Base class for all engine errors."""

    error_kind = "DocumentEngineError"


class InvalidLineItem(DocumentEngineError):
    """A line item has a bad quantity, price, discount or rate."""

    error_kind = "InvalidLineItem"


class TenantNotConfigured(DocumentEngineError):
    """Seller settings required to issue documents are missing."""

    error_kind = "TenantNotConfigured"

    def __init__(self, tenant_id: str, missing: Optional[list[str]] = None) -> None:
        self.tenant_id = tenant_id
        self.missing = list(missing or [])
        detail = f": missing {', '.join(self.missing)}" if self.missing else ""
        super().__init__(f"Tenant {tenant_id} is not configured{detail}")


class SequenceUnavailable(DocumentEngineError):
    """The document counter store could not issue a number."""

    error_kind = "SequenceUnavailable"


class RecordNotFound(DocumentEngineError):
    """A source record (or stored document) does not exist for the tenant."""

    error_kind = "RecordNotFound"


class AssemblyFailed(DocumentEngineError):
    """A numbered document could not be persisted."""

    error_kind = "AssemblyFailed"


class Cancelled(DocumentEngineError):
    """The batch was cancelled before this item started."""

    error_kind = "Cancelled"


class StepTimeout(DocumentEngineError):
    """A per-item step exceeded its time budget."""

    error_kind = "Timeout"


class ImportRowInvalid(DocumentEngineError):
    """One imported row violates the import schema."""

    error_kind = "ImportRowInvalid"


class InvalidBatchRequest(DocumentEngineError, ValueError):
    """A batch cannot start because its arguments are invalid."""

    error_kind = "InvalidBatchRequest"


def error_kind_of(exc: BaseException) -> str:
    """Return the reportable kind for any exception."""
    if isinstance(exc, DocumentEngineError):
        return exc.error_kind
    return type(exc).__name__
