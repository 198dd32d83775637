"""
GST Document Engine
===================

Billing document and shipping label generation for Indian e-commerce
sellers: GST place-of-supply splits, per-tenant document numbering and
bulk generation with per-item failure isolation.

Modules:
    jurisdictions    - GST state codes, GSTIN checks and default HSN codes
    calculator       - CGST/SGST/IGST split engine
    sequence         - Per-tenant document number allocation
    documents        - Invoice and label assembly
    collaborators    - Persistence, rendering and notification interfaces
    store            - In-process storage backend
    batch            - Bulk generation and archive rendering
    codec            - Delimited text import and export
    report_generator - Batch and GST summary reporting with CSV/JSON export
    config           - Environment-driven settings and logging
    cli              - Command-line interface
"""

__version__ = "1.0.0"

from gst_engine.batch import BatchOptions, BatchOrchestrator, BatchResult, CancellationToken
from gst_engine.calculator import LineItem, TaxCalculator
from gst_engine.codec import CUSTOMER_SCHEMA, ImportSchema, TabularCodec
from gst_engine.config import Settings, get_settings
from gst_engine.documents import DocumentAssembler, DocumentKind, SourceRecord, TenantSettings
from gst_engine.jurisdictions import JurisdictionRegistry
from gst_engine.report_generator import ReportGenerator
from gst_engine.sequence import SequenceAllocator
from gst_engine.store import InMemoryStore

__all__ = [
    "BatchOptions",
    "BatchOrchestrator",
    "BatchResult",
    "CancellationToken",
    "CUSTOMER_SCHEMA",
    "DocumentAssembler",
    "DocumentKind",
    "ImportSchema",
    "InMemoryStore",
    "JurisdictionRegistry",
    "LineItem",
    "ReportGenerator",
    "SequenceAllocator",
    "Settings",
    "SourceRecord",
    "TabularCodec",
    "TaxCalculator",
    "TenantSettings",
    "get_settings",
]
