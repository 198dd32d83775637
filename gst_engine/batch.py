"""
Bulk document generation.

Runs the document assembler over many source records with:
- Per-item failure isolation (one bad record never aborts the batch)
- A bounded worker pool with an independent timeout per step
- Cooperative cancellation of not-yet-started items
- Optional rendering / notification side effects per created document
- Results reported in input order, one batch log entry per run
"""

from __future__ import annotations

import io
import logging
import threading
import zipfile
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence, Union

from gst_engine.collaborators import (
    BatchLogEntry,
    ChannelResult,
    Notifier,
    Persistence,
    Renderer,
    TenantDirectory,
)
from gst_engine.config import Settings, get_settings
from gst_engine.documents import (
    Document,
    DocumentAssembler,
    DocumentKind,
    LabelOptions,
    SourceRecord,
    TenantSettings,
)
from gst_engine.errors import (
    Cancelled,
    InvalidBatchRequest,
    RecordNotFound,
    StepTimeout,
    TenantNotConfigured,
    error_kind_of,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Options and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchOptions:
    """Caller options for one batch run."""

    render: bool = False
    notify_channels: tuple[str, ...] = ()
    max_workers: Optional[int] = None  # None: settings.max_workers
    step_timeout: Optional[float] = None  # None: settings.step_timeout_seconds
    label_options: Optional[LabelOptions] = None

    def as_log_options(self) -> dict[str, Any]:
        return {
            "render": self.render,
            "notify_channels": list(self.notify_channels),
            "max_workers": self.max_workers,
            "step_timeout": self.step_timeout,
        }


class CancellationToken:
    """Signals a running batch to stop starting new items."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ItemSuccess:
    index: int
    source_record_id: str
    document_id: str
    document_number: str
    rendered: bool = False
    notifications: tuple[ChannelResult, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ItemFailure:
    index: int
    source_record_id: str
    error_kind: str
    message: str
    document_number: Optional[str] = None  # set when a number was consumed


ItemOutcome = Union[ItemSuccess, ItemFailure]


@dataclass(frozen=True)
class BatchResult:
    """Aggregate outcome of one batch run, in input order."""

    operation: str
    kind: str
    total_requested: int
    successes: tuple[ItemSuccess, ...]
    failures: tuple[ItemFailure, ...]
    started_at: datetime
    completed_at: datetime

    @property
    def success_count(self) -> int:
        return len(self.successes)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def outcomes(self) -> list[ItemOutcome]:
        return sorted([*self.successes, *self.failures], key=lambda o: o.index)

    @property
    def failed_ids(self) -> list[str]:
        return [f.source_record_id for f in self.failures]

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


def fold_outcomes(
    operation: str,
    kind: str,
    outcomes: Sequence[ItemOutcome],
    started_at: datetime,
    completed_at: datetime,
    total_requested: Optional[int] = None,
) -> BatchResult:
    """Fold per-item outcomes into an immutable BatchResult."""
    ordered = sorted(outcomes, key=lambda o: o.index)
    return BatchResult(
        operation=operation,
        kind=kind,
        total_requested=len(ordered) if total_requested is None else total_requested,
        successes=tuple(o for o in ordered if isinstance(o, ItemSuccess)),
        failures=tuple(o for o in ordered if isinstance(o, ItemFailure)),
        started_at=started_at,
        completed_at=completed_at,
    )


@dataclass(frozen=True)
class ArchiveResult:
    """Rendered documents bundled as one ZIP archive."""

    archive: bytes
    result: BatchResult
    filenames: tuple[str, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Kind strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KindStrategy:
    operation: str
    file_label: str


_KIND_STRATEGIES: dict[DocumentKind, KindStrategy] = {
    DocumentKind.INVOICE: KindStrategy("BULK_INVOICE_GENERATION", "Invoice"),
    DocumentKind.LABEL: KindStrategy("BULK_LABEL_GENERATION", "Label"),
}

ARCHIVE_OPERATION = "BULK_PDF_GENERATION"


def strategy_for(kind: DocumentKind) -> KindStrategy:
    return _KIND_STRATEGIES[kind]


def archive_filename(document: Document) -> str:
    label = strategy_for(document.kind).file_label
    if document.kind is DocumentKind.LABEL and document.shipment is not None:
        return f"{label}-{document.shipment.tracking_id}.pdf"
    return f"{label}-{document.number}.pdf"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _StepRunner:
    """
    Runs blocking steps with an optional per-call timeout.

    Each timed step gets its own thread, so the clock starts when the step
    starts and an abandoned step never holds up another item's steps.
    """

    def __init__(self, timeout: Optional[float]) -> None:
        self.timeout = timeout

    def call(
        self,
        step: str,
        fn: Callable[..., Any],
        *args: Any,
        on_late: Optional[Callable[[Future], None]] = None,
    ) -> Any:
        """
        Run ``fn(*args)``; raise StepTimeout if it overruns.

        ``on_late`` is called with the step's future once an abandoned step
        finally completes.
        """
        if not self.timeout:
            return fn(*args)

        future: Future = Future()

        def target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=target, name=f"gst-step-{step}", daemon=True).start()
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeout as e:
            if future.done():
                # the step itself raised a TimeoutError
                raise
            if on_late is not None:
                future.add_done_callback(on_late)
            raise StepTimeout(f"{step} timed out after {self.timeout}s") from e


class BatchOrchestrator:
    """
    Drives bulk invoice and label generation.

    Whole-batch preconditions (bad kind, unconfigured tenant, missing
    collaborators) raise before any item runs. Everything that goes wrong
    for a single item is captured in that item's failure entry.
    """

    def __init__(
        self,
        persistence: Persistence,
        tenants: TenantDirectory,
        assembler: DocumentAssembler,
        renderer: Optional[Renderer] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.persistence = persistence
        self.tenants = tenants
        self.assembler = assembler
        self.renderer = renderer
        self.notifier = notifier
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_kind(kind: Union[DocumentKind, str]) -> DocumentKind:
        try:
            return DocumentKind.parse(kind)
        except ValueError as e:
            raise InvalidBatchRequest(f"Unsupported document kind: {kind!r}") from e

    def _check_options(self, options: BatchOptions) -> None:
        if options.render and self.renderer is None:
            raise InvalidBatchRequest("Rendering requested but no renderer configured")
        if options.notify_channels and self.notifier is None:
            raise InvalidBatchRequest(
                "Notifications requested but no notifier configured"
            )
        if options.max_workers is not None and options.max_workers < 1:
            raise InvalidBatchRequest("max_workers must be at least 1")

    def _tenant_settings(self, tenant_id: str, kind: DocumentKind) -> TenantSettings:
        tenant_settings = self.tenants.get_tenant_settings(tenant_id)
        if tenant_settings is None:
            raise TenantNotConfigured(tenant_id, ["settings"])
        self.assembler.check_settings(tenant_settings, kind)
        return tenant_settings

    def _timeout(self, options: BatchOptions) -> Optional[float]:
        if options.step_timeout is not None:
            return options.step_timeout
        return self.settings.step_timeout_seconds

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(
        self,
        ids: list[str],
        worker: Callable[[int, str, _StepRunner], ItemOutcome],
        workers: int,
        timeout: Optional[float],
        cancel: CancellationToken,
    ) -> list[ItemOutcome]:
        def guarded(index: int, item_id: str, steps: _StepRunner) -> ItemOutcome:
            if cancel.cancelled:
                return ItemFailure(
                    index, item_id, Cancelled.error_kind, "Batch cancelled before item started"
                )
            return worker(index, item_id, steps)

        if not ids:
            return []
        steps = _StepRunner(timeout)
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="gst-batch"
        ) as pool:
            futures = [
                pool.submit(guarded, index, item_id, steps)
                for index, item_id in enumerate(ids)
            ]
            return [f.result() for f in futures]

    def _fetch(self, tenant_id: str, record_id: str) -> SourceRecord:
        record = self.persistence.get_source_record(tenant_id, record_id)
        if record is None or record.tenant_id != tenant_id:
            raise RecordNotFound(f"Source record {record_id} not found")
        return record

    def _side_effects(
        self,
        document: Document,
        options: BatchOptions,
        steps: _StepRunner,
    ) -> tuple[bool, tuple[ChannelResult, ...], tuple[str, ...]]:
        rendered = False
        notifications: tuple[ChannelResult, ...] = ()
        warnings: list[str] = []

        if options.render and self.renderer is not None:
            try:
                steps.call("render", self.renderer.render_document, document)
                rendered = True
            except Exception as e:
                logger.warning(f"Rendering {document.number} failed: {e}")
                warnings.append(f"render failed ({error_kind_of(e)}): {e}")

        if options.notify_channels and self.notifier is not None:
            try:
                results = steps.call(
                    "notify", self.notifier.notify, document, list(options.notify_channels)
                )
                notifications = tuple(results.values())
                for channel_result in notifications:
                    if not channel_result.delivered:
                        warnings.append(
                            f"notify {channel_result.channel} failed: {channel_result.detail}"
                        )
            except Exception as e:
                logger.warning(f"Notifying for {document.number} failed: {e}")
                warnings.append(f"notify failed ({error_kind_of(e)}): {e}")

        return rendered, notifications, tuple(warnings)

    def _late_build(self, future: Future) -> None:
        """A build that finishes after its timeout holds a number nothing will store."""
        if future.cancelled() or future.exception() is not None:
            return
        self.assembler.record_gap(future.result(), "build step timed out")

    def _late_persist(self, future: Future) -> None:
        """A save that lands after its timeout left a stored but unreported document."""
        if future.cancelled() or future.exception() is not None:
            # persist() has already recorded the gap
            return
        self.assembler.record_late_store(future.result())

    def _generate_item(
        self,
        index: int,
        record_id: str,
        steps: _StepRunner,
        tenant_settings: TenantSettings,
        kind: DocumentKind,
        options: BatchOptions,
    ) -> ItemOutcome:
        tenant_id = tenant_settings.tenant_id
        try:
            record = steps.call("fetch", self._fetch, tenant_id, record_id)
            document = steps.call(
                "build",
                self.assembler.build,
                record,
                tenant_settings,
                kind,
                options.label_options,
                on_late=self._late_build,
            )
        except Exception as e:
            logger.debug(f"Record {record_id} failed: {e}")
            return ItemFailure(index, record_id, error_kind_of(e), str(e) or error_kind_of(e))

        try:
            steps.call(
                "persist", self.assembler.persist, document, on_late=self._late_persist
            )
        except Exception as e:
            logger.debug(f"Record {record_id} failed storing {document.number}: {e}")
            return ItemFailure(
                index,
                record_id,
                error_kind_of(e),
                str(e) or error_kind_of(e),
                document_number=document.number,
            )

        rendered, notifications, warnings = self._side_effects(document, options, steps)
        return ItemSuccess(
            index=index,
            source_record_id=record_id,
            document_id=document.id,
            document_number=document.number,
            rendered=rendered,
            notifications=notifications,
            warnings=warnings,
        )

    def _log_batch(
        self,
        tenant_id: str,
        result: BatchResult,
        options: Optional[dict[str, Any]],
    ) -> None:
        logger.info(
            f"{result.operation} for tenant {tenant_id}: "
            f"{result.success_count}/{result.total_requested} succeeded, "
            f"{result.failure_count} failed in {result.duration_seconds:.2f}s"
        )
        entry = BatchLogEntry(
            tenant_id=tenant_id,
            operation=result.operation,
            kind=result.kind,
            total_requested=result.total_requested,
            success_count=result.success_count,
            failure_count=result.failure_count,
            started_at=result.started_at,
            completed_at=result.completed_at,
            options=options,
        )
        try:
            self.persistence.append_batch_log(entry)
        except Exception:
            logger.exception(f"Failed to log {result.operation} for tenant {tenant_id}")

    def run(
        self,
        tenant_id: str,
        source_record_ids: Sequence[str],
        kind: Union[DocumentKind, str] = DocumentKind.INVOICE,
        options: Optional[BatchOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """
        Generate one document per source record id.

        Duplicate ids are processed as separate attempts, each numbered
        independently. Check failure_count for partial failure; only
        whole-batch preconditions raise.
        """
        kind = self._parse_kind(kind)
        options = options or BatchOptions()
        self._check_options(options)
        tenant_settings = self._tenant_settings(tenant_id, kind)
        strategy = strategy_for(kind)

        ids = [str(i) for i in source_record_ids]
        started_at = _utcnow()

        def worker(index: int, record_id: str, steps: _StepRunner) -> ItemOutcome:
            return self._generate_item(
                index, record_id, steps, tenant_settings, kind, options
            )

        outcomes = self._execute(
            ids,
            worker,
            options.max_workers or self.settings.max_workers,
            self._timeout(options),
            cancel or CancellationToken(),
        )
        result = fold_outcomes(
            strategy.operation, kind.value, outcomes, started_at, _utcnow(), len(ids)
        )
        self._log_batch(tenant_id, result, options.as_log_options())
        return result

    def render_archive(
        self,
        tenant_id: str,
        document_ids: Sequence[str],
        options: Optional[BatchOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ArchiveResult:
        """Render stored documents into a single ZIP archive."""
        if self.renderer is None:
            raise InvalidBatchRequest("Rendering requested but no renderer configured")
        options = options or BatchOptions()
        self._check_options(options)
        renderer = self.renderer

        ids = [str(i) for i in document_ids]
        rendered: dict[int, tuple[str, bytes]] = {}
        rendered_lock = threading.Lock()
        started_at = _utcnow()

        def worker(index: int, document_id: str, steps: _StepRunner) -> ItemOutcome:
            try:
                document = self.persistence.get_document(tenant_id, document_id)
                if document is None:
                    raise RecordNotFound(f"Document {document_id} not found")
                content = steps.call("render", renderer.render_document, document)
            except Exception as e:
                return ItemFailure(index, document_id, error_kind_of(e), str(e) or error_kind_of(e))
            with rendered_lock:
                rendered[index] = (archive_filename(document), content)
            return ItemSuccess(
                index=index,
                source_record_id=document.source_record_id,
                document_id=document.id,
                document_number=document.number,
                rendered=True,
            )

        outcomes = self._execute(
            ids,
            worker,
            options.max_workers or self.settings.max_workers,
            self._timeout(options),
            cancel or CancellationToken(),
        )

        buffer = io.BytesIO()
        filenames: list[str] = []
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for index in sorted(rendered):
                filename, content = rendered[index]
                if filename in filenames:
                    filename = f"{filename[:-4]}-{index + 1}.pdf"
                archive.writestr(filename, content)
                filenames.append(filename)

        result = fold_outcomes(
            ARCHIVE_OPERATION, "document", outcomes, started_at, _utcnow(), len(ids)
        )
        self._log_batch(tenant_id, result, options.as_log_options())
        return ArchiveResult(
            archive=buffer.getvalue(), result=result, filenames=tuple(filenames)
        )
