"""Tests for bulk document generation."""

import io
import threading
import time
import zipfile
from decimal import Decimal

import pytest

from gst_engine.batch import (
    BatchOptions,
    BatchOrchestrator,
    CancellationToken,
    ItemFailure,
    ItemSuccess,
)
from gst_engine.calculator import LineItem, TaxCalculator
from gst_engine.collaborators import ChannelResult
from gst_engine.config import Settings
from gst_engine.documents import (
    Address,
    DocumentAssembler,
    DocumentKind,
    LabelOptions,
    SourceRecord,
    TenantSettings,
)
from gst_engine.errors import InvalidBatchRequest, TenantNotConfigured
from gst_engine.sequence import SequenceAllocator
from gst_engine.store import InMemoryStore

SETTINGS = Settings(sequence_retry_wait_seconds=0, max_workers=4, step_timeout_seconds=5)
TENANT = "shop-1"


class RecordingRenderer:
    def __init__(self, fail_for: set[str] = frozenset()) -> None:
        self.fail_for = fail_for
        self.rendered: list[str] = []

    def render_document(self, document) -> bytes:
        if document.source_record_id in self.fail_for:
            raise RuntimeError("template missing")
        self.rendered.append(document.number)
        return f"%PDF {document.number}".encode()


class StubNotifier:
    def __init__(self, deliver: bool = True) -> None:
        self.deliver = deliver

    def notify(self, document, channels):
        return {
            c: ChannelResult(c, self.deliver, "" if self.deliver else "bounced")
            for c in channels
        }


class BlockingStore(InMemoryStore):
    """Blocks get_source_record for chosen ids until released."""

    def __init__(self, block_ids: set[str]) -> None:
        super().__init__()
        self.block_ids = block_ids
        self.release = threading.Event()

    def get_source_record(self, tenant_id, record_id):
        if record_id in self.block_ids:
            self.release.wait(timeout=10)
        return super().get_source_record(tenant_id, record_id)


class StalledCounterStore(InMemoryStore):
    """Holds every counter increment until released."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()

    def get_and_increment_sequence(self, tenant_id, kind, start):
        self.release.wait(timeout=10)
        return super().get_and_increment_sequence(tenant_id, kind, start)

    get_and_increment = get_and_increment_sequence


class SlowSaveStore(InMemoryStore):
    """Holds every document save until released."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()

    def save_document(self, document) -> None:
        self.release.wait(timeout=10)
        super().save_document(document)


class CounterDownStore(InMemoryStore):
    def get_and_increment_sequence(self, tenant_id, kind, start):
        raise ConnectionError("counter store offline")

    get_and_increment = get_and_increment_sequence


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


def _seeded(store: InMemoryStore, count: int = 1) -> InMemoryStore:
    store.add_tenant(_tenant())
    store.add_records(_record(str(n)) for n in range(1, count + 1))
    return store


def _tenant(tenant_id: str = TENANT) -> TenantSettings:
    return TenantSettings(
        tenant_id=tenant_id,
        seller_name="Acme Retail",
        seller_jurisdiction="27",
        seller_tax_id="27AAPFU0939F1ZV",
        invoice_prefix="INV",
    )


def _record(record_id: str, state: str = "Delhi") -> SourceRecord:
    return SourceRecord(
        id=record_id,
        tenant_id=TENANT,
        items=[LineItem("Shirt", Decimal("2"), Decimal("500.00"))],
        billing_address=Address(province=state),
    )


def _orchestrator(
    store: InMemoryStore, renderer=None, notifier=None
) -> BatchOrchestrator:
    calc = TaxCalculator(settings=SETTINGS)
    assembler = DocumentAssembler(calc, SequenceAllocator(store, SETTINGS), store, SETTINGS)
    return BatchOrchestrator(store, store, assembler, renderer, notifier, SETTINGS)


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_tenant(_tenant())
    s.add_records(_record(str(n)) for n in range(1, 11) if n not in (3, 7))
    return s


IDS = [str(n) for n in range(1, 11)]


# ── Partial failure ─────────────────────────────────────────────────


def test_missing_records_fail_individually(store: InMemoryStore):
    result = _orchestrator(store).run(TENANT, IDS, DocumentKind.INVOICE)

    assert result.total_requested == 10
    assert result.success_count == 8
    assert result.failure_count == 2
    assert result.failed_ids == ["3", "7"]
    assert {f.error_kind for f in result.failures} == {"RecordNotFound"}
    assert result.operation == "BULK_INVOICE_GENERATION"


def test_successful_numbers_are_distinct(store: InMemoryStore):
    result = _orchestrator(store).run(TENANT, IDS, "invoice")
    numbers = [s.document_number for s in result.successes]
    assert len(set(numbers)) == 8
    assert sorted(numbers) == [f"INV-{n:04d}" for n in range(1, 9)]


def test_outcomes_follow_input_order(store: InMemoryStore):
    ids = list(reversed(IDS))
    result = _orchestrator(store).run(TENANT, ids, "invoice")
    assert [o.source_record_id for o in result.outcomes] == ids
    assert [o.index for o in result.outcomes] == list(range(10))


def test_duplicate_ids_are_separate_attempts(store: InMemoryStore):
    result = _orchestrator(store).run(TENANT, ["1", "1"], "invoice")
    assert result.success_count == 2
    assert result.successes[0].document_number != result.successes[1].document_number


def test_empty_batch(store: InMemoryStore):
    result = _orchestrator(store).run(TENANT, [], "invoice")
    assert result.total_requested == 0
    assert result.outcomes == []
    assert len(store.list_batch_logs(TENANT)) == 1


def test_invalid_item_reported_with_kind(store: InMemoryStore):
    bad = _record("bad")
    bad.items = [LineItem("Shirt", Decimal("-1"), Decimal("10"))]
    store.add_records([bad])
    result = _orchestrator(store).run(TENANT, ["1", "bad"], "invoice")
    assert result.success_count == 1
    assert result.failures[0].error_kind == "InvalidLineItem"


def test_documents_are_persisted(store: InMemoryStore):
    result = _orchestrator(store).run(TENANT, ["1", "2"], "invoice")
    for success in result.successes:
        assert store.get_document(TENANT, success.document_id) is not None


def test_label_batch(store: InMemoryStore):
    options = BatchOptions(label_options=LabelOptions(courier_service="DTDC"))
    result = _orchestrator(store).run(TENANT, ["1", "2"], "labels", options)
    assert result.operation == "BULK_LABEL_GENERATION"
    assert result.kind == "label"
    labels = store.list_documents(TENANT, DocumentKind.LABEL)
    assert {d.shipment.courier_service for d in labels} == {"DTDC"}
    assert all(d.number.startswith("LBL-") for d in labels)


# ── Batch log ───────────────────────────────────────────────────────


def test_one_log_entry_per_run(store: InMemoryStore):
    orchestrator = _orchestrator(store)
    orchestrator.run(TENANT, IDS, "invoice", BatchOptions(max_workers=2))
    logs = store.list_batch_logs(TENANT)
    assert len(logs) == 1
    entry = logs[0]
    assert entry.operation == "BULK_INVOICE_GENERATION"
    assert (entry.total_requested, entry.success_count, entry.failure_count) == (10, 8, 2)
    assert entry.completed_at >= entry.started_at
    assert entry.options["max_workers"] == 2


def test_log_append_failure_does_not_fail_batch(store: InMemoryStore):
    def broken(entry):
        raise ConnectionError("log table locked")

    store.append_batch_log = broken
    result = _orchestrator(store).run(TENANT, ["1"], "invoice")
    assert result.success_count == 1


# ── Preconditions ───────────────────────────────────────────────────


def test_unknown_kind_rejected(store: InMemoryStore):
    with pytest.raises(InvalidBatchRequest):
        _orchestrator(store).run(TENANT, IDS, "receipt")
    assert store.list_batch_logs() == []


def test_unknown_tenant_rejected(store: InMemoryStore):
    with pytest.raises(TenantNotConfigured):
        _orchestrator(store).run("nobody", IDS, "invoice")
    assert store.list_batch_logs() == []


def test_unconfigured_tenant_consumes_no_numbers(store: InMemoryStore):
    tenant = _tenant()
    tenant.seller_tax_id = ""
    store.add_tenant(tenant)
    with pytest.raises(TenantNotConfigured):
        _orchestrator(store).run(TENANT, IDS, "invoice")
    assert store.sequences.peek(TENANT, "invoice") is None


def test_render_without_renderer_rejected(store: InMemoryStore):
    with pytest.raises(InvalidBatchRequest):
        _orchestrator(store).run(TENANT, IDS, "invoice", BatchOptions(render=True))


def test_notify_without_notifier_rejected(store: InMemoryStore):
    with pytest.raises(InvalidBatchRequest):
        _orchestrator(store).run(
            TENANT, IDS, "invoice", BatchOptions(notify_channels=("email",))
        )


def test_bad_worker_count_rejected(store: InMemoryStore):
    with pytest.raises(InvalidBatchRequest):
        _orchestrator(store).run(TENANT, IDS, "invoice", BatchOptions(max_workers=0))


# ── Side effects ────────────────────────────────────────────────────


def test_render_and_notify(store: InMemoryStore):
    renderer = RecordingRenderer()
    result = _orchestrator(store, renderer, StubNotifier()).run(
        TENANT,
        ["1", "2"],
        "invoice",
        BatchOptions(render=True, notify_channels=("email", "whatsapp")),
    )
    assert all(s.rendered for s in result.successes)
    assert len(renderer.rendered) == 2
    assert all(len(s.notifications) == 2 for s in result.successes)
    assert all(s.warnings == () for s in result.successes)


def test_render_failure_is_a_warning(store: InMemoryStore):
    renderer = RecordingRenderer(fail_for={"2"})
    result = _orchestrator(store, renderer).run(
        TENANT, ["1", "2"], "invoice", BatchOptions(render=True)
    )
    assert result.success_count == 2
    second = result.successes[1]
    assert second.rendered is False
    assert "template missing" in second.warnings[0]
    assert store.get_document(TENANT, second.document_id) is not None


def test_undelivered_notification_is_a_warning(store: InMemoryStore):
    result = _orchestrator(store, notifier=StubNotifier(deliver=False)).run(
        TENANT, ["1"], "invoice", BatchOptions(notify_channels=("sms",))
    )
    success = result.successes[0]
    assert success.notifications[0].delivered is False
    assert "bounced" in success.warnings[0]


# ── Cancellation and timeouts ───────────────────────────────────────


def test_cancelled_before_start(store: InMemoryStore):
    token = CancellationToken()
    token.cancel()
    result = _orchestrator(store).run(TENANT, IDS, "invoice", cancel=token)
    assert result.success_count == 0
    assert result.failure_count == 10
    assert {f.error_kind for f in result.failures} == {"Cancelled"}
    assert store.sequences.peek(TENANT, "invoice") is None


def test_cancel_mid_batch_keeps_finished_items(store: InMemoryStore):
    token = CancellationToken()

    class CancellingRenderer(RecordingRenderer):
        def render_document(self, document):
            token.cancel()
            return super().render_document(document)

    result = _orchestrator(store, CancellingRenderer()).run(
        TENANT,
        ["1", "2", "4", "5"],
        "invoice",
        BatchOptions(render=True, max_workers=1),
        cancel=token,
    )
    assert isinstance(result.outcomes[0], ItemSuccess)
    assert all(isinstance(o, ItemFailure) for o in result.outcomes[1:])
    assert {f.error_kind for f in result.failures} == {"Cancelled"}
    assert result.total_requested == 4


def test_slow_step_times_out_without_blocking_others():
    store = BlockingStore(block_ids={"2"})
    store.add_tenant(_tenant())
    store.add_records(_record(str(n)) for n in range(1, 5))
    try:
        result = _orchestrator(store).run(
            TENANT, ["1", "2", "3", "4"], "invoice", BatchOptions(step_timeout=0.2)
        )
    finally:
        store.release.set()

    assert result.success_count == 3
    assert result.failures[0].source_record_id == "2"
    assert result.failures[0].error_kind == "Timeout"


def test_hung_step_does_not_starve_single_worker():
    store = _seeded(BlockingStore(block_ids={"2"}), count=5)
    try:
        result = _orchestrator(store).run(
            TENANT,
            ["1", "2", "3", "4", "5"],
            "invoice",
            BatchOptions(max_workers=1, step_timeout=0.2),
        )
    finally:
        store.release.set()

    assert result.success_count == 4
    assert result.failed_ids == ["2"]
    assert result.failures[0].error_kind == "Timeout"


def test_build_finishing_after_timeout_records_gap():
    store = _seeded(StalledCounterStore())
    orchestrator = _orchestrator(store)
    try:
        result = orchestrator.run(TENANT, ["1"], "invoice", BatchOptions(step_timeout=0.2))
    finally:
        store.release.set()

    failure = result.failures[0]
    assert failure.error_kind == "Timeout"
    assert failure.document_number is None
    assert _wait_for(lambda: orchestrator.assembler.gaps)
    gap = orchestrator.assembler.gaps[0]
    assert gap.number == "INV-0001"
    assert gap.reason == "build step timed out"
    assert store.list_documents(TENANT) == []


def test_store_finishing_after_timeout_is_reported():
    store = _seeded(SlowSaveStore())
    orchestrator = _orchestrator(store)
    try:
        result = orchestrator.run(TENANT, ["1"], "invoice", BatchOptions(step_timeout=0.2))
    finally:
        store.release.set()

    failure = result.failures[0]
    assert failure.error_kind == "Timeout"
    assert failure.document_number == "INV-0001"
    assert _wait_for(lambda: orchestrator.assembler.late_documents)
    late = orchestrator.assembler.late_documents[0]
    assert late.number == "INV-0001"
    assert late.source_record_id == "1"
    assert [d.number for d in store.list_documents(TENANT)] == ["INV-0001"]
    assert orchestrator.assembler.gaps == []


def test_counter_store_down_for_whole_run():
    store = _seeded(CounterDownStore(), count=4)
    ids = ["1", "2", "3", "4"]
    result = _orchestrator(store).run(TENANT, ids, "invoice")

    assert result.failure_count == len(ids)
    assert {f.error_kind for f in result.failures} == {"SequenceUnavailable"}
    assert store.list_documents(TENANT) == []
    assert len(store.list_batch_logs(TENANT)) == 1


# ── Archive rendering ───────────────────────────────────────────────


def test_render_archive(store: InMemoryStore):
    renderer = RecordingRenderer()
    orchestrator = _orchestrator(store, renderer)
    batch = orchestrator.run(TENANT, ["1", "2"], "invoice")
    doc_ids = [s.document_id for s in batch.successes]

    archive = orchestrator.render_archive(TENANT, [*doc_ids, "missing"])

    assert archive.result.operation == "BULK_PDF_GENERATION"
    assert archive.result.success_count == 2
    assert archive.result.failed_ids == ["missing"]
    with zipfile.ZipFile(io.BytesIO(archive.archive)) as zf:
        names = sorted(zf.namelist())
        assert names == sorted(archive.filenames)
        assert all(n.startswith("Invoice-INV-") and n.endswith(".pdf") for n in names)
        assert zf.read(names[0]).startswith(b"%PDF")


def test_render_archive_other_tenant_not_found(store: InMemoryStore):
    orchestrator = _orchestrator(store, RecordingRenderer())
    batch = orchestrator.run(TENANT, ["1"], "invoice")
    archive = orchestrator.render_archive("shop-2", [batch.successes[0].document_id])
    assert archive.result.failures[0].error_kind == "RecordNotFound"
    assert archive.filenames == ()


def test_render_archive_requires_renderer(store: InMemoryStore):
    with pytest.raises(InvalidBatchRequest):
        _orchestrator(store).render_archive(TENANT, ["x"])
