"""Tests for document number allocation."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from gst_engine.config import Settings
from gst_engine.errors import SequenceUnavailable
from gst_engine.sequence import (
    InMemorySequenceStore,
    SequenceAllocator,
    SequenceNumber,
)


def _settings(**overrides) -> Settings:
    values = {"sequence_retry_wait_seconds": 0, "sequence_retry_attempts": 3}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def store() -> InMemorySequenceStore:
    return InMemorySequenceStore()


@pytest.fixture
def allocator(store: InMemorySequenceStore) -> SequenceAllocator:
    return SequenceAllocator(store, _settings())


class FlakyStore:
    """Fails the first ``failures`` calls with ConnectionError."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0
        self.inner = InMemorySequenceStore()

    def get_and_increment(self, tenant_id: str, kind: str, start: int) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("counter store offline")
        return self.inner.get_and_increment(tenant_id, kind, start)


class StuckStore:
    def get_and_increment(self, tenant_id: str, kind: str, start: int) -> int:
        return 7


class RewoundStore:
    """Hands out a fixed series of values, whatever the key."""

    def __init__(self, values: list[int]) -> None:
        self.values = list(values)

    def get_and_increment(self, tenant_id: str, kind: str, start: int) -> int:
        return self.values.pop(0)


# ── Formatting and ordering ─────────────────────────────────────────


def test_first_numbers_for_new_tenant(allocator: SequenceAllocator):
    assert allocator.next_number("t1", "invoice", "INV").formatted == "INV-0001"
    assert allocator.next_number("t1", "invoice", "INV").formatted == "INV-0002"


def test_default_prefixes(allocator: SequenceAllocator):
    assert allocator.next_number("t1", "invoice").prefix == "INV"
    assert allocator.next_number("t1", "label").prefix == "LBL"


def test_number_wider_than_padding():
    assert SequenceNumber("INV", 12345, 4).formatted == "INV-12345"
    assert str(SequenceNumber("INV", 7, 6)) == "INV-000007"


def test_configured_start_and_width(store: InMemorySequenceStore):
    allocator = SequenceAllocator(store, _settings(sequence_start=500, sequence_width=6))
    assert allocator.next_number("t1", "invoice", "INV").formatted == "INV-000500"


def test_tenants_and_kinds_are_independent(allocator: SequenceAllocator):
    assert allocator.next_number("t1", "invoice").number == 1
    assert allocator.next_number("t2", "invoice").number == 1
    assert allocator.next_number("t1", "label").number == 1
    assert allocator.next_number("t1", "invoice").number == 2


def test_store_peek(store: InMemorySequenceStore, allocator: SequenceAllocator):
    assert store.peek("t1", "invoice") is None
    allocator.next_number("t1", "invoice")
    assert store.peek("t1", "invoice") == 2


# ── Concurrency ─────────────────────────────────────────────────────


def test_concurrent_allocation_is_distinct_and_dense(allocator: SequenceAllocator):
    barrier = threading.Barrier(8)

    def allocate(_):
        barrier.wait()
        return [allocator.next_number("t1", "invoice").number for _ in range(25)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        numbers = [n for batch in pool.map(allocate, range(8)) for n in batch]

    assert len(numbers) == 200
    assert sorted(numbers) == list(range(1, 201))


def test_numbers_increase_per_thread(allocator: SequenceAllocator):
    def allocate(_):
        return [allocator.next_number("t1", "label").number for _ in range(20)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        for batch in pool.map(allocate, range(4)):
            assert batch == sorted(batch)


# ── Store failures ──────────────────────────────────────────────────


def test_transient_store_failure_is_retried():
    store = FlakyStore(failures=2)
    allocator = SequenceAllocator(store, _settings(sequence_retry_attempts=3))
    assert allocator.next_number("t1", "invoice").number == 1
    assert store.calls == 3


def test_persistent_store_failure_raises_sequence_unavailable():
    store = FlakyStore(failures=10)
    allocator = SequenceAllocator(store, _settings(sequence_retry_attempts=3))
    with pytest.raises(SequenceUnavailable, match="offline"):
        allocator.next_number("t1", "invoice")
    assert store.calls == 3


def test_non_transient_store_error_is_not_retried():
    class BrokenStore:
        calls = 0

        def get_and_increment(self, tenant_id, kind, start):
            BrokenStore.calls += 1
            raise RuntimeError("bad schema")

    allocator = SequenceAllocator(BrokenStore(), _settings())
    with pytest.raises(SequenceUnavailable):
        allocator.next_number("t1", "invoice")
    assert BrokenStore.calls == 1


def test_reissued_number_is_refused():
    allocator = SequenceAllocator(StuckStore(), _settings())
    assert allocator.next_number("t1", "invoice").number == 7
    with pytest.raises(SequenceUnavailable, match="not greater than last issued 7"):
        allocator.next_number("t1", "invoice")


def test_store_going_backwards_is_refused():
    allocator = SequenceAllocator(RewoundStore([5, 3]), _settings())
    assert allocator.next_number("t1", "invoice").number == 5
    with pytest.raises(SequenceUnavailable, match="returned 3"):
        allocator.next_number("t1", "invoice")


def test_guard_is_per_key():
    allocator = SequenceAllocator(RewoundStore([5, 3]), _settings())
    assert allocator.next_number("t1", "invoice").number == 5
    assert allocator.next_number("t2", "invoice").number == 3
