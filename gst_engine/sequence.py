"""
Per-tenant document numbering.

Numbers come from a counter store that increments and returns in a single
atomic step per (tenant, kind) key. Numbers are strictly increasing and
never reissued; gaps are tolerated.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from gst_engine.config import Settings, get_settings
from gst_engine.errors import SequenceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_PREFIXES: dict[str, str] = {
    "invoice": "INV",
    "label": "LBL",
}


class SequenceStore(Protocol):
    """Storage-level atomic counter."""

    def get_and_increment(self, tenant_id: str, kind: str, start: int) -> int:
        """
        Return the current value for the key and advance it by one.

        The first call for a key initialises the counter at ``start`` and
        returns ``start``.
        """
        ...


class InMemorySequenceStore:
    """Thread-safe counter store holding one lock per (tenant, kind) key."""

    def __init__(self) -> None:
        self._next: dict[tuple[str, str], int] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get_and_increment(self, tenant_id: str, kind: str, start: int) -> int:
        key = (tenant_id, kind)
        with self._lock_for(key):
            current = self._next.get(key, start)
            self._next[key] = current + 1
            return current

    def peek(self, tenant_id: str, kind: str) -> Optional[int]:
        """Next number that would be issued, or None for a new key."""
        key = (tenant_id, kind)
        with self._lock_for(key):
            return self._next.get(key)


@dataclass(frozen=True)
class SequenceNumber:
    """An issued document number."""

    prefix: str
    number: int
    width: int = 4

    @property
    def formatted(self) -> str:
        return f"{self.prefix}-{self.number:0{self.width}d}"

    def __str__(self) -> str:
        return self.formatted


class SequenceAllocator:
    """
    Issues document numbers for a tenant and document kind.

    The store does the increment; the allocator adds bounded retries,
    formatting, and a guard against a store handing back a number not
    greater than the last one issued for the key.
    """

    def __init__(
        self,
        store: SequenceStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._last: dict[tuple[str, str], int] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _increment(self, tenant_id: str, kind: str) -> int:
        wait = self.settings.sequence_retry_wait_seconds
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.sequence_retry_attempts),
            wait=wait_exponential(multiplier=wait, max=wait * 8) + wait_random(0, wait),
            retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return self.store.get_and_increment(
                        tenant_id, kind, self.settings.sequence_start
                    )
        except SequenceUnavailable:
            raise
        except Exception as e:
            raise SequenceUnavailable(
                f"Counter store unavailable for {tenant_id}/{kind}: {e}"
            ) from e
        raise SequenceUnavailable(f"Counter store returned nothing for {tenant_id}/{kind}")

    def next_number(
        self,
        tenant_id: str,
        kind: str,
        prefix: Optional[str] = None,
    ) -> SequenceNumber:
        """Allocate the next number for (tenant, kind)."""
        kind = getattr(kind, "value", kind)
        key = (tenant_id, kind)
        # store call and comparison form one critical section per key
        with self._lock_for(key):
            number = self._increment(tenant_id, kind)
            last = self._last.get(key)
            if last is not None and number <= last:
                raise SequenceUnavailable(
                    f"Counter store for {tenant_id}/{kind} returned {number}, "
                    f"not greater than last issued {last}"
                )
            self._last[key] = number

        resolved_prefix = prefix or DEFAULT_PREFIXES.get(kind, kind.upper()[:3])
        issued = SequenceNumber(
            prefix=resolved_prefix,
            number=number,
            width=self.settings.sequence_width,
        )
        logger.debug(f"Issued {issued.formatted} to tenant {tenant_id}")
        return issued
