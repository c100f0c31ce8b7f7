"""
Tests for document number allocation
"""

import pytest
import threading
import time
from datetime import datetime, timezone

from finance_ledger.storage import InMemoryStorage, SQLiteStorage
from finance_ledger.audit import AuditTrail, AuditEventType
from finance_ledger.events import EventDispatcher, DomainEvent
from finance_ledger.documents import DocumentKind
from finance_ledger.sequences import SequenceAllocator, Counter


FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


class TestNumberFormat:
    """Formatting of counter values"""

    def setup_method(self):
        storage = InMemoryStorage()
        self.allocator = SequenceAllocator(storage, AuditTrail(storage))

    def test_prefixes(self):
        assert self.allocator.format_number(DocumentKind.INVOICE, 1, 2026) == "INV-2026-001"
        assert self.allocator.format_number(DocumentKind.RECEIPT, 12, 2026) == "RCP-2026-012"
        assert self.allocator.format_number(DocumentKind.PAYMENT_VOUCHER, 7, 2025) == "PV-2025-007"
        assert self.allocator.format_number(DocumentKind.STATEMENT_OF_PAYMENT, 3, 2026) == "SOP-2026-003"

    def test_padding_is_minimum_width(self):
        assert self.allocator.format_number(DocumentKind.INVOICE, 1000, 2026) == "INV-2026-1000"

    def test_brand_segment(self):
        self.allocator.brand = "WIF"
        assert self.allocator.format_number(DocumentKind.PAYMENT_VOUCHER, 1, 2026) == "WIF-PV-2026-001"

    def test_custom_padding(self):
        self.allocator.padding = 5
        assert self.allocator.format_number(DocumentKind.RECEIPT, 42, 2026) == "RCP-2026-00042"


class TestAllocation:
    """Counter behaviour"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.dispatcher = EventDispatcher()
        self.allocator = SequenceAllocator(
            self.storage, self.audit_trail, self.dispatcher, clock=lambda: FIXED_NOW
        )

    def test_first_allocation_starts_at_one(self):
        assert self.allocator.allocate("org-1", DocumentKind.INVOICE) == "INV-2026-001"
        assert self.allocator.allocate("org-1", DocumentKind.INVOICE) == "INV-2026-002"
        assert self.allocator.current_value("org-1", DocumentKind.INVOICE) == 2

    def test_counters_are_per_organization_and_kind(self):
        assert self.allocator.allocate("org-1", DocumentKind.INVOICE) == "INV-2026-001"
        assert self.allocator.allocate("org-1", DocumentKind.RECEIPT) == "RCP-2026-001"
        assert self.allocator.allocate("org-2", DocumentKind.INVOICE) == "INV-2026-001"
        assert self.allocator.allocate("org-1", DocumentKind.INVOICE) == "INV-2026-002"

    def test_rolled_back_allocation_is_not_consumed(self):
        self.allocator.allocate("org-1", DocumentKind.RECEIPT)

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                assert self.allocator.allocate("org-1", DocumentKind.RECEIPT) == "RCP-2026-002"
                raise RuntimeError("document insert failed")

        assert self.allocator.current_value("org-1", DocumentKind.RECEIPT) == 1
        assert self.allocator.allocate("org-1", DocumentKind.RECEIPT) == "RCP-2026-002"

    def test_rolled_back_first_allocation_removes_counter(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.allocator.allocate("org-1", DocumentKind.INVOICE)
                raise RuntimeError("abort")

        assert not self.storage.exists("document_counters", Counter.key("org-1", DocumentKind.INVOICE))
        assert self.allocator.current_value("org-1", DocumentKind.INVOICE) == 0

    def test_issued_numbers_are_audited_and_published(self):
        published = []
        self.dispatcher.subscribe(DomainEvent.DOCUMENT_NUMBER_ISSUED, published.append)

        number = self.allocator.allocate("org-1", DocumentKind.INVOICE)

        events = self.audit_trail.get_events_by_type(AuditEventType.DOCUMENT_NUMBER_ISSUED)
        assert len(events) == 1
        assert events[0].metadata["document_number"] == number
        assert events[0].metadata["value"] == 1
        assert [event.data["document_number"] for event in published] == [number]

    def test_rolled_back_allocation_is_not_announced(self):
        published = []
        self.dispatcher.subscribe_all(published.append)

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.allocator.allocate("org-1", DocumentKind.INVOICE)
                raise RuntimeError("abort")

        assert published == []
        assert self.audit_trail.count_events() == 0


class TestConcurrentAllocation:
    """N concurrent callers receive N distinct values 1..N"""

    def _allocate_concurrently(self, allocator, count):
        results = []
        errors = []
        lock = threading.Lock()
        start = threading.Barrier(count)

        def worker():
            start.wait()
            try:
                number = allocator.allocate("org-1", DocumentKind.PAYMENT_VOUCHER)
            except Exception as e:
                errors.append(e)
                return
            with lock:
                results.append(number)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        return results

    def test_in_memory(self):
        storage = InMemoryStorage()
        allocator = SequenceAllocator(storage, AuditTrail(storage), clock=lambda: FIXED_NOW)

        numbers = self._allocate_concurrently(allocator, 20)

        assert len(set(numbers)) == 20
        assert sorted(numbers) == [f"PV-2026-{i:03d}" for i in range(1, 21)]
        assert allocator.current_value("org-1", DocumentKind.PAYMENT_VOUCHER) == 20

    def test_sqlite(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "sequences.db")
        allocator = SequenceAllocator(storage, AuditTrail(storage), clock=lambda: FIXED_NOW)

        numbers = self._allocate_concurrently(allocator, 10)

        assert sorted(numbers) == [f"PV-2026-{i:03d}" for i in range(1, 11)]
        storage.close()

    def test_first_allocation_waits_for_rolled_back_insert(self):
        storage = InMemoryStorage()
        allocator = SequenceAllocator(storage, AuditTrail(storage), clock=lambda: FIXED_NOW)
        inserted = threading.Event()
        results = {}

        def rolls_back():
            try:
                with storage.atomic():
                    results["a"] = allocator.allocate("org-1", DocumentKind.INVOICE)
                    inserted.set()
                    time.sleep(0.2)
                    raise RuntimeError("abort")
            except RuntimeError:
                pass

        def allocates():
            inserted.wait()
            try:
                results["b"] = allocator.allocate("org-1", DocumentKind.INVOICE)
            except Exception as e:
                results["error"] = e

        first = threading.Thread(target=rolls_back)
        second = threading.Thread(target=allocates)
        first.start()
        second.start()
        first.join()
        second.join()

        assert "error" not in results
        assert results["a"] == "INV-2026-001"
        assert results["b"] == "INV-2026-001"
        assert allocator.current_value("org-1", DocumentKind.INVOICE) == 1

    def test_audit_chain_stays_valid(self):
        storage = InMemoryStorage()
        audit_trail = AuditTrail(storage)
        allocator = SequenceAllocator(storage, audit_trail, clock=lambda: FIXED_NOW)

        self._allocate_concurrently(allocator, 10)

        integrity = audit_trail.verify_integrity()
        assert integrity["valid"]
        assert integrity["total_events"] == 10
