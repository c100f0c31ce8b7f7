"""
Tests for domain event dispatching
"""

import pytest

from finance_ledger.storage import InMemoryStorage
from finance_ledger.config import LedgerConfig
from finance_ledger.api.system import LedgerSystem
from finance_ledger.documents import DocumentKind, DocumentStatus
from finance_ledger.events import EventDispatcher, EventPayload, DomainEvent
from finance_ledger.exceptions import NegativeBalanceViolation


class TestEventDispatcher:
    """Publish/subscribe basics"""

    def setup_method(self):
        self.dispatcher = EventDispatcher()

    def _event(self, event_type=DomainEvent.DOCUMENT_COMPLETED):
        return EventPayload(event_type=event_type, entity_type="document", entity_id="doc-1", data={})

    def test_subscribe_and_publish(self):
        received = []
        self.dispatcher.subscribe(DomainEvent.DOCUMENT_COMPLETED, received.append)

        self.dispatcher.publish(self._event())
        self.dispatcher.publish(self._event(DomainEvent.DOCUMENT_DELETED))

        assert [event.event_type for event in received] == [DomainEvent.DOCUMENT_COMPLETED]

    def test_subscribe_all(self):
        received = []
        self.dispatcher.subscribe_all(received.append)

        self.dispatcher.publish(self._event())
        self.dispatcher.publish(self._event(DomainEvent.DOCUMENT_DELETED))

        assert len(received) == 2

    def test_unsubscribe(self):
        received = []
        self.dispatcher.subscribe(DomainEvent.DOCUMENT_COMPLETED, received.append)
        self.dispatcher.unsubscribe(DomainEvent.DOCUMENT_COMPLETED, received.append)

        self.dispatcher.publish(self._event())

        assert received == []
        assert self.dispatcher.get_handler_count() == 0

    def test_failing_handler_does_not_stop_others(self):
        received = []

        def broken(event):
            raise RuntimeError("renderer offline")

        self.dispatcher.subscribe(DomainEvent.DOCUMENT_COMPLETED, broken)
        self.dispatcher.subscribe(DomainEvent.DOCUMENT_COMPLETED, received.append)

        self.dispatcher.publish(self._event())

        assert len(received) == 1

    def test_payload_serialization(self):
        data = self._event().to_dict()
        assert data["event_type"] == "document.completed"
        assert data["entity_id"] == "doc-1"
        assert "timestamp" in data and "event_id" in data


class TestLedgerEvents:
    """Ledger events are published after commit only"""

    def setup_method(self):
        self.system = LedgerSystem(InMemoryStorage(), LedgerConfig(database_url="memory://"))
        self.received = []
        self.system.event_dispatcher.subscribe_all(self.received.append)
        self.org = self.system.organization_manager.create_organization("Wiffle Ltd")
        self.account = self.system.account_manager.create_account(self.org.id, "Main bank", initial_balance="100")

    def _types(self):
        return [event.event_type for event in self.received]

    def test_completion_and_deletion_events(self):
        receipt = self.system.document_manager.create_document(
            self.org.id, DocumentKind.RECEIPT, "10", account_id=self.account.id,
            status=DocumentStatus.COMPLETED
        )
        self.system.document_manager.delete_document(receipt.id)

        assert self._types() == [
            DomainEvent.DOCUMENT_NUMBER_ISSUED,
            DomainEvent.TRANSACTION_POSTED,
            DomainEvent.DOCUMENT_COMPLETED,
            DomainEvent.TRANSACTION_REVERSED,
            DomainEvent.DOCUMENT_DELETED,
        ]
        posted = self.received[1]
        assert posted.data["balance_after"] == "110.00"
        reversed_event = self.received[3]
        assert reversed_event.data["metadata"]["reversal"] is True

    def test_rolled_back_work_publishes_nothing(self):
        voucher = self.system.document_manager.create_document(
            self.org.id, DocumentKind.PAYMENT_VOUCHER, "500", account_id=self.account.id
        )
        self.received.clear()

        with pytest.raises(NegativeBalanceViolation):
            self.system.document_manager.complete_document(voucher.id)

        assert self.received == []

    def test_events_can_be_disabled(self):
        system = LedgerSystem(InMemoryStorage(), LedgerConfig(database_url="memory://", enable_domain_events=False))
        assert system.event_dispatcher is None

        org = system.organization_manager.create_organization("Quiet Ltd")
        system.document_manager.create_document(org.id, DocumentKind.INVOICE, "10")
