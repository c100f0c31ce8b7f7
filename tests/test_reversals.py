"""
Tests for reversing deleted documents
"""

import pytest
import threading
from decimal import Decimal

from finance_ledger.storage import InMemoryStorage
from finance_ledger.config import LedgerConfig
from finance_ledger.api.system import LedgerSystem
from finance_ledger.documents import DocumentKind, DocumentStatus
from finance_ledger.transactions import TransactionDirection, REVERSAL_REASON_DOCUMENT_DELETED
from finance_ledger.exceptions import NegativeBalanceViolation


class TestReversalEngine:
    """Deleting a completed document appends one compensating transaction"""

    def setup_method(self):
        self.system = LedgerSystem(InMemoryStorage(), LedgerConfig(database_url="memory://"))
        self.documents = self.system.document_manager
        self.org = self.system.organization_manager.create_organization("Wiffle Ltd")
        self.account = self.system.account_manager.create_account(
            self.org.id, "Petty cash", initial_balance="500.00"
        )

    def _balance(self):
        return self.system.account_manager.get_account(self.account.id).current_balance

    def _complete(self, kind, amount, **kwargs):
        return self.documents.create_document(
            self.org.id, kind, amount, account_id=self.account.id,
            status=DocumentStatus.COMPLETED, **kwargs
        )

    def test_deleting_receipt_restores_balance(self):
        receipt = self._complete(DocumentKind.RECEIPT, "120.00")
        assert self._balance() == Decimal("620.00")

        self.documents.delete_document(receipt.id)

        assert self._balance() == Decimal("500.00")
        original, reversal = self.system.transaction_log.get_document_transactions(receipt.id)
        assert reversal.is_reversal
        assert reversal.direction == TransactionDirection.DECREASE
        assert reversal.amount == original.amount
        assert reversal.balance_before == Decimal("620.00")
        assert reversal.balance_after == Decimal("500.00")
        assert reversal.description == f"Reversal (deleted) - {receipt.document_number}"
        assert reversal.metadata == {
            "reversal": True,
            "original_transaction_id": original.id,
            "reason": REVERSAL_REASON_DOCUMENT_DELETED
        }

    def test_original_transaction_is_untouched(self):
        receipt = self._complete(DocumentKind.RECEIPT, "120.00")
        [original] = self.system.transaction_log.get_document_transactions(receipt.id)

        self.documents.delete_document(receipt.id)

        assert self.system.transaction_log.get_transaction(original.id).to_dict() == original.to_dict()

    def test_deleting_statement_reverses_total_deducted(self):
        statement = self._complete(DocumentKind.STATEMENT_OF_PAYMENT, "100.00", total_deducted="101.50")
        assert self._balance() == Decimal("398.50")

        self.documents.delete_document(statement.id)

        assert self._balance() == Decimal("500.00")
        reversal = self.system.transaction_log.get_document_transactions(statement.id)[-1]
        assert reversal.direction == TransactionDirection.INCREASE
        assert reversal.amount == Decimal("101.50")

    def test_second_delete_is_noop(self):
        receipt = self._complete(DocumentKind.RECEIPT, "120.00")

        self.documents.delete_document(receipt.id)
        self.documents.delete_document(receipt.id)

        assert self._balance() == Decimal("500.00")
        assert len(self.system.transaction_log.list_reversals(self.org.id)) == 1

    def test_repeated_delete_event_reverses_once(self):
        receipt = self._complete(DocumentKind.RECEIPT, "120.00")
        self.documents.delete_document(receipt.id)
        document = self.documents.get_document(receipt.id)

        assert self.system.reversal_engine.on_document_deleted(document) is None
        assert self.system.reversal_engine.on_document_deleted(document) is None

        assert self._balance() == Decimal("500.00")
        assert len(self.system.transaction_log.get_document_transactions(receipt.id)) == 2

    def test_concurrent_delete_events_reverse_once(self):
        receipt = self._complete(DocumentKind.INVOICE, "80.00")
        document = self.documents.get_document(receipt.id)
        results = []
        start = threading.Barrier(8)

        def reverse():
            start.wait()
            results.append(self.system.reversal_engine.on_document_deleted(document))

        threads = [threading.Thread(target=reverse) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len([r for r in results if r is not None]) == 1
        assert self._balance() == Decimal("500.00")

    def test_deleting_uncompleted_document_posts_nothing(self):
        receipt = self.documents.create_document(
            self.org.id, DocumentKind.RECEIPT, "120.00", account_id=self.account.id
        )
        self.documents.delete_document(receipt.id)

        assert self.system.transaction_log.get_document_transactions(receipt.id) == []
        assert self._balance() == Decimal("500.00")

    def test_deleting_document_without_account(self):
        receipt = self.documents.create_document(
            self.org.id, DocumentKind.RECEIPT, "10", status=DocumentStatus.COMPLETED
        )
        deleted = self.documents.delete_document(receipt.id)

        assert deleted.deleted_at is not None
        assert self.system.transaction_log.list_reversals() == []

    def test_blocked_reversal_keeps_document(self):
        receipt = self._complete(DocumentKind.RECEIPT, "100.00")
        self._complete(DocumentKind.PAYMENT_VOUCHER, "600.00")
        assert self._balance() == Decimal("0.00")

        with pytest.raises(NegativeBalanceViolation):
            self.documents.delete_document(receipt.id)

        assert self.documents.get_document(receipt.id).deleted_at is None
        assert self._balance() == Decimal("0.00")
        assert self.system.transaction_log.list_reversals() == []

    def test_reversal_applies_to_inactive_account(self):
        receipt = self._complete(DocumentKind.RECEIPT, "100.00")
        self.system.account_manager.deactivate_account(self.account.id, "closing")

        self.documents.delete_document(receipt.id)

        assert self._balance() == Decimal("500.00")

    def test_list_reversals_scoped_to_organization(self):
        other = self.system.organization_manager.create_organization("Other Ltd")
        other_account = self.system.account_manager.create_account(other.id, "Bank")
        other_receipt = self.documents.create_document(
            other.id, DocumentKind.RECEIPT, "5", account_id=other_account.id,
            status=DocumentStatus.COMPLETED
        )
        receipt = self._complete(DocumentKind.RECEIPT, "5")
        self.documents.delete_document(receipt.id)
        self.documents.delete_document(other_receipt.id)

        assert [t.document_id for t in self.system.transaction_log.list_reversals(self.org.id)] == [receipt.id]
        assert len(self.system.transaction_log.list_reversals()) == 2
