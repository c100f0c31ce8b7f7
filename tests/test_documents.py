"""
Tests for document management and number registration
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from finance_ledger.storage import InMemoryStorage
from finance_ledger.config import LedgerConfig
from finance_ledger.api.system import LedgerSystem
from finance_ledger.documents import DocumentKind, DocumentStatus
from finance_ledger.exceptions import (
    DuplicateNumberError, DocumentNotFoundError, InvalidDocumentStateError,
    OrganizationNotFoundError
)


YEAR = datetime.now(timezone.utc).year


class TestDocumentCreation:
    """Creation and number assignment"""

    def setup_method(self):
        self.system = LedgerSystem(InMemoryStorage(), LedgerConfig(database_url="memory://"))
        self.manager = self.system.document_manager
        self.org = self.system.organization_manager.create_organization("Wiffle Ltd")

    def test_number_allocated_when_missing(self):
        document = self.manager.create_document(self.org.id, DocumentKind.INVOICE, "250.00")

        assert document.document_number == f"INV-{YEAR}-001"
        assert document.status == DocumentStatus.DRAFT
        assert document.amount == Decimal("250.00")
        assert self.manager.get_document(document.id).document_number == document.document_number

    def test_placeholders_allocate(self):
        numbers = [
            self.manager.create_document(self.org.id, DocumentKind.RECEIPT, "10", document_number=placeholder).document_number
            for placeholder in (None, "", "auto", "AUTO")
        ]
        assert numbers == [f"RCP-{YEAR}-{i:03d}" for i in range(1, 5)]

    def test_explicit_number_is_kept(self):
        document = self.manager.create_document(
            self.org.id, DocumentKind.INVOICE, "10", document_number="LEGACY-7"
        )
        assert document.document_number == "LEGACY-7"
        assert self.system.sequence_allocator.current_value(self.org.id, DocumentKind.INVOICE) == 0

    def test_explicit_duplicate_rejected(self):
        self.manager.create_document(self.org.id, DocumentKind.INVOICE, "10", document_number="INV-X")

        with pytest.raises(DuplicateNumberError) as exc_info:
            self.manager.create_document(self.org.id, DocumentKind.INVOICE, "10", document_number="INV-X")

        assert not exc_info.value.fatal
        assert len(self.manager.list_documents(self.org.id)) == 1

    def test_numbers_unique_per_organization_only(self):
        other = self.system.organization_manager.create_organization("Other Ltd")
        first = self.manager.create_document(self.org.id, DocumentKind.INVOICE, "10")
        second = self.manager.create_document(other.id, DocumentKind.INVOICE, "10")

        assert first.document_number == second.document_number

    def test_collision_with_legacy_number_retries_once(self):
        self.manager.create_document(
            self.org.id, DocumentKind.INVOICE, "10", document_number=f"INV-{YEAR}-001"
        )

        document = self.manager.create_document(self.org.id, DocumentKind.INVOICE, "20")

        assert document.document_number == f"INV-{YEAR}-002"

    def test_second_collision_is_fatal(self):
        for value in (1, 2):
            self.manager.create_document(
                self.org.id, DocumentKind.RECEIPT, "10", document_number=f"RCP-{YEAR}-{value:03d}"
            )

        with pytest.raises(DuplicateNumberError) as exc_info:
            self.manager.create_document(self.org.id, DocumentKind.RECEIPT, "20")

        assert exc_info.value.fatal
        # The whole unit rolled back, counter included
        assert self.system.sequence_allocator.current_value(self.org.id, DocumentKind.RECEIPT) == 0
        assert len(self.manager.list_documents(self.org.id)) == 2

    def test_lookup_by_number(self):
        document = self.manager.create_document(self.org.id, DocumentKind.PAYMENT_VOUCHER, "10")

        found = self.manager.get_document_by_number(self.org.id, document.document_number)

        assert found.id == document.id
        assert self.manager.get_document_by_number(self.org.id, "PV-1999-001") is None

    def test_validation(self):
        with pytest.raises(ValueError):
            self.manager.create_document(self.org.id, DocumentKind.RECEIPT, "0")
        with pytest.raises(ValueError):
            self.manager.create_document(self.org.id, DocumentKind.RECEIPT, "not money")
        with pytest.raises(ValueError):
            self.manager.create_document(self.org.id, DocumentKind.RECEIPT, "10", total_deducted="11")
        with pytest.raises(OrganizationNotFoundError):
            self.manager.create_document("missing-org", DocumentKind.RECEIPT, "10")

        # Nothing was allocated by the rejected calls
        assert self.system.sequence_allocator.current_value(self.org.id, DocumentKind.RECEIPT) == 0

    def test_list_documents_filters(self):
        invoice = self.manager.create_document(self.org.id, DocumentKind.INVOICE, "10")
        receipt = self.manager.create_document(self.org.id, DocumentKind.RECEIPT, "10")
        self.manager.delete_document(receipt.id)

        assert [d.id for d in self.manager.list_documents(self.org.id)] == [invoice.id]
        assert len(self.manager.list_documents(self.org.id, include_deleted=True)) == 2
        assert self.manager.list_documents(self.org.id, kind=DocumentKind.RECEIPT) == []


class TestDocumentTransitions:
    """Status workflow and soft delete"""

    def setup_method(self):
        self.system = LedgerSystem(InMemoryStorage(), LedgerConfig(database_url="memory://"))
        self.manager = self.system.document_manager
        self.org = self.system.organization_manager.create_organization("Wiffle Ltd")
        self.document = self.manager.create_document(self.org.id, DocumentKind.INVOICE, "100")

    def test_workflow_transitions(self):
        assert self.manager.update_status(self.document.id, DocumentStatus.ISSUED).status == DocumentStatus.ISSUED
        assert self.manager.update_status(self.document.id, DocumentStatus.PAID).status == DocumentStatus.PAID
        completed = self.manager.update_status(self.document.id, DocumentStatus.COMPLETED)
        assert completed.status == DocumentStatus.COMPLETED
        assert completed.completed_at is not None

    def test_invalid_transition(self):
        with pytest.raises(InvalidDocumentStateError):
            self.manager.update_status(self.document.id, DocumentStatus.PAID)

    def test_completed_is_terminal(self):
        self.manager.complete_document(self.document.id)
        with pytest.raises(InvalidDocumentStateError):
            self.manager.update_status(self.document.id, DocumentStatus.CANCELLED)

    def test_cancelled_cannot_complete(self):
        self.manager.update_status(self.document.id, DocumentStatus.CANCELLED)
        with pytest.raises(InvalidDocumentStateError):
            self.manager.complete_document(self.document.id)

    def test_deleted_cannot_complete(self):
        self.manager.delete_document(self.document.id)
        with pytest.raises(InvalidDocumentStateError):
            self.manager.complete_document(self.document.id)

    def test_delete_is_idempotent(self):
        first = self.manager.delete_document(self.document.id)
        second = self.manager.delete_document(self.document.id)

        assert first.deleted_at is not None
        assert second.deleted_at == first.deleted_at

    def test_missing_document(self):
        with pytest.raises(DocumentNotFoundError):
            self.manager.complete_document("missing")
        with pytest.raises(DocumentNotFoundError):
            self.manager.delete_document("missing")

    def test_total_deducted_only_for_statements(self):
        with pytest.raises(ValueError):
            self.manager.set_total_deducted(self.document.id, "101")

    def test_total_deducted_frozen_after_completion(self):
        statement = self.manager.create_document(self.org.id, DocumentKind.STATEMENT_OF_PAYMENT, "100")
        self.manager.set_total_deducted(statement.id, "102.50")
        assert self.manager.get_document(statement.id).total_deducted == Decimal("102.50")

        self.manager.complete_document(statement.id)
        with pytest.raises(InvalidDocumentStateError):
            self.manager.set_total_deducted(statement.id, "105")
