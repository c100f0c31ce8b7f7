"""
Document Management Module

Financial documents (receipts, statements of payment, invoices, payment
vouchers) and the document-management operations that drive the ledger.

Two field transitions matter to the ledger: status becoming completed and
deleted_at being set. Both are performed here inside one unit of work
together with the lifecycle dispatcher call, after every detail the ledger
reads (total_deducted in particular) has been persisted.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, TYPE_CHECKING
from enum import Enum
import uuid

from .money import to_amount, to_optional_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, DomainEvent, create_document_event, publish_after_commit
from .exceptions import (
    DuplicateNumberError, DocumentNotFoundError, InvalidDocumentStateError
)
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .lifecycle import LifecycleDispatcher
    from .organizations import OrganizationManager
    from .sequences import SequenceAllocator


class DocumentKind(Enum):
    """Kinds of financial documents"""
    RECEIPT = "receipt"
    STATEMENT_OF_PAYMENT = "statement_of_payment"
    INVOICE = "invoice"
    PAYMENT_VOUCHER = "payment_voucher"


class DocumentStatus(Enum):
    """Document workflow states"""
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Workflow transitions that never touch the ledger
STATUS_TRANSITIONS = {
    DocumentStatus.DRAFT: {DocumentStatus.ISSUED, DocumentStatus.CANCELLED},
    DocumentStatus.ISSUED: {DocumentStatus.DRAFT, DocumentStatus.PAID, DocumentStatus.CANCELLED},
    DocumentStatus.PAID: {DocumentStatus.ISSUED, DocumentStatus.CANCELLED},
    DocumentStatus.CANCELLED: {DocumentStatus.DRAFT},
    DocumentStatus.COMPLETED: set(),
}

# Number field values meaning "allocate one for me"
NUMBER_PLACEHOLDERS = {"", "auto"}


@dataclass
class Document(StorageRecord):
    """A financial document; document_number is unique within its organization"""
    organization_id: str
    kind: DocumentKind
    status: DocumentStatus
    document_number: str
    amount: Decimal
    account_id: Optional[str] = None
    currency: Optional[str] = None
    total_deducted: Optional[Decimal] = None  # Statements of payment: amount plus fees
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_completed(self) -> bool:
        return self.status == DocumentStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "organization_id": self.organization_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "document_number": self.document_number,
            "amount": str(self.amount),
            "account_id": self.account_id,
            "currency": self.currency,
            "total_deducted": str(self.total_deducted) if self.total_deducted is not None else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Document':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            organization_id=data["organization_id"],
            kind=DocumentKind(data["kind"]),
            status=DocumentStatus(data["status"]),
            document_number=data["document_number"],
            amount=Decimal(data["amount"]),
            account_id=data.get("account_id"),
            currency=data.get("currency"),
            total_deducted=Decimal(data["total_deducted"]) if data.get("total_deducted") is not None else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            deleted_at=datetime.fromisoformat(data["deleted_at"]) if data.get("deleted_at") else None
        )


class DocumentManager:
    """
    Creates, completes and soft-deletes documents.

    Numbers are allocated at persist time only, never when a form is opened.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        organization_manager: 'OrganizationManager',
        sequence_allocator: 'SequenceAllocator',
        lifecycle: 'LifecycleDispatcher',
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.organization_manager = organization_manager
        self.sequence_allocator = sequence_allocator
        self.lifecycle = lifecycle
        self.documents_table = "documents"
        self.numbers_table = "document_numbers"
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("finance_ledger.documents")

    def create_document(
        self,
        organization_id: str,
        kind: DocumentKind,
        amount: Any,
        account_id: Optional[str] = None,
        document_number: Optional[str] = None,
        status: DocumentStatus = DocumentStatus.DRAFT,
        total_deducted: Any = None,
        currency: Optional[str] = None
    ) -> Document:
        """
        Persist a new document.

        Args:
            organization_id: Owning organization
            kind: Document kind
            amount: Nominal amount
            account_id: Account the document posts to, if any
            document_number: Explicit number, or None/""/"auto" to allocate one
            status: Initial status; COMPLETED posts to the ledger immediately
            total_deducted: True debited sum of a statement of payment
            currency: ISO currency code

        Returns:
            Created Document object
        """
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError("Document amount must be positive")
        total_deducted = to_optional_amount(total_deducted)
        if total_deducted is not None and kind != DocumentKind.STATEMENT_OF_PAYMENT:
            raise ValueError("total_deducted only applies to statements of payment")
        if status == DocumentStatus.CANCELLED:
            raise InvalidDocumentStateError("Documents cannot be created cancelled")

        self.organization_manager.require_organization(organization_id)

        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            document_id = str(uuid.uuid4())
            number = self._assign_number(organization_id, kind, document_number, document_id)

            document = Document(
                id=document_id,
                created_at=now,
                updated_at=now,
                organization_id=organization_id,
                kind=kind,
                status=status,
                document_number=number,
                amount=amount,
                account_id=account_id,
                currency=currency.upper() if currency else None,
                total_deducted=total_deducted,
                completed_at=now if status == DocumentStatus.COMPLETED else None
            )
            # Detail fields are persisted before any lifecycle event fires
            self._save_document(document)

            self.audit_trail.log_event(
                event_type=AuditEventType.DOCUMENT_CREATED,
                entity_type="document",
                entity_id=document.id,
                organization_id=organization_id,
                metadata={
                    "kind": kind.value,
                    "status": status.value,
                    "document_number": number,
                    "amount": amount,
                    "account_id": account_id
                }
            )

            if document.is_completed:
                self._fire_completed(document)

        log_action(
            self.logger, "info", f"Created {kind.value} {number}",
            organization_id=organization_id, document_id=document.id, action="create_document"
        )
        return document

    def set_total_deducted(self, document_id: str, total_deducted: Any) -> Document:
        """Record the debited sum of a statement of payment before it completes"""
        with self.storage.atomic():
            document = self._lock_document(document_id)
            if document.kind != DocumentKind.STATEMENT_OF_PAYMENT:
                raise ValueError("total_deducted only applies to statements of payment")
            if document.is_deleted or document.is_completed:
                raise InvalidDocumentStateError(
                    f"Document {document.document_number} is {self._state_label(document)}; "
                    "its posted amount can no longer change"
                )
            document.total_deducted = to_amount(total_deducted)
            document.updated_at = datetime.now(timezone.utc)
            self._save_document(document)
        return document

    def complete_document(self, document_id: str) -> Document:
        """
        Mark a document completed and post it to the ledger in the same unit
        of work. Completing an already completed document is a no-op.
        """
        with self.storage.atomic():
            document = self._lock_document(document_id)
            if document.is_completed and not document.is_deleted:
                return document
            if document.is_deleted or document.status == DocumentStatus.CANCELLED:
                raise InvalidDocumentStateError(
                    f"Document {document.document_number} is {self._state_label(document)} and cannot be completed"
                )

            previous = document.status
            now = datetime.now(timezone.utc)
            document.status = DocumentStatus.COMPLETED
            document.completed_at = now
            document.updated_at = now
            self._save_document(document)

            self._fire_completed(document, previous)

        return document

    def delete_document(self, document_id: str) -> Document:
        """
        Soft-delete a document and reverse its ledger effect in the same unit
        of work. Deleting an already deleted document is a no-op.
        """
        with self.storage.atomic():
            document = self._lock_document(document_id)
            if document.is_deleted:
                return document

            now = datetime.now(timezone.utc)
            document.deleted_at = now
            document.updated_at = now
            self._save_document(document)

            reversal = self.lifecycle.document_deleted(document)

            self.audit_trail.log_event(
                event_type=AuditEventType.DOCUMENT_DELETED,
                entity_type="document",
                entity_id=document.id,
                organization_id=document.organization_id,
                metadata={
                    "document_number": document.document_number,
                    "status": document.status.value,
                    "reversal_transaction_id": reversal.id if reversal else None
                }
            )
            publish_after_commit(self.storage, self._event_dispatcher,
                                 create_document_event(DomainEvent.DOCUMENT_DELETED, document))

        log_action(
            self.logger, "info", f"Deleted {document.kind.value} {document.document_number}",
            organization_id=document.organization_id, document_id=document.id, action="delete_document"
        )
        return document

    def update_status(self, document_id: str, status: DocumentStatus) -> Document:
        """Workflow transitions that do not touch the ledger"""
        if status == DocumentStatus.COMPLETED:
            return self.complete_document(document_id)

        with self.storage.atomic():
            document = self._lock_document(document_id)
            if document.is_deleted:
                raise InvalidDocumentStateError(f"Document {document.document_number} is deleted")
            if document.status == status:
                return document
            if status not in STATUS_TRANSITIONS[document.status]:
                raise InvalidDocumentStateError(
                    f"Invalid status transition from {document.status.value} to {status.value} "
                    f"for document {document.document_number}"
                )

            previous = document.status
            document.status = status
            document.updated_at = datetime.now(timezone.utc)
            self._save_document(document)

            self.audit_trail.log_event(
                event_type=AuditEventType.DOCUMENT_STATUS_CHANGED,
                entity_type="document",
                entity_id=document.id,
                organization_id=document.organization_id,
                metadata={"old_status": previous.value, "new_status": status.value}
            )
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        """Get document by ID"""
        data = self.storage.load(self.documents_table, document_id)
        if data:
            return Document.from_dict(data)
        return None

    def get_document_by_number(self, organization_id: str, document_number: str) -> Optional[Document]:
        entry = self.storage.load(self.numbers_table, self._number_key(organization_id, document_number))
        if entry:
            return self.get_document(entry["document_id"])
        return None

    def list_documents(
        self,
        organization_id: str,
        kind: Optional[DocumentKind] = None,
        include_deleted: bool = False
    ) -> List[Document]:
        """Documents of an organization in creation order"""
        filters: Dict[str, Any] = {"organization_id": organization_id}
        if kind:
            filters["kind"] = kind.value
        documents = [Document.from_dict(data) for data in self.storage.find(self.documents_table, filters)]
        if not include_deleted:
            documents = [d for d in documents if not d.is_deleted]
        return documents

    def _fire_completed(self, document: Document, previous: Optional[DocumentStatus] = None) -> None:
        transaction = self.lifecycle.document_completed(document)

        self.audit_trail.log_event(
            event_type=AuditEventType.DOCUMENT_COMPLETED,
            entity_type="document",
            entity_id=document.id,
            organization_id=document.organization_id,
            metadata={
                "document_number": document.document_number,
                "previous_status": previous.value if previous else None,
                "transaction_id": transaction.id if transaction else None
            }
        )
        publish_after_commit(self.storage, self._event_dispatcher,
                             create_document_event(DomainEvent.DOCUMENT_COMPLETED, document))

    def _assign_number(
        self,
        organization_id: str,
        kind: DocumentKind,
        requested: Optional[str],
        document_id: str
    ) -> str:
        """
        Register the document's number, allocating one when none was given.

        An allocated number that collides with legacy data is retried once;
        a second collision means two counters feed the same key.
        """
        if requested is not None and requested.strip().lower() not in NUMBER_PLACEHOLDERS:
            number = requested.strip()
            self._register_number(organization_id, number, document_id)
            return number

        number = self.sequence_allocator.allocate(organization_id, kind)
        try:
            self._register_number(organization_id, number, document_id)
        except DuplicateNumberError:
            log_action(
                self.logger, "warning", f"Allocated number {number} already taken, retrying once",
                organization_id=organization_id, document_id=document_id, action="allocate"
            )
            number = self.sequence_allocator.allocate(organization_id, kind)
            try:
                self._register_number(organization_id, number, document_id)
            except DuplicateNumberError:
                log_action(
                    self.logger, "error", f"Allocated number {number} collided again",
                    organization_id=organization_id, document_id=document_id, action="allocate"
                )
                raise DuplicateNumberError(organization_id, number, fatal=True)
        return number

    def _register_number(self, organization_id: str, number: str, document_id: str) -> None:
        """Claim a number in the per-organization unique registry"""
        claimed = self.storage.create_if_absent(self.numbers_table, self._number_key(organization_id, number), {
            "id": self._number_key(organization_id, number),
            "organization_id": organization_id,
            "document_number": number,
            "document_id": document_id
        })
        if not claimed:
            raise DuplicateNumberError(organization_id, number)

    @staticmethod
    def _number_key(organization_id: str, number: str) -> str:
        return f"{organization_id}:{number}"

    @staticmethod
    def _state_label(document: Document) -> str:
        return "deleted" if document.is_deleted else document.status.value

    def _lock_document(self, document_id: str) -> Document:
        data = self.storage.lock_row(self.documents_table, document_id)
        if data is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return Document.from_dict(data)

    def _save_document(self, document: Document) -> None:
        self.storage.save(self.documents_table, document.id, document.to_dict())
