"""
Document Number Sequences

One counter row per (organization, document kind), incremented under an
exclusive row lock inside the caller's unit of work. Numbers are
<PREFIX>-<YEAR>-<NNN>, optionally led by a brand segment.

A number is allocated immediately before the document that consumes it is
persisted. If that unit of work rolls back, the counter increment rolls back
with it; a number issued by a committed unit but never used by a document
stays unused forever and is never handed out again.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Any

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .documents import DocumentKind
from .events import EventDispatcher, EventPayload, DomainEvent, publish_after_commit
from .logging_config import get_logger, log_action


DOCUMENT_PREFIXES = {
    DocumentKind.INVOICE: "INV",
    DocumentKind.RECEIPT: "RCP",
    DocumentKind.PAYMENT_VOUCHER: "PV",
    DocumentKind.STATEMENT_OF_PAYMENT: "SOP",
}


@dataclass
class Counter(StorageRecord):
    """Last value issued for one (organization, kind) pair"""
    organization_id: str
    kind: str
    value: int = 0

    @staticmethod
    def key(organization_id: str, kind: DocumentKind) -> str:
        return f"{organization_id}:{kind.value}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Counter':
        return super().from_dict(dict(data))


class SequenceAllocator:
    """Issues collision-free document numbers per organization and kind"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None,
        brand: str = "",
        padding: int = 3,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "document_counters"
        self.brand = brand
        self.padding = padding
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("finance_ledger.sequences")

    def format_number(self, kind: DocumentKind, value: int, year: int) -> str:
        """Render a counter value; padding is a minimum width, never a cap"""
        number = f"{DOCUMENT_PREFIXES[kind]}-{year}-{value:0{self.padding}d}"
        if self.brand:
            return f"{self.brand}-{number}"
        return number

    def allocate(self, organization_id: str, kind: DocumentKind) -> str:
        """
        Increment the (organization, kind) counter and return the formatted number.

        Joins the caller's unit of work; the counter row stays locked until
        that unit ends, so concurrent allocations for the same key queue up
        behind it.
        """
        counter_id = Counter.key(organization_id, kind)
        with self.storage.atomic():
            now = self._clock()
            while True:
                # First allocation for this pair starts from zero
                self.storage.create_if_absent(self.table_name, counter_id, Counter(
                    id=counter_id,
                    created_at=now,
                    updated_at=now,
                    organization_id=organization_id,
                    kind=kind.value
                ).to_dict())
                data = self.storage.lock_row(self.table_name, counter_id)
                if data is not None:
                    break
                # Row vanished with a rolled-back insert; recreate it

            counter = Counter.from_dict(data)
            counter.value += 1
            counter.updated_at = now
            self.storage.save(self.table_name, counter_id, counter.to_dict())

            document_number = self.format_number(kind, counter.value, now.year)

            self.audit_trail.log_event(
                event_type=AuditEventType.DOCUMENT_NUMBER_ISSUED,
                entity_type="document_counter",
                entity_id=counter_id,
                organization_id=organization_id,
                metadata={
                    "kind": kind.value,
                    "value": counter.value,
                    "document_number": document_number
                }
            )
            publish_after_commit(self.storage, self._event_dispatcher, EventPayload(
                event_type=DomainEvent.DOCUMENT_NUMBER_ISSUED,
                entity_type="document_counter",
                entity_id=counter_id,
                data={"organization_id": organization_id, "document_number": document_number}
            ))

        log_action(
            self.logger, "debug", f"Issued document number {document_number}",
            organization_id=organization_id, action="allocate", resource=counter_id
        )
        return document_number

    def current_value(self, organization_id: str, kind: DocumentKind) -> int:
        """Last value issued for the pair, 0 if none yet"""
        data = self.storage.load(self.table_name, Counter.key(organization_id, kind))
        return data["value"] if data else 0
