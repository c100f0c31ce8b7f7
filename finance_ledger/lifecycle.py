"""
Document Lifecycle Dispatcher

Routes the two ledger-relevant document transitions to their handlers. Each
handler joins the unit of work of the write that caused the transition, so
the document change and its balance effect commit or roll back together.
"""

from typing import Optional

from .storage import StorageInterface
from .documents import Document
from .ledger import BalanceLedger
from .reversals import ReversalEngine
from .transactions import Transaction


class LifecycleDispatcher:
    """Fires ledger handlers on document completion and deletion"""

    def __init__(self, storage: StorageInterface, ledger: BalanceLedger, reversal_engine: ReversalEngine):
        self.storage = storage
        self.ledger = ledger
        self.reversal_engine = reversal_engine

    def document_completed(self, document: Document) -> Optional[Transaction]:
        """Status changed to completed"""
        with self.storage.atomic():
            return self.ledger.on_document_completed(document)

    def document_deleted(self, document: Document) -> Optional[Transaction]:
        """deleted_at changed from unset to set"""
        with self.storage.atomic():
            return self.reversal_engine.on_document_deleted(document)
