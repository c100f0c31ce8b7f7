"""
Ledger system container and FastAPI dependency
"""

from typing import Optional

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail
from ..events import EventDispatcher
from ..organizations import OrganizationManager
from ..transactions import TransactionLog
from ..accounts import AccountManager
from ..sequences import SequenceAllocator
from ..posting import BalancePoster
from ..ledger import BalanceLedger
from ..reversals import ReversalEngine
from ..lifecycle import LifecycleDispatcher
from ..documents import DocumentManager
from ..config import LedgerConfig, get_config


class LedgerSystem:
    """Finance ledger with all components wired to one storage backend"""

    def __init__(self, storage: Optional[StorageInterface] = None, config: Optional[LedgerConfig] = None):
        self.config = config or get_config()

        # Initialize storage
        if storage is None:
            storage = create_storage(self.config.database_url, self.config.lock_timeout_seconds)
        self.storage = storage

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.event_dispatcher = EventDispatcher() if self.config.enable_domain_events else None
        self.organization_manager = OrganizationManager(self.storage, self.audit_trail)
        self.transaction_log = TransactionLog(self.storage)
        self.account_manager = AccountManager(
            self.storage, self.audit_trail, self.organization_manager, self.transaction_log
        )
        self.sequence_allocator = SequenceAllocator(
            self.storage, self.audit_trail, self.event_dispatcher,
            brand=self.config.document_number_brand,
            padding=self.config.document_number_padding
        )

        # Ledger handlers
        self.poster = BalancePoster(
            self.storage, self.account_manager, self.transaction_log,
            self.audit_trail, self.event_dispatcher
        )
        self.ledger = BalanceLedger(
            self.storage, self.account_manager, self.transaction_log, self.poster,
            allow_total_deducted_fallback=self.config.allow_total_deducted_fallback
        )
        self.reversal_engine = ReversalEngine(
            self.storage, self.account_manager, self.transaction_log, self.poster
        )
        self.lifecycle = LifecycleDispatcher(self.storage, self.ledger, self.reversal_engine)
        self.document_manager = DocumentManager(
            self.storage, self.audit_trail, self.organization_manager,
            self.sequence_allocator, self.lifecycle, self.event_dispatcher
        )

    def close(self) -> None:
        self.storage.close()


# Global ledger system instance, created on first use
_ledger_system: Optional[LedgerSystem] = None


# Dependency to get ledger system
def get_ledger_system() -> LedgerSystem:
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system
