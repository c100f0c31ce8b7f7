"""
Reversal Engine

Undoes a deleted document's balance effect by appending a compensating
transaction. Original transactions are never modified or removed.
"""

from typing import Optional

from .storage import StorageInterface
from .accounts import AccountManager
from .documents import Document, DocumentStatus
from .exceptions import DoubleReversalError
from .posting import BalancePoster
from .transactions import Transaction, TransactionLog, REVERSAL_REASON_DOCUMENT_DELETED
from .logging_config import get_logger, log_action


class ReversalEngine:
    """Applies at most one reversal per original transaction"""

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_log: TransactionLog,
        poster: BalancePoster
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_log = transaction_log
        self.poster = poster
        self.logger = get_logger("finance_ledger.reversals")

    def on_document_deleted(self, document: Document) -> Optional[Transaction]:
        """
        Reverse the document's original transaction.

        Returns the reversal, or None when the document never moved a
        balance or its transaction was already reversed.
        """
        if document.status != DocumentStatus.COMPLETED or document.account_id is None:
            return None

        with self.storage.atomic():
            original = self.transaction_log.find_original(document.id)
            if original is None:
                self.logger.debug(f"Document {document.document_number} has no posted transaction")
                return None

            account = self.account_manager.lock_account(original.account_id, document.id)

            # Checked under the account lock so concurrent deletes reverse once
            existing = self.transaction_log.find_reversal(original)
            if existing:
                log_action(
                    self.logger, "info",
                    str(DoubleReversalError(original.id)) + f"; reversal {existing.id} kept",
                    organization_id=document.organization_id, document_id=document.id,
                    action="reverse", resource=original.id
                )
                return None

            reversal = self.poster.post(
                account,
                document.id,
                original.direction.inverse,
                original.amount,
                f"Reversal (deleted) - {document.document_number}",
                metadata={
                    "reversal": True,
                    "original_transaction_id": original.id,
                    "reason": REVERSAL_REASON_DOCUMENT_DELETED
                }
            )

        log_action(
            self.logger, "info",
            f"Reversed {original.id} for deleted {document.document_number}",
            organization_id=document.organization_id, document_id=document.id,
            action="reverse", resource=reversal.id
        )
        return reversal
