"""
Balance Posting

The one write path for account balances, shared by the balance ledger and
the reversal engine. The caller holds the account's row lock; posting
appends the immutable transaction and updates the balance in the same unit
of work.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional, Any
import uuid

from .storage import StorageInterface
from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, DomainEvent, create_transaction_event, publish_after_commit
from .exceptions import NegativeBalanceViolation
from .transactions import Transaction, TransactionDirection, TransactionLog
from .logging_config import get_logger, log_action


class BalancePoster:
    """Appends a transaction and moves the locked account's balance with it"""

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_log: TransactionLog,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_log = transaction_log
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("finance_ledger.posting")

    def post(
        self,
        account: Account,
        document_id: str,
        direction: TransactionDirection,
        amount: Decimal,
        description: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """
        Post amount to a locked account.

        Raises NegativeBalanceViolation when a decrease would leave the
        account below zero and its organization forbids that.
        """
        balance_before = account.current_balance
        balance_after = direction.apply(balance_before, amount)

        if (direction is TransactionDirection.DECREASE and balance_after < 0
                and not self.account_manager.negative_balance_allowed(account)):
            log_action(
                self.logger, "warning",
                f"Rejected {amount} decrease on account {account.id}: balance {balance_before}",
                organization_id=account.organization_id, document_id=document_id,
                action="post", resource=account.id
            )
            raise NegativeBalanceViolation(account.id, balance_before, amount)

        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account.id,
            document_id=document_id,
            organization_id=account.organization_id,
            direction=direction,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            description=description,
            sequence=account.transaction_count + 1,
            metadata=dict(metadata or {})
        )
        self.transaction_log.append(transaction)
        self.account_manager.apply_transaction(account, transaction)

        if transaction.is_reversal:
            audit_type, event_type = AuditEventType.TRANSACTION_REVERSED, DomainEvent.TRANSACTION_REVERSED
        else:
            audit_type, event_type = AuditEventType.TRANSACTION_POSTED, DomainEvent.TRANSACTION_POSTED

        self.audit_trail.log_event(
            event_type=audit_type,
            entity_type="transaction",
            entity_id=transaction.id,
            organization_id=account.organization_id,
            metadata={
                "account_id": account.id,
                "document_id": document_id,
                "direction": direction.value,
                "amount": amount,
                "balance_before": balance_before,
                "balance_after": balance_after,
                "original_transaction_id": transaction.original_transaction_id
            }
        )
        publish_after_commit(self.storage, self._event_dispatcher,
                             create_transaction_event(event_type, transaction))
        return transaction
