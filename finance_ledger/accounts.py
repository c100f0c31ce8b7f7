"""
Account Management Module

Accounts hold the balances the ledger keeps consistent. current_balance is
only ever written by the balance ledger and the reversal engine, under an
exclusive row lock; everything here is either creation, lookup or
read-only reconciliation.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
import uuid

from .money import to_amount, ZERO
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .organizations import OrganizationManager
from .transactions import Transaction, TransactionLog
from .exceptions import MissingAccountError


@dataclass
class Account(StorageRecord):
    """
    Bank or petty-cash account owned by an organization.

    transaction_count is the sequence number of the last transaction
    applied to this account.
    """
    organization_id: str
    name: str
    initial_balance: Decimal
    current_balance: Decimal
    currency: Optional[str] = None
    transaction_count: int = 0
    is_active: bool = True

    def __post_init__(self):
        self.initial_balance = to_amount(self.initial_balance)
        self.current_balance = to_amount(self.current_balance)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['initial_balance'] = Decimal(data['initial_balance'])
        data['current_balance'] = Decimal(data['current_balance'])
        return cls(**data)


@dataclass
class AccountReconciliation:
    """Stored balance compared against a replay of the transaction log"""
    account_id: str
    initial_balance: Decimal
    stored_balance: Decimal
    computed_balance: Decimal
    transaction_count: int
    chain_breaks: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def discrepancy(self) -> Decimal:
        return self.stored_balance - self.computed_balance

    @property
    def is_consistent(self) -> bool:
        return self.discrepancy == ZERO and not self.chain_breaks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "initial_balance": str(self.initial_balance),
            "stored_balance": str(self.stored_balance),
            "computed_balance": str(self.computed_balance),
            "discrepancy": str(self.discrepancy),
            "transaction_count": self.transaction_count,
            "chain_breaks": self.chain_breaks,
            "is_consistent": self.is_consistent
        }


class AccountManager:
    """
    Manages account creation, lookup and the locked balance write used by
    the ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        organization_manager: OrganizationManager,
        transaction_log: TransactionLog
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.organization_manager = organization_manager
        self.transaction_log = transaction_log
        self.accounts_table = "accounts"

    def create_account(
        self,
        organization_id: str,
        name: str,
        currency: Optional[str] = None,
        initial_balance: Any = ZERO
    ) -> Account:
        """
        Create a new account

        Args:
            organization_id: Owning organization
            name: Account name, e.g. "Main bank" or "Petty cash"
            currency: ISO currency code, informational
            initial_balance: Opening balance; the log replays from here

        Returns:
            Created Account object
        """
        self.organization_manager.require_organization(organization_id)

        now = datetime.now(timezone.utc)
        opening = to_amount(initial_balance)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            organization_id=organization_id,
            name=name,
            currency=currency.upper() if currency else None,
            initial_balance=opening,
            current_balance=opening
        )
        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account.id,
            organization_id=organization_id,
            metadata={
                "name": name,
                "currency": account.currency,
                "initial_balance": opening
            }
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return Account.from_dict(account_dict)
        return None

    def get_organization_accounts(self, organization_id: str) -> List[Account]:
        """Get all accounts of an organization"""
        accounts_data = self.storage.find(self.accounts_table, {"organization_id": organization_id})
        return [Account.from_dict(data) for data in accounts_data]

    def deactivate_account(self, account_id: str, reason: str) -> Account:
        """Stop an account from receiving new postings; reversals still apply"""
        with self.storage.atomic():
            account = self.lock_account(account_id)
            account.is_active = False
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_DEACTIVATED,
                entity_type="account",
                entity_id=account.id,
                organization_id=account.organization_id,
                metadata={"reason": reason}
            )
        return account

    def lock_account(self, account_id: str, document_id: Optional[str] = None) -> Account:
        """
        Take the exclusive row lock on an account and return its locked state.

        Must run inside storage.atomic(); the lock lasts until the unit of
        work ends.
        """
        data = self.storage.lock_row(self.accounts_table, account_id)
        if data is None:
            raise MissingAccountError(account_id, document_id)
        return Account.from_dict(data)

    def apply_transaction(self, account: Account, transaction: Transaction) -> Account:
        """Write a locked account's balance after appending its transaction"""
        account.current_balance = transaction.balance_after
        account.transaction_count = transaction.sequence
        account.updated_at = transaction.created_at
        self._save_account(account)
        return account

    def negative_balance_allowed(self, account: Account) -> bool:
        """The owning organization's overdraft policy"""
        return self.organization_manager.negative_balance_allowed(account.organization_id)

    def reconcile_account(self, account_id: str) -> AccountReconciliation:
        """
        Replay the account's transactions from its opening balance and compare
        with the stored balance. Also reports every transaction whose
        balance_before does not follow from its predecessor.
        """
        account = self.get_account(account_id)
        if not account:
            raise MissingAccountError(account_id)

        running = account.initial_balance
        chain_breaks = []
        transactions = self.transaction_log.list_account_transactions(account_id)
        for transaction in transactions:
            if transaction.balance_before != running:
                chain_breaks.append({
                    "transaction_id": transaction.id,
                    "sequence": transaction.sequence,
                    "expected_balance_before": str(running),
                    "actual_balance_before": str(transaction.balance_before)
                })
            running = running + transaction.signed_amount

        return AccountReconciliation(
            account_id=account_id,
            initial_balance=account.initial_balance,
            stored_balance=account.current_balance,
            computed_balance=running,
            transaction_count=len(transactions),
            chain_breaks=chain_breaks
        )

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, account.to_dict())
