"""
Transaction Log Module

Immutable balance transactions and the read-only audit query surface over
them. A transaction row is never updated or deleted; a reversal is always a
new row linked to the original through its metadata.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum

from .money import to_amount
from .storage import StorageInterface, StorageRecord


class TransactionDirection(Enum):
    """Effect of a transaction on its account's balance"""
    INCREASE = "increase"
    DECREASE = "decrease"

    @property
    def inverse(self) -> 'TransactionDirection':
        if self is TransactionDirection.INCREASE:
            return TransactionDirection.DECREASE
        return TransactionDirection.INCREASE

    def apply(self, balance: Decimal, amount: Decimal) -> Decimal:
        """Balance after applying amount in this direction"""
        if self is TransactionDirection.INCREASE:
            return balance + amount
        return balance - amount


REVERSAL_REASON_DOCUMENT_DELETED = "document_deleted"


@dataclass
class Transaction(StorageRecord):
    """
    One balance mutation of one account, caused by one document.

    amount is always strictly positive; the sign lives in direction.
    sequence orders transactions within their account.
    """
    account_id: str
    document_id: str
    organization_id: str
    direction: TransactionDirection
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str
    sequence: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.amount = to_amount(self.amount)
        self.balance_before = to_amount(self.balance_before)
        self.balance_after = to_amount(self.balance_after)

        if self.amount <= 0:
            raise ValueError("Transaction amount must be positive")

        if self.direction.apply(self.balance_before, self.amount) != self.balance_after:
            raise ValueError(
                f"balance_after {self.balance_after} does not equal balance_before "
                f"{self.balance_before} {self.direction.value}d by {self.amount}"
            )

    @property
    def is_reversal(self) -> bool:
        return bool(self.metadata.get("reversal"))

    @property
    def original_transaction_id(self) -> Optional[str]:
        return self.metadata.get("original_transaction_id")

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction is TransactionDirection.INCREASE else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "account_id": self.account_id,
            "document_id": self.document_id,
            "organization_id": self.organization_id,
            "direction": self.direction.value,
            "amount": str(self.amount),
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "description": self.description,
            "sequence": self.sequence,
            "metadata": self.metadata,
            # Flattened so storage filters can match reversals directly
            "is_reversal": self.is_reversal
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            account_id=data["account_id"],
            document_id=data["document_id"],
            organization_id=data["organization_id"],
            direction=TransactionDirection(data["direction"]),
            amount=Decimal(data["amount"]),
            balance_before=Decimal(data["balance_before"]),
            balance_after=Decimal(data["balance_after"]),
            description=data["description"],
            sequence=data["sequence"],
            metadata=data.get("metadata") or {}
        )


class TransactionLog:
    """
    Append-only store of balance transactions.

    Only the balance ledger and the reversal engine append; everything else
    is read-only.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def append(self, transaction: Transaction) -> Transaction:
        """Insert a new transaction row; existing rows are never replaced"""
        if not self.storage.create_if_absent(self.table_name, transaction.id, transaction.to_dict()):
            raise ValueError(f"Transaction {transaction.id} already exists and is immutable")
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    def get_document_transactions(self, document_id: str) -> List[Transaction]:
        """All transactions caused by a document, in creation order"""
        return self._sorted(self.storage.find(self.table_name, {"document_id": document_id}))

    def find_original(self, document_id: str) -> Optional[Transaction]:
        """The non-reversal transaction posted when the document completed"""
        originals = [t for t in self.get_document_transactions(document_id) if not t.is_reversal]
        return originals[0] if originals else None

    def find_reversal(self, original: Transaction) -> Optional[Transaction]:
        """The reversal linked to an original transaction, if one exists"""
        for transaction in self.get_document_transactions(original.document_id):
            if transaction.is_reversal and transaction.original_transaction_id == original.id:
                return transaction
        return None

    def list_reversals(self, organization_id: Optional[str] = None) -> List[Transaction]:
        """Transactions with metadata.reversal = true, in creation order"""
        filters: Dict[str, Any] = {"is_reversal": True}
        if organization_id:
            filters["organization_id"] = organization_id
        return self._sorted(self.storage.find(self.table_name, filters))

    def list_account_transactions(
        self,
        account_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None
    ) -> List[Transaction]:
        """
        Transactions of one account within [start_time, end_time], in the
        order they were applied to the balance.
        """
        # Naive bounds are read as UTC
        if start_time and start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        if end_time and end_time.tzinfo is None:
            end_time = end_time.replace(tzinfo=timezone.utc)
        rows = self.storage.find(self.table_name, {"account_id": account_id})
        transactions = sorted((Transaction.from_dict(row) for row in rows), key=lambda t: t.sequence)
        if start_time:
            transactions = [t for t in transactions if t.created_at >= start_time]
        if end_time:
            transactions = [t for t in transactions if t.created_at <= end_time]
        return transactions

    def count_account_transactions(self, account_id: str) -> int:
        return len(self.storage.find(self.table_name, {"account_id": account_id}))

    @staticmethod
    def _sorted(rows: List[Dict[str, Any]]) -> List[Transaction]:
        transactions = [Transaction.from_dict(row) for row in rows]
        transactions.sort(key=lambda t: t.created_at)
        return transactions
