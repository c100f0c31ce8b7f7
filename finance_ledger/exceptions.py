"""
Ledger Errors

Domain exceptions raised by the sequence allocator, balance ledger and
reversal engine. Every one of them aborts the enclosing unit of work.
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger failures"""

    retryable = False


class DuplicateNumberError(LedgerError):
    """Raised when an allocated document number already exists in the organization"""

    def __init__(self, organization_id: str, document_number: str, fatal: bool = False):
        self.organization_id = organization_id
        self.document_number = document_number
        self.fatal = fatal
        if fatal:
            message = (
                f"Document number {document_number} collided twice in organization "
                f"{organization_id}; counters for this key are misconfigured"
            )
        else:
            message = f"Document number {document_number} already exists in organization {organization_id}"
        super().__init__(message)


class NullAmountError(LedgerError):
    """Raised when a completed document has no usable amount to post"""

    def __init__(self, document_id: str, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Document {document_id} has no postable amount: {reason}")


class NegativeBalanceViolation(LedgerError):
    """Raised when a decrease would take an account below zero while the organization forbids it"""

    def __init__(self, account_id: str, balance: Decimal, amount: Decimal):
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient balance on account {account_id}: "
            f"balance {balance} cannot cover {amount}"
        )


class MissingAccountError(LedgerError):
    """Raised when a document references an account that does not exist"""

    def __init__(self, account_id: str, document_id: Optional[str] = None):
        self.account_id = account_id
        self.document_id = document_id
        where = f" (referenced by document {document_id})" if document_id else ""
        super().__init__(f"Account {account_id} not found{where}")


class DoubleReversalError(LedgerError):
    """A document's transaction has already been reversed.

    The reversal engine never raises this; its idempotency guard turns a
    repeated delete event into a no-op.
    """

    def __init__(self, original_transaction_id: str):
        self.original_transaction_id = original_transaction_id
        super().__init__(f"Transaction {original_transaction_id} has already been reversed")


class LockTimeoutError(LedgerError):
    """Raised when waiting for a row lock exceeds the configured timeout"""

    retryable = True

    def __init__(self, table: str, record_id: str, timeout: float):
        self.table = table
        self.record_id = record_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock on {table}:{record_id}")


class CurrencyMismatchError(LedgerError):
    """Raised when a document's currency differs from its account's currency"""


class InactiveAccountError(LedgerError):
    """Raised when posting to an account that has been deactivated"""


class InvalidDocumentStateError(LedgerError):
    """Raised on a document transition that is not allowed"""


class DocumentNotFoundError(LedgerError):
    """Raised when a document cannot be found"""


class OrganizationNotFoundError(LedgerError):
    """Raised when an organization cannot be found"""
