"""
Balance Ledger

Posts a completed document to its account exactly once. Receipts and
invoices increase the balance; statements of payment and payment vouchers
decrease it.
"""

from decimal import Decimal
from typing import Optional

from .storage import StorageInterface
from .accounts import AccountManager
from .documents import Document, DocumentKind
from .exceptions import (
    CurrencyMismatchError, InactiveAccountError, MissingAccountError, NullAmountError
)
from .posting import BalancePoster
from .transactions import Transaction, TransactionDirection, TransactionLog
from .logging_config import get_logger, log_action


LEDGER_DIRECTIONS = {
    DocumentKind.RECEIPT: TransactionDirection.INCREASE,
    DocumentKind.INVOICE: TransactionDirection.INCREASE,
    DocumentKind.STATEMENT_OF_PAYMENT: TransactionDirection.DECREASE,
    DocumentKind.PAYMENT_VOUCHER: TransactionDirection.DECREASE,
}

DESCRIPTION_PREFIXES = {
    TransactionDirection.INCREASE: "Payment received",
    TransactionDirection.DECREASE: "Payment made",
}


class BalanceLedger:
    """Turns document completion into one balance transaction"""

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_log: TransactionLog,
        poster: BalancePoster,
        allow_total_deducted_fallback: bool = True
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_log = transaction_log
        self.poster = poster
        self.allow_total_deducted_fallback = allow_total_deducted_fallback
        self.logger = get_logger("finance_ledger.ledger")

    def resolve_amount(self, document: Document) -> Decimal:
        """
        Amount the document moves.

        Statements of payment post total_deducted (amount plus fees) and fall
        back to amount when it was never recorded, if the fallback is enabled.
        """
        amount = document.amount
        if document.kind == DocumentKind.STATEMENT_OF_PAYMENT:
            if document.total_deducted is not None:
                amount = document.total_deducted
            elif not self.allow_total_deducted_fallback:
                raise NullAmountError(document.id, "total_deducted was not recorded before completion")
            else:
                self.logger.debug(f"Statement {document.document_number} has no total_deducted; posting amount")

        if amount is None or amount <= 0:
            raise NullAmountError(document.id, f"amount is {amount}")
        return amount

    def on_document_completed(self, document: Document) -> Optional[Transaction]:
        """
        Post a completed document to its account.

        Returns the new transaction, the already-posted one when the document
        was posted before, or None when the document has no account.
        """
        if document.account_id is None:
            self.logger.debug(f"Document {document.document_number} has no account; nothing to post")
            return None

        direction = LEDGER_DIRECTIONS[document.kind]

        with self.storage.atomic():
            amount = self.resolve_amount(document)
            account = self.account_manager.lock_account(document.account_id, document.id)

            existing = self.transaction_log.find_original(document.id)
            if existing:
                log_action(
                    self.logger, "warning",
                    f"Document {document.document_number} already posted as transaction {existing.id}",
                    organization_id=document.organization_id, document_id=document.id, action="post"
                )
                return existing

            if account.organization_id != document.organization_id:
                raise MissingAccountError(account.id, document.id)
            if not account.is_active:
                raise InactiveAccountError(f"Account {account.id} is inactive")
            if document.currency and account.currency and document.currency != account.currency:
                raise CurrencyMismatchError(
                    f"Document currency {document.currency} does not match "
                    f"account currency {account.currency}"
                )

            transaction = self.poster.post(
                account,
                document.id,
                direction,
                amount,
                f"{DESCRIPTION_PREFIXES[direction]} - {document.document_number}"
            )

        log_action(
            self.logger, "info",
            f"Posted {document.document_number}: {direction.value} {amount} on account {account.id}",
            organization_id=document.organization_id, document_id=document.id,
            action="post", resource=transaction.id
        )
        return transaction
