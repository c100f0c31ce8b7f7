"""
Account endpoints
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import LedgerSystem, get_ledger_system
from .schemas import CreateAccountRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new account"""
    account = system.account_manager.create_account(
        organization_id=request.organization_id,
        name=request.name,
        currency=request.currency,
        initial_balance=request.initial_balance
    )
    return account.to_dict()


@router.get("/{account_id}")
def get_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details"""
    account = system.account_manager.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account.to_dict()


@router.get("/{account_id}/reconciliation")
def reconcile_account(
    account_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Compare the stored balance with a replay of the transaction log"""
    return system.account_manager.reconcile_account(account_id).to_dict()


@router.get("/{account_id}/transactions")
def get_account_transactions(
    account_id: str,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get the account's transactions in posting order"""
    if not system.account_manager.get_account(account_id):
        raise HTTPException(status_code=404, detail="Account not found")

    transactions = system.transaction_log.list_account_transactions(account_id, start_time, end_time)
    return {
        "account_id": account_id,
        "transactions": [transaction.to_dict() for transaction in transactions],
        "count": len(transactions)
    }
