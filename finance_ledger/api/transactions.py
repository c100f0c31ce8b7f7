"""
Transaction audit endpoints (read-only)
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends

from .system import LedgerSystem, get_ledger_system


router = APIRouter()


@router.get("/reversals")
def list_reversals(
    organization_id: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List reversal transactions"""
    reversals = system.transaction_log.list_reversals(organization_id)
    return {"reversals": [transaction.to_dict() for transaction in reversals], "count": len(reversals)}


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get transaction details"""
    transaction = system.transaction_log.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction.to_dict()
