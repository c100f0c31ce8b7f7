"""
Document endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .system import LedgerSystem, get_ledger_system
from .schemas import CreateDocumentRequest, TotalDeductedRequest, UpdateStatusRequest
from ..documents import DocumentKind, DocumentStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_document(
    request: CreateDocumentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a document; a number is allocated unless one is given"""
    document = system.document_manager.create_document(
        organization_id=request.organization_id,
        kind=DocumentKind(request.kind),
        amount=request.amount,
        account_id=request.account_id,
        document_number=request.document_number,
        status=DocumentStatus(request.status),
        total_deducted=request.total_deducted,
        currency=request.currency
    )
    return document.to_dict()


@router.get("/{document_id}")
def get_document(
    document_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get document details with the transactions it caused"""
    document = system.document_manager.get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    transactions = system.transaction_log.get_document_transactions(document_id)
    result = document.to_dict()
    result["transactions"] = [transaction.to_dict() for transaction in transactions]
    return result


@router.put("/{document_id}/total-deducted")
def set_total_deducted(
    document_id: str,
    request: TotalDeductedRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record the debited sum of a statement of payment"""
    return system.document_manager.set_total_deducted(document_id, request.total_deducted).to_dict()


@router.put("/{document_id}/status")
def update_status(
    document_id: str,
    request: UpdateStatusRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Move a document through its workflow"""
    return system.document_manager.update_status(document_id, DocumentStatus(request.status)).to_dict()


@router.post("/{document_id}/complete")
def complete_document(
    document_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Complete a document and post it to its account"""
    return system.document_manager.complete_document(document_id).to_dict()


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Soft-delete a document and reverse its balance effect"""
    return system.document_manager.delete_document(document_id).to_dict()
