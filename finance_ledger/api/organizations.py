"""
Organization endpoints
"""

from fastapi import APIRouter, Depends, status

from .system import LedgerSystem, get_ledger_system
from .schemas import CreateOrganizationRequest, NegativeBalancePolicyRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_organization(
    request: CreateOrganizationRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new organization"""
    organization = system.organization_manager.create_organization(
        name=request.name,
        allow_negative_balance=request.allow_negative_balance
    )
    return organization.to_dict()


@router.get("/{organization_id}")
def get_organization(
    organization_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get organization details"""
    return system.organization_manager.require_organization(organization_id).to_dict()


@router.put("/{organization_id}/negative-balance-policy")
def set_negative_balance_policy(
    organization_id: str,
    request: NegativeBalancePolicyRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Allow or forbid negative balances on the organization's accounts"""
    organization = system.organization_manager.set_negative_balance_policy(
        organization_id, request.allow_negative_balance
    )
    return organization.to_dict()


@router.get("/{organization_id}/accounts")
def list_accounts(
    organization_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the organization's accounts"""
    system.organization_manager.require_organization(organization_id)
    accounts = system.account_manager.get_organization_accounts(organization_id)
    return {"accounts": [account.to_dict() for account in accounts], "count": len(accounts)}
