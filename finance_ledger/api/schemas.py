"""
Pydantic schemas for API requests and responses
"""

from typing import Optional
from pydantic import BaseModel, Field


# Organization schemas
class CreateOrganizationRequest(BaseModel):
    name: str
    allow_negative_balance: bool = False


class NegativeBalancePolicyRequest(BaseModel):
    allow_negative_balance: bool


# Account schemas
class CreateAccountRequest(BaseModel):
    organization_id: str
    name: str
    currency: Optional[str] = None
    initial_balance: str = Field("0.00", description="Decimal amount as string")


# Document schemas
class CreateDocumentRequest(BaseModel):
    organization_id: str
    kind: str = Field(..., description="receipt, statement_of_payment, invoice or payment_voucher")
    amount: str = Field(..., description="Decimal amount as string")
    account_id: Optional[str] = None
    document_number: Optional[str] = Field(None, description="Omit, empty or 'auto' to allocate one")
    status: str = "draft"
    total_deducted: Optional[str] = Field(None, description="Statements of payment only")
    currency: Optional[str] = None


class TotalDeductedRequest(BaseModel):
    total_deducted: str = Field(..., description="Decimal amount as string")


class UpdateStatusRequest(BaseModel):
    status: str
