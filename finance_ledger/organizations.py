"""
Organization Module

Organizations are the tenant boundary: document numbering, uniqueness and
locking are all scoped per organization. The organization also carries the
negative-balance policy applied to every one of its accounts.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import OrganizationNotFoundError


@dataclass
class Organization(StorageRecord):
    """Tenant owning accounts and documents"""
    name: str
    allow_negative_balance: bool = False  # Overdraft policy for all accounts

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Organization':
        return super().from_dict(dict(data))


class OrganizationManager:
    """Creates organizations and manages their ledger policy"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "organizations"

    def create_organization(self, name: str, allow_negative_balance: bool = False) -> Organization:
        """Create a new organization"""
        now = datetime.now(timezone.utc)
        organization = Organization(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            allow_negative_balance=allow_negative_balance
        )
        self.storage.save(self.table_name, organization.id, organization.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.ORGANIZATION_CREATED,
            entity_type="organization",
            entity_id=organization.id,
            organization_id=organization.id,
            metadata={
                "name": name,
                "allow_negative_balance": allow_negative_balance
            }
        )
        return organization

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        """Get organization by ID"""
        data = self.storage.load(self.table_name, organization_id)
        if data:
            return Organization.from_dict(data)
        return None

    def require_organization(self, organization_id: str) -> Organization:
        organization = self.get_organization(organization_id)
        if not organization:
            raise OrganizationNotFoundError(f"Organization {organization_id} not found")
        return organization

    def list_organizations(self) -> List[Organization]:
        return [Organization.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def set_negative_balance_policy(self, organization_id: str, allowed: bool) -> Organization:
        """Allow or forbid negative balances for every account of the organization"""
        organization = self.require_organization(organization_id)
        previous = organization.allow_negative_balance
        organization.allow_negative_balance = allowed
        organization.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, organization.id, organization.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.ORGANIZATION_POLICY_CHANGED,
            entity_type="organization",
            entity_id=organization.id,
            organization_id=organization.id,
            metadata={
                "allow_negative_balance": allowed,
                "previous": previous
            }
        )
        return organization

    def negative_balance_allowed(self, organization_id: str) -> bool:
        return self.require_organization(organization_id).allow_negative_balance
