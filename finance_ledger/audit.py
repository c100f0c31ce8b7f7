"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Events raised inside a unit of work are appended only after it commits,
so the chain never references work that was rolled back.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Tenant and account events
    ORGANIZATION_CREATED = "organization_created"
    ORGANIZATION_POLICY_CHANGED = "organization_policy_changed"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DEACTIVATED = "account_deactivated"

    # Document lifecycle events
    DOCUMENT_NUMBER_ISSUED = "document_number_issued"
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_STATUS_CHANGED = "document_status_changed"
    DOCUMENT_COMPLETED = "document_completed"
    DOCUMENT_DELETED = "document_deleted"

    # Ledger events
    TRANSACTION_POSTED = "transaction_posted"
    TRANSACTION_REVERSED = "transaction_reversed"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # organization, account, document, transaction
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    organization_id: Optional[str] = None
    user_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self._serialize_metadata()

    def _serialize_metadata(self) -> None:
        """Convert metadata values to JSON-serializable format"""
        def convert_value(value):
            if isinstance(value, Decimal):
                return str(value)
            elif isinstance(value, datetime):
                return value.isoformat()
            elif isinstance(value, Enum):
                return value.value
            elif isinstance(value, dict):
                return {k: convert_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [convert_value(v) for v in value]
            else:
                return value

        self.metadata = {k: convert_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'organization_id': self.organization_id,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events", enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()

    def _last_hash(self) -> str:
        """Hash of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            return events[-1].get('current_hash') or ""
        return ""

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining.

        Inside a unit of work the event is queued and appended after commit;
        None is returned in that case. Outside one, the appended event is
        returned.
        """
        if not self.enabled:
            return None

        append = partial(
            self._append, event_type, entity_type, entity_id,
            metadata or {}, organization_id, user_id
        )
        if self.storage.in_transaction:
            self.storage.on_commit(append)
            return None
        return append()

    def _append(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Dict[str, Any],
        organization_id: Optional[str],
        user_id: Optional[str]
    ) -> AuditEvent:
        with self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash(),
                current_hash="",
                metadata=metadata,
                organization_id=organization_id,
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All audit events for an entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        return [AuditEvent.from_dict(data) for data in events_data]

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        organization_id: Optional[str] = None
    ) -> List[AuditEvent]:
        """Audit events of one type, optionally scoped to an organization"""
        filters: Dict[str, Any] = {'event_type': event_type.value}
        if organization_id:
            filters['organization_id'] = organization_id
        return [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def get_all_events(self) -> List[AuditEvent]:
        return [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
