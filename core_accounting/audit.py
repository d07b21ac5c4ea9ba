"""
Audit Trail Module

Append-only log of chart changes, posting attempts and rollup repairs.
Each event carries its position in the chain and the SHA-256 hash of the
event before it, so edits, deletions and reordering are all detectable.
"""

import hashlib
import hmac
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .storage import AUDIT_TABLE, StorageInterface, to_plain

GENESIS_HASH = ""


class AuditEventType(Enum):
    """Types of audit events"""
    # Chart of accounts events
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    ACCOUNT_DELETED = "account_deleted"

    # Journal entry events
    JOURNAL_ENTRY_POSTED = "journal_entry_posted"
    JOURNAL_ENTRY_REJECTED = "journal_entry_rejected"

    # Balance rollup events
    ROLLUP_REBUILT = "rollup_rebuilt"
    ROLLUP_DRIFT_DETECTED = "rollup_drift_detected"


@dataclass
class AuditEvent:
    """One link of the audit chain"""
    id: str
    sequence: int
    recorded_at: datetime
    event_type: AuditEventType
    entity_type: str  # account, journal_entry, rollup
    entity_id: str
    previous_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    current_hash: str = ""

    def __post_init__(self):
        # Metadata is hashed, so it must be plain JSON
        self.metadata = to_plain(dict(self.metadata or {}))

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        payload = self.to_dict()
        del payload['current_hash']
        encoded = json.dumps(payload, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(encoded.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return hmac.compare_digest(self.current_hash, self.calculate_hash())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sequence': self.sequence,
            'recorded_at': self.recorded_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata,
            'user_id': self.user_id,
            'current_hash': self.current_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            sequence=data['sequence'],
            recorded_at=datetime.fromisoformat(data['recorded_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            metadata=data.get('metadata') or {},
            user_id=data.get('user_id'),
            current_hash=data.get('current_hash', ""),
        )


class AuditTrail:
    """
    Hash-chained audit trail

    The chain head (last sequence number and hash) is cached; call resync()
    after a storage rollback may have discarded events.
    """

    def __init__(self, storage: StorageInterface, table_name: str = AUDIT_TABLE,
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()
        self._head: Tuple[int, str] = (0, GENESIS_HASH)
        self._load_head()

    def _load_head(self) -> None:
        events = self.storage.load_all(self.table_name)
        if events:
            last = events[-1]
            self._head = (last['sequence'], last['current_hash'])
        else:
            self._head = (0, GENESIS_HASH)

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            sequence, previous_hash = self._head
            event = AuditEvent(
                id=uuid.uuid4().hex,
                sequence=sequence + 1,
                recorded_at=datetime.now(timezone.utc),
                event_type=event_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                previous_hash=previous_hash,
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self._head = (event.sequence, event.current_hash)
            return event

    def resync(self) -> None:
        """Re-read the chain head from storage"""
        with self._lock:
            self._load_head()

    def get_events(self) -> List[AuditEvent]:
        """All events in chain order"""
        return [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        filters = {'entity_type': entity_type, 'entity_id': str(entity_id)}
        return [AuditEvent.from_dict(data)
                for data in self.storage.find(self.table_name, filters)]

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [AuditEvent.from_dict(data)
                for data in self.storage.find(self.table_name, {'event_type': event_type.value})]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the whole chain and report every inconsistency

        Returns:
            Dict with ``valid``, ``total_events`` and the lists
            ``hash_errors``, ``chain_breaks`` and ``sequence_gaps``
        """
        hash_errors = []
        chain_breaks = []
        sequence_gaps = []

        events = self.get_events()
        expected_previous, expected_sequence = GENESIS_HASH, 1
        for position, event in enumerate(events):
            if not event.verify_hash():
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash
                })
            if event.sequence != expected_sequence:
                sequence_gaps.append({
                    'event_id': event.id,
                    'expected_sequence': expected_sequence,
                    'actual_sequence': event.sequence
                })
            expected_previous, expected_sequence = event.current_hash, event.sequence + 1

        return {
            'valid': not (hash_errors or chain_breaks or sequence_gaps),
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks,
            'sequence_gaps': sequence_gaps,
        }

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
