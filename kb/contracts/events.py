"""
Audit Event Contracts

Typed, content-addressed audit records. The event_id is derived from the
event type, timestamp and normalized affected entities, so replaying the
same event yields the same ID.

INVARIANTS:
===========
1. event_type is one of the four EventType values
2. actor matches ^(system|user|script:[A-Za-z0-9_.-]+)$
3. affected_entities only carries the five known buckets, with non-empty
   string IDs
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
import re

from ..identity import event_id as compute_event_id


class EventType(Enum):
    SOURCE_CHANGE = "source_change"
    CLAIM_INVALIDATION = "claim_invalidation"
    VERIFICATION = "verification"
    MIGRATION = "migration"


class EntityBucket(Enum):
    SOURCE_PAGES = "source_pages"
    CLAIMS = "claims"
    SERVICES = "services"
    DOCUMENTS = "documents"
    AGENCIES = "agencies"


ENTITY_BUCKETS = tuple(b.value for b in EntityBucket)
ACTOR_SYSTEM = "system"
ACTOR_USER = "user"

_ACTOR_RE = re.compile(r'^(system|user|script:[a-zA-Z0-9_\-.]+)$')


def is_valid_actor(actor: Any) -> bool:
    return isinstance(actor, str) and bool(_ACTOR_RE.match(actor))


def sanitize_affected_entities(entities: Optional[Mapping[str, Any]]) -> Dict[str, Tuple[str, ...]]:
    """Keep known buckets only, drop non-string/empty IDs and empty buckets."""
    sanitized: Dict[str, Tuple[str, ...]] = {}
    if not isinstance(entities, Mapping):
        return sanitized
    for bucket in ENTITY_BUCKETS:
        values = entities.get(bucket)
        if not isinstance(values, (list, tuple)):
            continue
        ids = tuple(v for v in values if isinstance(v, str) and v)
        if ids:
            sanitized[bucket] = ids
    return sanitized


@dataclass(frozen=True)
class AuditEvent:
    """Immutable audit log entry."""
    event_id: str
    event_type: EventType
    timestamp: str
    affected_entities: Tuple[Tuple[str, Tuple[str, ...]], ...]
    actor: str
    description: Optional[str] = None
    metadata: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.event_type, EventType):
            raise ValueError(f"Invalid event type: {self.event_type}")
        if not is_valid_actor(self.actor):
            raise ValueError(f"Invalid actor: {self.actor}. Must be 'system', 'user', or 'script:<name>'")
        if not self.timestamp:
            raise ValueError("AuditEvent timestamp is required")

    @staticmethod
    def create(
        event_type: Any,
        affected_entities: Optional[Mapping[str, Any]],
        actor: str,
        timestamp: str,
        description: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None
    ) -> AuditEvent:
        """Build an event with its deterministic ID; raises ValueError on bad type/actor."""
        try:
            kind = event_type if isinstance(event_type, EventType) else EventType(event_type)
        except ValueError:
            allowed = ", ".join(t.value for t in EventType)
            raise ValueError(f"Invalid event type: {event_type}. Must be one of: {allowed}") from None
        entities = sanitize_affected_entities(affected_entities)
        return AuditEvent(
            event_id=compute_event_id(kind.value, timestamp, {k: list(v) for k, v in entities.items()}),
            event_type=kind,
            timestamp=timestamp,
            affected_entities=tuple(entities.items()),
            actor=actor,
            description=description or None,
            metadata=tuple((metadata or {}).items()),
        )

    def entities(self, bucket: str) -> Tuple[str, ...]:
        return dict(self.affected_entities).get(bucket, ())

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "affected_entities": {k: list(v) for k, v in self.affected_entities},
            "actor": self.actor,
        }
        if self.description:
            entry["description"] = self.description
        if self.metadata:
            entry["metadata"] = dict(self.metadata)
        return entry
