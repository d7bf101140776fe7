"""
Audit Layer

RESPONSIBILITY: Build, append and query audit events stored in kb.json
OUTPUTS: Plain audit_log entries (dicts), new documents

WHAT THIS LAYER MUST NOT DO:
============================
- Modify or reorder existing entries (append-only)
- Decide whether an event should happen; callers decide
"""

from .audit_log import (
    create_audit_entry,
    source_change_event,
    claim_invalidation_event,
    verification_event,
    migration_event,
    append_event,
    append_events,
    query_by_event_type,
    query_by_affected_entity,
    query_by_time_range,
    query_by_actor,
)

__all__ = [
    "create_audit_entry",
    "source_change_event",
    "claim_invalidation_event",
    "verification_event",
    "migration_event",
    "append_event",
    "append_events",
    "query_by_event_type",
    "query_by_affected_entity",
    "query_by_time_range",
    "query_by_actor",
]
