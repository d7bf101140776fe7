"""
Audit Log

Creates machine-queryable audit entries with deterministic event IDs and
appends them to a document's audit_log. Entries are stored as plain dicts
(the kb.json form); construction goes through the AuditEvent contract so
an unknown event type or a malformed actor raises ValueError.

Event types:
- source_change:       a source page's content hash changed
- claim_invalidation:  claims were marked stale by a source change
- verification:        claims were verified against their sources
- migration:           the document moved between schema versions
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Mapping, Optional
import copy

from ..contracts.base import now_iso, parse_iso
from ..contracts.events import AuditEvent, EventType


def create_audit_entry(
    event_type: Any,
    affected_entities: Optional[Mapping[str, Any]],
    actor: str,
    description: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    """Complete audit log entry; raises ValueError on invalid type or actor."""
    event = AuditEvent.create(
        event_type=event_type,
        affected_entities=affected_entities,
        actor=actor,
        timestamp=timestamp or now_iso(),
        description=description,
        metadata=metadata or None,
    )
    return event.to_dict()


def source_change_event(
    source_page_ids: List[str],
    actor: str,
    hash_before: Optional[str] = None,
    hash_after: Optional[str] = None,
    description: Optional[str] = None,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    metadata = {}
    if hash_before:
        metadata["hash_before"] = hash_before
    if hash_after:
        metadata["hash_after"] = hash_after
    return create_audit_entry(
        EventType.SOURCE_CHANGE,
        {"source_pages": source_page_ids},
        actor,
        description=description or "Source page content changed",
        metadata=metadata,
        timestamp=timestamp,
    )


def claim_invalidation_event(
    claim_ids: List[str],
    source_page_ids: List[str],
    actor: str,
    description: Optional[str] = None,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    return create_audit_entry(
        EventType.CLAIM_INVALIDATION,
        {"claims": claim_ids, "source_pages": source_page_ids},
        actor,
        description=description or f"{len(claim_ids)} claim(s) invalidated due to source changes",
        timestamp=timestamp,
    )


def verification_event(
    claim_ids: List[str],
    actor: str,
    source_page_ids: Optional[List[str]] = None,
    description: Optional[str] = None,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    affected = {"claims": claim_ids}
    if source_page_ids:
        affected["source_pages"] = source_page_ids
    return create_audit_entry(
        EventType.VERIFICATION,
        affected,
        actor,
        description=description or f"{len(claim_ids)} claim(s) verified",
        timestamp=timestamp,
    )


def migration_event(
    affected_entities: Mapping[str, Any],
    actor: str,
    migration_source: Optional[str] = None,
    schema_version_from: Optional[str] = None,
    schema_version_to: Optional[str] = None,
    description: Optional[str] = None,
    extra_metadata: Optional[Mapping[str, Any]] = None,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {}
    if migration_source:
        metadata["migration_source"] = migration_source
    if schema_version_from:
        metadata["schema_version_from"] = schema_version_from
    if schema_version_to:
        metadata["schema_version_to"] = schema_version_to
    metadata.update(extra_metadata or {})
    return create_audit_entry(
        EventType.MIGRATION,
        affected_entities,
        actor,
        description=description or "Schema migration",
        metadata=metadata,
        timestamp=timestamp,
    )


# =============================================================================
# APPEND (returns new documents)
# =============================================================================

def append_event(doc: Dict[str, Any], entry: Dict[str, Any]) -> Dict[str, Any]:
    return append_events(doc, [entry])


def append_events(doc: Dict[str, Any], entries: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy of `doc` with entries appended in order."""
    updated = copy.deepcopy(doc)
    log = updated.get("audit_log")
    if not isinstance(log, list):
        log = []
        updated["audit_log"] = log
    log.extend(copy.deepcopy(list(entries)))
    return updated


# =============================================================================
# QUERIES
# =============================================================================

def _entries(log: Any) -> List[Dict[str, Any]]:
    if isinstance(log, dict):
        log = log.get("audit_log")
    if not isinstance(log, list):
        return []
    return [e for e in log if isinstance(e, dict)]


def query_by_event_type(log: Any, event_type: Any) -> List[Dict[str, Any]]:
    """Entries of one type; `log` may be the audit_log list or the whole document."""
    wanted = event_type.value if isinstance(event_type, EventType) else event_type
    return [e for e in _entries(log) if e.get("event_type") == wanted]


def query_by_affected_entity(log: Any, bucket: str, entity_id: str) -> List[Dict[str, Any]]:
    return [
        e for e in _entries(log)
        if entity_id in ((e.get("affected_entities") or {}).get(bucket) or [])
    ]


def query_by_time_range(
    log: Any,
    start: Optional[str] = None,
    end: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Entries with start <= timestamp <= end; open bounds when None."""
    lower = parse_iso(start) if start else None
    upper = parse_iso(end) if end else None
    matched = []
    for entry in _entries(log):
        ts = parse_iso(entry.get("timestamp"))
        if ts is None:
            continue
        if lower is not None and ts < lower:
            continue
        if upper is not None and upper < ts:
            continue
        matched.append(entry)
    return matched


def query_by_actor(log: Any, actor: str) -> List[Dict[str, Any]]:
    return [e for e in _entries(log) if e.get("actor") == actor]
