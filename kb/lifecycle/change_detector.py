"""
Change Detector

Detects content changes on a source page by comparing content hashes and
propagates a change to dependent claims.

A single process_source_change produces, together, the source page update,
its change_log entry, the source_change audit event and the claim
invalidations. The caller persists the returned document in one atomic
write, so they are observed all-or-nothing.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
import copy

from ..audit.audit_log import source_change_event
from ..contracts.base import Error, ErrorCode, Result, now_iso
from ..identity import content_hash, script_actor
from ..observability import get_logger
from .invalidator import InvalidatedClaim, invalidate_claims_for_source_change


logger = get_logger(__name__)

DETECTOR_ACTOR = script_actor("change_detector")
CHANGE_NOTE = "Content hash changed - dependent claims need re-verification"


@dataclass(frozen=True)
class ChangeDetection:
    has_changed: bool
    current_hash: str
    previous_hash: Optional[str]
    source_page_id: Optional[str]
    url: Optional[str]


@dataclass(frozen=True)
class SourceChangeOutcome:
    """What one process_source_change did; `document` is the new state."""
    document: Dict[str, Any]
    changed: bool
    source_page_id: str
    previous_hash: Optional[str]
    new_hash: str
    invalidated_claims: Tuple[InvalidatedClaim, ...] = field(default_factory=tuple)
    updated_entities: Tuple[Dict[str, str], ...] = field(default_factory=tuple)
    errors: Tuple[str, ...] = field(default_factory=tuple)
    used_index: bool = False

    @property
    def invalidated_claim_count(self) -> int:
        return len(self.invalidated_claims)

    @property
    def message(self) -> str:
        if not self.changed:
            return "No change detected"
        return (
            f"Source page changed. {self.invalidated_claim_count} "
            f"claim(s) marked as stale."
        )


def find_source_page(doc: Mapping[str, Any], source_page_id: str) -> Optional[Dict[str, Any]]:
    for page in doc.get("source_pages") or []:
        if isinstance(page, dict) and page.get("source_page_id") == source_page_id:
            return page
    return None


def detect_change(source_page: Mapping[str, Any], content: str) -> ChangeDetection:
    """Hash `content` and compare it with the stored content_hash."""
    current = content_hash(content)
    stored = source_page.get("content_hash")
    return ChangeDetection(
        has_changed=current != stored,
        current_hash=current,
        previous_hash=stored,
        source_page_id=source_page.get("source_page_id"),
        url=source_page.get("canonical_url"),
    )


def process_source_change(
    doc: Mapping[str, Any],
    source_page_id: str,
    new_content: str,
    timestamp: Optional[str] = None,
    index: Optional[Mapping[str, List[str]]] = None,
    actor: str = DETECTOR_ACTOR
) -> Result:
    """
    Apply freshly fetched content for one source page.

    Returns Result.success(SourceChangeOutcome), or a failure with
    SOURCE_PAGE_NOT_FOUND. `doc` itself is never mutated.
    """
    page = find_source_page(doc, source_page_id)
    if page is None:
        return Result.failure(Error.create(
            ErrorCode.SOURCE_PAGE_NOT_FOUND,
            f"Source page not found: {source_page_id}",
            source_page_id=source_page_id,
        ))

    detection = detect_change(page, new_content)
    if not detection.has_changed:
        logger.debug("source unchanged", extra={"source_page_id": source_page_id})
        return Result.success(SourceChangeOutcome(
            document=copy.deepcopy(dict(doc)),
            changed=False,
            source_page_id=source_page_id,
            previous_hash=detection.previous_hash,
            new_hash=detection.current_hash,
        ))

    ts = timestamp or now_iso()
    old_doc = copy.deepcopy(dict(doc))
    new_doc = copy.deepcopy(dict(doc))

    updated = find_source_page(new_doc, source_page_id)
    if not isinstance(updated.get("change_log"), list):
        updated["change_log"] = []
    updated["change_log"].append({
        "detected_at": ts,
        "hash_before": detection.previous_hash,
        "hash_after": detection.current_hash,
        "notes": CHANGE_NOTE,
    })
    updated["previous_hash"] = detection.previous_hash
    updated["content_hash"] = detection.current_hash
    updated["last_crawled_at"] = ts

    if not isinstance(new_doc.get("audit_log"), list):
        new_doc["audit_log"] = []
    new_doc["audit_log"].append(source_change_event(
        source_page_ids=[source_page_id],
        actor=actor,
        hash_before=detection.previous_hash,
        hash_after=detection.current_hash,
        description=f"Source page content changed: {updated.get('canonical_url')}",
        timestamp=ts,
    ))

    invalidation = invalidate_claims_for_source_change(
        old_doc, new_doc, [source_page_id], index=index, timestamp=ts
    )

    logger.info(
        "source change processed",
        extra={
            "source_page_id": source_page_id,
            "invalidated": len(invalidation.invalidated_claims),
        },
    )

    return Result.success(SourceChangeOutcome(
        document=invalidation.document,
        changed=True,
        source_page_id=source_page_id,
        previous_hash=detection.previous_hash,
        new_hash=detection.current_hash,
        invalidated_claims=invalidation.invalidated_claims,
        updated_entities=invalidation.updated_entities,
        errors=invalidation.errors,
        used_index=invalidation.used_index,
    ))
