"""
Claim Invalidator

When a source page's content hash changes, every claim citing it can no
longer be trusted as-is. This module marks those claims stale and records
one claim_invalidation audit event per invocation.

GUARANTEES:
===========
1. verified/unverified -> stale, with previous_status, stale_marked_at and
   stale_due_to_source_hash set
2. last_verified_at / last_verified_source_hash are never touched;
   invalidation is not verification
3. Already-stale claims are refreshed but not counted as invalidated
4. deprecated and contradicted claims are left alone
5. The input documents are never mutated; the outcome carries a new one
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import copy

from ..audit.audit_log import claim_invalidation_event
from ..contracts.base import now_iso
from ..contracts.schema import ClaimStatus, INVALIDATABLE_STATUSES
from ..identity import script_actor
from ..observability import get_logger
from .status import refresh_entity_statuses


logger = get_logger(__name__)

INVALIDATOR_ACTOR = script_actor("claim_invalidator")


@dataclass(frozen=True)
class InvalidatedClaim:
    claim_id: str
    source_page_id: str
    previous_status: str
    new_status: str


@dataclass(frozen=True)
class ChangedSource:
    source_page_id: str
    old_hash: str
    new_hash: str
    url: Optional[str]


@dataclass(frozen=True)
class InvalidationOutcome:
    """Result of one invalidation pass."""
    document: Dict[str, Any]
    invalidated_claims: Tuple[InvalidatedClaim, ...] = field(default_factory=tuple)
    changed_sources: Tuple[ChangedSource, ...] = field(default_factory=tuple)
    updated_entities: Tuple[Dict[str, str], ...] = field(default_factory=tuple)
    errors: Tuple[str, ...] = field(default_factory=tuple)
    used_index: bool = False

    @property
    def invalidated_claim_ids(self) -> List[str]:
        return [c.claim_id for c in self.invalidated_claims]

    def summary(self) -> Dict[str, Any]:
        return {
            "invalidated_claims": [asdict(c) for c in self.invalidated_claims],
            "changed_sources": [asdict(s) for s in self.changed_sources],
            "updated_entities": list(self.updated_entities),
            "errors": list(self.errors),
            "used_index": self.used_index,
        }


# =============================================================================
# LOOKUPS
# =============================================================================

def find_claims_citing_source(
    claims: Any,
    source_page_id: str,
    index: Optional[Mapping[str, List[str]]] = None
) -> List[str]:
    """
    Claim IDs citing a source. With a claims_by_source_page index this is a
    single lookup; otherwise a scan over every claim's citations.
    """
    if isinstance(index, Mapping):
        indexed = index.get(source_page_id)
        return list(indexed) if isinstance(indexed, list) else []

    if not isinstance(claims, list):
        return []
    return [
        claim["claim_id"]
        for claim in claims
        if isinstance(claim, dict)
        and isinstance(claim.get("citations"), list)
        and any(
            isinstance(c, dict) and c.get("source_page_id") == source_page_id
            for c in claim["citations"]
        )
    ]


def find_claim_by_id(claims: Any, claim_id: str) -> Optional[Dict[str, Any]]:
    if not isinstance(claims, list):
        return None
    for claim in claims:
        if isinstance(claim, dict) and claim.get("claim_id") == claim_id:
            return claim
    return None


def mark_claim_as_stale(claim: Dict[str, Any], new_source_hash: str, timestamp: str) -> bool:
    """
    Mutates `claim`. Returns True only when the claim was newly invalidated.
    """
    status = claim.get("status")
    if status in INVALIDATABLE_STATUSES:
        claim["previous_status"] = status
        claim["status"] = ClaimStatus.STALE.value
        claim["stale_marked_at"] = timestamp
        claim["stale_due_to_source_hash"] = new_source_hash
        return True
    if status == ClaimStatus.STALE.value:
        claim["stale_due_to_source_hash"] = new_source_hash
        claim["stale_marked_at"] = timestamp
    return False


# =============================================================================
# INVALIDATION
# =============================================================================

def invalidate_claims_for_source_change(
    old_doc: Mapping[str, Any],
    new_doc: Mapping[str, Any],
    scope_ids: Optional[Iterable[str]] = None,
    index: Optional[Mapping[str, List[str]]] = None,
    timestamp: Optional[str] = None,
    actor: str = INVALIDATOR_ACTOR
) -> InvalidationOutcome:
    """
    Compare source hashes between `old_doc` and `new_doc` and mark the
    claims citing each changed source stale in a copy of `new_doc`.
    Restricting `scope_ids` bounds the work to those source pages.
    """
    ts = timestamp or now_iso()
    document = copy.deepcopy(dict(new_doc))

    old_sources = old_doc.get("source_pages")
    new_sources = document.get("source_pages")
    if not isinstance(old_sources, list) or not isinstance(new_sources, list):
        return InvalidationOutcome(
            document=document,
            errors=("Missing source_pages arrays in KB data",),
        )

    scope = set(scope_ids) if scope_ids is not None else None
    old_by_id = {
        s.get("source_page_id"): s for s in old_sources if isinstance(s, dict)
    }
    claims = document.get("claims") if isinstance(document.get("claims"), list) else []
    claims_by_id = {
        c["claim_id"]: c for c in claims if isinstance(c, dict) and isinstance(c.get("claim_id"), str)
    }

    invalidated: List[InvalidatedClaim] = []
    changed: List[ChangedSource] = []
    errors: List[str] = []

    for source in new_sources:
        if not isinstance(source, dict):
            continue
        sid = source.get("source_page_id")
        if scope is not None and sid not in scope:
            continue
        old = old_by_id.get(sid)
        old_hash = old.get("content_hash") if old else None
        new_hash = source.get("content_hash")
        if not old_hash or not new_hash or old_hash == new_hash:
            continue

        changed.append(ChangedSource(
            source_page_id=sid,
            old_hash=old_hash,
            new_hash=new_hash,
            url=source.get("canonical_url"),
        ))

        for cid in find_claims_citing_source(claims, sid, index):
            claim = claims_by_id.get(cid)
            if claim is None:
                errors.append(f"Index references unknown claim {cid} for {sid}")
                continue
            prior = claim.get("status")
            if mark_claim_as_stale(claim, new_hash, ts):
                invalidated.append(InvalidatedClaim(
                    claim_id=cid,
                    source_page_id=sid,
                    previous_status=prior,
                    new_status=claim["status"],
                ))

    updated_entities: List[Dict[str, str]] = []
    if invalidated:
        claim_ids = [c.claim_id for c in invalidated]
        updated_entities = refresh_entity_statuses(document, claim_ids)
        entry = claim_invalidation_event(
            claim_ids=claim_ids,
            source_page_ids=[s.source_page_id for s in changed],
            actor=actor,
            description=f"{len(invalidated)} claim(s) invalidated due to source page changes",
            timestamp=ts,
        )
        if not isinstance(document.get("audit_log"), list):
            document["audit_log"] = []
        document["audit_log"].append(entry)

    logger.info(
        "claims invalidated",
        extra={
            "changed_sources": len(changed),
            "invalidated": len(invalidated),
            "used_index": index is not None,
        },
    )
    for item in errors:
        logger.warning(item)

    return InvalidationOutcome(
        document=document,
        invalidated_claims=tuple(invalidated),
        changed_sources=tuple(changed),
        updated_entities=tuple(updated_entities),
        errors=tuple(errors),
        used_index=index is not None,
    )


def batch_invalidate_claims(
    old_doc: Mapping[str, Any],
    new_doc: Mapping[str, Any],
    source_page_ids: Optional[List[str]] = None,
    index: Optional[Mapping[str, List[str]]] = None,
    timestamp: Optional[str] = None
) -> InvalidationOutcome:
    """Invalidate for a bounded set of source pages (all when None)."""
    if source_page_ids is None:
        return invalidate_claims_for_source_change(old_doc, new_doc, None, index, timestamp)
    wanted = set(source_page_ids)
    filtered_old = dict(old_doc)
    filtered_old["source_pages"] = [
        s for s in old_doc.get("source_pages") or []
        if isinstance(s, dict) and s.get("source_page_id") in wanted
    ]
    return invalidate_claims_for_source_change(filtered_old, new_doc, source_page_ids, index, timestamp)
