"""
Derived Entity Status

A Service or Document never states more confidence than its claims carry.
Its status is computed from the statuses of the claims it references by a
fixed priority cascade.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set
import copy

from ..contracts.schema import ClaimStatus, EntityStatus, CLAIM_STATUSES


def derive_status(claim_statuses: Iterable[Optional[str]]) -> str:
    """
    Priority cascade over the referenced claim statuses:
    none -> unverified; all verified -> verified; then deprecated,
    contradicted, stale; verified+unverified -> partial; else unverified.
    """
    statuses = [s for s in claim_statuses if isinstance(s, str) and s in CLAIM_STATUSES]
    if not statuses:
        return EntityStatus.UNVERIFIED.value

    present = set(statuses)
    if present == {ClaimStatus.VERIFIED.value}:
        return EntityStatus.VERIFIED.value
    if ClaimStatus.DEPRECATED.value in present:
        return EntityStatus.DEPRECATED.value
    if ClaimStatus.CONTRADICTED.value in present:
        return EntityStatus.CONTRADICTED.value
    if ClaimStatus.STALE.value in present:
        return EntityStatus.STALE.value
    if ClaimStatus.VERIFIED.value in present and ClaimStatus.UNVERIFIED.value in present:
        return EntityStatus.PARTIAL.value
    return EntityStatus.UNVERIFIED.value


def claim_status_map(doc: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    claims = doc.get("claims")
    if not isinstance(claims, list):
        return {}
    return {
        c["claim_id"]: c.get("status")
        for c in claims
        if isinstance(c, dict) and isinstance(c.get("claim_id"), str)
    }


def derive_entity_status(entity: Mapping[str, Any], statuses: Mapping[str, Optional[str]]) -> str:
    """Derived status of one service/document given claim_id -> status."""
    refs = entity.get("claims")
    if not isinstance(refs, list):
        return EntityStatus.UNVERIFIED.value
    return derive_status(statuses.get(ref) for ref in refs if isinstance(ref, str))


def refresh_entity_statuses(
    doc: Dict[str, Any],
    claim_ids: Optional[Iterable[str]] = None
) -> List[Dict[str, str]]:
    """
    Recompute stored status IN PLACE for services/documents that reference
    any of `claim_ids` (all entities when None). Returns the changes made.
    Callers pass a document they already own.
    """
    scope: Optional[Set[str]] = set(claim_ids) if claim_ids is not None else None
    statuses = claim_status_map(doc)
    changes = []
    for collection, id_field in (("services", "service_id"), ("documents", "document_id")):
        entities = doc.get(collection)
        if not isinstance(entities, list):
            continue
        for entity in entities:
            if not isinstance(entity, dict):
                continue
            refs = entity.get("claims") if isinstance(entity.get("claims"), list) else []
            if scope is not None and not scope.intersection(r for r in refs if isinstance(r, str)):
                continue
            derived = derive_entity_status(entity, statuses)
            if entity.get("status") != derived:
                changes.append({
                    "entity_id": entity.get(id_field),
                    "previous_status": entity.get("status"),
                    "new_status": derived,
                })
                entity["status"] = derived
    return changes


def recompute_entity_statuses(doc: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of `doc` with every service/document carrying its derived status."""
    updated = copy.deepcopy(dict(doc))
    refresh_entity_statuses(updated)
    return updated
