"""
Index Builder

Reverse indexes from entities and source pages to the claims that
reference them:

- claims_by_service:      service_id -> claims pointing at it (entity_ref or service.claims)
- claims_by_document:     document_id -> analogous
- claims_by_source_page:  source_page_id -> claims citing it

Both builds are pure functions of the document (and, for incremental, the
previous indexes). The incremental result equals a full rebuild of the same
document exactly, provided the diff names every claim and source page that
changed.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from ..observability import get_logger


logger = get_logger(__name__)

CLAIMS_BY_SERVICE = "claims_by_service"
CLAIMS_BY_DOCUMENT = "claims_by_document"
CLAIMS_BY_SOURCE_PAGE = "claims_by_source_page"
INDEX_NAMES = (CLAIMS_BY_SERVICE, CLAIMS_BY_DOCUMENT, CLAIMS_BY_SOURCE_PAGE)

Index = Dict[str, List[str]]
IndexSet = Dict[str, Index]
_Buckets = Dict[str, Set[str]]


class BuildMode(Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass(frozen=True)
class IndexDiff:
    """Claims and source pages touched since the indexes were last built."""
    claim_ids: frozenset = frozenset()
    source_page_ids: frozenset = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.claim_ids and not self.source_page_ids

    @staticmethod
    def create(claim_ids: Optional[Iterable[str]] = None,
               source_page_ids: Optional[Iterable[str]] = None) -> IndexDiff:
        return IndexDiff(
            claim_ids=frozenset(c for c in claim_ids or () if c),
            source_page_ids=frozenset(s for s in source_page_ids or () if s),
        )

    def merge(self, other: IndexDiff) -> IndexDiff:
        return IndexDiff(
            claim_ids=self.claim_ids | other.claim_ids,
            source_page_ids=self.source_page_ids | other.source_page_ids,
        )


@dataclass(frozen=True)
class IndexBuild:
    indexes: IndexSet
    mode: BuildMode
    reindexed_claims: int = 0

    def counts(self) -> Dict[str, int]:
        return {name: len(self.indexes[name]) for name in INDEX_NAMES}


# =============================================================================
# HELPERS
# =============================================================================

def _items(doc: Mapping[str, Any], collection: str) -> List[Dict[str, Any]]:
    values = doc.get(collection)
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, dict)]


def _ids(doc: Mapping[str, Any], collection: str, id_field: str) -> List[str]:
    return [e[id_field] for e in _items(doc, collection) if isinstance(e.get(id_field), str)]


def _claims_by_id(doc: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {c["claim_id"]: c for c in _items(doc, "claims") if isinstance(c.get("claim_id"), str)}


def _cited_sources(claim: Mapping[str, Any]) -> List[str]:
    citations = claim.get("citations")
    if not isinstance(citations, list):
        return []
    return [
        c["source_page_id"] for c in citations
        if isinstance(c, dict) and isinstance(c.get("source_page_id"), str) and c["source_page_id"]
    ]


def _serialize(buckets: _Buckets) -> Index:
    """Key-sorted plain dict with sorted lists, for stable serialization."""
    return {key: sorted(buckets[key]) for key in sorted(buckets)}


def _insert_claim(indexes: Dict[str, _Buckets], claim_id: str, claim: Mapping[str, Any]) -> None:
    ref = claim.get("entity_ref")
    if isinstance(ref, dict) and isinstance(ref.get("id"), str):
        if ref.get("type") == "service":
            indexes[CLAIMS_BY_SERVICE].setdefault(ref["id"], set()).add(claim_id)
        elif ref.get("type") == "document":
            indexes[CLAIMS_BY_DOCUMENT].setdefault(ref["id"], set()).add(claim_id)
    for source_id in _cited_sources(claim):
        indexes[CLAIMS_BY_SOURCE_PAGE].setdefault(source_id, set()).add(claim_id)


def _insert_direct_references(
    doc: Mapping[str, Any],
    indexes: Dict[str, _Buckets],
    claims: Mapping[str, Any]
) -> None:
    """Claims listed on services/documents themselves, filtered to existing claims."""
    for collection, id_field, name in (
        ("services", "service_id", CLAIMS_BY_SERVICE),
        ("documents", "document_id", CLAIMS_BY_DOCUMENT),
    ):
        for entity in _items(doc, collection):
            bucket = indexes[name].get(entity.get(id_field))
            refs = entity.get("claims")
            if bucket is None or not isinstance(refs, list):
                continue
            for ref in refs:
                if ref in claims:
                    bucket.add(ref)


def _entity_keys(doc: Mapping[str, Any]) -> Dict[str, List[str]]:
    return {
        CLAIMS_BY_SERVICE: _ids(doc, "services", "service_id"),
        CLAIMS_BY_DOCUMENT: _ids(doc, "documents", "document_id"),
        CLAIMS_BY_SOURCE_PAGE: _ids(doc, "source_pages", "source_page_id"),
    }


# =============================================================================
# BUILDS
# =============================================================================

def build_full(doc: Mapping[str, Any]) -> IndexBuild:
    """Rebuild all three indexes from scratch, O(C + S + D)."""
    claims = _claims_by_id(doc)
    indexes: Dict[str, _Buckets] = {name: {} for name in INDEX_NAMES}

    for name, keys in _entity_keys(doc).items():
        for key in keys:
            indexes[name].setdefault(key, set())
    for claim_id, claim in claims.items():
        _insert_claim(indexes, claim_id, claim)
    _insert_direct_references(doc, indexes, claims)

    build = IndexBuild(
        indexes={name: _serialize(indexes[name]) for name in INDEX_NAMES},
        mode=BuildMode.FULL,
        reindexed_claims=len(claims),
    )
    logger.info("indexes built", extra={"mode": "full", **build.counts()})
    return build


def build_incremental(doc: Mapping[str, Any], existing: Mapping[str, Index], diff: IndexDiff) -> IndexBuild:
    """
    Patch `existing` for the claims and source pages named in `diff`:
    claims citing changed sources join the changed set, the changed claims
    are removed from every bucket and re-inserted where they still exist,
    then keys are reconciled with the current entities.

    A claim ID dropped from a service or document `claims` list while the
    claim itself survives must be named in `diff.claim_ids`; otherwise it
    stays in that entity's bucket.
    """
    claims = _claims_by_id(doc)
    indexes: Dict[str, _Buckets] = {
        name: {key: set(values) for key, values in existing[name].items()}
        for name in INDEX_NAMES
    }

    changed = set(diff.claim_ids)
    if diff.source_page_ids:
        for claim_id, claim in claims.items():
            if any(s in diff.source_page_ids for s in _cited_sources(claim)):
                changed.add(claim_id)

    for buckets in indexes.values():
        for bucket in buckets.values():
            bucket.difference_update(changed)

    entity_keys = _entity_keys(doc)
    for name, keys in entity_keys.items():
        for key in keys:
            indexes[name].setdefault(key, set())

    for claim_id in changed:
        claim = claims.get(claim_id)
        if claim is not None:
            _insert_claim(indexes, claim_id, claim)
    _insert_direct_references(doc, indexes, claims)

    # Empty keys survive only for entities that still exist
    for name, keys in entity_keys.items():
        current = set(keys)
        for key in [k for k, bucket in indexes[name].items() if not bucket and k not in current]:
            del indexes[name][key]

    build = IndexBuild(
        indexes={name: _serialize(indexes[name]) for name in INDEX_NAMES},
        mode=BuildMode.INCREMENTAL,
        reindexed_claims=len(changed),
    )
    logger.info(
        "indexes built",
        extra={"mode": "incremental", "reindexed": len(changed), **build.counts()},
    )
    return build


def is_index_set(candidate: Any) -> bool:
    """True when `candidate` holds all three indexes as maps of string lists."""
    if not isinstance(candidate, Mapping):
        return False
    for name in INDEX_NAMES:
        index = candidate.get(name)
        if not isinstance(index, Mapping):
            return False
        if not all(isinstance(v, list) for v in index.values()):
            return False
    return True


def build_indexes(
    doc: Mapping[str, Any],
    existing: Optional[Mapping[str, Index]] = None,
    diff: Optional[IndexDiff] = None
) -> IndexBuild:
    """Incremental when a non-empty diff and usable existing indexes are given, else full."""
    if diff is not None and not diff.is_empty and is_index_set(existing):
        return build_incremental(doc, existing, diff)
    if diff is not None and not diff.is_empty:
        logger.info("no usable existing indexes; falling back to full rebuild")
    return build_full(doc)
