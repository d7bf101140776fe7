"""
Public Guide Publisher

Resolves a v3 document into the externally visible bundle:
- public_guides.json        UI-ready guides with resolved citations
- public_guides_index.json  search index (keywords per guide)

GUARANTEES:
===========
1. No internal claim IDs leave the KB: claims become citations
2. Every resolved citation carries the source page's canonical_url
3. Same document + same source timestamp = byte-identical files
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ..contracts.base import Error, ErrorCode, Result, now_iso, parse_iso
from ..contracts.provenance import format_locator
from ..contracts.schema import SCHEMA_V3, ClaimStatus, GuideSection, GuideStatus
from ..identity import normalize_host
from ..observability import get_logger
from ..storage import atomic_write_json
from ..validation import validate
from .canonicalizers import CanonicalizerRegistry, default_registry
from .contract import PUBLIC_GUIDES_FILE, PUBLIC_INDEX_FILE, check_public_contract


logger = get_logger(__name__)

_KEYWORD_MIN_LENGTH = 3


@dataclass(frozen=True)
class PublishedBundle:
    """Both published documents plus the build report."""
    guides_document: Dict[str, Any]
    index_document: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def guides(self) -> List[Dict[str, Any]]:
        return self.guides_document["guides"]

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return self.index_document["entries"]


class _Lookups:
    def __init__(self, doc: Mapping[str, Any]):
        self.claims = self._by_id(doc, "claims", "claim_id")
        self.source_pages = self._by_id(doc, "source_pages", "source_page_id")
        self.agencies = self._by_id(doc, "agencies", "agency_id")

    @staticmethod
    def _by_id(doc: Mapping[str, Any], collection: str, id_field: str) -> Dict[str, Dict[str, Any]]:
        items = doc.get(collection)
        return {
            item[id_field]: item
            for item in (items if isinstance(items, list) else [])
            if isinstance(item, dict) and isinstance(item.get(id_field), str)
        }

    def claim(self, claim_id: Any) -> Optional[Dict[str, Any]]:
        return self.claims.get(claim_id) if isinstance(claim_id, str) else None


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve_citations(claim: Mapping[str, Any], source_pages: Mapping[str, Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Public form of a claim's citations; citations of unknown pages are left out."""
    resolved = []
    for citation in claim.get("citations") or []:
        if not isinstance(citation, dict):
            continue
        page = source_pages.get(citation.get("source_page_id"))
        url = page.get("canonical_url") if page else None
        if not url:
            continue
        resolved.append({
            "canonical_url": url,
            "domain": normalize_host(url),
            "page_title": page.get("title"),
            "locator": format_locator(citation.get("locator")) or None,
            "quoted_text": citation.get("quoted_text"),
            "retrieved_at": citation.get("retrieved_at"),
            "language": citation.get("language") or "en",
        })
    return resolved


def _claim_ids(container: Any) -> List[str]:
    ids = container.get("claim_ids") if isinstance(container, dict) else None
    return [i for i in ids if isinstance(i, str)] if isinstance(ids, list) else []


def guide_claim_ids(guide: Mapping[str, Any]) -> List[str]:
    """Every claim ID a guide reaches, first-seen order."""
    seen: Dict[str, None] = {}

    def add(ids: Iterable[str]):
        for cid in ids:
            seen.setdefault(cid, None)

    for step in guide.get("steps") or []:
        add(_claim_ids(step))
    sections = guide.get("sections")
    if isinstance(sections, dict):
        for items in sections.values():
            for item in items if isinstance(items, list) else []:
                add(_claim_ids(item))
    for variant in guide.get("variants") or []:
        if isinstance(variant, dict):
            for key in ("fee_claim_ids", "processing_time_claim_ids"):
                ids = variant.get(key)
                add(i for i in (ids if isinstance(ids, list) else []) if isinstance(i, str))
    for key in ("required_documents", "fees"):
        for item in guide.get(key) or []:
            add(_claim_ids(item))
    return list(seen)


class GuidePublisher:
    """Builds public guides against one document's lookups."""

    def __init__(self, doc: Mapping[str, Any], registry: Optional[CanonicalizerRegistry] = None):
        self.lookups = _Lookups(doc)
        self.registry = registry if registry is not None else default_registry()
        self.notes: List[str] = []

    def _citations_for(self, container: Any) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        citations: List[Dict[str, Any]] = []
        structured = None
        for cid in _claim_ids(container):
            claim = self.lookups.claim(cid)
            if claim is None:
                continue
            citations.extend(resolve_citations(claim, self.lookups.source_pages))
            if structured is None and isinstance(claim.get("structured_data"), dict):
                structured = claim["structured_data"]
        return citations, structured

    def public_step(self, step: Mapping[str, Any]) -> Dict[str, Any]:
        citations, _ = self._citations_for(step)
        return {
            "step_number": step.get("step_number"),
            "title": step.get("title"),
            "description": step.get("description") or None,
            "citations": citations,
        }

    def public_item(self, item: Mapping[str, Any]) -> Dict[str, Any]:
        citations, structured = self._citations_for(item)
        return {
            "label": item.get("label"),
            "description": item.get("description") or None,
            "structured_data": structured,
            "citations": citations,
        }

    def _claim_entries(self, ids: Any) -> List[Dict[str, Any]]:
        entries = []
        for cid in ids if isinstance(ids, list) else []:
            claim = self.lookups.claim(cid)
            if claim is not None:
                entries.append({
                    "text": claim.get("text"),
                    "structured_data": claim.get("structured_data"),
                    "citations": resolve_citations(claim, self.lookups.source_pages),
                })
        return entries

    def public_variant(self, variant: Mapping[str, Any], canonicalizer, canonical_fees) -> Dict[str, Any]:
        if canonicalizer is not None and canonical_fees is not None:
            fees = canonicalizer.variant_fees(variant.get("variant_id"), canonical_fees)
        else:
            fees = self._claim_entries(variant.get("fee_claim_ids"))
        return {
            "variant_id": variant.get("variant_id"),
            "label": variant.get("label"),
            "fees": fees,
            "processing_times": self._claim_entries(variant.get("processing_time_claim_ids")),
        }

    def _meta(self, guide: Mapping[str, Any], step_count: int) -> Dict[str, Any]:
        claim_ids = [cid for cid in guide_claim_ids(guide) if cid in self.lookups.claims]
        summary = {"total": 0}
        summary.update({status.value: 0 for status in ClaimStatus})
        latest = None
        domains: Set[str] = set()
        for cid in claim_ids:
            claim = self.lookups.claims[cid]
            summary["total"] += 1
            status = claim.get("status") or ClaimStatus.UNVERIFIED.value
            if status in summary and status != "total":
                summary[status] += 1
            for citation in claim.get("citations") or []:
                page = self.lookups.source_pages.get(citation.get("source_page_id")) \
                    if isinstance(citation, dict) else None
                if page is None:
                    continue
                crawled = parse_iso(page.get("last_crawled_at"))
                if crawled is not None and (latest is None or latest < crawled):
                    latest = crawled
                host = normalize_host(page.get("canonical_url"))
                if host:
                    domains.add(host)
        return {
            "total_steps": step_count,
            "total_citations": len(claim_ids),
            "verification_summary": summary,
            "last_crawled_at": latest.to_iso() if latest else None,
            "source_domains": sorted(domains),
            "generated_at": guide.get("generated_at"),
            "last_updated_at": guide.get("last_updated_at"),
            "status": guide.get("status") or GuideStatus.DRAFT.value,
        }

    def public_guide(self, guide: Mapping[str, Any]) -> Dict[str, Any]:
        guide_id = guide.get("guide_id")
        steps = [self.public_step(s) for s in guide.get("steps") or [] if isinstance(s, dict)]
        required_documents = [self.public_item(i) for i in guide.get("required_documents") or [] if isinstance(i, dict)]
        fees = [self.public_item(i) for i in guide.get("fees") or [] if isinstance(i, dict)]

        canonicalizer = self.registry.get(guide_id)
        canonical_fees = None
        if canonicalizer is not None and fees:
            outcome = canonicalizer.canonicalize(fees)
            canonical_fees = fees = outcome.fees
            self.notes.extend(outcome.notes)

        sections: Dict[str, Any] = {}
        raw_sections = guide.get("sections")
        for key, items in (raw_sections.items() if isinstance(raw_sections, dict) else []):
            if not isinstance(items, list):
                continue
            if key == GuideSection.APPLICATION_STEPS.value:
                sections[key] = [self.public_step(s) for s in items if isinstance(s, dict)]
            elif key == GuideSection.FEES.value and canonical_fees:
                sections[key] = canonical_fees
            else:
                sections[key] = [self.public_item(i) for i in items if isinstance(i, dict)]

        variants = [
            self.public_variant(v, canonicalizer, canonical_fees)
            for v in guide.get("variants") or [] if isinstance(v, dict)
        ]
        agency = self.lookups.agencies.get(guide.get("agency_id"))
        links = [
            {"label": link.get("label"), "url": link.get("url")}
            for link in guide.get("official_links") or [] if isinstance(link, dict)
        ]
        return {
            "guide_id": guide_id,
            "service_id": guide.get("service_id"),
            "agency_id": guide.get("agency_id"),
            "agency_name": agency.get("name") if agency else None,
            "title": guide.get("title"),
            "overview": guide.get("overview") or None,
            "steps": steps or None,
            "sections": sections or None,
            "variants": variants or None,
            "required_documents": required_documents or None,
            "fees": fees or None,
            "official_links": links,
            "meta": self._meta(guide, len(steps)),
        }


def _words(text: Any) -> List[str]:
    if not isinstance(text, str):
        return []
    return [w for w in text.lower().split() if len(w) >= _KEYWORD_MIN_LENGTH]


def index_entry(guide: Mapping[str, Any], public: Mapping[str, Any]) -> Dict[str, Any]:
    keywords: Dict[str, None] = {}
    for word in _words(guide.get("title")):
        keywords.setdefault(word, None)
    for step in guide.get("steps") or []:
        for word in _words(step.get("title") if isinstance(step, dict) else None):
            keywords.setdefault(word, None)
    for word in _words(public.get("agency_name")):
        keywords.setdefault(word, None)
    return {
        "guide_id": guide.get("guide_id"),
        "service_id": guide.get("service_id"),
        "agency_id": guide.get("agency_id"),
        "title": guide.get("title"),
        "agency_name": public.get("agency_name"),
        "keywords": list(keywords),
        "step_count": public["meta"]["total_steps"],
        "citation_count": public["meta"]["total_citations"],
        "status": public["meta"]["status"],
    }


# =============================================================================
# BUNDLE
# =============================================================================

def resolve_generated_at(doc: Mapping[str, Any], source_timestamp: Optional[str] = None) -> str:
    """Caller timestamp, else the document's last_updated_at, else now."""
    return source_timestamp or doc.get("last_updated_at") or now_iso()


def _build_report(public_guides: List[Dict[str, Any]], notes: List[str]) -> Dict[str, Any]:
    totals = {status.value: 0 for status in ClaimStatus}
    domains: Set[str] = set()
    for guide in public_guides:
        meta = guide["meta"]
        for status in totals:
            totals[status] += meta["verification_summary"].get(status, 0)
        domains.update(meta["source_domains"])
    return {
        "guide_count": len(public_guides),
        "total_steps": sum(g["meta"]["total_steps"] for g in public_guides),
        "total_citations": sum(g["meta"]["total_citations"] for g in public_guides),
        "domains": sorted(domains),
        "verification_totals": totals,
        "canonicalization_notes": list(notes),
    }


def build_public_bundle(
    doc: Mapping[str, Any],
    source_timestamp: Optional[str] = None,
    registry: Optional[CanonicalizerRegistry] = None
) -> Result:
    """Result(PublishedBundle), or NO_GUIDES when the document has none."""
    guides = [g for g in doc.get("service_guides") or [] if isinstance(g, dict)]
    if not guides:
        return Result.failure(Error.create(
            ErrorCode.NO_GUIDES,
            "No guides to publish. Run migrate-v2-v3 first.",
            schema_version=str(doc.get("$schema_version")),
        ))

    publisher = GuidePublisher(doc, registry)
    public_guides = []
    entries = []
    for guide in guides:
        public = publisher.public_guide(guide)
        public_guides.append(public)
        entries.append(index_entry(guide, public))
        logger.debug(
            "Guide resolved",
            extra={
                "guide_id": guide.get("guide_id"),
                "steps": public["meta"]["total_steps"],
                "citations": public["meta"]["total_citations"],
            },
        )

    generated_at = resolve_generated_at(doc, source_timestamp)
    kb_version = doc.get("data_version") or 1
    bundle = PublishedBundle(
        guides_document={
            "$schema_version": SCHEMA_V3,
            "generated_at": generated_at,
            "source_kb_version": kb_version,
            "guides": public_guides,
        },
        index_document={
            "$schema_version": SCHEMA_V3,
            "generated_at": generated_at,
            "source_kb_version": kb_version,
            "entries": entries,
        },
        metadata=_build_report(public_guides, publisher.notes),
    )
    logger.info("Public guides built", extra={"guides": len(public_guides), "generated_at": generated_at})
    return Result.success(bundle)


def write_bundle(bundle: PublishedBundle, out_dir: Union[str, Path]) -> Result:
    """Write both files atomically, key-sorted. Result(list of written paths)."""
    written = []
    for name, payload in (
        (PUBLIC_GUIDES_FILE, bundle.guides_document),
        (PUBLIC_INDEX_FILE, bundle.index_document),
    ):
        path = Path(out_dir) / name
        result = atomic_write_json(path, payload, sort_keys=True)
        if result.is_failure:
            return result
        written.append(path)
    return Result.success(written)


def publish(
    doc: Mapping[str, Any],
    out_dir: Union[str, Path],
    source_timestamp: Optional[str] = None,
    registry: Optional[CanonicalizerRegistry] = None,
    validate_first: bool = True
) -> Result:
    """
    Validate, build, contract-check and write. Result(PublishedBundle).

    Validation errors block publishing (VALIDATION_FAILED); warnings do not.
    A bundle that breaks the public contract is never written.
    """
    if validate_first:
        report = validate(doc)
        if not report.ok:
            return Result.failure(Error.create(
                ErrorCode.VALIDATION_FAILED,
                f"Document has {len(report.errors)} validation error(s); refusing to publish",
                first_error=report.errors[0],
            ))

    built = build_public_bundle(doc, source_timestamp=source_timestamp, registry=registry)
    if built.is_failure:
        return built
    bundle: PublishedBundle = built.value

    violations = check_public_contract(bundle.guides_document)
    if violations:
        return Result.failure(Error.create(
            ErrorCode.PUBLIC_CONTRACT_VIOLATION,
            f"{len(violations)} public contract violation(s)",
            first_violation=violations[0],
        ))

    written = write_bundle(bundle, out_dir)
    if written.is_failure:
        return written
    logger.info("Public guides published", extra={"out_dir": str(out_dir), "guides": len(bundle.guides)})
    return Result.success(bundle)
