"""
Ingestion Service

Orchestrates one re-crawl cycle for a source page:

    fetch -> change detection / invalidation -> snapshot
          -> incremental index rebuild -> validation

DESIGN:
=======
1. Documents are never mutated; every step returns a new one
2. A failed fetch aborts the cycle for that page only (FETCH_FAILED)
3. Snapshots are written as soon as content arrives
4. Persisting the document and indexes is a separate, explicit step
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import copy
import re

from pydantic import ValidationError

from kb.config import KBConfig
from kb.contracts.base import Error, ErrorCode, Result, now_iso
from kb.contracts.diagnostics import ValidationReport
from kb.contracts.schema import SOURCE_PAGE_ACTIVE, Language
from kb.identity import (
    auto_agency_id, content_hash, host_matches_domain, is_http_url,
    normalize_domain, normalize_url, source_page_id,
)
from kb.indexing import CLAIMS_BY_SOURCE_PAGE, IndexBuild, IndexDiff, build_indexes
from kb.lifecycle import SourceChangeOutcome, process_source_change
from kb.lifecycle.change_detector import find_source_page
from kb.migration.v1_to_v2 import infer_page_type
from kb.observability import get_logger
from kb.storage import load_existing_indexes, save_document, save_indexes, save_snapshot
from kb.validation import validate

from .contracts import ExtractionResult, FetchedPage, FetchResult
from .extractor import Extractor
from .fetcher import PageFetcher


logger = get_logger(__name__)

_BENGALI = re.compile(r'[ঀ-৿]')
_LATIN = re.compile(r'[A-Za-z]')


# =============================================================================
# OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class IngestionOutcome:
    """Everything one refresh_source cycle produced."""
    source_page_id: str
    fetch: FetchResult
    change: SourceChangeOutcome
    indexes: IndexBuild
    report: ValidationReport
    extraction: Optional[ExtractionResult] = None
    errors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def document(self) -> Dict[str, Any]:
        return self.change.document

    @property
    def changed(self) -> bool:
        return self.change.changed


@dataclass(frozen=True)
class RegisteredSource:
    document: Dict[str, Any]
    source_page_id: str
    agency_id: str
    created: bool
    change: Optional[SourceChangeOutcome] = None


@dataclass(frozen=True)
class ClaimsAdded:
    document: Dict[str, Any]
    added: Tuple[str, ...] = field(default_factory=tuple)
    skipped: Tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# DOCUMENT HELPERS
# =============================================================================

def detect_languages(text: Optional[str]) -> List[str]:
    """Languages present in page text; English when nothing is recognizable."""
    languages = []
    if text and _BENGALI.search(text):
        languages.append(Language.BN.value)
    if text and _LATIN.search(text):
        languages.append(Language.EN.value)
    return languages or [Language.EN.value]


def ensure_agency(doc: Dict[str, Any], url: str) -> str:
    """
    Agency whose allowlist covers the URL's host. Creates an auto-agency
    (IN PLACE) when none does; callers pass a document they own.
    """
    host, scheme = normalize_url(url)
    agencies = doc.setdefault("agencies", [])
    for agency in agencies:
        if not isinstance(agency, dict):
            continue
        domains = [normalize_domain(d) for d in agency.get("domain_allowlist") or [] if isinstance(d, str)]
        if any(host_matches_domain(host, d) for d in domains):
            return agency["agency_id"]

    bare = host[4:] if host.startswith("www.") else host
    agency_id = auto_agency_id(bare)
    agencies.append({
        "agency_id": agency_id,
        "name": f"Unknown Agency ({bare})",
        "short_name": "",
        "website": f"{scheme}://{bare}",
        "domain_allowlist": [bare, "www." + bare],
        "claims": [],
    })
    logger.info("auto-agency created", extra={"agency_id": agency_id, "host": bare})
    return agency_id


def register_source_page(
    doc: Mapping[str, Any],
    url: str,
    title: Optional[str] = None,
    content: str = "",
    timestamp: Optional[str] = None,
    page_type: Optional[str] = None
) -> Result:
    """
    Add a source page for `url`, or update the one already registered.

    A new page gets its deterministic ID, detected languages, the hash of
    `content` and an agency (existing or auto-created). An existing page
    goes through change detection, so a new hash invalidates its claims.
    Returns Result(RegisteredSource).
    """
    if not is_http_url(url):
        return Result.failure(Error.create(
            ErrorCode.MALFORMED_DOCUMENT, f"Not an http(s) URL: {url}", url=str(url)
        ))

    ts = timestamp or now_iso()
    sid = source_page_id(url)
    existing = find_source_page(doc, sid)

    if existing is not None:
        change = process_source_change(doc, sid, content, timestamp=ts)
        if change.is_failure:
            return change
        updated = change.value.document
        page = find_source_page(updated, sid)
        if title and not page.get("title"):
            page["title"] = title
        return Result.success(RegisteredSource(
            document=updated,
            source_page_id=sid,
            agency_id=page.get("agency_id"),
            created=False,
            change=change.value,
        ))

    updated = copy.deepcopy(dict(doc))
    agency_id = ensure_agency(updated, url)
    page = {
        "source_page_id": sid,
        "canonical_url": url,
        "agency_id": agency_id,
        "page_type": page_type or infer_page_type(url),
        "language": detect_languages(f"{title or ''} {content}"),
        "crawl_method": "html_static",
        "last_crawled_at": ts,
        "content_hash": content_hash(content),
        "change_log": [],
        "status": SOURCE_PAGE_ACTIVE,
    }
    if title:
        page["title"] = title
    updated.setdefault("source_pages", []).append(page)
    logger.info("source page registered", extra={"source_page_id": sid, "agency_id": agency_id})
    return Result.success(RegisteredSource(
        document=updated, source_page_id=sid, agency_id=agency_id, created=True
    ))


def add_claims(doc: Mapping[str, Any], claims: Iterable[Mapping[str, Any]]) -> ClaimsAdded:
    """
    Append claims whose claim_id is not yet present and link each one from
    its entity's `claims` list. Duplicates (in `doc` or within `claims`)
    are skipped.
    """
    updated = copy.deepcopy(dict(doc))
    existing = {c.get("claim_id") for c in updated.setdefault("claims", []) if isinstance(c, dict)}
    entities: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for collection, kind, id_field in (("services", "service", "service_id"), ("documents", "document", "document_id")):
        for entity in updated.get(collection) or []:
            if isinstance(entity, dict):
                entities[(kind, entity.get(id_field))] = entity

    added: List[str] = []
    skipped: List[str] = []
    for claim in claims:
        cid = claim.get("claim_id")
        if not cid or cid in existing:
            skipped.append(cid)
            continue
        existing.add(cid)
        updated["claims"].append(copy.deepcopy(dict(claim)))
        added.append(cid)

        ref = claim.get("entity_ref") if isinstance(claim.get("entity_ref"), dict) else {}
        entity = entities.get((ref.get("type"), ref.get("id")))
        if entity is not None:
            refs = entity.setdefault("claims", [])
            if cid not in refs:
                refs.append(cid)

    logger.info("claims added", extra={"added": len(added), "skipped": len(skipped)})
    return ClaimsAdded(document=updated, added=tuple(added), skipped=tuple(skipped))


# =============================================================================
# SERVICE
# =============================================================================

class IngestionService:
    """
    Coordinates fetching, change processing, snapshots, indexes and
    validation for one knowledge base.
    """

    def __init__(
        self,
        config: Optional[KBConfig] = None,
        fetcher: Optional[PageFetcher] = None,
        extractor: Optional[Extractor] = None
    ):
        self._config = config or KBConfig.from_env()
        self._fetcher = fetcher or PageFetcher.from_config(self._config)
        self._extractor = extractor

    @property
    def config(self) -> KBConfig:
        return self._config

    def refresh_source(
        self,
        doc: Mapping[str, Any],
        source_page_id: str,
        indexes: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[str] = None
    ) -> Result:
        """
        One re-crawl cycle for a source page.

        Existing indexes default to the ones in config.index_dir. Returns
        Result(IngestionOutcome), or SOURCE_PAGE_NOT_FOUND / FETCH_FAILED /
        WRITE_FAILED.
        """
        page = find_source_page(doc, source_page_id)
        if page is None:
            return Result.failure(Error.create(
                ErrorCode.SOURCE_PAGE_NOT_FOUND,
                f"Source page not found: {source_page_id}",
                source_page_id=source_page_id,
            ))

        url = page.get("canonical_url")
        fetch, fetched = self._fetcher.fetch_sync(url)
        if fetched is None:
            return Result.failure(Error.create(
                ErrorCode.FETCH_FAILED,
                f"Fetch failed for {url}: {fetch.error_message}",
                source_page_id=source_page_id,
                status=fetch.status.value,
            ))

        if indexes is None:
            indexes = load_existing_indexes(self._config.index_dir)
        source_index = indexes.get(CLAIMS_BY_SOURCE_PAGE) if indexes else None

        ts = timestamp or fetched.fetched_at_iso
        change = process_source_change(doc, source_page_id, fetched.content, timestamp=ts, index=source_index)
        if change.is_failure:
            return change
        outcome = change.value

        snapshot = save_snapshot(self._config.snapshot_dir, source_page_id, fetched.html or fetched.content, timestamp=ts)
        if snapshot.is_failure:
            return snapshot

        diff = IndexDiff.create(
            (c.claim_id for c in outcome.invalidated_claims),
            [source_page_id] if outcome.changed else [],
        )
        build = build_indexes(outcome.document, existing=indexes, diff=diff)
        report = validate(outcome.document)

        extraction, errors = self._extract(fetched) if outcome.changed else (None, [])

        logger.info(
            "source refreshed",
            extra={
                "source_page_id": source_page_id,
                "changed": outcome.changed,
                "invalidated": outcome.invalidated_claim_count,
                "index_mode": build.mode.value,
                "valid": report.ok,
            },
        )
        return Result.success(IngestionOutcome(
            source_page_id=source_page_id,
            fetch=fetch,
            change=outcome,
            indexes=build,
            report=report,
            extraction=extraction,
            errors=tuple(list(outcome.errors) + errors),
        ))

    def refresh_all(
        self,
        doc: Mapping[str, Any],
        source_page_ids: Optional[Iterable[str]] = None,
        timestamp: Optional[str] = None
    ) -> Tuple[Dict[str, Any], List[Result]]:
        """
        Refresh several pages in turn, threading the document and indexes
        through each cycle. Returns the final document and every Result.
        """
        current = copy.deepcopy(dict(doc))
        if source_page_ids is None:
            source_page_ids = [
                p.get("source_page_id") for p in current.get("source_pages") or []
                if isinstance(p, dict) and p.get("source_page_id")
            ]
        indexes = None
        results = []
        for sid in source_page_ids:
            result = self.refresh_source(current, sid, indexes=indexes, timestamp=timestamp)
            if result.is_success:
                current = result.value.document
                indexes = result.value.indexes.indexes
            results.append(result)
        return current, results

    def persist(self, outcome: IngestionOutcome, actor: Optional[str] = None) -> Result:
        """Write the outcome's document and indexes; unchanged documents are not rewritten."""
        if outcome.changed:
            saved = save_document(self._config.kb_path, outcome.document, actor=actor or self._config.actor)
            if saved.is_failure:
                return saved
        return save_indexes(self._config.index_dir, outcome.indexes.indexes)

    def _extract(self, page: FetchedPage) -> Tuple[Optional[ExtractionResult], List[str]]:
        if self._extractor is None:
            return None, []
        raw = self._extractor.extract(page.markdown, page.final_url, page.html)
        try:
            result = raw if isinstance(raw, ExtractionResult) else ExtractionResult.model_validate(raw)
        except ValidationError as e:
            error = Error.create(ErrorCode.EXTRACTION_FAILED, f"Extractor output rejected for {page.url}",
                                 errors=str(e.error_count()))
            logger.warning("extraction rejected", extra={"url": page.url, "errors": e.error_count()})
            return None, [str(error)]
        logger.debug("page extracted", extra={"url": page.url, **result.stats.model_dump()})
        return result, []
