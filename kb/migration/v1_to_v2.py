"""
Migration: v1 KB -> v2 KB

Moves a v1 knowledge base to the provenance-first v2 format.

WHAT HAPPENS:
=============
1. Every http(s) URL anywhere in the v1 data becomes a source page with a
   deterministic ID and a placeholder content hash (re-crawl required)
2. Agencies keep (normalized) IDs; their allowlists come from the website
   host and the hosts of their services' URLs
3. A URL no agency claims gets an auto-agency agency.auto_<12 hex>
4. v1 service fees and steps become atomic claims with citations
5. Services and documents become referential: they only list claim IDs

PROVENANCE RULE:
================
Quoted text is never fabricated. Without v1 `source_text` the citation
carries the placeholder quote, the claim is tagged needs_manual_citation
and stays unverified. Every such gap is reported as a warning.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..audit.audit_log import append_event, migration_event
from ..contracts.base import Error, ErrorCode, Result, Timestamp, now_iso
from ..contracts.provenance import Citation, HeadingPathLocator
from ..contracts.schema import (
    AGENCY_ID_RE, PLACEHOLDER_CONTENT_HASH, PLACEHOLDER_QUOTE, SCHEMA_V2,
    SOURCE_PAGE_ACTIVE, TAG_NEEDS_MANUAL_CITATION, ClaimStatus, ClaimType,
    EntityStatus, PageType,
)
from ..identity import (
    agency_id_for_name, auto_agency_id, claim_id, host_matches_domain,
    is_http_url, normalize_domain, parse_url, script_actor, slugify,
    source_page_id,
)
from ..observability import get_logger


logger = get_logger(__name__)

MIGRATION_ACTOR = script_actor("migrate_v1_to_v2")
V1_SCHEMA = "1.0"
UPDATED_BY = "migration-v1-to-v2"

REAL_SOURCE_LOCATION = "(location needs verification)"
PLACEHOLDER_LOCATION = "(needs manual location)"

_SERVICE_URL_FIELDS = ("source_url", "website", "portal_url")
_ENTRY_URL_FIELDS = ("portal_url", "website", "source_url")

# URL keyword -> page type, first match wins
_PAGE_TYPE_KEYWORDS: Tuple[Tuple[Tuple[str, ...], PageType], ...] = (
    (("fee", "cost", "price"), PageType.FEE_SCHEDULE),
    (("instruction", "guide", "how-to"), PageType.INSTRUCTION),
    (("form",), PageType.FORM),
    (("notice",), PageType.NOTICE),
    (("regulation", "rule"), PageType.REGULATION),
)


@dataclass(frozen=True)
class MigrationOutcome:
    """Migrated document plus the warnings a human must review."""
    document: Dict[str, Any]
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def claim_count(self) -> int:
        return len(self.document.get("claims", []))


def infer_page_type(url: str) -> str:
    lower = url.lower()
    for keywords, page_type in _PAGE_TYPE_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return page_type.value
    if '/' in lower and len(lower.split('/')) <= 4:
        return PageType.MAIN_PORTAL.value
    return PageType.OTHER.value


def collect_urls(value: Any, found: Optional[List[str]] = None) -> List[str]:
    """Every parseable http(s) string in a nested structure, first-seen order."""
    if found is None:
        found = []
    if isinstance(value, dict):
        for item in value.values():
            collect_urls(item, found)
    elif isinstance(value, list):
        for item in value:
            collect_urls(item, found)
    elif isinstance(value, str) and value.startswith(("http://", "https://")):
        if parse_url(value) is not None and value not in found:
            found.append(value)
    return found


def _bare(host: str) -> str:
    return host[4:] if host.startswith('www.') else host


def _prefixed_id(prefix: str, original: Any, index: int, fallback: str) -> str:
    """<prefix>.<slug>; the slug of the remainder, or <fallback>_<index> when empty."""
    text = original if isinstance(original, str) else ""
    if text.lower().startswith(prefix + "."):
        text = text[len(prefix) + 1:]
    slug = slugify(text)
    return f"{prefix}.{slug or f'{fallback}_{index}'}"


def normalize_service_id(original: Any, index: int) -> str:
    return _prefixed_id("svc", original, index, "service")


def normalize_document_id(original: Any, index: int) -> str:
    return _prefixed_id("doc", original, index, "document")


def _unique(candidate: str, taken: Set[str]) -> str:
    unique = candidate
    counter = 2
    while unique in taken:
        unique = f"{candidate}_{counter}"
        counter += 1
    taken.add(unique)
    return unique


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _http_host(url: Any) -> Optional[str]:
    parsed = parse_url(url)
    return parsed[1] if parsed and parsed[0] in ("http", "https") else None


class _NoSourcePages(Exception):
    """Raised internally when no source page can be found or created."""

    def __init__(self, entity: str):
        super().__init__(entity)
        self.entity = entity


class V1ToV2Migrator:
    """
    One-shot migrator. Construct with the parsed v1 data, call migrate().

    The migration timestamp is used for every generated timestamp, so a fixed
    timestamp yields a byte-identical document.
    """

    def __init__(self, v1_data: Mapping[str, Any], timestamp: Optional[str] = None,
                 actor: str = MIGRATION_ACTOR):
        self.v1 = v1_data if isinstance(v1_data, Mapping) else {}
        self.timestamp = timestamp or now_iso()
        self.actor = actor
        self.doc: Dict[str, Any] = {
            "$schema_version": SCHEMA_V2,
            "data_version": 1,
            "last_updated_at": self.timestamp,
            "updated_by": UPDATED_BY,
            "change_log": [],
            "audit_log": [],
            "source_pages": [],
            "claims": [],
            "agencies": [],
            "documents": [],
            "services": [],
        }
        self.warnings: List[str] = []

        self._url_to_source: Dict[str, str] = {}
        self._agency_domains: Dict[str, Set[str]] = {}
        self._agency_id_map: Dict[str, str] = {}
        self._auto_agencies: Dict[str, str] = {}
        self._taken_agency_ids: Set[str] = set()
        self._service_ids: List[str] = []

    # =========================================================================
    # DRIVER
    # =========================================================================

    def migrate(self) -> Result:
        """Result(MigrationOutcome) or NO_SOURCE_PAGES when claims cannot be cited."""
        logger.info("Starting v1 -> v2 migration")
        urls = collect_urls(dict(self.v1))

        self._migrate_agencies()
        for url in urls:
            self._ensure_source_page(url)

        taken: Set[str] = set()
        self._service_ids = [
            _unique(normalize_service_id(service.get("service_id"), idx), taken)
            for idx, service in enumerate(self._records("services"))
        ]

        try:
            self._migrate_claims()
            self._migrate_documents()
            self._migrate_services()
        except _NoSourcePages as exc:
            return Result.failure(Error.create(
                ErrorCode.NO_SOURCE_PAGES,
                "Cannot create claims without any source pages",
                entity=exc.entity,
            ))

        self.doc["change_log"].append({
            "version": 1,
            "date": Timestamp.from_iso(self.timestamp).day(),
            "changes": [
                "Migrated from v1 to v2 schema",
                "Extracted all URLs into source_pages registry",
                "Converted all facts into atomic claims with citations",
                "Refactored documents and services to reference claims only",
            ],
        })
        event = migration_event(
            {
                "source_pages": [p["source_page_id"] for p in self.doc["source_pages"]],
                "claims": [c["claim_id"] for c in self.doc["claims"]],
                "services": [s["service_id"] for s in self.doc["services"]],
                "documents": [d["document_id"] for d in self.doc["documents"]],
                "agencies": [a["agency_id"] for a in self.doc["agencies"]],
            },
            self.actor,
            migration_source="v1",
            schema_version_from=V1_SCHEMA,
            schema_version_to=SCHEMA_V2,
            description=(
                f"Migrated {len(self.doc['claims'])} claims, {len(self.doc['services'])} services, "
                f"{len(self.doc['documents'])} documents from v1 to v2 schema"
            ),
            timestamp=self.timestamp,
        )
        document = append_event(self.doc, event)

        logger.info(
            "Migration v1 -> v2 complete",
            extra={
                "source_pages": len(document["source_pages"]),
                "claims": len(document["claims"]),
                "services": len(document["services"]),
                "documents": len(document["documents"]),
                "warnings": len(self.warnings),
            },
        )
        return Result.success(MigrationOutcome(document=document, warnings=tuple(dict.fromkeys(self.warnings))))

    def _records(self, collection: str) -> List[Dict[str, Any]]:
        items = self.v1.get(collection)
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    # =========================================================================
    # AGENCIES
    # =========================================================================

    def _normalize_agency_id(self, agency: Mapping[str, Any]) -> str:
        original = agency.get("agency_id")
        if isinstance(original, str) and AGENCY_ID_RE.match(original):
            candidate = original
        elif isinstance(original, str) and original.strip():
            bare = original[len("agency."):] if original.startswith("agency.") else original
            candidate = agency_id_for_name(bare)
        else:
            candidate = agency_id_for_name(agency.get("name") if isinstance(agency.get("name"), str) else None)
        if candidate == "agency.":
            candidate = "agency.unknown"
        return _unique(candidate, self._taken_agency_ids)

    def _allowlist(self, agency: Mapping[str, Any], v1_ids: Iterable[str]) -> List[str]:
        allowlist: List[str] = []

        def add(host: str):
            if host and host not in allowlist:
                allowlist.append(host)

        website = _http_host(agency.get("website"))
        if website:
            add(_bare(website))
            add(website if website.startswith("www.") else "www." + website)

        ids = set(v1_ids)
        for service in self._records("services"):
            if service.get("agency_id") not in ids:
                continue
            for name in _SERVICE_URL_FIELDS:
                host = _http_host(service.get(name))
                if host:
                    add(_bare(host))
        return allowlist

    def _migrate_agencies(self):
        records = self._records("agencies")
        if not records:
            self.warnings.append("No agencies found in v1 data")
        for agency in records:
            agency_id = self._normalize_agency_id(agency)
            original = agency.get("agency_id")
            v1_ids = [agency_id]
            if isinstance(original, str) and original:
                v1_ids.append(original)
                if original != agency_id:
                    self._agency_id_map.setdefault(original, agency_id)
                    self.warnings.append(f"Normalized agency_id {original} -> {agency_id}")
            self._agency_id_map.setdefault(agency_id, agency_id)

            allowlist = self._allowlist(agency, v1_ids)
            if not allowlist:
                self.warnings.append(f"Agency {agency_id} has no website; domain_allowlist is empty")
            website = agency.get("website")
            self.doc["agencies"].append({
                "agency_id": agency_id,
                "name": agency.get("name") or agency_id,
                "short_name": agency.get("short_name") or "",
                "website": website if isinstance(website, str) else "",
                "domain_allowlist": allowlist,
                "claims": [],
            })
            self._agency_domains[agency_id] = {normalize_domain(d) for d in allowlist}

    def _create_auto_agency(self, host: str, scheme: str = "https") -> str:
        bare = _bare(host)
        if bare in self._auto_agencies:
            return self._auto_agencies[bare]
        agency_id = _unique(auto_agency_id(bare), self._taken_agency_ids)
        allowlist = [bare] if bare.startswith("www.") else [bare, "www." + bare]
        self.doc["agencies"].append({
            "agency_id": agency_id,
            "name": f"Unknown Agency ({bare})",
            "short_name": "",
            "website": f"{scheme}://{bare}",
            "domain_allowlist": allowlist,
            "claims": [],
        })
        self._auto_agencies[bare] = agency_id
        self._agency_domains[agency_id] = set(allowlist)
        self._agency_id_map.setdefault(agency_id, agency_id)
        self.warnings.append(f"Created auto-agency {agency_id} for unknown domain: {bare}")
        logger.debug("Auto-agency created", extra={"agency_id": agency_id, "host": bare})
        return agency_id

    def _infer_agency(self, url: str) -> str:
        parsed = parse_url(url)
        if parsed is None:
            return self._create_auto_agency("unknown.invalid")
        scheme, host = parsed
        for agency in self.doc["agencies"]:
            domains = self._agency_domains.get(agency["agency_id"], set())
            if any(host_matches_domain(host, d) for d in domains):
                return agency["agency_id"]
        return self._create_auto_agency(host, scheme)

    def _first_agency_id(self) -> str:
        if self.doc["agencies"]:
            return self.doc["agencies"][0]["agency_id"]
        return self._create_auto_agency("unknown.local")

    def _resolve_agency(self, original: Any, entity: str) -> str:
        if isinstance(original, str) and original in self._agency_id_map:
            return self._agency_id_map[original]
        fallback = self._first_agency_id()
        self.warnings.append(f"{entity} references unknown agency {original!r}; using {fallback}")
        return fallback

    def _agency(self, agency_id: str) -> Optional[Dict[str, Any]]:
        for agency in self.doc["agencies"]:
            if agency["agency_id"] == agency_id:
                return agency
        return None

    # =========================================================================
    # SOURCE PAGES
    # =========================================================================

    def _ensure_source_page(self, url: str, agency_id: Optional[str] = None,
                            page_type: Optional[str] = None) -> str:
        existing = self._url_to_source.get(url)
        if existing:
            return existing
        sid = source_page_id(url)
        self.doc["source_pages"].append({
            "source_page_id": sid,
            "canonical_url": url,
            "agency_id": agency_id or self._infer_agency(url),
            "page_type": page_type or infer_page_type(url),
            "language": ["en"],
            "crawl_method": "html_static",
            "last_crawled_at": self.timestamp,
            "content_hash": PLACEHOLDER_CONTENT_HASH,
            "change_log": [],
            "status": SOURCE_PAGE_ACTIVE,
        })
        self._url_to_source[url] = sid
        return sid

    def _agency_website_source(self, agency_id: str) -> Optional[str]:
        agency = self._agency(agency_id)
        website = agency.get("website") if agency else None
        if not is_http_url(website):
            return None
        host = parse_url(website)[1]
        if not any(host_matches_domain(host, d) for d in self._agency_domains.get(agency_id, set())):
            return self._ensure_source_page(website, page_type=PageType.MAIN_PORTAL.value)
        return self._ensure_source_page(website, agency_id=agency_id, page_type=PageType.MAIN_PORTAL.value)

    def _any_source(self, entity: str) -> str:
        if self.doc["source_pages"]:
            return self.doc["source_pages"][0]["source_page_id"]
        sid = self._agency_website_source(self._first_agency_id())
        if sid is None:
            raise _NoSourcePages(entity)
        return sid

    def _source_for_service(self, service: Mapping[str, Any], service_id: str, agency_id: str) -> Tuple[str, bool]:
        """(source_page_id, has_real_source) for a service's claims."""
        for name in _SERVICE_URL_FIELDS:
            url = service.get(name)
            if is_http_url(url):
                return self._ensure_source_page(url), True

        sid = self._agency_website_source(agency_id)
        if sid is not None:
            self.warnings.append(f"Service {service_id} had no source URL - using agency website")
            return sid, False

        self.warnings.append(f"Service {service_id} has no source URL and no agency website")
        return self._any_source(service_id), False

    # =========================================================================
    # CLAIMS
    # =========================================================================

    def _citation(self, sid: str, item: Any) -> Tuple[Dict[str, Any], bool]:
        """Citation plus whether it is a placeholder."""
        quote = _text(item.get("source_text")) if isinstance(item, dict) else ""
        placeholder = not quote
        citation = Citation(
            source_page_id=sid,
            quoted_text=PLACEHOLDER_QUOTE if placeholder else quote,
            retrieved_at=self.timestamp,
            locator=HeadingPathLocator((PLACEHOLDER_LOCATION if placeholder else REAL_SOURCE_LOCATION,)),
        )
        return citation.to_dict(), placeholder

    def _add_claim(self, cid: str, entity_type: str, entity_id: str, claim_type: str,
                   text: str, citation: Dict[str, Any], placeholder: bool,
                   structured_data: Optional[Dict[str, Any]] = None,
                   tags: Optional[List[str]] = None) -> str:
        claim_tags = list(tags or [])
        if placeholder:
            claim_tags.append(TAG_NEEDS_MANUAL_CITATION)
        claim: Dict[str, Any] = {
            "claim_id": cid,
            "entity_ref": {"type": entity_type, "id": entity_id},
            "claim_type": claim_type,
            "text": text,
        }
        if structured_data is not None:
            claim["structured_data"] = structured_data
        claim["citations"] = [citation]
        claim["status"] = ClaimStatus.UNVERIFIED.value
        claim["tags"] = claim_tags
        self.doc["claims"].append(claim)
        return cid

    def _migrate_claims(self):
        for service, service_id in zip(self._records("services"), self._service_ids):
            agency_id = self._resolve_agency(service.get("agency_id"), service_id)
            fees = service.get("fees") if isinstance(service.get("fees"), list) else []
            steps = service.get("steps") if isinstance(service.get("steps"), list) else []
            if not fees and not steps:
                continue
            sid, has_real_source = self._source_for_service(service, service_id, agency_id)

            for idx, fee in enumerate(fees):
                fee = fee if isinstance(fee, dict) else {}
                amount = _number(fee.get("amount"))
                if amount is None:
                    self.warnings.append(f"Fee {idx} of {service_id} has no numeric amount; recorded as 0")
                    amount = 0
                currency = fee.get("currency") or "BDT"
                citation, placeholder = self._citation(sid, fee)
                self._add_claim(
                    claim_id(ClaimType.FEE.value, service_id, f"fee_{idx}"),
                    "service", service_id, ClaimType.FEE.value,
                    _text(fee.get("description")) or f"Fee: {fee.get('amount', 'N/A')} {currency}",
                    citation, placeholder or not has_real_source,
                    structured_data={"amount_bdt": amount, "currency": currency},
                    tags=[ClaimType.FEE.value, service_id],
                )

            for idx, step in enumerate(steps):
                step = step if isinstance(step, dict) else {}
                order = step.get("order")
                if isinstance(order, bool) or not isinstance(order, int):
                    order = idx + 1
                citation, placeholder = self._citation(sid, step)
                self._add_claim(
                    claim_id(ClaimType.STEP.value, service_id, str(idx + 1)),
                    "service", service_id, ClaimType.STEP.value,
                    _text(step.get("description")) or _text(step.get("title")) or f"Step {idx + 1}",
                    citation, placeholder or not has_real_source,
                    structured_data={"order": order, "mode": step.get("mode") or "online"},
                    tags=[ClaimType.STEP.value, service_id],
                )

        placeholders = sum(1 for c in self.doc["claims"] if TAG_NEEDS_MANUAL_CITATION in c["tags"])
        if placeholders:
            self.warnings.append(f"{placeholders} claim(s) tagged '{TAG_NEEDS_MANUAL_CITATION}' require manual review")

    def _placeholder_claim(self, claim_type: ClaimType, id_type: str, entity_type: str,
                           entity_id: str, name: str, text: Optional[str],
                           preferred_source: Optional[str]) -> str:
        sid = preferred_source or self._any_source(entity_id)
        citation, _ = self._citation(sid, None)
        cid = self._add_claim(
            claim_id(id_type, entity_id, "placeholder"),
            entity_type, entity_id, claim_type.value,
            text or f"{name} - Placeholder claim (migration)",
            citation, True,
            tags=["migration", "placeholder"],
        )
        self.warnings.append(f"Created placeholder claim for {entity_type}: {entity_id}")
        return cid

    # =========================================================================
    # DOCUMENTS AND SERVICES
    # =========================================================================

    def _migrate_documents(self):
        taken: Set[str] = set()
        for idx, record in enumerate(self._records("documents")):
            name = record.get("name") or record.get("document_name") or ""
            document_id = _unique(normalize_document_id(record.get("document_id") or name, idx), taken)
            issued_by = self._resolve_agency(record.get("issued_by"), document_id) \
                if record.get("issued_by") else self._first_agency_id()
            url = record.get("source_url")
            preferred = self._ensure_source_page(url) if is_http_url(url) else None
            cid = self._placeholder_claim(
                ClaimType.DEFINITION, "definition", "document", document_id,
                name or document_id, _text(record.get("definition")) or None, preferred,
            )
            self.doc["documents"].append({
                "document_id": document_id,
                "document_name": name or document_id,
                "issued_by": issued_by,
                "claims": [cid],
                "status": EntityStatus.PARTIAL.value,
                "last_updated_at": self.timestamp,
            })

    def _entry_urls(self, service: Mapping[str, Any], service_id: str, agency_id: str) -> List[Dict[str, str]]:
        for name in _ENTRY_URL_FIELDS:
            url = service.get(name)
            if is_http_url(url):
                return [{"url": url, "source_page_id": self._ensure_source_page(url),
                         "description": "Main service portal"}]

        sid = self._agency_website_source(agency_id)
        if sid is not None:
            return [{"url": self._agency(agency_id)["website"], "source_page_id": sid,
                     "description": "Agency main portal"}]

        sid = self._any_source(service_id)
        page = next(p for p in self.doc["source_pages"] if p["source_page_id"] == sid)
        self.warnings.append(f"Service {service_id} has no portal URL; using {page['canonical_url']}")
        return [{"url": page["canonical_url"], "source_page_id": sid, "description": "Fallback entry point"}]

    def _migrate_services(self):
        for idx, (service, service_id) in enumerate(zip(self._records("services"), self._service_ids)):
            agency_id = self._resolve_agency(service.get("agency_id"), service_id) \
                if service.get("agency_id") else self._first_agency_id()
            claim_ids = [
                c["claim_id"] for c in self.doc["claims"]
                if c["entity_ref"] == {"type": "service", "id": service_id}
            ]
            name = service.get("name") or service.get("service_name") or service_id
            if not claim_ids:
                claim_ids.append(self._placeholder_claim(
                    ClaimType.ELIGIBILITY_REQUIREMENT, "eligibility", "service", service_id,
                    name, None, None,
                ))
            entry_urls = self._entry_urls(service, service_id, agency_id)
            self.doc["services"].append({
                "service_id": service_id,
                "service_name": name,
                "service_family": service.get("category") or service.get("family") or "",
                "agency_id": agency_id,
                "claims": claim_ids,
                "portal_mapping": {"entry_urls": entry_urls},
                "official_entrypoints": [
                    {"source_page_id": e["source_page_id"], "description": e["description"]}
                    for e in entry_urls
                ],
                "status": EntityStatus.PARTIAL.value,
                "last_updated_at": self.timestamp,
            })


def migrate_v1_to_v2(v1_data: Mapping[str, Any], timestamp: Optional[str] = None,
                     actor: str = MIGRATION_ACTOR) -> Result:
    return V1ToV2Migrator(v1_data, timestamp=timestamp, actor=actor).migrate()
