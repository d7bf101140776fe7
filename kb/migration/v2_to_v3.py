"""
Migration: v2 KB -> v3 KB

Adds the guide layer. Every v2 entity is preserved unchanged; one
service guide is synthesized per service by grouping the service's claims
by claim type. Claims remain the audit backbone: guides only hold
claim IDs.

STEP ORDER:
===========
structured_data.order, else a trailing integer in the claim_id, else a
"step N" token in the first citation's heading path. Claims without an
order keep their relative position after the ordered ones.

OFFICIAL LINKS:
===============
portal_mapping entry URLs, then portal_link claims carrying a URL,
de-duplicated by URL. Fallbacks, in order: the service's official
entrypoints; the agency page whose URL matches the agency website (host,
scheme and path, trailing slash ignored); the agency's first page on an
allowlisted host; the agency website itself. Only a service whose agency
has no website ends up with no link, which is reported as a warning (and
fails validation).
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Tuple
import copy
import re
from urllib.parse import urlsplit

from ..audit.audit_log import append_event, migration_event
from ..contracts.base import Error, ErrorCode, Result, Timestamp, now_iso
from ..contracts.schema import SCHEMA_V2, SCHEMA_V3, GuideSection, GuideStatus
from ..identity import (
    guide_id_for_service,
    host_matches_domain,
    is_http_url,
    normalize_domain,
    normalize_url,
    script_actor,
    slugify,
)
from ..observability import get_logger
from .v1_to_v2 import MigrationOutcome


logger = get_logger(__name__)

MIGRATION_ACTOR = script_actor("migrate_v2_to_v3")

CLAIM_TYPE_TO_SECTION: Dict[str, GuideSection] = {
    "step": GuideSection.APPLICATION_STEPS,
    "document_requirement": GuideSection.REQUIRED_DOCUMENTS,
    "fee": GuideSection.FEES,
    "processing_time": GuideSection.PROCESSING_TIME,
    "eligibility_requirement": GuideSection.ELIGIBILITY,
    "portal_link": GuideSection.PORTAL_LINKS,
    "rule": GuideSection.SERVICE_INFO,
    "condition": GuideSection.SERVICE_INFO,
    "definition": GuideSection.SERVICE_INFO,
    "location": GuideSection.SERVICE_INFO,
    "contact_info": GuideSection.SERVICE_INFO,
    "other": GuideSection.SERVICE_INFO,
}

_TRAILING_NUMBER = re.compile(r'\.(\d+)$')
_STEP_TOKEN = re.compile(r'step\s*(\d+)', re.IGNORECASE)
_AVAILABLE_AT = re.compile(r'^.*?available at\s*', re.IGNORECASE)

DEFAULT_VARIANT = "regular"


def step_order(claim: Mapping[str, Any]) -> Optional[int]:
    """Position of a step claim, or None when nothing states one."""
    data = claim.get("structured_data")
    if isinstance(data, dict):
        order = data.get("order")
        if isinstance(order, (int, float)) and not isinstance(order, bool):
            return order

    match = _TRAILING_NUMBER.search(str(claim.get("claim_id", "")))
    if match:
        return int(match.group(1))

    citations = claim.get("citations")
    if isinstance(citations, list) and citations and isinstance(citations[0], dict):
        locator = citations[0].get("locator")
        if isinstance(locator, dict) and locator.get("type") == "heading_path":
            for heading in locator.get("heading_path") or []:
                token = _STEP_TOKEN.search(heading) if isinstance(heading, str) else None
                if token:
                    return int(token.group(1))
    return None


def order_steps(step_claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Ordered claims first (ascending), then unordered ones in input order."""
    keyed = [(step_order(claim), idx, claim) for idx, claim in enumerate(step_claims)]
    ordered = sorted((k for k in keyed if k[0] is not None), key=lambda k: (k[0], k[1]))
    unordered = [k for k in keyed if k[0] is None]
    return [claim for _, _, claim in ordered + unordered]


def split_step_text(text: str, number: int) -> Tuple[str, str]:
    """(title, description): text before the first colon is the title."""
    colon = text.find(':')
    if colon > 0 and text[:colon].strip():
        return text[:colon].strip(), text[colon + 1:].strip()
    return f"Step {number}", text


def _page_key(url: Any) -> Optional[Tuple[str, str, str]]:
    """(host, scheme, path) with the trailing slash dropped, so site roots compare equal."""
    normalized = normalize_url(url)
    if normalized is None:
        return None
    return normalized + (urlsplit(url.strip()).path.rstrip('/'),)


def variant_label(delivery_type: str) -> str:
    return " ".join(word.capitalize() for word in delivery_type.replace('_', ' ').split())


def detect_variants(fee_claims: List[Dict[str, Any]],
                    processing_claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Delivery variants keyed by structured_data.delivery_type."""
    variants: Dict[str, Dict[str, Any]] = {}

    def variant_for(data: Mapping[str, Any]) -> Dict[str, Any]:
        delivery = data.get("delivery_type")
        variant_id = slugify(delivery) if isinstance(delivery, str) and slugify(delivery) else DEFAULT_VARIANT
        if variant_id not in variants:
            variants[variant_id] = {
                "variant_id": variant_id,
                "label": variant_label(variant_id),
                "fee_claim_ids": [],
                "processing_time_claim_ids": [],
            }
        return variants[variant_id]

    for claim in fee_claims:
        data = claim.get("structured_data")
        if isinstance(data, dict):
            variant_for(data)["fee_claim_ids"].append(claim["claim_id"])

    for claim in processing_claims:
        data = claim.get("structured_data")
        if isinstance(data, dict) and isinstance(data.get("delivery_type"), str):
            delivery = slugify(data["delivery_type"])
            if delivery in variants:
                variants[delivery]["processing_time_claim_ids"].append(claim["claim_id"])

    return list(variants.values())


class GuideGenerator:
    """Builds guides against lookup maps of one v2 document."""

    def __init__(self, doc: Mapping[str, Any], timestamp: str):
        self.timestamp = timestamp
        self.claims = self._by_id(doc, "claims", "claim_id")
        self.source_pages = self._by_id(doc, "source_pages", "source_page_id")
        self.agencies = self._by_id(doc, "agencies", "agency_id")
        self.warnings: List[str] = []

    @staticmethod
    def _by_id(doc: Mapping[str, Any], collection: str, id_field: str) -> Dict[str, Dict[str, Any]]:
        items = doc.get(collection)
        return {
            item[id_field]: item
            for item in (items if isinstance(items, list) else [])
            if isinstance(item, dict) and isinstance(item.get(id_field), str)
        }

    def _items(self, claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "label": (claim.get("text") or "").strip() or claim.get("claim_type", "Item").replace('_', ' ').title(),
                "claim_ids": [claim["claim_id"]],
            }
            for claim in claims
        ]

    def _steps(self, claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        steps = []
        for number, claim in enumerate(order_steps(claims), start=1):
            title, description = split_step_text(claim.get("text") or "", number)
            steps.append({
                "step_number": number,
                "title": title,
                "description": description,
                "claim_ids": [claim["claim_id"]],
            })
        return steps

    def _official_links(self, service: Mapping[str, Any], portal_claims: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        links: List[Dict[str, Any]] = []
        seen = set()

        def add(label: str, url: Any, source_page_id: Optional[str] = None):
            if not is_http_url(url) or url in seen:
                return
            seen.add(url)
            link = {"label": label, "url": url}
            if source_page_id:
                link["source_page_id"] = source_page_id
            links.append(link)

        mapping = service.get("portal_mapping")
        entries = mapping.get("entry_urls") if isinstance(mapping, dict) else None
        for entry in entries if isinstance(entries, list) else []:
            if isinstance(entry, dict):
                add(entry.get("description") or "Official Portal", entry.get("url"), entry.get("source_page_id"))

        for claim in portal_claims:
            data = claim.get("structured_data")
            url = data.get("url") if isinstance(data, dict) else None
            if isinstance(url, str):
                label = _AVAILABLE_AT.sub('', claim.get("text") or "").replace(url, "").strip()
                add(label or "Portal Link", url)

        if links:
            return links

        entrypoints = service.get("official_entrypoints")
        for entry in entrypoints if isinstance(entrypoints, list) else []:
            page = self.source_pages.get(entry.get("source_page_id")) if isinstance(entry, dict) else None
            if page:
                add("Official Portal", page.get("canonical_url"), page["source_page_id"])
                if links:
                    return links

        agency = self.agencies.get(service.get("agency_id")) or {}
        website = agency.get("website")
        page = self._agency_portal_page(agency, website)
        if page:
            add("Official Portal", page.get("canonical_url"), page["source_page_id"])
        if not links:
            add("Official Portal", website)
        return links

    def _agency_portal_page(self, agency: Mapping[str, Any], website: Any) -> Optional[Dict[str, Any]]:
        """The agency page at its website URL, else its first page on an allowlisted host."""
        agency_id = agency.get("agency_id")
        if not agency_id:
            return None
        pages = [
            page for page in self.source_pages.values()
            if page.get("agency_id") == agency_id and is_http_url(page.get("canonical_url"))
        ]
        target = _page_key(website)
        for page in pages:
            if target and _page_key(page.get("canonical_url")) == target:
                return page
        domains = [normalize_domain(d) for d in agency.get("domain_allowlist") or [] if isinstance(d, str)]
        for page in pages:
            host = normalize_url(page["canonical_url"])[0]
            if any(host_matches_domain(host, domain) for domain in domains):
                return page
        return None

    def generate(self, service: Mapping[str, Any]) -> Dict[str, Any]:
        service_id = service.get("service_id", "")
        grouped: Dict[GuideSection, List[Dict[str, Any]]] = {section: [] for section in GuideSection}
        for cid in service.get("claims") or []:
            claim = self.claims.get(cid) if isinstance(cid, str) else None
            if claim is None:
                self.warnings.append(f"Service {service_id} references missing claim {cid}; skipped")
                continue
            section = CLAIM_TYPE_TO_SECTION.get(claim.get("claim_type"), GuideSection.SERVICE_INFO)
            grouped[section].append(claim)

        steps = self._steps(grouped[GuideSection.APPLICATION_STEPS])
        guide: Dict[str, Any] = {
            "guide_id": guide_id_for_service(service_id),
            "service_id": service_id,
            "agency_id": service.get("agency_id"),
            "title": service.get("service_name") or service_id,
            "steps": steps,
            "sections": {},
        }
        for section in GuideSection:
            if section is GuideSection.APPLICATION_STEPS:
                items = steps
            else:
                items = self._items(grouped[section])
            if items:
                guide["sections"][section.value] = items
        if GuideSection.REQUIRED_DOCUMENTS.value in guide["sections"]:
            guide["required_documents"] = guide["sections"][GuideSection.REQUIRED_DOCUMENTS.value]
        if GuideSection.FEES.value in guide["sections"]:
            guide["fees"] = guide["sections"][GuideSection.FEES.value]

        variants = detect_variants(grouped[GuideSection.FEES], grouped[GuideSection.PROCESSING_TIME])
        if variants:
            guide["variants"] = variants

        guide["official_links"] = self._official_links(service, grouped[GuideSection.PORTAL_LINKS])
        if not guide["official_links"]:
            self.warnings.append(f"Guide {guide['guide_id']} has no resolvable official link")

        guide["generated_at"] = self.timestamp
        guide["last_updated_at"] = self.timestamp
        guide["status"] = GuideStatus.DRAFT.value
        logger.debug("Guide generated", extra={"guide_id": guide["guide_id"], "steps": len(steps)})
        return guide


def migrate_v2_to_v3(v2_doc: Mapping[str, Any], timestamp: Optional[str] = None,
                     actor: str = MIGRATION_ACTOR) -> Result:
    """Result(MigrationOutcome) carrying the v3 document."""
    if not isinstance(v2_doc, Mapping):
        return Result.failure(Error.create(ErrorCode.MALFORMED_DOCUMENT, "Document must be a JSON object"))

    timestamp = timestamp or now_iso()
    warnings: List[str] = []
    version = v2_doc.get("$schema_version")
    if version != SCHEMA_V2:
        warnings.append(f"Expected $schema_version {SCHEMA_V2}, got {version}")

    generator = GuideGenerator(v2_doc, timestamp)
    services = [s for s in v2_doc.get("services") or [] if isinstance(s, dict)]
    guides = [generator.generate(service) for service in services]
    warnings.extend(generator.warnings)

    data_version = v2_doc.get("data_version")
    next_version = (data_version if isinstance(data_version, int) and not isinstance(data_version, bool) else 1) + 1

    doc = copy.deepcopy(dict(v2_doc))
    doc["$schema_version"] = SCHEMA_V3
    doc["data_version"] = next_version
    doc["last_updated_at"] = timestamp
    doc["updated_by"] = actor
    doc.setdefault("audit_log", [])
    change_log = doc.get("change_log") if isinstance(doc.get("change_log"), list) else []
    doc["change_log"] = change_log + [{
        "version": next_version,
        "date": Timestamp.from_iso(timestamp).day(),
        "changes": [
            f"Migrated from {SCHEMA_V2} to {SCHEMA_V3} schema",
            f"Added {len(guides)} service_guides",
            "Guide layer provides user-friendly navigation while claims remain audit backbone",
        ],
    }]
    doc["service_guides"] = guides

    event = migration_event(
        {"services": [g["service_id"] for g in guides if isinstance(g["service_id"], str) and g["service_id"]]},
        actor,
        migration_source="v2",
        schema_version_from=SCHEMA_V2,
        schema_version_to=SCHEMA_V3,
        description=f"Migrated {len(guides)} services to service_guides",
        extra_metadata={"guide_ids": [g["guide_id"] for g in guides]},
        timestamp=timestamp,
    )
    doc = append_event(doc, event)

    logger.info(
        "Migration v2 -> v3 complete",
        extra={"guides": len(guides), "steps": sum(len(g["steps"]) for g in guides), "warnings": len(warnings)},
    )
    return Result.success(MigrationOutcome(document=doc, warnings=tuple(warnings)))
