"""
Strict Provenance Validator

Enforces every structural and provenance invariant of a KB document and
classifies each finding as a blocking error or non-blocking warning.

PASSES (in order, all errors collected, never fail-fast):
=========================================================
1.  Top level       schema version, required collections
2.  Agencies        IDs, uniqueness, domain allowlists
3.  Source pages    deterministic IDs, URL, hash, language, page type
4.  Claims          ID patterns, citations, locators, structured data, status
5.  Documents/      IDs, non-empty claims, no free-text fact fields, status
    Services
6.  Cross-refs      every referenced agency/service/document/claim/source exists
7.  Provenance      orphan source pages (warning)
8.  Domains         source page host matches its agency's allowlist
9.  Derived status  'verified' entities only over verified claims
10. Guides          schema 3.0.0 only (see guides.py)

Messages name the offending index, the rule and, where it helps, the
expected value.
"""

from __future__ import annotations
from collections import Counter
from typing import Any, Dict, List, Set

from ..contracts.diagnostics import Diagnostic, IssueKind, Severity, ValidationReport
from ..contracts.provenance import locator_problems
from ..contracts.schema import (
    AGENCY_ID_RE, CLAIM_STATUSES, CLAIM_TYPES, CONTENT_HASH_RE, DOCUMENT_ID_RE,
    ENTITY_REF_TYPES, ENTITY_STATUSES, FORBIDDEN_ENTITY_FIELDS, LANGUAGES,
    PAGE_TYPES, REQUIRED_COLLECTIONS, SCHEMA_V3, SERVICE_ID_RE, SOURCE_PAGE_ID_RE,
    STRUCTURED_CLAIM_TYPES, SUPPORTED_SCHEMA_VERSIONS, EntityStatus,
    is_valid_claim_id,
)
from ..identity import (
    is_http_url, host_matches_domain, normalize_domain, normalize_host,
    parse_url, source_page_id,
)
from ..lifecycle.status import claim_status_map, derive_entity_status
from ..observability import get_logger
from .guides import GuideValidator


logger = get_logger(__name__)

SOURCE_PAGE_REQUIRED = (
    "source_page_id", "canonical_url", "agency_id", "page_type",
    "language", "content_hash", "last_crawled_at",
)
CLAIM_REQUIRED = ("claim_id", "entity_ref", "claim_type", "text", "citations", "status")
DOCUMENT_REQUIRED = ("document_id", "document_name", "claims")
SERVICE_REQUIRED = (
    "service_id", "service_name", "agency_id", "claims",
    "portal_mapping", "official_entrypoints",
)


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _known(value: Any, ids) -> bool:
    """Membership test that tolerates unhashable JSON values."""
    return isinstance(value, str) and value in ids


class DiagnosticCollector:
    """Accumulates diagnostics for one validation run."""

    def __init__(self):
        self.diagnostics: List[Diagnostic] = []

    def error(self, kind: IssueKind, message: str):
        self.diagnostics.append(Diagnostic(Severity.ERROR, kind, message))

    def warning(self, kind: IssueKind, message: str):
        self.diagnostics.append(Diagnostic(Severity.WARNING, kind, message))


class StrictProvenanceValidator:
    """
    Validates a single document. One instance per run; use `validate()`.
    """

    def __init__(self, doc: Any):
        self._doc = doc if isinstance(doc, dict) else {}
        self._is_object = isinstance(doc, dict)
        self._out = DiagnosticCollector()
        self.agency_ids: Set[str] = set()
        self.source_page_ids: Set[str] = set()
        self.claim_ids: Set[str] = set()
        self.document_ids: Set[str] = set()
        self.service_ids: Set[str] = set()
        self.allowlists: Dict[str, Set[str]] = {}
        self.domain_passed = 0
        self.domain_failed = 0
        self.id_mismatches = 0

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def _items(self, collection: str) -> List[Any]:
        values = self._doc.get(collection)
        return values if isinstance(values, list) else []

    def _records(self, collection: str):
        """(index, record) for dict entries; non-objects are reported once."""
        for idx, item in enumerate(self._items(collection)):
            if isinstance(item, dict):
                yield idx, item
            else:
                self._out.error(IssueKind.MALFORMED_INPUT, f"{collection}[{idx}] must be an object")

    def _require(self, record: Dict[str, Any], fields, label: str):
        for name in fields:
            if name not in record:
                self._out.error(IssueKind.MALFORMED_INPUT, f"{label} missing required field: {name}")

    # -------------------------------------------------------------------------
    # passes
    # -------------------------------------------------------------------------

    def validate(self) -> ValidationReport:
        if not self._is_object:
            self._out.error(IssueKind.MALFORMED_INPUT, "Document must be a JSON object")
            return self._report()

        self.validate_top_level()
        self.validate_agencies()
        self.validate_source_pages()
        self.validate_claims()
        self.validate_documents()
        self.validate_services()
        self.validate_cross_references()
        self.validate_provenance_rules()
        self.validate_domain_allowlists()
        self.validate_derived_status()

        if self._doc.get("$schema_version") == SCHEMA_V3:
            guide_validator = GuideValidator(
                self._doc,
                claim_ids=self.claim_ids,
                service_ids=self.service_ids,
                agency_ids=self.agency_ids,
                source_page_ids=self.source_page_ids,
            )
            self._out.diagnostics.extend(guide_validator.validate())

        return self._report()

    def validate_top_level(self):
        version = self._doc.get("$schema_version")
        if not version:
            self._out.error(IssueKind.MALFORMED_INPUT, "Missing $schema_version")
        elif version not in SUPPORTED_SCHEMA_VERSIONS:
            self._out.error(
                IssueKind.MALFORMED_INPUT,
                f"Invalid schema version: {version}. Must be one of: {', '.join(SUPPORTED_SCHEMA_VERSIONS)}",
            )
        for name in REQUIRED_COLLECTIONS:
            if not isinstance(self._doc.get(name), list):
                self._out.error(IssueKind.MALFORMED_INPUT, f"Missing or invalid {name} array")
        if version == SCHEMA_V3 and not isinstance(self._doc.get("service_guides"), list):
            self._out.error(IssueKind.MALFORMED_INPUT, "Missing or invalid service_guides array (required for 3.0.0)")

    def validate_agencies(self):
        for idx, agency in self._records("agencies"):
            agency_id = agency.get("agency_id")
            if not agency_id:
                self._out.error(IssueKind.MALFORMED_INPUT, f"agencies[{idx}] missing agency_id")
                continue
            if not isinstance(agency_id, str):
                self._out.error(IssueKind.MALFORMED_INPUT, f"agencies[{idx}].agency_id must be a string")
                continue
            if not AGENCY_ID_RE.match(agency_id):
                self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"agencies[{idx}].agency_id has invalid format: {agency_id}")
            if agency_id in self.agency_ids:
                self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"Duplicate agency_id: {agency_id}")
            self.agency_ids.add(agency_id)

            allowlist = agency.get("domain_allowlist")
            if not isinstance(allowlist, list) or not allowlist:
                self._out.error(
                    IssueKind.DOMAIN_VIOLATION,
                    f"agencies[{idx}].domain_allowlist is required and must be non-empty",
                )
                continue
            domains = self.allowlists.setdefault(agency_id, set())
            for entry in allowlist:
                normalized = normalize_domain(entry) if isinstance(entry, str) else ""
                if normalized:
                    domains.add(normalized)
                else:
                    self._out.warning(
                        IssueKind.DOMAIN_VIOLATION,
                        f"agencies[{idx}].domain_allowlist contains invalid domain: '{entry}'",
                    )

    def validate_source_pages(self):
        seen_urls: Set[str] = set()
        for idx, page in self._records("source_pages"):
            label = f"source_pages[{idx}]"
            self._require(page, SOURCE_PAGE_REQUIRED, label)
            page_id = page.get("source_page_id")
            url = page.get("canonical_url")

            if isinstance(url, str) and url:
                expected = source_page_id(url)
                if not page_id:
                    self._out.error(
                        IssueKind.IDENTIFIER_VIOLATION,
                        f"{label} missing source_page_id; canonical_url {url} requires {expected}",
                    )
                elif page_id != expected:
                    self.id_mismatches += 1
                    self._out.error(
                        IssueKind.IDENTIFIER_VIOLATION,
                        f"{label} deterministic ID mismatch: canonical_url {url} "
                        f"expects source_page_id {expected}, got {page_id}. "
                        f"Rule: source_page_id MUST equal \"source.\" + SHA1(canonical_url)",
                    )

                if not is_http_url(url):
                    if parse_url(url) is None:
                        self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.canonical_url is not a valid URL: {url}")
                    else:
                        self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.canonical_url must be http or https: {url}")
                if url in seen_urls:
                    self._out.warning(IssueKind.MALFORMED_INPUT, f"Duplicate canonical_url: {url}")
                seen_urls.add(url)

            if page_id:
                if not isinstance(page_id, str) or not SOURCE_PAGE_ID_RE.match(page_id):
                    self._out.error(
                        IssueKind.IDENTIFIER_VIOLATION,
                        f"{label}.source_page_id has invalid format: {page_id}. Expected source.<40-char-sha1-hex>",
                    )
                elif page_id in self.source_page_ids:
                    self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"Duplicate source_page_id: {page_id}")
                if isinstance(page_id, str):
                    self.source_page_ids.add(page_id)

            digest = page.get("content_hash")
            if digest is not None and (not isinstance(digest, str) or not CONTENT_HASH_RE.match(digest)):
                self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.content_hash is not a valid SHA-256 hash: {digest}")

            agency_id = page.get("agency_id")
            if agency_id and (not isinstance(agency_id, str) or not AGENCY_ID_RE.match(agency_id)):
                self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"{label}.agency_id has invalid format: {agency_id}")

            if "language" in page:
                languages = page.get("language")
                if not isinstance(languages, list) or not languages:
                    self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.language must be non-empty array")
                else:
                    for lang in languages:
                        if not _known(lang, LANGUAGES):
                            self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.language contains invalid value: {lang}")

            page_type = page.get("page_type")
            if "page_type" in page and not _known(page_type, PAGE_TYPES):
                self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.page_type is invalid: {page_type}")

    def validate_claims(self):
        for idx, claim in self._records("claims"):
            claim_id = claim.get("claim_id")
            label = claim_id if isinstance(claim_id, str) and claim_id else f"claims[{idx}]"
            self._require(claim, CLAIM_REQUIRED, f"claims[{idx}]")

            if claim_id:
                if not is_valid_claim_id(claim_id):
                    self._out.error(
                        IssueKind.IDENTIFIER_VIOLATION,
                        f"claims[{idx}].claim_id does not match deterministic pattern: {claim_id}. "
                        f"Patterns: claim.fee.<service>.<variant>, claim.step.<service>.<order>, "
                        f"claim.doc.<document>.<purpose>, claim.portal.<service>.<action>, "
                        f"claim.<type>.<entity>[.<suffix>]",
                    )
                if isinstance(claim_id, str) and claim_id in self.claim_ids:
                    self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"Duplicate claim_id: {claim_id}")
                if isinstance(claim_id, str):
                    self.claim_ids.add(claim_id)

            ref = claim.get("entity_ref")
            if "entity_ref" in claim:
                if not isinstance(ref, dict):
                    self._out.error(IssueKind.MALFORMED_INPUT, f"claims[{idx}].entity_ref must be an object")
                else:
                    if not _known(ref.get("type"), ENTITY_REF_TYPES):
                        self._out.error(IssueKind.MALFORMED_INPUT, f"claims[{idx}].entity_ref.type must be 'service' or 'document'")
                    if not ref.get("id"):
                        self._out.error(IssueKind.MALFORMED_INPUT, f"claims[{idx}].entity_ref.id is required")

            claim_type = claim.get("claim_type")
            if "claim_type" in claim and not _known(claim_type, CLAIM_TYPES):
                self._out.error(IssueKind.MALFORMED_INPUT, f"claims[{idx}].claim_type is invalid: {claim_type}")

            self._validate_citations(claim, label)

            if "text" in claim and _is_blank(claim.get("text")):
                self._out.error(IssueKind.MALFORMED_INPUT, f"claims[{idx}].text is empty")

            if _known(claim_type, STRUCTURED_CLAIM_TYPES):
                data = claim.get("structured_data")
                if not isinstance(data, dict):
                    self._out.error(
                        IssueKind.MALFORMED_INPUT,
                        f"claims[{idx}] ({claim_id}) is of type '{claim_type}' but missing required structured_data",
                    )
                elif claim_type == "fee":
                    amount = data.get("amount_bdt")
                    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
                        self._out.error(
                            IssueKind.MALFORMED_INPUT,
                            f"claims[{idx}] ({claim_id}) is a fee claim but structured_data.amount_bdt is missing or not a number",
                        )

            status = claim.get("status")
            if not status:
                self._out.error(
                    IssueKind.MALFORMED_INPUT,
                    f"claims[{idx}].status is missing. Must be one of: {', '.join(sorted(CLAIM_STATUSES))}",
                )
            elif not _known(status, CLAIM_STATUSES):
                self._out.error(
                    IssueKind.MALFORMED_INPUT,
                    f"claims[{idx}].status is invalid: '{status}'. Must be one of: {', '.join(sorted(CLAIM_STATUSES))}",
                )

    def _validate_citations(self, claim: Dict[str, Any], label: str):
        if "citations" not in claim:
            self._out.error(
                IssueKind.PROVENANCE_VIOLATION,
                f"PROVENANCE VIOLATION: {label} is missing 'citations'. Every claim MUST have a citations array.",
            )
            return
        citations = claim["citations"]
        if not isinstance(citations, list):
            self._out.error(
                IssueKind.PROVENANCE_VIOLATION,
                f"PROVENANCE VIOLATION: {label} has invalid citations (must be an array).",
            )
            return
        if not citations:
            self._out.error(
                IssueKind.PROVENANCE_VIOLATION,
                f"PROVENANCE VIOLATION: {label} has an empty citations array. "
                f"Every claim MUST have at least one citation.",
            )
            return

        for cit_idx, citation in enumerate(citations):
            cit_label = f"{label}.citations[{cit_idx}]"
            if not isinstance(citation, dict):
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"PROVENANCE VIOLATION: {cit_label} must be an object")
                continue

            sid = citation.get("source_page_id")
            if sid is None:
                self._out.error(
                    IssueKind.PROVENANCE_VIOLATION,
                    f"PROVENANCE VIOLATION: {cit_label} is missing 'source_page_id'.",
                )
            elif _is_blank(sid):
                self._out.error(
                    IssueKind.PROVENANCE_VIOLATION,
                    f"PROVENANCE VIOLATION: {cit_label}.source_page_id is empty or invalid.",
                )
            else:
                if not SOURCE_PAGE_ID_RE.match(sid):
                    self._out.error(
                        IssueKind.IDENTIFIER_VIOLATION,
                        f"{cit_label}.source_page_id has invalid format: '{sid}'. "
                        f"Must match pattern: source.<40-char-sha1-hash>",
                    )
                if sid not in self.source_page_ids:
                    self._out.error(
                        IssueKind.PROVENANCE_VIOLATION,
                        f"PROVENANCE VIOLATION: {cit_label}.source_page_id '{sid}' "
                        f"does not exist in source_pages registry.",
                    )

            quoted = citation.get("quoted_text")
            if quoted is None:
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"PROVENANCE VIOLATION: {cit_label} is missing 'quoted_text'.")
            elif not isinstance(quoted, str):
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"PROVENANCE VIOLATION: {cit_label}.quoted_text must be a string.")
            elif not quoted.strip():
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"PROVENANCE VIOLATION: {cit_label}.quoted_text is empty.")

            if "retrieved_at" not in citation:
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"{cit_label} missing required field: retrieved_at")

            if "locator" not in citation:
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"{cit_label} missing required field: locator")
            else:
                for problem in locator_problems(citation["locator"]):
                    self._out.error(IssueKind.PROVENANCE_VIOLATION, f"{cit_label}.locator {problem}")

    def _validate_entity(self, collection: str, record: Dict[str, Any], idx: int,
                         id_field: str, id_re, required, seen: Set[str]):
        label = f"{collection}[{idx}]"
        self._require(record, required, label)

        entity_id = record.get(id_field)
        if entity_id:
            if not isinstance(entity_id, str) or not id_re.match(entity_id):
                self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"{label}.{id_field} has invalid format: {entity_id}")
            if isinstance(entity_id, str) and entity_id in seen:
                self._out.error(IssueKind.IDENTIFIER_VIOLATION, f"Duplicate {id_field}: {entity_id}")
            if isinstance(entity_id, str):
                seen.add(entity_id)

        if "claims" in record:
            refs = record.get("claims")
            if not isinstance(refs, list) or not refs:
                self._out.error(IssueKind.PROVENANCE_VIOLATION, f"{label}.claims must be non-empty array")

        for name in FORBIDDEN_ENTITY_FIELDS:
            value = record.get(name)
            if isinstance(value, str) and value.strip():
                self._out.error(
                    IssueKind.PROVENANCE_VIOLATION,
                    f"{label}.{name} contains free text. All facts must be in claims with citations.",
                )
            elif isinstance(value, list):
                for item_idx, item in enumerate(value):
                    if isinstance(item, str) and item.strip():
                        self._out.error(
                            IssueKind.PROVENANCE_VIOLATION,
                            f"{label}.{name}[{item_idx}] contains free text. Must be a claim reference.",
                        )

        status = record.get("status")
        if "status" in record and not _known(status, ENTITY_STATUSES):
            self._out.error(
                IssueKind.MALFORMED_INPUT,
                f"{label}.status is invalid: '{status}'. Must be one of: {', '.join(sorted(ENTITY_STATUSES))}",
            )

    def validate_documents(self):
        for idx, document in self._records("documents"):
            self._validate_entity(
                "documents", document, idx, "document_id", DOCUMENT_ID_RE,
                DOCUMENT_REQUIRED, self.document_ids,
            )

    def validate_services(self):
        for idx, service in self._records("services"):
            self._validate_entity(
                "services", service, idx, "service_id", SERVICE_ID_RE,
                SERVICE_REQUIRED, self.service_ids,
            )
            label = f"services[{idx}]"

            mapping = service.get("portal_mapping")
            if "portal_mapping" in service:
                entries = mapping.get("entry_urls") if isinstance(mapping, dict) else None
                if not isinstance(entries, list) or not entries:
                    self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.portal_mapping.entry_urls must be non-empty array")
                else:
                    for entry_idx, entry in enumerate(entries):
                        if not isinstance(entry, dict) or not entry.get("url") or not entry.get("source_page_id"):
                            self._out.error(
                                IssueKind.PROVENANCE_VIOLATION,
                                f"{label}.portal_mapping.entry_urls[{entry_idx}] missing url or source_page_id",
                            )

            if "official_entrypoints" in service:
                entrypoints = service.get("official_entrypoints")
                if not isinstance(entrypoints, list) or not entrypoints:
                    self._out.error(IssueKind.MALFORMED_INPUT, f"{label}.official_entrypoints must be non-empty array")
                else:
                    for entry_idx, entry in enumerate(entrypoints):
                        if not isinstance(entry, dict) or not entry.get("source_page_id"):
                            self._out.error(
                                IssueKind.PROVENANCE_VIOLATION,
                                f"{label}.official_entrypoints[{entry_idx}] missing source_page_id",
                            )

    def validate_cross_references(self):
        def missing(kind: str, label: str, ref: Any):
            self._out.error(IssueKind.REFERENCE_VIOLATION, f"{label} references unknown {kind}: {ref}")

        for idx, page in self._records_quiet("source_pages"):
            agency_id = page.get("agency_id")
            if agency_id and not _known(agency_id, self.agency_ids):
                missing("agency", f"source_pages[{idx}].agency_id", agency_id)

        for idx, agency in self._records_quiet("agencies"):
            for ref in self._list(agency, "claims"):
                if not _known(ref, self.claim_ids):
                    missing("claim_id", f"agencies[{idx}].claims", ref)

        for idx, claim in self._records_quiet("claims"):
            ref = claim.get("entity_ref")
            if not isinstance(ref, dict):
                continue
            if ref.get("type") == "service" and ref.get("id") and not _known(ref["id"], self.service_ids):
                missing("service", f"claims[{idx}].entity_ref.id", ref["id"])
            elif ref.get("type") == "document" and ref.get("id") and not _known(ref["id"], self.document_ids):
                missing("document", f"claims[{idx}].entity_ref.id", ref["id"])

        for idx, document in self._records_quiet("documents"):
            for ref in self._list(document, "claims"):
                if not _known(ref, self.claim_ids):
                    missing("claim_id", f"documents[{idx}].claims", ref)
            issuer = document.get("issued_by")
            if issuer and not _known(issuer, self.agency_ids):
                missing("agency", f"documents[{idx}].issued_by", issuer)

        for idx, service in self._records_quiet("services"):
            label = f"services[{idx}]"
            for ref in self._list(service, "claims"):
                if not _known(ref, self.claim_ids):
                    missing("claim_id", f"{label}.claims", ref)
            agency_id = service.get("agency_id")
            if agency_id and not _known(agency_id, self.agency_ids):
                missing("agency", f"{label}.agency_id", agency_id)

            mapping = service.get("portal_mapping") if isinstance(service.get("portal_mapping"), dict) else {}
            for entry_idx, entry in enumerate(self._list(mapping, "entry_urls")):
                sid = entry.get("source_page_id") if isinstance(entry, dict) else None
                if sid and not _known(sid, self.source_page_ids):
                    missing("source_page", f"{label}.portal_mapping.entry_urls[{entry_idx}].source_page_id", sid)
            for step_idx, step in enumerate(self._list(mapping, "portal_steps")):
                cid = step.get("claim_id") if isinstance(step, dict) else None
                if cid and not _known(cid, self.claim_ids):
                    missing("claim_id", f"{label}.portal_mapping.portal_steps[{step_idx}].claim_id", cid)

            for entry_idx, entry in enumerate(self._list(service, "official_entrypoints")):
                sid = entry.get("source_page_id") if isinstance(entry, dict) else None
                if sid and not _known(sid, self.source_page_ids):
                    missing("source_page", f"{label}.official_entrypoints[{entry_idx}].source_page_id", sid)

            for req_idx, req in enumerate(self._list(service, "document_requirements")):
                if not isinstance(req, dict):
                    continue
                if req.get("document_id") and not _known(req["document_id"], self.document_ids):
                    missing("document", f"{label}.document_requirements[{req_idx}].document_id", req["document_id"])
                if req.get("condition_claim_id") and not _known(req["condition_claim_id"], self.claim_ids):
                    missing(
                        "claim_id",
                        f"{label}.document_requirements[{req_idx}].condition_claim_id",
                        req["condition_claim_id"],
                    )

    def validate_provenance_rules(self):
        referenced: Set[str] = set()
        for _, claim in self._records_quiet("claims"):
            for citation in self._list(claim, "citations"):
                if isinstance(citation, dict) and isinstance(citation.get("source_page_id"), str):
                    referenced.add(citation["source_page_id"])
        for _, service in self._records_quiet("services"):
            mapping = service.get("portal_mapping") if isinstance(service.get("portal_mapping"), dict) else {}
            for entry in self._list(mapping, "entry_urls") + self._list(service, "official_entrypoints"):
                if isinstance(entry, dict) and isinstance(entry.get("source_page_id"), str):
                    referenced.add(entry["source_page_id"])

        orphans = sorted(self.source_page_ids - referenced)
        if orphans:
            preview = ", ".join(orphans[:5])
            more = "..." if len(orphans) > 5 else ""
            self._out.warning(
                IssueKind.ORPHAN_DRIFT,
                f"Found {len(orphans)} source pages not referenced by any claim or entry point: {preview}{more}",
            )

    def validate_domain_allowlists(self):
        for idx, page in self._records_quiet("source_pages"):
            url = page.get("canonical_url")
            agency_id = page.get("agency_id")
            if not isinstance(url, str) or not isinstance(agency_id, str):
                continue
            host = normalize_host(url)
            if host is None:
                continue
            domains = self.allowlists.get(agency_id)
            if not domains:
                self.domain_failed += 1
                self._out.error(
                    IssueKind.DOMAIN_VIOLATION,
                    f"source_pages[{idx}].agency_id {agency_id} has no domain_allowlist defined",
                )
                continue
            if any(host_matches_domain(host, d) for d in domains):
                self.domain_passed += 1
            else:
                self.domain_failed += 1
                self._out.error(
                    IssueKind.DOMAIN_VIOLATION,
                    f"source_pages[{idx}].canonical_url domain mismatch: host '{host}' "
                    f"(from {url}) is NOT in agency {agency_id} allowlist [{', '.join(sorted(domains))}]",
                )

    def validate_derived_status(self):
        statuses = claim_status_map(self._doc)
        for collection, id_field in (("documents", "document_id"), ("services", "service_id")):
            for idx, entity in self._records_quiet(collection):
                if entity.get("status") != EntityStatus.VERIFIED.value:
                    continue
                if not isinstance(entity.get("claims"), list):
                    continue
                expected = derive_entity_status(entity, statuses)
                if expected != EntityStatus.VERIFIED.value:
                    self._out.error(
                        IssueKind.DERIVED_INCONSISTENCY,
                        f"DERIVED STATUS VIOLATION: {collection}[{idx}] ({entity.get(id_field)}) has "
                        f"status='verified' but not all referenced claims are verified. "
                        f"Expected status: '{expected}'",
                    )

    # -------------------------------------------------------------------------
    # report
    # -------------------------------------------------------------------------

    def _records_quiet(self, collection: str):
        for idx, item in enumerate(self._items(collection)):
            if isinstance(item, dict):
                yield idx, item

    @staticmethod
    def _list(record: Dict[str, Any], key: str) -> List[Any]:
        value = record.get(key)
        return value if isinstance(value, list) else []

    def _report(self) -> ValidationReport:
        diagnostics = tuple(self._out.diagnostics)
        by_kind = Counter(d.kind.value for d in diagnostics if d.severity is Severity.ERROR)
        summary = {
            "schema_version": self._doc.get("$schema_version"),
            "source_pages": len(self.source_page_ids),
            "claims": len(self.claim_ids),
            "agencies": len(self.agency_ids),
            "documents": len(self.document_ids),
            "services": len(self.service_ids),
            "service_guides": len(self._items("service_guides")),
            "error_count": sum(1 for d in diagnostics if d.severity is Severity.ERROR),
            "warning_count": sum(1 for d in diagnostics if d.severity is Severity.WARNING),
            "errors_by_kind": dict(sorted(by_kind.items())),
            "domain_checks": {"passed": self.domain_passed, "failed": self.domain_failed},
            "source_page_id_mismatches": self.id_mismatches,
        }
        return ValidationReport(diagnostics=diagnostics, summary=summary)


def validate(doc: Any) -> ValidationReport:
    """Validate a KB document; `ok` is False iff any error was found."""
    report = StrictProvenanceValidator(doc).validate()
    logger.info(
        "validation complete",
        extra={
            "ok": report.ok,
            "errors": report.summary.get("error_count"),
            "warnings": report.summary.get("warning_count"),
        },
    )
    return report
