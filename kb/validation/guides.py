"""
Service Guide Validator

Pass 10 of validation, run for schema 3.0.0 documents. Guides are views
over claims: every claim they reference must exist, and every guide must
link to at least one official http(s) page.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Set

from ..contracts.diagnostics import Diagnostic, IssueKind, Severity
from ..contracts.schema import GUIDE_ID_RE, GUIDE_SECTIONS, GUIDE_STATUSES, GuideSection
from ..identity import is_http_url, parse_url


GUIDE_REQUIRED = ("guide_id", "service_id", "agency_id", "title", "official_links")


class GuideValidator:
    """Validates service_guides against already-collected entity ID sets."""

    def __init__(
        self,
        doc: Dict[str, Any],
        claim_ids: Set[str],
        service_ids: Set[str],
        agency_ids: Set[str],
        source_page_ids: Set[str]
    ):
        self._doc = doc
        self._claim_ids = claim_ids
        self._service_ids = service_ids
        self._agency_ids = agency_ids
        self._source_page_ids = source_page_ids
        self._diagnostics: List[Diagnostic] = []
        self._guide_ids: Set[str] = set()

    def _error(self, kind: IssueKind, message: str):
        self._diagnostics.append(Diagnostic(Severity.ERROR, kind, message))

    def _warning(self, kind: IssueKind, message: str):
        self._diagnostics.append(Diagnostic(Severity.WARNING, kind, message))

    def _check_claim_refs(self, refs: Any, label: str):
        if not isinstance(refs, list):
            return
        for ref in refs:
            if not isinstance(ref, str) or ref not in self._claim_ids:
                self._error(IssueKind.REFERENCE_VIOLATION, f"{label} references unknown claim: {ref}")

    def validate(self) -> List[Diagnostic]:
        guides = self._doc.get("service_guides")
        if not isinstance(guides, list):
            return self._diagnostics
        for idx, guide in enumerate(guides):
            if not isinstance(guide, dict):
                self._error(IssueKind.MALFORMED_INPUT, f"service_guides[{idx}] must be an object")
                continue
            self._validate_guide(guide, idx)
        return self._diagnostics

    def _validate_guide(self, guide: Dict[str, Any], idx: int):
        guide_id = guide.get("guide_id")
        label = guide_id if isinstance(guide_id, str) and guide_id else f"service_guides[{idx}]"

        for name in GUIDE_REQUIRED:
            if name not in guide:
                self._error(IssueKind.MALFORMED_INPUT, f"{label} missing required field: {name}")

        if guide_id:
            if not isinstance(guide_id, str) or not GUIDE_ID_RE.match(guide_id):
                self._error(IssueKind.IDENTIFIER_VIOLATION, f"{label}.guide_id has invalid format. Expected: guide.<slug>")
            elif guide_id in self._guide_ids:
                self._error(IssueKind.IDENTIFIER_VIOLATION, f"Duplicate guide_id: {guide_id}")
            if isinstance(guide_id, str):
                self._guide_ids.add(guide_id)

        service_id = guide.get("service_id")
        if service_id and (not isinstance(service_id, str) or service_id not in self._service_ids):
            self._error(IssueKind.REFERENCE_VIOLATION, f"{label}.service_id references unknown service: {service_id}")
        agency_id = guide.get("agency_id")
        if agency_id and (not isinstance(agency_id, str) or agency_id not in self._agency_ids):
            self._error(IssueKind.REFERENCE_VIOLATION, f"{label}.agency_id references unknown agency: {agency_id}")

        if "title" in guide and (not isinstance(guide["title"], str) or not guide["title"].strip()):
            self._error(IssueKind.MALFORMED_INPUT, f"{label}.title is empty")

        steps = guide.get("steps")
        if isinstance(steps, list):
            self._validate_steps(steps, label)
        elif "steps" in guide:
            self._error(IssueKind.MALFORMED_INPUT, f"{label}.steps must be an array")

        sections = guide.get("sections")
        if isinstance(sections, dict):
            self._validate_sections(sections, label)
        elif sections is not None:
            self._error(IssueKind.MALFORMED_INPUT, f"{label}.sections must be an object")

        variants = guide.get("variants")
        if isinstance(variants, list):
            self._validate_variants(variants, label)

        if "official_links" in guide:
            self._validate_links(guide.get("official_links"), label)

        status = guide.get("status")
        if "status" in guide and (not isinstance(status, str) or status not in GUIDE_STATUSES):
            self._error(
                IssueKind.MALFORMED_INPUT,
                f"{label}.status is invalid: '{status}'. Must be one of: {', '.join(sorted(GUIDE_STATUSES))}",
            )

    def _validate_steps(self, steps: List[Any], label: str):
        seen: Set[int] = set()
        numbers: List[int] = []
        for idx, step in enumerate(steps):
            step_label = f"{label}.steps[{idx}]"
            if not isinstance(step, dict):
                self._error(IssueKind.MALFORMED_INPUT, f"{step_label} must be an object")
                continue
            number = step.get("step_number")
            if "step_number" not in step:
                self._error(IssueKind.MALFORMED_INPUT, f"{step_label} missing required field: step_number")
            elif isinstance(number, bool) or not isinstance(number, int) or number < 1:
                self._error(IssueKind.MALFORMED_INPUT, f"{step_label}.step_number must be a positive integer")
            else:
                if number in seen:
                    self._error(IssueKind.IDENTIFIER_VIOLATION, f"{step_label}.step_number {number} is duplicated")
                seen.add(number)
                numbers.append(number)

            title = step.get("title")
            if not isinstance(title, str) or not title.strip():
                self._error(IssueKind.MALFORMED_INPUT, f"{step_label} missing or empty required field: title")

            self._check_claim_refs(step.get("claim_ids"), f"{step_label}.claim_ids")

        if numbers and sorted(numbers) != list(range(1, len(numbers) + 1)):
            self._warning(IssueKind.MALFORMED_INPUT, f"{label}.steps are not sequentially numbered (1, 2, 3, ...)")

    def _validate_sections(self, sections: Dict[str, Any], label: str):
        for key, items in sections.items():
            section_label = f"{label}.sections.{key}"
            if key not in GUIDE_SECTIONS:
                self._warning(IssueKind.MALFORMED_INPUT, f"{section_label} is not a recognized section key")
            if not isinstance(items, list):
                self._error(IssueKind.MALFORMED_INPUT, f"{section_label} must be an array")
                continue
            if key == GuideSection.APPLICATION_STEPS.value:
                self._validate_steps(items, section_label)
                continue
            for idx, item in enumerate(items):
                item_label = f"{section_label}[{idx}]"
                if not isinstance(item, dict):
                    self._error(IssueKind.MALFORMED_INPUT, f"{item_label} must be an object")
                    continue
                if not isinstance(item.get("label"), str) or not item["label"].strip():
                    self._error(IssueKind.MALFORMED_INPUT, f"{item_label} missing or empty required field: label")
                self._check_claim_refs(item.get("claim_ids"), f"{item_label}.claim_ids")

    def _validate_variants(self, variants: Iterable[Any], label: str):
        seen: Set[str] = set()
        for idx, variant in enumerate(variants):
            variant_label = f"{label}.variants[{idx}]"
            if not isinstance(variant, dict):
                self._error(IssueKind.MALFORMED_INPUT, f"{variant_label} must be an object")
                continue
            variant_id = variant.get("variant_id")
            if not isinstance(variant_id, str) or not variant_id:
                self._error(IssueKind.MALFORMED_INPUT, f"{variant_label} missing required field: variant_id")
            else:
                if variant_id in seen:
                    self._error(IssueKind.IDENTIFIER_VIOLATION, f"{variant_label}.variant_id is duplicated: {variant_id}")
                seen.add(variant_id)
            if not isinstance(variant.get("label"), str) or not variant["label"].strip():
                self._error(IssueKind.MALFORMED_INPUT, f"{variant_label} missing or empty required field: label")
            self._check_claim_refs(variant.get("fee_claim_ids"), f"{variant_label}.fee_claim_ids")
            self._check_claim_refs(
                variant.get("processing_time_claim_ids"), f"{variant_label}.processing_time_claim_ids"
            )

    def _validate_links(self, links: Any, label: str):
        if not isinstance(links, list) or not links:
            self._error(
                IssueKind.MALFORMED_INPUT,
                f"{label}.official_links must have at least one entry. Every guide must have at least one official link.",
            )
            return
        for idx, link in enumerate(links):
            link_label = f"{label}.official_links[{idx}]"
            if not isinstance(link, dict):
                self._error(IssueKind.MALFORMED_INPUT, f"{link_label} must be an object")
                continue
            if not isinstance(link.get("label"), str) or not link["label"].strip():
                self._error(IssueKind.MALFORMED_INPUT, f"{link_label} missing or empty required field: label")
            url = link.get("url")
            if not url:
                self._error(IssueKind.MALFORMED_INPUT, f"{link_label} missing required field: url")
            elif parse_url(url) is None:
                self._error(IssueKind.MALFORMED_INPUT, f"{link_label}.url is not a valid URL: {url}")
            elif not is_http_url(url):
                self._error(IssueKind.MALFORMED_INPUT, f"{link_label}.url must be http or https: {url}")
            sid = link.get("source_page_id")
            if sid and (not isinstance(sid, str) or sid not in self._source_page_ids):
                self._warning(IssueKind.REFERENCE_VIOLATION, f"{link_label}.source_page_id references unknown source_page: {sid}")
