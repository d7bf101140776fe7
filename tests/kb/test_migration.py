"""
Migration Tests

v1 -> v2 provenance extraction and v2 -> v3 guide generation.
"""

import pytest

from kb.audit import query_by_event_type
from kb.contracts.base import ErrorCode
from kb.contracts.diagnostics import IssueKind
from kb.contracts.schema import PLACEHOLDER_CONTENT_HASH, PLACEHOLDER_QUOTE, TAG_NEEDS_MANUAL_CITATION
from kb.identity import source_page_id
from kb.migration import migrate_v1_to_v2, migrate_v2_to_v3
from kb.migration.v1_to_v2 import infer_page_type
from kb.migration.v2_to_v3 import order_steps, split_step_text
from kb.storage import dumps
from kb.validation import validate

from .fixtures import (
    FEES_ID,
    FEES_URL,
    PORTAL_ID,
    PORTAL_URL,
    T1,
    T2,
    build_v1_document,
    build_v2_document,
    find,
    make_claim,
    make_source_page,
)


@pytest.fixture
def migrated():
    result = migrate_v1_to_v2(build_v1_document(), timestamp=T1)
    assert result.is_success
    return result.value


class TestV1ToV2:

    def test_schema_and_collections(self, migrated):
        doc = migrated.document
        assert doc["$schema_version"] == "2.0.0"
        assert doc["data_version"] == 1
        assert {s["service_id"] for s in doc["services"]} == {"svc.epassport", "svc.birth_registration"}
        assert [d["document_id"] for d in doc["documents"]] == ["doc.nid"]

    def test_every_url_becomes_a_source_page(self, migrated):
        pages = {p["canonical_url"]: p for p in migrated.document["source_pages"]}
        assert set(pages) == {
            "https://www.epassport.gov.bd",
            PORTAL_URL,
            FEES_URL,
            "https://nidw.gov.bd/about",
        }
        for url, page in pages.items():
            assert page["source_page_id"] == source_page_id(url)
            assert page["content_hash"] == PLACEHOLDER_CONTENT_HASH
        assert pages[FEES_URL]["page_type"] == "fee_schedule"

    def test_agency_normalized_with_allowlist(self, migrated):
        agency = find(migrated.document, "agencies", "agency_id", "agency.dip")
        assert agency["domain_allowlist"] == ["epassport.gov.bd", "www.epassport.gov.bd"]
        assert "Normalized agency_id dip -> agency.dip" in migrated.warnings

    def test_unknown_domain_gets_auto_agency(self, migrated):
        page = find(migrated.document, "source_pages", "canonical_url", "https://nidw.gov.bd/about")
        assert page["agency_id"].startswith("agency.auto_")
        assert any("Created auto-agency" in w for w in migrated.warnings)

    def test_fee_with_quote_is_cited_verbatim(self, migrated):
        claim = find(migrated.document, "claims", "claim_id", "claim.fee.epassport.fee_0")
        assert claim["structured_data"] == {"amount_bdt": 4025, "currency": "BDT"}
        citation = claim["citations"][0]
        assert citation["source_page_id"] == FEES_ID
        assert citation["quoted_text"] == "Regular delivery: TK 4,025 (including 15% VAT)"
        assert TAG_NEEDS_MANUAL_CITATION not in claim["tags"]

    def test_missing_quote_is_placeholder(self, migrated):
        claim = find(migrated.document, "claims", "claim_id", "claim.fee.epassport.fee_1")
        assert claim["structured_data"]["amount_bdt"] == 0
        assert claim["citations"][0]["quoted_text"] == PLACEHOLDER_QUOTE
        assert TAG_NEEDS_MANUAL_CITATION in claim["tags"]
        assert "Fee 1 of svc.epassport has no numeric amount; recorded as 0" in migrated.warnings

    def test_steps_keep_order(self, migrated):
        step = find(migrated.document, "claims", "claim_id", "claim.step.epassport.2")
        assert step["structured_data"] == {"order": 2, "mode": "in_person"}

    def test_nothing_is_verified(self, migrated):
        assert {c["status"] for c in migrated.document["claims"]} == {"unverified"}

    def test_entities_reference_claims_only(self, migrated):
        document = find(migrated.document, "documents", "document_id", "doc.nid")
        assert "definition" not in document
        definition = find(migrated.document, "claims", "claim_id", document["claims"][0])
        assert definition["text"] == "Card issued to every citizen aged 18 or older"
        assert definition["citations"][0]["source_page_id"] == source_page_id("https://nidw.gov.bd/about")

    def test_service_without_facts_gets_placeholder(self, migrated):
        service = find(migrated.document, "services", "service_id", "svc.birth_registration")
        assert service["claims"] == ["claim.eligibility.birth_registration.placeholder"]
        assert "Created placeholder claim for service: svc.birth_registration" in migrated.warnings

    def test_portal_entry_url(self, migrated):
        service = find(migrated.document, "services", "service_id", "svc.epassport")
        assert service["portal_mapping"]["entry_urls"][0]["source_page_id"] == PORTAL_ID

    def test_migration_event(self, migrated):
        events = query_by_event_type(migrated.document, "migration")
        assert len(events) == 1
        assert events[0]["actor"] == "script:migrate_v1_to_v2"
        assert events[0]["metadata"]["schema_version_to"] == "2.0.0"

    def test_output_has_no_provenance_or_identifier_errors(self, migrated):
        report = validate(migrated.document)
        assert report.errors_of_kind(IssueKind.PROVENANCE_VIOLATION) == []
        assert report.errors_of_kind(IssueKind.IDENTIFIER_VIOLATION) == []
        assert report.errors_of_kind(IssueKind.DOMAIN_VIOLATION) == []

    def test_deterministic(self):
        a = migrate_v1_to_v2(build_v1_document(), timestamp=T1).value.document
        b = migrate_v1_to_v2(build_v1_document(), timestamp=T1).value.document
        assert dumps(a) == dumps(b)

    def test_no_source_pages(self):
        v1 = {"agencies": [{"agency_id": "x", "name": "X"}],
              "services": [{"service_id": "a", "name": "A", "agency_id": "x"}]}
        result = migrate_v1_to_v2(v1, timestamp=T1)
        assert result.is_failure
        assert result.error.code == ErrorCode.NO_SOURCE_PAGES

    def test_agency_without_website_warned(self):
        v1 = build_v1_document()
        v1["agencies"].append({"agency_id": "agency.lgd", "name": "LGD"})
        result = migrate_v1_to_v2(v1, timestamp=T1)
        assert "Agency agency.lgd has no website; domain_allowlist is empty" in result.value.warnings

    @pytest.mark.parametrize("url,expected", [
        ("https://x.gov.bd/passport-fees", "fee_schedule"),
        ("https://x.gov.bd/instructions/apply", "instruction"),
        ("https://x.gov.bd/landing/notices/34", "notice"),
        ("https://x.gov.bd", "main_portal"),
        ("https://x.gov.bd/a/b/c", "other"),
    ])
    def test_infer_page_type(self, url, expected):
        assert infer_page_type(url) == expected


class TestV2ToV3:

    @pytest.fixture
    def outcome(self):
        result = migrate_v2_to_v3(build_v2_document(), timestamp=T2)
        assert result.is_success
        return result.value

    def test_version_bump(self, outcome):
        doc = outcome.document
        assert doc["$schema_version"] == "3.0.0"
        assert doc["data_version"] == 2
        assert doc["change_log"][-1]["date"] == "2025-07-01"
        assert outcome.warnings == ()

    def test_v2_entities_preserved(self, outcome):
        v2 = build_v2_document()
        for name in ("source_pages", "claims", "agencies", "documents", "services"):
            assert outcome.document[name] == v2[name]

    def test_one_guide_per_service(self, outcome):
        guides = outcome.document["service_guides"]
        assert [g["guide_id"] for g in guides] == ["guide.epassport"]
        guide = guides[0]
        assert guide["status"] == "draft"
        assert guide["generated_at"] == T2

    def test_steps(self, outcome):
        steps = outcome.document["service_guides"][0]["steps"]
        assert [(s["step_number"], s["title"]) for s in steps] == [(1, "Apply online"), (2, "Pay fees")]
        assert steps[1]["claim_ids"] == ["claim.step.epassport.2"]

    def test_fees_and_variants(self, outcome):
        guide = outcome.document["service_guides"][0]
        assert guide["fees"][0]["claim_ids"] == ["claim.fee.epassport.regular_48_5"]
        assert guide["variants"] == [{
            "variant_id": "regular",
            "label": "Regular",
            "fee_claim_ids": ["claim.fee.epassport.regular_48_5"],
            "processing_time_claim_ids": [],
        }]

    def test_official_links_from_portal_mapping(self, outcome):
        links = outcome.document["service_guides"][0]["official_links"]
        assert links == [{"label": "ePassport Portal", "url": PORTAL_URL, "source_page_id": PORTAL_ID}]

    @staticmethod
    def unmapped_document(keep_entrypoints=False):
        """A v2 document whose service has no portal mapping entries."""
        doc = build_v2_document()
        service = doc["services"][0]
        service["portal_mapping"] = {"entry_urls": []}
        if not keep_entrypoints:
            service["official_entrypoints"] = []
        return doc

    @staticmethod
    def guide_links(doc):
        outcome = migrate_v2_to_v3(doc, timestamp=T2).value
        return outcome, outcome.document["service_guides"][0]["official_links"]

    def test_official_links_from_entrypoints(self):
        outcome, links = self.guide_links(self.unmapped_document(keep_entrypoints=True))
        assert links == [{"label": "Official Portal", "url": PORTAL_URL, "source_page_id": PORTAL_ID}]
        assert outcome.warnings == ()

    def test_official_links_from_agency_page_on_allowlisted_host(self):
        outcome, links = self.guide_links(self.unmapped_document())
        assert links == [{"label": "Official Portal", "url": PORTAL_URL, "source_page_id": PORTAL_ID}]
        assert outcome.warnings == ()

    def test_agency_page_at_website_preferred(self):
        doc = self.unmapped_document()
        home = make_source_page("https://www.epassport.gov.bd/")
        doc["source_pages"].append(home)
        _, links = self.guide_links(doc)
        assert links == [{
            "label": "Official Portal",
            "url": "https://www.epassport.gov.bd/",
            "source_page_id": home["source_page_id"],
        }]

    def test_official_links_fall_back_to_agency_website(self):
        doc = self.unmapped_document()
        doc["agencies"][0]["domain_allowlist"] = ["passport.gov.bd"]
        outcome, links = self.guide_links(doc)
        assert links == [{"label": "Official Portal", "url": "https://www.epassport.gov.bd"}]
        assert outcome.warnings == ()

    def test_agency_without_website_warns(self):
        doc = self.unmapped_document()
        doc["agencies"][0]["domain_allowlist"] = ["passport.gov.bd"]
        del doc["agencies"][0]["website"]
        outcome, links = self.guide_links(doc)
        assert links == []
        assert outcome.warnings == ("Guide guide.epassport has no resolvable official link",)

    def test_unmapped_service_guide_validates(self):
        outcome, _ = self.guide_links(self.unmapped_document())
        report = validate(outcome.document)
        assert [e for e in report.errors if "official_links" in e] == []
        assert [e for e in report.errors if e.startswith("guide.epassport")] == []

    def test_migration_event(self, outcome):
        event = query_by_event_type(outcome.document, "migration")[-1]
        assert event["affected_entities"] == {"services": ["svc.epassport"]}
        assert event["metadata"]["guide_ids"] == ["guide.epassport"]

    def test_output_validates(self, outcome):
        assert validate(outcome.document).ok

    def test_unexpected_version_warns(self):
        doc = build_v2_document()
        doc["$schema_version"] = "3.0.0"
        result = migrate_v2_to_v3(doc, timestamp=T2)
        assert result.value.warnings[0] == "Expected $schema_version 2.0.0, got 3.0.0"

    def test_not_a_document(self):
        assert migrate_v2_to_v3([], timestamp=T2).error.code == ErrorCode.MALFORMED_DOCUMENT


class TestStepOrdering:

    def test_structured_order_then_id_then_unordered(self):
        a = make_claim("claim.step.x.9", structured_data={"order": 1})
        b = make_claim("claim.step.x.2")
        c = make_claim("claim.other.x.intro")
        assert [s["claim_id"] for s in order_steps([c, b, a])] == [
            "claim.step.x.9", "claim.step.x.2", "claim.other.x.intro",
        ]

    def test_split_step_text(self):
        assert split_step_text("Pay fees: at the bank", 2) == ("Pay fees", "at the bank")
        assert split_step_text("Visit the office", 3) == ("Step 3", "Visit the office")
