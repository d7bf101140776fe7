"""
Ingestion Service Tests

Re-crawl cycles against a mocked portal, source registration and claim
insertion. Files land in tmp_path.
"""

import httpx
import pytest

from ingestion import (
    ExtractionResult,
    Extractor,
    IngestionService,
    PageFetcher,
    add_claims,
    detect_languages,
    register_source_page,
)
from kb.config import KBConfig
from kb.contracts.base import ErrorCode
from kb.indexing import BuildMode, build_full
from kb.storage import load_document, save_indexes

from tests.kb.fixtures import (
    FEES_CONTENT,
    FEES_ID,
    FEES_URL,
    NOTICE_URL,
    PORTAL_CONTENT,
    PORTAL_ID,
    PORTAL_URL,
    SERVICE_ID,
    T3,
    build_v2_document,
    find,
    make_claim,
)


CHANGED_PORTAL = "<html><body><p>New portal text</p></body></html>"


def portal_site(pages):
    """Serve `pages` (url -> (status, body)) as text/html."""
    def handler(request):
        status, body = pages.get(str(request.url), (404, ""))
        return httpx.Response(status, text=body, headers={"content-type": "text/html"})
    return handler


class RecordingExtractor(Extractor):

    def __init__(self, output):
        self.output = output
        self.calls = []

    def extract(self, markdown, url, html=None):
        self.calls.append(url)
        return self.output


@pytest.fixture
def config(tmp_path):
    return KBConfig(kb_path=tmp_path / "kb.json")


def make_service(config, pages, extractor=None):
    fetcher = PageFetcher(transport=httpx.MockTransport(portal_site(pages)))
    return IngestionService(config=config, fetcher=fetcher, extractor=extractor)


class TestRefreshSource:

    def test_changed_page_invalidates_and_snapshots(self, config):
        service = make_service(config, {PORTAL_URL: (200, CHANGED_PORTAL)})
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value

        assert outcome.changed
        assert outcome.fetch.success
        statuses = {c["claim_id"]: c["status"] for c in outcome.document["claims"]}
        assert statuses["claim.step.epassport.1"] == "stale"
        assert statuses["claim.doc.nid.identity"] == "stale"
        assert statuses["claim.step.epassport.2"] == "unverified"
        assert outcome.change.invalidated_claim_count == 2
        assert outcome.report.ok
        assert (config.snapshot_dir / f"{PORTAL_ID}_2025-09-01.html").read_text(encoding="utf-8") == CHANGED_PORTAL

    def test_plain_text_page_snapshots_content(self, config):
        def handler(request):
            return httpx.Response(200, text="Revised notice", headers={"content-type": "text/plain"})

        service = IngestionService(config=config, fetcher=PageFetcher(transport=httpx.MockTransport(handler)))
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value
        assert outcome.changed
        assert (config.snapshot_dir / f"{PORTAL_ID}_2025-09-01.html").read_text(encoding="utf-8") == "Revised notice"

    def test_unchanged_page(self, config):
        service = make_service(config, {PORTAL_URL: (200, PORTAL_CONTENT)})
        doc = build_v2_document()
        outcome = service.refresh_source(doc, PORTAL_ID, timestamp=T3).value
        assert not outcome.changed
        assert outcome.document == doc
        assert outcome.extraction is None

    def test_without_saved_indexes_builds_full(self, config):
        service = make_service(config, {PORTAL_URL: (200, CHANGED_PORTAL)})
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value
        assert outcome.indexes.mode is BuildMode.FULL
        assert not outcome.change.used_index

    def test_saved_indexes_are_patched(self, config):
        doc = build_v2_document()
        save_indexes(config.index_dir, build_full(doc).indexes)
        service = make_service(config, {PORTAL_URL: (200, CHANGED_PORTAL)})

        outcome = service.refresh_source(doc, PORTAL_ID, timestamp=T3).value
        assert outcome.change.used_index
        assert outcome.indexes.mode is BuildMode.INCREMENTAL
        assert outcome.indexes.indexes == build_full(outcome.document).indexes

    def test_fetch_failure(self, config):
        service = make_service(config, {PORTAL_URL: (500, "")})
        result = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3)
        assert result.error.code == ErrorCode.FETCH_FAILED
        assert not config.snapshot_dir.exists()

    def test_unknown_page(self, config):
        service = make_service(config, {})
        result = service.refresh_source(build_v2_document(), "source." + "0" * 40)
        assert result.error.code == ErrorCode.SOURCE_PAGE_NOT_FOUND

    def test_extractor_runs_on_changed_page(self, config):
        extractor = RecordingExtractor({"steps": [{"order": 1, "title": "Apply online"}]})
        service = make_service(config, {PORTAL_URL: (200, CHANGED_PORTAL)}, extractor)
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value
        assert isinstance(outcome.extraction, ExtractionResult)
        assert outcome.extraction.steps[0].title == "Apply online"
        assert extractor.calls == [PORTAL_URL]

    def test_extractor_skipped_when_unchanged(self, config):
        extractor = RecordingExtractor({})
        service = make_service(config, {PORTAL_URL: (200, PORTAL_CONTENT)}, extractor)
        service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3)
        assert extractor.calls == []

    def test_rejected_extraction_is_not_fatal(self, config):
        extractor = RecordingExtractor({"steps": [{"order": "first"}]})
        service = make_service(config, {PORTAL_URL: (200, CHANGED_PORTAL)}, extractor)
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value
        assert outcome.changed
        assert outcome.extraction is None
        assert outcome.errors[0].startswith("EXTRACTION_FAILED")


class TestRefreshAll:

    def test_threads_document_through_pages(self, config):
        service = make_service(config, {
            PORTAL_URL: (200, CHANGED_PORTAL),
            FEES_URL: (404, ""),
        })
        final, results = service.refresh_all(build_v2_document(), timestamp=T3)

        assert [r.is_success for r in results] == [True, False]
        assert results[1].error.code == ErrorCode.FETCH_FAILED
        assert find(final, "source_pages", "source_page_id", PORTAL_ID)["previous_hash"]
        assert find(final, "claims", "claim_id", "claim.step.epassport.1")["status"] == "stale"

    def test_selected_pages_only(self, config):
        service = make_service(config, {FEES_URL: (200, FEES_CONTENT)})
        _, results = service.refresh_all(build_v2_document(), [FEES_ID], timestamp=T3)
        assert len(results) == 1
        assert not results[0].value.changed


class TestPersist:

    def test_changed_document_is_saved(self, config):
        service = make_service(config, {PORTAL_URL: (200, CHANGED_PORTAL)})
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value

        assert service.persist(outcome, actor="user:reviewer").is_success
        saved = load_document(config.kb_path).value
        assert saved["updated_by"] == "user:reviewer"
        assert saved["data_version"] == 2
        assert (config.index_dir / "claims_by_source_page.json").exists()

    def test_unchanged_document_is_not_rewritten(self, config):
        service = make_service(config, {PORTAL_URL: (200, PORTAL_CONTENT)})
        outcome = service.refresh_source(build_v2_document(), PORTAL_ID, timestamp=T3).value

        assert service.persist(outcome).is_success
        assert not config.kb_path.exists()
        assert (config.index_dir / "claims_by_service.json").exists()


class TestRegisterSourcePage:

    def test_new_page(self):
        doc = build_v2_document()
        registered = register_source_page(doc, NOTICE_URL, title="Notice 34", content="Revised fees", timestamp=T3).value

        assert registered.created
        assert registered.agency_id == "agency.dip"
        page = find(registered.document, "source_pages", "canonical_url", NOTICE_URL)
        assert page["page_type"] == "notice"
        assert page["language"] == ["en"]
        assert page["title"] == "Notice 34"
        assert page["last_crawled_at"] == T3
        assert len(doc["source_pages"]) == 2

    def test_unknown_host_gets_auto_agency(self):
        registered = register_source_page(build_v2_document(), "https://www.nidw.gov.bd/about", content="NID").value
        assert registered.agency_id.startswith("agency.auto_")
        agency = find(registered.document, "agencies", "agency_id", registered.agency_id)
        assert agency["domain_allowlist"] == ["nidw.gov.bd", "www.nidw.gov.bd"]

    def test_existing_page_goes_through_change_detection(self):
        registered = register_source_page(build_v2_document(), PORTAL_URL, content="Rewritten", timestamp=T3).value
        assert not registered.created
        assert registered.source_page_id == PORTAL_ID
        assert registered.change.changed
        assert find(registered.document, "claims", "claim_id", "claim.step.epassport.1")["status"] == "stale"

    def test_rejects_non_http_url(self):
        result = register_source_page(build_v2_document(), "ftp://www.epassport.gov.bd/file")
        assert result.error.code == ErrorCode.MALFORMED_DOCUMENT


class TestAddClaims:

    def test_adds_and_links(self):
        doc = build_v2_document()
        claim = make_claim("claim.step.epassport.3", text="Collect: Collect the passport")
        added = add_claims(doc, [claim])

        assert added.added == ("claim.step.epassport.3",)
        service = find(added.document, "services", "service_id", SERVICE_ID)
        assert service["claims"][-1] == "claim.step.epassport.3"
        assert "claim.step.epassport.3" not in find(doc, "services", "service_id", SERVICE_ID)["claims"]

    def test_duplicates_skipped(self):
        existing = make_claim("claim.step.epassport.1")
        fresh = make_claim("claim.step.epassport.4")
        added = add_claims(build_v2_document(), [existing, fresh, fresh])
        assert added.added == ("claim.step.epassport.4",)
        assert added.skipped == ("claim.step.epassport.1", "claim.step.epassport.4")


class TestDetectLanguages:

    @pytest.mark.parametrize("text,expected", [
        ("পাসপোর্ট", ["bn"]),
        ("ই-পাসপোর্ট ePassport", ["bn", "en"]),
        ("Apply online", ["en"]),
        ("", ["en"]),
        (None, ["en"]),
        ("2025", ["en"]),
    ])
    def test_detect(self, text, expected):
        assert detect_languages(text) == expected
