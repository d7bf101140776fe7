"""
Index Builder Tests

Full builds, incremental patches, and their equivalence.
"""

from kb.indexing import (
    CLAIMS_BY_DOCUMENT,
    CLAIMS_BY_SERVICE,
    CLAIMS_BY_SOURCE_PAGE,
    BuildMode,
    IndexDiff,
    build_full,
    build_indexes,
    is_index_set,
)
from kb.storage import dumps, load_existing_indexes, save_indexes

from .fixtures import (
    DOCUMENT_ID,
    FEES_ID,
    NOTICE_CONTENT,
    NOTICE_ID,
    NOTICE_URL,
    PORTAL_ID,
    SERVICE_ID,
    build_v2_document,
    clone,
    make_citation,
    make_claim,
    make_source_page,
)


def serialized(build):
    return {name: dumps(index, sort_keys=True) for name, index in build.indexes.items()}


def evolve(doc):
    """Delete one claim, add another citing a new source page."""
    updated = clone(doc)
    updated["claims"] = [c for c in updated["claims"] if c["claim_id"] != "claim.step.epassport.2"]
    updated["source_pages"].append(make_source_page(NOTICE_URL, content=NOTICE_CONTENT, page_type="notice"))
    updated["claims"].append(make_claim(
        "claim.step.epassport.3",
        text="Check notices: Read the latest notice",
        citations=[make_citation(NOTICE_ID, quoted_text="Notice 34", heading="Notices")],
    ))
    return updated


class TestFullBuild:

    def test_buckets(self):
        indexes = build_full(build_v2_document()).indexes
        assert indexes[CLAIMS_BY_SERVICE][SERVICE_ID] == [
            "claim.fee.epassport.regular_48_5",
            "claim.step.epassport.1",
            "claim.step.epassport.2",
        ]
        assert indexes[CLAIMS_BY_DOCUMENT][DOCUMENT_ID] == ["claim.doc.nid.identity"]
        assert indexes[CLAIMS_BY_SOURCE_PAGE][PORTAL_ID] == ["claim.doc.nid.identity", "claim.step.epassport.1"]
        assert indexes[CLAIMS_BY_SOURCE_PAGE][FEES_ID] == ["claim.fee.epassport.regular_48_5", "claim.step.epassport.2"]

    def test_entities_without_claims_keep_empty_bucket(self):
        doc = build_v2_document()
        doc["source_pages"].append(make_source_page(NOTICE_URL, content=NOTICE_CONTENT))
        indexes = build_full(doc).indexes
        assert indexes[CLAIMS_BY_SOURCE_PAGE][NOTICE_ID] == []

    def test_keys_sorted(self):
        build = build_full(build_v2_document())
        for index in build.indexes.values():
            assert list(index) == sorted(index)
        assert build.mode is BuildMode.FULL
        assert build.counts()[CLAIMS_BY_SOURCE_PAGE] == 2

    def test_is_index_set(self):
        assert is_index_set(build_full(build_v2_document()).indexes)
        assert not is_index_set({CLAIMS_BY_SERVICE: {}})
        assert not is_index_set(None)


class TestIncrementalBuild:

    def test_incremental_equals_full_after_delete_and_add(self):
        d0 = build_v2_document()
        existing = build_full(d0).indexes
        d1 = evolve(d0)

        diff = IndexDiff.create(
            claim_ids=["claim.step.epassport.2", "claim.step.epassport.3"],
            source_page_ids=[NOTICE_ID],
        )
        incremental = build_indexes(d1, existing, diff)

        assert incremental.mode is BuildMode.INCREMENTAL
        assert serialized(incremental) == serialized(build_full(d1))

    def test_incremental_through_files(self, tmp_path):
        d0 = build_v2_document()
        save_indexes(tmp_path, build_full(d0).indexes)
        d1 = evolve(d0)

        existing = load_existing_indexes(tmp_path)
        diff = IndexDiff.create(["claim.step.epassport.2", "claim.step.epassport.3"], [NOTICE_ID])
        save_indexes(tmp_path, build_indexes(d1, existing, diff).indexes)

        expected = serialized(build_full(d1))
        for name, text in expected.items():
            assert (tmp_path / f"{name}.json").read_text(encoding="utf-8") == text

    def test_changed_source_reindexes_citing_claims(self):
        d0 = build_v2_document()
        existing = build_full(d0).indexes
        d1 = clone(d0)
        d1["claims"][2]["citations"] = [make_citation(PORTAL_ID, quoted_text="Fee", heading="Fees")]

        build = build_indexes(d1, existing, IndexDiff.create(source_page_ids=[FEES_ID, PORTAL_ID]))
        assert serialized(build) == serialized(build_full(d1))

    def test_link_dropped_from_service_needs_claim_in_diff(self):
        d0 = build_v2_document()
        d0["services"][0]["claims"].append("claim.doc.nid.identity")
        existing = build_full(d0).indexes
        d1 = clone(d0)
        d1["services"][0]["claims"].remove("claim.doc.nid.identity")

        named = build_indexes(d1, existing, IndexDiff.create(["claim.doc.nid.identity"]))
        assert serialized(named) == serialized(build_full(d1))
        assert "claim.doc.nid.identity" not in named.indexes[CLAIMS_BY_SERVICE][SERVICE_ID]

        unnamed = build_indexes(d1, existing, IndexDiff.create(source_page_ids=[FEES_ID]))
        assert "claim.doc.nid.identity" in unnamed.indexes[CLAIMS_BY_SERVICE][SERVICE_ID]

    def test_without_existing_falls_back_to_full(self):
        build = build_indexes(build_v2_document(), None, IndexDiff.create(["claim.step.epassport.1"]))
        assert build.mode is BuildMode.FULL

    def test_empty_diff_is_full(self):
        doc = build_v2_document()
        build = build_indexes(doc, build_full(doc).indexes, IndexDiff.create())
        assert build.mode is BuildMode.FULL

    def test_diff_merge(self):
        merged = IndexDiff.create(["a"]).merge(IndexDiff.create(source_page_ids=["s"]))
        assert merged.claim_ids == frozenset({"a"})
        assert merged.source_page_ids == frozenset({"s"})
        assert IndexDiff.create(["", None]).is_empty
