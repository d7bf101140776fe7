"""
Property Tests for KB Invariants
Verifies identity (P1), derived status (P3) and invalidation (P5) over
generated documents.
"""

import copy

from hypothesis import assume, given, settings, strategies as st

from kb.contracts.diagnostics import IssueKind
from kb.identity import content_hash, source_page_id
from kb.lifecycle import process_source_change
from kb.validation import validate

from .strategies import kb_documents


CHANGE_TIME = "2025-09-01T00:00:00.000Z"


# =============================================================================
# P1: SOURCE PAGE IDENTITY
# =============================================================================

@settings(deadline=None)
@given(kb_documents())
def test_p1_accepted_pages_have_deterministic_ids(doc):
    """P1: Every page of an accepted document is keyed by SHA1 of its URL."""
    report = validate(doc)
    assert report.ok, report.errors
    for page in doc["source_pages"]:
        assert page["source_page_id"] == source_page_id(page["canonical_url"])


@settings(deadline=None)
@given(kb_documents(), st.data())
def test_p1_mismatched_id_rejected(doc, data):
    """P1: A well-formed but wrong source_page_id is never accepted."""
    page = data.draw(st.sampled_from(doc["source_pages"]))
    page["source_page_id"] = source_page_id(page["canonical_url"] + "#moved")
    report = validate(doc)
    assert not report.ok
    assert report.errors_of_kind(IssueKind.IDENTIFIER_VIOLATION)


# =============================================================================
# P3: DERIVED STATUS
# =============================================================================

@settings(deadline=None)
@given(kb_documents())
def test_p3_verified_service_needs_verified_claims(doc):
    """P3: status=verified on a service is legal iff all its claims are verified."""
    doc["services"][0]["status"] = "verified"
    all_verified = all(c["status"] == "verified" for c in doc["claims"])
    inconsistent = validate(doc).errors_of_kind(IssueKind.DERIVED_INCONSISTENCY)
    assert bool(inconsistent) == (not all_verified)


# =============================================================================
# P5: INVALIDATION PRESERVES PROVENANCE
# =============================================================================

@settings(deadline=None)
@given(kb_documents(), st.data(), st.text(min_size=1, max_size=200))
def test_p5_source_change_invalidates_citing_claims(doc, data, new_content):
    """P5: Changed content stales every live claim citing the page, and only those."""
    page = data.draw(st.sampled_from(doc["source_pages"]))
    new_hash = content_hash(new_content)
    assume(new_hash != page["content_hash"])
    sid = page["source_page_id"]
    before = copy.deepcopy(doc)

    outcome = process_source_change(doc, sid, new_content, timestamp=CHANGE_TIME).value
    after = {c["claim_id"]: c for c in outcome.document["claims"]}

    expected = {
        c["claim_id"]: c for c in before["claims"]
        if c["status"] in ("verified", "unverified")
        and any(x["source_page_id"] == sid for x in c["citations"])
    }
    for cid, prior in expected.items():
        claim = after[cid]
        assert claim["status"] == "stale"
        assert claim["previous_status"] == prior["status"]
        assert claim["stale_due_to_source_hash"] == new_hash
        assert claim.get("last_verified_at") == prior.get("last_verified_at")
        assert claim.get("last_verified_source_hash") == prior.get("last_verified_source_hash")

    for claim in before["claims"]:
        if claim["claim_id"] not in expected:
            assert after[claim["claim_id"]]["status"] == claim["status"]

    events = [e for e in outcome.document["audit_log"] if e["event_type"] == "claim_invalidation"]
    if expected:
        assert len(events) == 1
        assert sorted(events[0]["affected_entities"]["claims"]) == sorted(expected)
        assert events[0]["affected_entities"]["source_pages"] == [sid]
    else:
        assert events == []

    assert doc == before
