"""
Audit Log Tests

Deterministic event IDs, append-only semantics, queries.
"""

import pytest

from kb.audit import (
    append_event,
    claim_invalidation_event,
    create_audit_entry,
    migration_event,
    query_by_actor,
    query_by_affected_entity,
    query_by_event_type,
    query_by_time_range,
    source_change_event,
    verification_event,
)

from .fixtures import T1, T2, T3, make_kb


class TestAuditEntries:

    def test_same_inputs_same_event_id(self):
        a = claim_invalidation_event(["claim.step.x.1"], ["source.a"], "system", timestamp=T1)
        b = claim_invalidation_event(["claim.step.x.1"], ["source.a"], "system", timestamp=T1)
        assert a == b

    def test_different_timestamp_different_id(self):
        a = verification_event(["claim.step.x.1"], "user", timestamp=T1)
        b = verification_event(["claim.step.x.1"], "user", timestamp=T2)
        assert a["event_id"] != b["event_id"]

    def test_invalid_event_type_rejected(self):
        with pytest.raises(ValueError, match="Invalid event type"):
            create_audit_entry("deletion", {"claims": ["c"]}, "system", timestamp=T1)

    @pytest.mark.parametrize("actor", ["robot", "script:", "script:bad name", ""])
    def test_invalid_actor_rejected(self, actor):
        with pytest.raises(ValueError, match="Invalid actor"):
            create_audit_entry("verification", {"claims": ["c"]}, actor, timestamp=T1)

    def test_unknown_buckets_and_empty_ids_dropped(self):
        entry = create_audit_entry(
            "migration",
            {"claims": ["c1", "", None], "widgets": ["w1"], "services": []},
            "script:test",
            timestamp=T1,
        )
        assert entry["affected_entities"] == {"claims": ["c1"]}

    def test_source_change_metadata(self):
        entry = source_change_event(["source.a"], "system", hash_before="a" * 64, hash_after="b" * 64, timestamp=T1)
        assert entry["event_type"] == "source_change"
        assert entry["metadata"] == {"hash_before": "a" * 64, "hash_after": "b" * 64}

    def test_migration_metadata(self):
        entry = migration_event(
            {"services": ["svc.a"]}, "script:migrate", migration_source="v2",
            schema_version_from="2.0.0", schema_version_to="3.0.0", timestamp=T1,
        )
        assert entry["metadata"]["migration_source"] == "v2"
        assert entry["metadata"]["schema_version_to"] == "3.0.0"


class TestAppendAndQuery:

    @pytest.fixture
    def doc(self):
        doc = make_kb([], [], [])
        doc = append_event(doc, source_change_event(["source.a"], "system", timestamp=T1))
        doc = append_event(doc, claim_invalidation_event(["claim.step.x.1"], ["source.a"], "script:detector", timestamp=T2))
        doc = append_event(doc, verification_event(["claim.step.x.1"], "user", timestamp=T3))
        return doc

    def test_append_returns_new_document(self):
        original = make_kb([], [], [])
        updated = append_event(original, verification_event(["c"], "user", timestamp=T1))
        assert original["audit_log"] == []
        assert len(updated["audit_log"]) == 1

    def test_append_preserves_existing_order(self, doc):
        types = [e["event_type"] for e in doc["audit_log"]]
        assert types == ["source_change", "claim_invalidation", "verification"]

    def test_query_by_event_type(self, doc):
        assert len(query_by_event_type(doc, "verification")) == 1
        assert query_by_event_type(doc["audit_log"], "migration") == []

    def test_query_by_affected_entity(self, doc):
        hits = query_by_affected_entity(doc, "source_pages", "source.a")
        assert [e["event_type"] for e in hits] == ["source_change", "claim_invalidation"]

    def test_query_by_time_range_inclusive(self, doc):
        hits = query_by_time_range(doc, T2, T3)
        assert [e["timestamp"] for e in hits] == [T2, T3]
        assert len(query_by_time_range(doc, None, T1)) == 1

    def test_query_by_actor(self, doc):
        assert [e["event_type"] for e in query_by_actor(doc, "script:detector")] == ["claim_invalidation"]
