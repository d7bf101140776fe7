"""
Storage Tests

Atomic writes, load failures as Results, write-once snapshots.
"""

import json

from kb.contracts.base import ErrorCode
from kb.storage import (
    atomic_write_json,
    dumps,
    load_document,
    load_existing_indexes,
    load_source_index,
    save_document,
    save_snapshot,
    snapshot_path,
)

from .fixtures import PORTAL_ID, T1, T2, build_v2_document


class TestJsonFiles:

    def test_dumps_format(self):
        assert dumps({"b": 1, "a": "ব"}, sort_keys=True) == '{\n  "a": "ব",\n  "b": 1\n}\n'

    def test_atomic_write_creates_parents_and_leaves_no_temp(self, tmp_path):
        target = tmp_path / "nested" / "kb.json"
        assert atomic_write_json(target, {"x": 1}).is_success
        assert json.loads(target.read_text(encoding="utf-8")) == {"x": 1}
        assert [p.name for p in target.parent.iterdir()] == ["kb.json"]

    def test_missing_file(self, tmp_path):
        result = load_document(tmp_path / "absent.json")
        assert result.is_failure
        assert result.error.code == ErrorCode.FILE_NOT_FOUND

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_document(path).error.code == ErrorCode.PARSE_FAILED

    def test_top_level_must_be_object(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert load_document(path).error.code == ErrorCode.MALFORMED_DOCUMENT


class TestSaveDocument:

    def test_stamped_save(self, tmp_path):
        path = tmp_path / "kb.json"
        doc = build_v2_document()
        result = save_document(path, doc, actor="script:test", timestamp=T2)
        assert result.is_success
        saved = load_document(path).value
        assert saved["data_version"] == 2
        assert saved["last_updated_at"] == T2
        assert saved["updated_by"] == "script:test"
        assert doc["data_version"] == 1

    def test_unstamped_save_is_verbatim(self, tmp_path):
        path = tmp_path / "kb.json"
        doc = build_v2_document()
        save_document(path, doc)
        assert load_document(path).value == doc


class TestIndexFiles:

    def test_partial_index_set_is_unusable(self, tmp_path):
        (tmp_path / "claims_by_service.json").write_text("{}", encoding="utf-8")
        assert load_existing_indexes(tmp_path) is None

    def test_source_index(self, tmp_path):
        path = tmp_path / "claims_by_source_page.json"
        assert load_source_index(path) is None
        path.write_text(json.dumps({PORTAL_ID: ["claim.step.epassport.1"]}), encoding="utf-8")
        assert load_source_index(path) == {PORTAL_ID: ["claim.step.epassport.1"]}


class TestSnapshots:

    def test_named_by_page_and_day(self, tmp_path):
        result = save_snapshot(tmp_path, PORTAL_ID, "<html>v1</html>", timestamp=T1)
        assert result.value == snapshot_path(tmp_path, PORTAL_ID, "2025-01-01")
        assert result.value.name == f"{PORTAL_ID}_2025-01-01.html"

    def test_write_once(self, tmp_path):
        save_snapshot(tmp_path, PORTAL_ID, "<html>v1</html>", timestamp=T1)
        save_snapshot(tmp_path, PORTAL_ID, "<html>v2</html>", timestamp=T1)
        path = snapshot_path(tmp_path, PORTAL_ID, "2025-01-01")
        assert path.read_text(encoding="utf-8") == "<html>v1</html>"

    def test_new_day_new_file(self, tmp_path):
        save_snapshot(tmp_path, PORTAL_ID, "v1", timestamp=T1)
        save_snapshot(tmp_path, PORTAL_ID, "v2", timestamp=T2)
        assert len(list(tmp_path.iterdir())) == 2
