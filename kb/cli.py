"""
Knowledge Base CLI
==================

Operational surface of the provenance KB. Works directly on kb.json and
the files derived from it.

COMMANDS:
- validate:            Run every integrity check on a document
- detect-change:       Compare fresh content with a source page; invalidate claims
- build-indexes:       Full or incremental reverse-index rebuild
- migrate-v1-v2:       Provenance extraction from a v1 document
- migrate-v2-v3:       Guide generation
- publish:             Build public_guides.json and its search index
- validate-published:  Check already published files
- audit:               Query the audit log

USAGE:
    python -m kb.cli [COMMAND] [ARGS]

Exit codes: 0 success, 1 validation / IO / parse failure.
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from .audit import (
    query_by_actor,
    query_by_affected_entity,
    query_by_event_type,
    query_by_time_range,
)
from .config import KBConfig
from .contracts.base import Result
from .contracts.diagnostics import Severity
from .contracts.events import ENTITY_BUCKETS, EventType
from .indexing import CLAIMS_BY_SOURCE_PAGE, IndexDiff, build_indexes
from .lifecycle import detect_change, process_source_change
from .lifecycle.change_detector import find_source_page
from .migration import migrate_v1_to_v2, migrate_v2_to_v3
from .observability import configure_logging, set_log_level
from .publishing import publish, validate_published
from .storage import (
    atomic_write_json,
    index_path,
    load_document,
    load_existing_indexes,
    load_json,
    load_source_index,
    save_document,
    save_indexes,
    save_snapshot,
)
from .validation import validate


def _fail(result: Result) -> int:
    print(f"[FAIL] {result.error}")
    return 1


def _split_ids(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _config(**overrides) -> KBConfig:
    return KBConfig.from_env(**overrides)


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_validate(args) -> int:
    """Validate a document; exit 0 iff no errors."""
    print(f"[*] Validating: {args.kb_path}")
    loaded = load_document(args.kb_path)
    if loaded.is_failure:
        return _fail(loaded)

    report = validate(loaded.value)
    by_kind = {}
    for diagnostic in report.diagnostics:
        by_kind.setdefault((diagnostic.severity, diagnostic.kind), []).append(diagnostic.message)

    for (severity, kind), messages in sorted(by_kind.items(), key=lambda item: (item[0][0].value, item[0][1].value)):
        tag = "[FAIL]" if severity is Severity.ERROR else "[WARN]"
        print(f"\n{tag} {kind.value} ({len(messages)})")
        for message in messages:
            print(f"    - {message}")

    summary = report.summary
    print("\n--------------------------------------------------")
    for name in ("agencies", "source_pages", "claims", "documents", "services", "service_guides"):
        if name in summary:
            print(f"[INFO] {name}: {summary[name]}")
    checks = summary.get("domain_checks", {})
    if checks:
        print(f"[INFO] domain checks: {checks.get('passed', 0)} passed, {checks.get('failed', 0)} failed")

    if report.ok:
        print(f"[PASS] Document is valid ({len(report.warnings)} warning(s)).")
        return 0
    print(f"[FAIL] {len(report.errors)} error(s), {len(report.warnings)} warning(s).")
    return 1


def cmd_detect_change(args) -> int:
    """Report, and with a content file apply, a source page change."""
    config = _config(kb_path=Path(args.kb_path), index_dir=args.index_dir)
    loaded = load_document(config.kb_path)
    if loaded.is_failure:
        return _fail(loaded)
    doc = loaded.value

    page = find_source_page(doc, args.source_page_id)
    if page is None:
        print(f"[FAIL] Source page not found: {args.source_page_id}")
        return 1

    if not args.content_file:
        print(f"[INFO] {args.source_page_id}")
        print(f"    url:             {page.get('canonical_url')}")
        print(f"    content_hash:    {page.get('content_hash')}")
        print(f"    last_crawled_at: {page.get('last_crawled_at')}")
        print(f"    changes logged:  {len(page.get('change_log') or [])}")
        return 0

    try:
        content = Path(args.content_file).read_text(encoding="utf-8")
    except OSError as exc:
        print(f"[FAIL] Cannot read content file {args.content_file}: {exc}")
        return 1

    detection = detect_change(page, content)
    print(f"[*] Stored hash:  {detection.previous_hash}")
    print(f"[*] Current hash: {detection.current_hash}")

    index = load_source_index(index_path(config.index_dir, CLAIMS_BY_SOURCE_PAGE))
    if index is not None:
        print(f"[INFO] Using index {index_path(config.index_dir, CLAIMS_BY_SOURCE_PAGE)}")

    result = process_source_change(doc, args.source_page_id, content, index=index, actor=config.actor)
    if result.is_failure:
        return _fail(result)
    outcome = result.value

    snapshot = save_snapshot(config.snapshot_dir, args.source_page_id, content)
    if snapshot.is_failure:
        return _fail(snapshot)

    if not outcome.changed:
        print("[PASS] No change detected.")
        return 0

    saved = save_document(config.kb_path, outcome.document, actor=config.actor)
    if saved.is_failure:
        return _fail(saved)
    print(f"[PASS] {outcome.message}")
    for claim in outcome.invalidated_claims:
        print(f"    - {claim.claim_id}: {claim.previous_status} -> {claim.new_status}")
    for error in outcome.errors:
        print(f"[!] {error}")
    return 0


def cmd_build_indexes(args) -> int:
    """Full rebuild, or incremental when a diff and existing indexes are present."""
    config = _config(kb_path=Path(args.kb_path), index_dir=args.out_dir)
    loaded = load_document(config.kb_path)
    if loaded.is_failure:
        return _fail(loaded)

    diff = IndexDiff.create(_split_ids(args.claim_ids), _split_ids(args.source_page_ids))
    if args.diff_file:
        raw = load_json(args.diff_file)
        if raw.is_failure:
            return _fail(raw)
        data = raw.value if isinstance(raw.value, dict) else {}
        diff = diff.merge(IndexDiff.create(data.get("claim_ids") or [], data.get("source_page_ids") or []))

    existing = load_existing_indexes(config.index_dir) if not diff.is_empty else None
    build = build_indexes(loaded.value, existing=existing, diff=diff)
    saved = save_indexes(config.index_dir, build.indexes)
    if saved.is_failure:
        return _fail(saved)

    print(f"[PASS] {build.mode.value} build written to {config.index_dir}")
    for name, count in build.counts().items():
        print(f"    {name}: {count} keys")
    if build.reindexed_claims:
        print(f"[INFO] Reindexed claims: {build.reindexed_claims}")
    return 0


def _write_migrated(result: Result, out_path: str) -> int:
    if result.is_failure:
        return _fail(result)
    outcome = result.value
    for warning in outcome.warnings:
        print(f"[WARN] {warning}")
    written = atomic_write_json(out_path, outcome.document)
    if written.is_failure:
        return _fail(written)
    doc = outcome.document
    print(f"[PASS] Wrote {doc['$schema_version']} document to {out_path}")
    print(f"    claims: {len(doc.get('claims', []))}, services: {len(doc.get('services', []))}, "
          f"guides: {len(doc.get('service_guides', []))}")
    print(f"[INFO] Next: python -m kb.cli validate {out_path}")
    return 0


def cmd_migrate_v1_v2(args) -> int:
    print(f"[*] Migrating v1 -> v2: {args.input}")
    loaded = load_json(args.input)
    if loaded.is_failure:
        return _fail(loaded)
    return _write_migrated(migrate_v1_to_v2(loaded.value), args.output)


def cmd_migrate_v2_v3(args) -> int:
    print(f"[*] Migrating v2 -> v3: {args.input}")
    loaded = load_document(args.input)
    if loaded.is_failure:
        return _fail(loaded)
    return _write_migrated(migrate_v2_to_v3(loaded.value), args.output)


def cmd_publish(args) -> int:
    """Validate, then write the public bundle."""
    config = _config(kb_path=Path(args.kb_path), published_dir=args.out_dir)
    loaded = load_document(config.kb_path)
    if loaded.is_failure:
        return _fail(loaded)

    result = publish(loaded.value, config.published_dir, source_timestamp=config.source_timestamp)
    if result.is_failure:
        return _fail(result)

    report = result.value.metadata
    print(f"[PASS] Published {report['guide_count']} guide(s) to {config.published_dir}")
    print(f"    total steps:     {report['total_steps']}")
    print(f"    total citations: {report['total_citations']}")
    print(f"    domains:         {', '.join(report['domains']) or 'none'}")
    for status, count in report["verification_totals"].items():
        print(f"    {status}: {count}")
    for note in report["canonicalization_notes"]:
        print(f"[INFO] {note}")
    return 0


def cmd_validate_published(args) -> int:
    print(f"[*] Checking published guides in: {args.published_dir}")
    result = validate_published(args.published_dir)
    if result.is_failure:
        return _fail(result)
    violations = result.value
    if not violations:
        print("[PASS] Public contract satisfied.")
        return 0
    for violation in violations:
        print(f"    - {violation}")
    print(f"[FAIL] {len(violations)} violation(s).")
    return 1


def cmd_audit(args) -> int:
    """Filter the audit log; filters combine with AND."""
    loaded = load_document(args.kb_path)
    if loaded.is_failure:
        return _fail(loaded)

    entries = loaded.value.get("audit_log") or []
    if args.event_type:
        entries = query_by_event_type(entries, args.event_type)
    if args.entity_type and args.entity_id:
        entries = query_by_affected_entity(entries, args.entity_type, args.entity_id)
    if args.actor:
        entries = query_by_actor(entries, args.actor)
    if args.since or args.until:
        entries = query_by_time_range(entries, args.since, args.until)

    if args.json:
        print(json.dumps(entries, indent=2, ensure_ascii=False))
        return 0

    print("TIME                     | TYPE               | ACTOR                  | EVENT")
    print("-" * 100)
    for entry in entries:
        print(
            f"{str(entry.get('timestamp', ''))[:24]:<24} | {entry.get('event_type', ''):<18} | "
            f"{entry.get('actor', ''):<22} | {str(entry.get('event_id', ''))[:16]}... {entry.get('description', '')}"
        )
    print(f"[INFO] {len(entries)} event(s)")
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kb", description="Provenance knowledge base tools")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")

    subparsers = parser.add_subparsers(dest="command")

    p = subparsers.add_parser("validate", help="Validate a KB document")
    p.add_argument("kb_path")
    p.set_defaults(func=cmd_validate)

    p = subparsers.add_parser("detect-change", help="Detect a source page change")
    p.add_argument("kb_path")
    p.add_argument("source_page_id")
    p.add_argument("content_file", nargs="?", help="Fresh page content; omit to only report")
    p.add_argument("--index-dir", default=None, help="Directory holding claims_by_source_page.json")
    p.set_defaults(func=cmd_detect_change)

    p = subparsers.add_parser("build-indexes", help="Build reverse indexes")
    p.add_argument("kb_path")
    p.add_argument("out_dir", nargs="?", default=None)
    p.add_argument("--claim-ids", default=None, help="Comma-separated changed claim IDs")
    p.add_argument("--source-page-ids", default=None, help="Comma-separated changed source page IDs")
    p.add_argument("--diff-file", default=None, help="JSON {claim_ids: [...], source_page_ids: [...]}")
    p.set_defaults(func=cmd_build_indexes)

    p = subparsers.add_parser("migrate-v1-v2", help="Migrate a v1 document to v2")
    p.add_argument("input")
    p.add_argument("output")
    p.set_defaults(func=cmd_migrate_v1_v2)

    p = subparsers.add_parser("migrate-v2-v3", help="Migrate a v2 document to v3")
    p.add_argument("input")
    p.add_argument("output")
    p.set_defaults(func=cmd_migrate_v2_v3)

    p = subparsers.add_parser("publish", help="Publish public guides")
    p.add_argument("kb_path")
    p.add_argument("out_dir", nargs="?", default=None)
    p.set_defaults(func=cmd_publish)

    p = subparsers.add_parser("validate-published", help="Check published guides")
    p.add_argument("published_dir")
    p.set_defaults(func=cmd_validate_published)

    p = subparsers.add_parser("audit", help="Query the audit log")
    p.add_argument("kb_path")
    p.add_argument("--event-type", choices=[e.value for e in EventType], default=None)
    p.add_argument("--entity-type", choices=list(ENTITY_BUCKETS), default=None)
    p.add_argument("--entity-id", default=None)
    p.add_argument("--actor", default=None)
    p.add_argument("--since", default=None, help="ISO timestamp, inclusive")
    p.add_argument("--until", default=None, help="ISO timestamp, inclusive")
    p.add_argument("--json", action="store_true", help="Print matching entries as JSON")
    p.set_defaults(func=cmd_audit)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging()
    if args.log_level:
        set_log_level(args.log_level)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
