"""
Public Contract Checks

What a published bundle promises its consumers, checked on the in-memory
bundle before writing and on files already written.

- no claim_id / claim_ids keys
- no string value starting with claim. or source.
- every citation has a canonical_url (and a parseable retrieved_at)
- guide IDs start with guide.
- step numbers run 1, 2, 3, ...
- variant IDs are unique within a guide
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, List, Mapping, Union

from ..contracts.base import Result, parse_iso
from ..identity import parse_url
from ..storage import load_json

PUBLIC_GUIDES_FILE = "public_guides.json"
PUBLIC_INDEX_FILE = "public_guides_index.json"

FORBIDDEN_KEYS = ("claim_id", "claim_ids")
FORBIDDEN_PREFIXES = ("claim.", "source.")


def _walk(value: Any, path: str, violations: List[str]):
    if isinstance(value, dict):
        for key, item in value.items():
            child = f"{path}.{key}" if path else key
            if key in FORBIDDEN_KEYS:
                violations.append(f"{child}: found {key} in public output - claims must be resolved to citations")
            if key == "citations" and isinstance(item, list):
                _check_citations(item, child, violations)
            _walk(item, child, violations)
    elif isinstance(value, list):
        for idx, item in enumerate(value):
            _walk(item, f"{path}[{idx}]", violations)
    elif isinstance(value, str) and value.startswith(FORBIDDEN_PREFIXES):
        violations.append(f"{path}: internal reference '{value}' leaked into public output")


def _check_citations(citations: List[Any], path: str, violations: List[str]):
    for idx, citation in enumerate(citations):
        if not isinstance(citation, dict):
            continue
        where = f"{path}[{idx}]"
        url = citation.get("canonical_url")
        if not url:
            violations.append(f"{where}.canonical_url is missing")
        elif parse_url(url) is None:
            violations.append(f"{where}.canonical_url is not a valid URL: {url}")
        retrieved = citation.get("retrieved_at")
        if retrieved and parse_iso(retrieved) is None:
            violations.append(f"{where}.retrieved_at has invalid date-time format: {retrieved}")


def _check_guide(guide: Mapping[str, Any], path: str, violations: List[str]):
    guide_id = guide.get("guide_id")
    if not isinstance(guide_id, str) or not guide_id.startswith("guide."):
        violations.append(f"{path}.guide_id must start with 'guide.'")

    for idx, step in enumerate(guide.get("steps") or []):
        number = step.get("step_number") if isinstance(step, dict) else None
        if number != idx + 1:
            violations.append(
                f"{path}.steps[{idx}].step_number: step numbers must be sequential "
                f"(expected {idx + 1}, got {number})"
            )

    seen = set()
    for idx, variant in enumerate(guide.get("variants") or []):
        variant_id = variant.get("variant_id") if isinstance(variant, dict) else None
        if variant_id in seen:
            violations.append(f"{path}.variants[{idx}].variant_id: duplicate variant_id {variant_id}")
        seen.add(variant_id)


def check_public_contract(guides_document: Mapping[str, Any]) -> List[str]:
    """Violations in a public_guides document; empty when it is publishable."""
    violations: List[str] = []
    guides = guides_document.get("guides")
    if not isinstance(guides, list):
        return ["guides: expected an array"]
    for idx, guide in enumerate(guides):
        if not isinstance(guide, dict):
            violations.append(f"guides[{idx}]: expected an object")
            continue
        _check_guide(guide, f"guides[{idx}]", violations)
        _walk(guide, f"guides[{idx}]", violations)
    return violations


def check_public_index(index_document: Mapping[str, Any]) -> List[str]:
    violations: List[str] = []
    entries = index_document.get("entries")
    if not isinstance(entries, list):
        return ["entries: expected an array"]
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            violations.append(f"entries[{idx}]: expected an object")
            continue
        if not isinstance(entry.get("keywords"), list):
            violations.append(f"entries[{idx}].keywords: expected an array")
        guide_id = entry.get("guide_id")
        if not isinstance(guide_id, str) or not guide_id.startswith("guide."):
            violations.append(f"entries[{idx}].guide_id must start with 'guide.'")
        _walk(entry, f"entries[{idx}]", violations)
    return violations


def validate_published(published_dir: Union[str, Path]) -> Result:
    """
    Load both published files and check them.
    Result(list of violations), or the load failure.
    """
    violations: List[str] = []
    for name, check in ((PUBLIC_GUIDES_FILE, check_public_contract), (PUBLIC_INDEX_FILE, check_public_index)):
        loaded = load_json(Path(published_dir) / name)
        if loaded.is_failure:
            return loaded
        if not isinstance(loaded.value, dict):
            violations.append(f"{name}: expected a JSON object")
            continue
        violations.extend(f"{name}: {v}" for v in check(loaded.value))
    return Result.success(violations)
