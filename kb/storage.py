"""
Document Storage

Persistence for kb.json, the derived index files and source snapshots.

GUARANTEES:
===========
1. Every write goes to a temp file in the target directory and is then
   renamed over the target, so readers see the old or the new file, never
   a partial one
2. Snapshots are write-once: an existing snapshot is never overwritten
3. I/O and parse failures come back as Result failures, never exceptions
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import os
import tempfile

from .contracts.base import Error, ErrorCode, Result, Timestamp, now_iso
from .indexing.builder import INDEX_NAMES, IndexSet, is_index_set
from .observability import get_logger


logger = get_logger(__name__)

PathLike = Union[str, Path]


def dumps(data: Any, sort_keys: bool = False) -> str:
    """Canonical on-disk JSON: 2-space indent, UTF-8 text, trailing newline."""
    return json.dumps(data, indent=2, ensure_ascii=False, sort_keys=sort_keys) + "\n"


def atomic_write_text(path: PathLike, text: str) -> Result:
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        return Result.failure(Error.create(
            ErrorCode.WRITE_FAILED, f"Failed to write {target}: {e}", path=str(target)
        ))
    return Result.success(target)


def atomic_write_json(path: PathLike, data: Any, sort_keys: bool = False) -> Result:
    return atomic_write_text(path, dumps(data, sort_keys=sort_keys))


def load_json(path: PathLike) -> Result:
    source = Path(path)
    if not source.exists():
        return Result.failure(Error.create(
            ErrorCode.FILE_NOT_FOUND, f"File not found: {source}", path=str(source)
        ))
    try:
        with open(source, "r", encoding="utf-8") as handle:
            return Result.success(json.load(handle))
    except json.JSONDecodeError as e:
        return Result.failure(Error.create(
            ErrorCode.PARSE_FAILED, f"Invalid JSON in {source}: {e}", path=str(source)
        ))
    except OSError as e:
        return Result.failure(Error.create(
            ErrorCode.READ_FAILED, f"Failed to read {source}: {e}", path=str(source)
        ))


# =============================================================================
# KB DOCUMENT
# =============================================================================

def load_document(path: PathLike) -> Result:
    """Load kb.json; the top level must be a JSON object."""
    result = load_json(path)
    if result.is_failure:
        return result
    if not isinstance(result.value, dict):
        return Result.failure(Error.create(
            ErrorCode.MALFORMED_DOCUMENT, f"Top level of {path} must be a JSON object", path=str(path)
        ))
    return result


def stamp_document(doc: Dict[str, Any], actor: str, timestamp: Optional[str] = None) -> Dict[str, Any]:
    """Bump data_version and record who wrote the document and when (in place)."""
    version = doc.get("data_version")
    doc["data_version"] = version + 1 if isinstance(version, int) and not isinstance(version, bool) else 1
    doc["last_updated_at"] = timestamp or now_iso()
    doc["updated_by"] = actor
    return doc


def save_document(
    path: PathLike,
    doc: Dict[str, Any],
    actor: Optional[str] = None,
    timestamp: Optional[str] = None
) -> Result:
    """
    Atomically replace kb.json. With an actor, the write is stamped
    (data_version + 1, last_updated_at, updated_by) on a shallow copy.
    """
    payload = stamp_document(dict(doc), actor, timestamp) if actor else doc
    result = atomic_write_json(path, payload)
    if result.is_success:
        logger.info("document saved", extra={"path": str(path), "data_version": payload.get("data_version")})
        return Result.success(payload)
    return result


# =============================================================================
# INDEX FILES
# =============================================================================

def index_path(index_dir: PathLike, name: str) -> Path:
    return Path(index_dir) / f"{name}.json"


def load_existing_indexes(index_dir: PathLike) -> Optional[IndexSet]:
    """All three indexes, or None if any file is missing or unusable."""
    indexes = {}
    for name in INDEX_NAMES:
        result = load_json(index_path(index_dir, name))
        if result.is_failure:
            logger.info("existing index unavailable", extra={"index": name, "reason": result.error.code.name})
            return None
        indexes[name] = result.value
    return indexes if is_index_set(indexes) else None


def load_source_index(path: PathLike) -> Optional[Dict[str, Any]]:
    """claims_by_source_page map, or None when the file is absent or invalid."""
    result = load_json(path)
    if result.is_failure or not isinstance(result.value, dict):
        return None
    return result.value


def save_indexes(index_dir: PathLike, indexes: IndexSet) -> Result:
    written = []
    for name in INDEX_NAMES:
        result = atomic_write_json(index_path(index_dir, name), indexes[name], sort_keys=True)
        if result.is_failure:
            return result
        written.append(result.value)
    return Result.success(written)


# =============================================================================
# SNAPSHOTS
# =============================================================================

def snapshot_path(snapshot_dir: PathLike, source_page_id: str, day: str) -> Path:
    return Path(snapshot_dir) / f"{source_page_id}_{day}.html"


def save_snapshot(
    snapshot_dir: PathLike,
    source_page_id: str,
    content: str,
    timestamp: Optional[str] = None
) -> Result:
    """Archive raw content as <source_page_id>_<YYYY-MM-DD>.html, once per day."""
    stamp = Timestamp.from_iso(timestamp) if timestamp else Timestamp.now()
    target = snapshot_path(snapshot_dir, source_page_id, stamp.day())
    if target.exists():
        logger.debug("snapshot exists", extra={"path": str(target)})
        return Result.success(target)
    return atomic_write_text(target, content)
