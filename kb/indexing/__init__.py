"""
Indexing Layer

RESPONSIBILITY: Derived reverse indexes (entity/source -> claim IDs)
OUTPUTS: Plain key-sorted dicts; callers persist them

Indexes are derived artifacts. Readers reload them after any writer finishes.
"""

from .builder import (
    CLAIMS_BY_SERVICE,
    CLAIMS_BY_DOCUMENT,
    CLAIMS_BY_SOURCE_PAGE,
    INDEX_NAMES,
    BuildMode,
    IndexBuild,
    IndexDiff,
    build_full,
    build_incremental,
    build_indexes,
    is_index_set,
)

__all__ = [
    "CLAIMS_BY_SERVICE",
    "CLAIMS_BY_DOCUMENT",
    "CLAIMS_BY_SOURCE_PAGE",
    "INDEX_NAMES",
    "BuildMode",
    "IndexBuild",
    "IndexDiff",
    "build_full",
    "build_incremental",
    "build_indexes",
    "is_index_set",
]
