"""
Lifecycle Layer

RESPONSIBILITY: Source change detection, claim invalidation, derived
entity status
ALLOWED INPUTS: A KB document, fresh page content, optional reverse index
OUTPUTS: New documents plus typed outcomes (counts, errors)

WHAT THIS LAYER MUST NOT DO:
============================
- Verify claims (only an explicit verification may set verified)
- Touch last_verified_* bookkeeping
- Persist anything; callers write the returned document
"""

from .status import derive_status, derive_entity_status, recompute_entity_statuses
from .invalidator import (
    InvalidationOutcome,
    invalidate_claims_for_source_change,
    batch_invalidate_claims,
    find_claims_citing_source,
    find_claim_by_id,
    mark_claim_as_stale,
)
from .change_detector import (
    ChangeDetection,
    SourceChangeOutcome,
    detect_change,
    process_source_change,
)

__all__ = [
    "derive_status",
    "derive_entity_status",
    "recompute_entity_statuses",
    "InvalidationOutcome",
    "invalidate_claims_for_source_change",
    "batch_invalidate_claims",
    "find_claims_citing_source",
    "find_claim_by_id",
    "mark_claim_as_stale",
    "ChangeDetection",
    "SourceChangeOutcome",
    "detect_change",
    "process_source_change",
]
