"""
Ingestion Layer

RESPONSIBILITY: Bring fresh official page content into the KB
ALLOWED INPUTS: URLs, a KB document, collaborator fetchers / extractors
OUTPUTS: New documents, FetchResults, IngestionOutcomes

WHAT THIS LAYER MUST NOT DO:
============================
- Verify claims (fresh content only ever invalidates)
- Raise for network or HTTP failures
- Fabricate quoted text
"""

from .contracts import (
    FetchStatus,
    FetchedPage,
    FetchResult,
    ExtractionResult,
)
from .extractor import Extractor
from .fetcher import PageFetcher, html_to_text
from .service import (
    IngestionOutcome,
    IngestionService,
    RegisteredSource,
    ClaimsAdded,
    add_claims,
    detect_languages,
    register_source_page,
)

__all__ = [
    "FetchStatus",
    "FetchedPage",
    "FetchResult",
    "ExtractionResult",
    "Extractor",
    "PageFetcher",
    "html_to_text",
    "IngestionOutcome",
    "IngestionService",
    "RegisteredSource",
    "ClaimsAdded",
    "add_claims",
    "detect_languages",
    "register_source_page",
]
