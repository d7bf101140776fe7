"""
Publishing Layer

RESPONSIBILITY: Resolve a v3 document into the public guide bundle
ALLOWED INPUTS: A validated v3 document, optional source timestamp
OUTPUTS: public_guides.json, public_guides_index.json, build report

WHAT THIS LAYER MUST NOT DO:
============================
- Emit claim IDs or internal source references
- Publish a document with validation errors
- Modify the KB document
"""

from .canonicalizers import (
    CanonicalizerRegistry,
    EpassportFeeCanonicalizer,
    FeeCanonicalizer,
    default_registry,
)
from .contract import check_public_contract, check_public_index, validate_published
from .publisher import (
    PublishedBundle,
    GuidePublisher,
    build_public_bundle,
    write_bundle,
    publish,
)

__all__ = [
    "CanonicalizerRegistry",
    "EpassportFeeCanonicalizer",
    "FeeCanonicalizer",
    "default_registry",
    "check_public_contract",
    "check_public_index",
    "validate_published",
    "PublishedBundle",
    "GuidePublisher",
    "build_public_bundle",
    "write_bundle",
    "publish",
]
