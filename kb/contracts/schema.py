"""
Knowledge Base Schema Vocabulary

Central definitions for every enumerated value and identifier shape that
appears in kb.json. Any value outside these enums is an error at the
boundary; no module compares raw status strings of its own.

ENTITIES:
=========
- Agency        agency.<slug>, domain_allowlist
- SourcePage    source.<sha1(canonical_url)>
- Claim         claim.<type>.<entity>.<suffix>, citations >= 1
- Document      doc.<slug>, claims >= 1
- Service       svc.<slug>, claims >= 1, portal_mapping
- ServiceGuide  guide.<slug> (schema 3.0.0 only)
"""

from __future__ import annotations
from enum import Enum
from typing import FrozenSet, Type
import re


# =============================================================================
# SCHEMA VERSIONS
# =============================================================================

SCHEMA_V2 = "2.0.0"
SCHEMA_V3 = "3.0.0"
SUPPORTED_SCHEMA_VERSIONS = (SCHEMA_V2, SCHEMA_V3)

REQUIRED_COLLECTIONS = ("source_pages", "claims", "agencies", "documents", "services")
V3_COLLECTIONS = REQUIRED_COLLECTIONS + ("service_guides",)


# =============================================================================
# ENUMS
# =============================================================================

class ClaimStatus(Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    STALE = "stale"
    DEPRECATED = "deprecated"
    CONTRADICTED = "contradicted"


class EntityStatus(Enum):
    """Status of a Service or Document, derived from its claims."""
    VERIFIED = "verified"
    PARTIAL = "partial"
    UNVERIFIED = "unverified"
    STALE = "stale"
    DEPRECATED = "deprecated"
    CONTRADICTED = "contradicted"


class GuideStatus(Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ClaimType(Enum):
    FEE = "fee"
    STEP = "step"
    DOCUMENT_REQUIREMENT = "document_requirement"
    PROCESSING_TIME = "processing_time"
    ELIGIBILITY_REQUIREMENT = "eligibility_requirement"
    PORTAL_LINK = "portal_link"
    RULE = "rule"
    CONDITION = "condition"
    DEFINITION = "definition"
    LOCATION = "location"
    CONTACT_INFO = "contact_info"
    OTHER = "other"


class PageType(Enum):
    MAIN_PORTAL = "main_portal"
    INSTRUCTION = "instruction"
    FEE_SCHEDULE = "fee_schedule"
    FORM = "form"
    NOTICE = "notice"
    REGULATION = "regulation"
    OTHER = "other"


class Language(Enum):
    BN = "bn"
    EN = "en"


class EntityRefType(Enum):
    SERVICE = "service"
    DOCUMENT = "document"


class GuideSection(Enum):
    APPLICATION_STEPS = "application_steps"
    REQUIRED_DOCUMENTS = "required_documents"
    FEES = "fees"
    PROCESSING_TIME = "processing_time"
    ELIGIBILITY = "eligibility"
    PORTAL_LINKS = "portal_links"
    SERVICE_INFO = "service_info"


def enum_values(enum_cls: Type[Enum]) -> FrozenSet[str]:
    """Set of raw string values of an enum."""
    return frozenset(member.value for member in enum_cls)


CLAIM_STATUSES = enum_values(ClaimStatus)
ENTITY_STATUSES = enum_values(EntityStatus)
GUIDE_STATUSES = enum_values(GuideStatus)
CLAIM_TYPES = enum_values(ClaimType)
PAGE_TYPES = enum_values(PageType)
LANGUAGES = enum_values(Language)
ENTITY_REF_TYPES = enum_values(EntityRefType)
GUIDE_SECTIONS = enum_values(GuideSection)

# Claims in these states are moved to stale when their source changes
INVALIDATABLE_STATUSES = frozenset({ClaimStatus.VERIFIED.value, ClaimStatus.UNVERIFIED.value})


# =============================================================================
# IDENTIFIER SHAPES
# =============================================================================

SOURCE_PAGE_ID_RE = re.compile(r'^source\.[a-f0-9]{40}$')
AGENCY_ID_RE = re.compile(r'^agency\.[a-z0-9_]+$')
DOCUMENT_ID_RE = re.compile(r'^doc\.[a-z0-9_]+$')
SERVICE_ID_RE = re.compile(r'^svc\.[a-z0-9_]+$')
GUIDE_ID_RE = re.compile(r'^guide\.[a-z0-9_]+$')
CONTENT_HASH_RE = re.compile(r'^[a-f0-9]{64}$')

CLAIM_ID_PATTERNS = (
    re.compile(r'^claim\.fee\.[a-z0-9_]+\.[a-z0-9_]+$'),
    re.compile(r'^claim\.step\.[a-z0-9_]+\.[0-9]+$'),
    re.compile(r'^claim\.doc\.[a-z0-9_]+\.[a-z0-9_]+$'),
    re.compile(r'^claim\.portal\.[a-z0-9_]+\.[a-z0-9_]+$'),
    re.compile(
        r'^claim\.(eligibility|processing_time|rule|condition|definition|location|contact_info|other)'
        r'\.[a-z0-9_]+(\.[a-z0-9_]+)?$'
    ),
)


def is_valid_claim_id(claim_id: object) -> bool:
    return isinstance(claim_id, str) and any(p.match(claim_id) for p in CLAIM_ID_PATTERNS)


# =============================================================================
# ENTITY RULES
# =============================================================================

# Facts live in claims only; these keys may not carry text on services/documents
FORBIDDEN_ENTITY_FIELDS = (
    "definition",
    "how_to_get",
    "description",
    "instructions",
    "eligibility",
    "steps",
    "fees",
    "processing_time",
)

# Claim types whose structured_data is mandatory
STRUCTURED_CLAIM_TYPES = frozenset({ClaimType.FEE.value, ClaimType.PROCESSING_TIME.value})

PLACEHOLDER_CONTENT_HASH = "0" * 64
PLACEHOLDER_QUOTE = "[PLACEHOLDER - Manual citation required. Do not use this claim until verified.]"
TAG_NEEDS_MANUAL_CITATION = "needs_manual_citation"
SOURCE_PAGE_ACTIVE = "active"
