"""
Identity & Hash Kernel

Deterministic identifiers, content hashing and URL/domain normalization.

GUARANTEES:
===========
1. Every function is pure: same input, same output, on every run
2. Bad URLs yield None rather than raising; callers decide policy
3. No dependency on any other kb module
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit
import hashlib
import json
import re


_SLUG_INVALID = re.compile(r'[^a-z0-9_]')
_NAME_INVALID = re.compile(r'[^a-z0-9]+')
_ACTOR_INVALID = re.compile(r'[^a-zA-Z0-9_\-.]')

# ISO-8601 datetimes with an explicit zone, e.g. 2025-01-01T10:00:00Z or ...+06:00
_ISO_TIMESTAMP = re.compile(r'\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+\-]\d{2}:\d{2})')
_WHITESPACE = re.compile(r'\s+')
_VOLATILE_ATTRIBUTES = (
    re.compile(r'data-timestamp="[^"]*"'),
    re.compile(r'data-session="[^"]*"'),
)

_ENTITY_PREFIX = re.compile(r'^(svc\.|doc\.)')

# Claim type (or legacy short form) -> ID segment
_CLAIM_ID_SEGMENTS = {
    "fee": "fee",
    "step": "step",
    "doc": "doc",
    "document_requirement": "doc",
    "portal": "portal",
    "portal_link": "portal",
    "eligibility": "eligibility",
    "eligibility_requirement": "eligibility",
    "processing_time": "processing_time",
    "rule": "rule",
    "condition": "condition",
    "definition": "definition",
    "location": "location",
    "contact_info": "contact_info",
    "other": "other",
}


# =============================================================================
# HASHING
# =============================================================================

def sha1_hex(text: str) -> str:
    return hashlib.sha1(text.encode('utf-8')).hexdigest()


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def normalize_content(raw: str) -> str:
    """
    Strip volatile fragments so that re-crawls of an unchanged page hash
    identically: ISO timestamps, whitespace runs, session/timestamp attributes.
    """
    text = _ISO_TIMESTAMP.sub('', raw)
    text = _WHITESPACE.sub(' ', text).strip()
    for pattern in _VOLATILE_ATTRIBUTES:
        text = pattern.sub('', text)
    return text


def content_hash(raw: str) -> str:
    """SHA-256 hex of the normalized content."""
    return sha256_hex(normalize_content(raw))


# =============================================================================
# IDENTIFIERS
# =============================================================================

def slugify(value: str) -> str:
    """Lowercase, non-[a-z0-9_] to underscore, trim underscores."""
    return _SLUG_INVALID.sub('_', value.lower()).strip('_')


def source_page_id(url: str) -> str:
    return f"source.{sha1_hex(url)}"


def canonical_entities_json(affected: Optional[Mapping[str, Any]]) -> str:
    """
    Canonical JSON of an affected-entities map: keys sorted, each ID array
    sorted, empty arrays dropped.
    """
    normalized: Dict[str, List[str]] = {}
    for key in sorted(affected or {}):
        value = affected[key]
        if isinstance(value, (list, tuple)) and value:
            normalized[key] = sorted(value)
    return json.dumps(normalized, separators=(',', ':'), ensure_ascii=False)


def event_id(event_type: str, timestamp: str, affected: Optional[Mapping[str, Any]]) -> str:
    payload = f"{event_type}|{timestamp}|{canonical_entities_json(affected)}"
    return f"evt.{sha1_hex(payload)}"


def claim_id(claim_type: str, entity_id: Optional[str], suffix: Optional[str]) -> str:
    """
    claim.<type>.<entity>.<suffix>; the svc./doc. prefix is dropped from the
    entity. Unknown types collapse to 'other'.
    """
    entity = _ENTITY_PREFIX.sub('', (entity_id or 'unknown').lower())
    segment = _CLAIM_ID_SEGMENTS.get(claim_type, 'other')
    return f"claim.{segment}.{slugify(entity)}.{slugify(suffix or 'default')}"


def agency_id_for_name(name: Optional[str]) -> str:
    normalized = _NAME_INVALID.sub('_', (name or 'unknown').lower()).strip('_')
    return f"agency.{normalized}"


def auto_agency_id(host: str) -> str:
    """Synthetic agency for a host no existing agency claims."""
    bare = host[4:] if host.startswith('www.') else host
    return f"agency.auto_{sha1_hex(bare)[:12]}"


def guide_id_for_service(service_id: str) -> str:
    return f"guide.{_ENTITY_PREFIX.sub('', service_id)}"


def script_actor(script_name: str) -> str:
    return f"script:{_ACTOR_INVALID.sub('_', script_name)}"


# =============================================================================
# URLS AND DOMAINS
# =============================================================================

def normalize_domain(domain: Optional[str]) -> str:
    """Lowercase, trim dots, drop anything after the first '/'."""
    if not domain:
        return ''
    normalized = domain.lower().strip().strip('.')
    return normalized.split('/', 1)[0]


def parse_url(url: Any) -> Optional[Tuple[str, str]]:
    """(scheme, host) of an absolute URL, lowercased; None if it cannot be parsed."""
    if not isinstance(url, str) or not url:
        return None
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return parts.scheme.lower(), host.lower()


def normalize_url(url: Any) -> Optional[Tuple[str, str]]:
    """(host, scheme); None if the URL cannot be parsed."""
    parsed = parse_url(url)
    return (parsed[1], parsed[0]) if parsed else None


def normalize_host(url: Any) -> Optional[str]:
    parsed = parse_url(url)
    return parsed[1] if parsed else None


def is_http_url(url: Any) -> bool:
    parsed = parse_url(url)
    return parsed is not None and parsed[0] in ('http', 'https')


def host_matches_domain(host: Optional[str], domain: Optional[str]) -> bool:
    """Exact match or dot-bounded suffix; epassport-gov.bd never matches epassport.gov.bd."""
    if not host or not domain:
        return False
    return host == domain or host.endswith('.' + domain)
